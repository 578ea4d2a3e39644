"""Repositories for notifications, delivery attempts, preferences and reminder jobs.

State transitions that must be exclusive (lease, claim, read receipt) are
conditional UPDATE statements whose rowcount tells the caller whether it won.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from clinic_notifications.core.database import BaseRepository, SearchResult
from clinic_notifications.core.exceptions import SchedulingConflictError

from .enums import DeliveryStatus
from .models import DeliveryAttempt, Notification, NotificationPreference, ReminderJob

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession


def _dialect_insert(session: AsyncSession) -> Any:
    """Dialect insert construct that supports ON CONFLICT DO NOTHING."""
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert
    return sqlite_insert


class NotificationRepository(BaseRepository[Notification]):
    """Queries and read-receipt updates for notifications."""

    async def list_for_user(
        self,
        session: AsyncSession,
        user_id: str,
        *,
        unread_only: bool = False,
        types: Sequence[str] | None = None,
        include_expired: bool = True,
        now: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> SearchResult[Notification]:
        """Newest-first page of a user's notifications."""
        stmt = select(Notification).where(Notification.recipient_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        if types:
            stmt = stmt.where(Notification.type.in_(list(types)))
        if not include_expired and now is not None:
            stmt = stmt.where(or_(Notification.expires_at.is_(None), Notification.expires_at > now))
        stmt = stmt.order_by(Notification.scheduled_at.desc(), Notification.created_at.desc())
        return await self.search(session, stmt, limit=limit, offset=offset)

    async def get_fresh(self, session: AsyncSession, notification_id: UUID) -> Notification | None:
        """Load a notification and its attempts, overwriting stale identity-map state.

        Conditional UPDATEs bypass the identity map, so anything serialized
        after one must be re-read through this method.
        """
        stmt = (
            select(Notification)
            .where(Notification.id == notification_id)
            .options(selectinload(Notification.attempts))
            .execution_options(populate_existing=True)
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def count_unread(self, session: AsyncSession, user_id: str) -> int:
        stmt = select(func.count()).where(
            Notification.recipient_id == user_id,
            Notification.is_read.is_(False),
        )
        return (await session.execute(stmt)).scalar_one()

    async def mark_read(
        self,
        session: AsyncSession,
        notification_ids: Sequence[UUID],
        user_id: str,
        at: datetime,
    ) -> int:
        """Flag unread notifications owned by ``user_id`` as read.

        Already-read rows are left untouched, so read_at keeps its first value.
        """
        if not notification_ids:
            return 0
        result = await session.execute(
            update(Notification)
            .where(
                Notification.id.in_(list(notification_ids)),
                Notification.recipient_id == user_id,
                Notification.is_read.is_(False),
            )
            .values(is_read=True, read_at=at, updated_at=at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def owned_ids(
        self, session: AsyncSession, notification_ids: Sequence[UUID], user_id: str
    ) -> set[UUID]:
        stmt = select(Notification.id).where(
            Notification.id.in_(list(notification_ids)),
            Notification.recipient_id == user_id,
        )
        return set((await session.execute(stmt)).scalars().all())

    async def unread_ids(
        self, session: AsyncSession, notification_ids: Sequence[UUID], user_id: str
    ) -> list[UUID]:
        stmt = select(Notification.id).where(
            Notification.id.in_(list(notification_ids)),
            Notification.recipient_id == user_id,
            Notification.is_read.is_(False),
        )
        return list((await session.execute(stmt)).scalars().all())

    async def unread_ids_for(self, session: AsyncSession, user_id: str) -> list[UUID]:
        stmt = select(Notification.id).where(
            Notification.recipient_id == user_id,
            Notification.is_read.is_(False),
        )
        return list((await session.execute(stmt)).scalars().all())

    async def mark_sent_once(self, session: AsyncSession, notification_id: UUID, at: datetime) -> bool:
        """Set sent_at when the first channel reaches sent."""
        result = await session.execute(
            update(Notification)
            .where(Notification.id == notification_id, Notification.sent_at.is_(None))
            .values(sent_at=at, updated_at=at)
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) == 1

    async def cancel(self, session: AsyncSession, notification_id: UUID, at: datetime) -> bool:
        result = await session.execute(
            update(Notification)
            .where(Notification.id == notification_id, Notification.cancelled_at.is_(None))
            .values(cancelled_at=at, updated_at=at)
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) == 1


class DeliveryAttemptRepository(BaseRepository[DeliveryAttempt]):
    """Attempt rows plus the per-(notification, channel) lease."""

    async def get_for(
        self, session: AsyncSession, notification_id: UUID, channel: str
    ) -> DeliveryAttempt | None:
        stmt = select(DeliveryAttempt).where(
            DeliveryAttempt.notification_id == notification_id,
            DeliveryAttempt.channel == channel,
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def list_for_notification(
        self, session: AsyncSession, notification_id: UUID
    ) -> Sequence[DeliveryAttempt]:
        stmt = (
            select(DeliveryAttempt)
            .where(DeliveryAttempt.notification_id == notification_id)
            .order_by(DeliveryAttempt.channel)
        )
        return (await session.execute(stmt)).scalars().all()

    async def get_or_create(
        self,
        session: AsyncSession,
        notification_id: UUID,
        channel: str,
        *,
        max_retries: int,
        at: datetime,
        next_attempt_at: datetime | None = None,
    ) -> tuple[DeliveryAttempt, bool]:
        """Return the single attempt row for the pair, creating it if absent.

        Uses INSERT .. ON CONFLICT DO NOTHING so a concurrent insert from
        another worker yields the winner's row instead of an error.
        """
        existing = await self.get_for(session, notification_id, channel)
        if existing is not None:
            return existing, False

        stmt = (
            _dialect_insert(session)(DeliveryAttempt)
            .values(
                id=uuid4(),
                notification_id=notification_id,
                channel=channel,
                status=DeliveryStatus.SCHEDULED.value,
                retry_count=0,
                max_retries=max_retries,
                next_attempt_at=next_attempt_at or at,
                created_at=at,
                updated_at=at,
            )
            .on_conflict_do_nothing(index_elements=["notification_id", "channel"])
        )
        created = ((await session.execute(stmt)).rowcount or 0) == 1

        attempt = await self.get_for(session, notification_id, channel)
        if attempt is None:
            msg = f"DeliveryAttempt({notification_id}, {channel}) vanished after insert"
            raise RuntimeError(msg)
        if created:
            self._lazy.debug(lambda: f"db.create: DeliveryAttempt({notification_id}, {channel})")
        return attempt, created

    async def acquire_lease(
        self,
        session: AsyncSession,
        attempt_id: UUID,
        owner: str,
        now: datetime,
        ttl: timedelta,
    ) -> bool:
        """Take the send lease for a due, scheduled attempt.

        Fails when another worker holds an unexpired lease, the attempt is
        not yet due, or it has left the scheduled state.
        """
        result = await session.execute(
            update(DeliveryAttempt)
            .where(
                DeliveryAttempt.id == attempt_id,
                DeliveryAttempt.status == DeliveryStatus.SCHEDULED.value,
                or_(DeliveryAttempt.next_attempt_at.is_(None), DeliveryAttempt.next_attempt_at <= now),
                or_(DeliveryAttempt.lease_expires_at.is_(None), DeliveryAttempt.lease_expires_at <= now),
            )
            .values(lease_owner=owner, lease_expires_at=now + ttl)
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) == 1

    async def update_owned(
        self,
        session: AsyncSession,
        attempt_id: UUID,
        owner: str,
        values: dict[str, Any],
    ) -> bool:
        """Apply a state change only while ``owner`` still holds the lease."""
        result = await session.execute(
            update(DeliveryAttempt)
            .where(DeliveryAttempt.id == attempt_id, DeliveryAttempt.lease_owner == owner)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) == 1

    async def update_from(
        self,
        session: AsyncSession,
        attempt_id: UUID,
        from_status: DeliveryStatus,
        values: dict[str, Any],
    ) -> bool:
        """Apply a state change only while the attempt is still in ``from_status``."""
        result = await session.execute(
            update(DeliveryAttempt)
            .where(DeliveryAttempt.id == attempt_id, DeliveryAttempt.status == from_status.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) == 1

    async def find_by_external_ref(self, session: AsyncSession, external_ref: str) -> DeliveryAttempt | None:
        stmt = select(DeliveryAttempt).where(DeliveryAttempt.external_ref == external_ref)
        return (await session.execute(stmt)).scalars().first()

    async def list_due(self, session: AsyncSession, now: datetime, limit: int) -> list[tuple[UUID, UUID, str]]:
        """(attempt id, notification id, channel) of scheduled attempts that are due and unleased."""
        stmt = (
            select(DeliveryAttempt.id, DeliveryAttempt.notification_id, DeliveryAttempt.channel)
            .where(
                DeliveryAttempt.status == DeliveryStatus.SCHEDULED.value,
                DeliveryAttempt.next_attempt_at <= now,
                or_(DeliveryAttempt.lease_expires_at.is_(None), DeliveryAttempt.lease_expires_at <= now),
            )
            .order_by(DeliveryAttempt.next_attempt_at)
            .limit(limit)
        )
        return [tuple(row) for row in (await session.execute(stmt)).all()]

    async def cancel_scheduled(self, session: AsyncSession, notification_id: UUID, at: datetime) -> int:
        """Cancel attempts that are waiting to be sent; leased (in-flight) ones are left alone."""
        result = await session.execute(
            update(DeliveryAttempt)
            .where(
                DeliveryAttempt.notification_id == notification_id,
                DeliveryAttempt.status == DeliveryStatus.SCHEDULED.value,
                or_(DeliveryAttempt.lease_expires_at.is_(None), DeliveryAttempt.lease_expires_at <= at),
            )
            .values(status=DeliveryStatus.CANCELLED.value, lease_owner=None, lease_expires_at=None, updated_at=at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def count_scheduled(self, session: AsyncSession) -> int:
        stmt = select(func.count()).where(DeliveryAttempt.status == DeliveryStatus.SCHEDULED.value)
        return (await session.execute(stmt)).scalar_one()

    async def outcome_counts_since(self, session: AsyncSession, since: datetime) -> dict[str, int]:
        """Attempt counts by status among attempts touched since ``since``."""
        stmt = (
            select(DeliveryAttempt.status, func.count())
            .where(DeliveryAttempt.last_attempted_at >= since)
            .group_by(DeliveryAttempt.status)
        )
        rows = (await session.execute(stmt)).all()
        return {status: count for status, count in rows}


class PreferenceRepository(BaseRepository[NotificationPreference]):
    async def get_for(
        self, session: AsyncSession, user_id: str, notification_type: str
    ) -> NotificationPreference | None:
        stmt = select(NotificationPreference).where(
            NotificationPreference.user_id == user_id,
            NotificationPreference.notification_type == notification_type,
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def upsert(
        self,
        session: AsyncSession,
        user_id: str,
        notification_type: str,
        **values: Any,
    ) -> NotificationPreference:
        preference = await self.get_for(session, user_id, notification_type)
        if preference is None:
            preference = NotificationPreference(user_id=user_id, notification_type=notification_type, **values)
            return await self.create(session, preference)

        for key, value in values.items():
            setattr(preference, key, value)
        await session.flush()
        return preference

    async def list_for_user(self, session: AsyncSession, user_id: str) -> Sequence[NotificationPreference]:
        stmt = (
            select(NotificationPreference)
            .where(NotificationPreference.user_id == user_id)
            .order_by(NotificationPreference.notification_type)
        )
        return (await session.execute(stmt)).scalars().all()


def _pending() -> Any:
    return and_(ReminderJob.sent_at.is_(None), ReminderJob.cancelled.is_(False))


class ReminderJobRepository(BaseRepository[ReminderJob]):
    """Reminder jobs and the claim step used by the poll loop."""

    async def list_for_entity(
        self, session: AsyncSession, entity_id: str, *, pending_only: bool = False
    ) -> Sequence[ReminderJob]:
        stmt = select(ReminderJob).where(ReminderJob.related_entity_id == entity_id)
        if pending_only:
            stmt = stmt.where(_pending())
        stmt = stmt.order_by(ReminderJob.trigger_at, ReminderJob.created_at)
        return (await session.execute(stmt)).scalars().all()

    async def create_pending(
        self,
        session: AsyncSession,
        *,
        entity_type: str,
        entity_id: str,
        kind: str,
        trigger_at: datetime,
    ) -> ReminderJob:
        """Insert a pending job.

        The partial unique index backs the pre-check; losing that race
        leaves the transaction unusable, so the caller must start a new one.

        Raises:
            SchedulingConflictError: If a pending job of this kind already exists.
        """
        existing = await session.execute(
            select(ReminderJob.id).where(
                ReminderJob.related_entity_id == entity_id,
                ReminderJob.reminder_kind == kind,
                _pending(),
            )
        )
        if existing.first() is not None:
            raise SchedulingConflictError(entity_id, kind)

        job = ReminderJob(
            related_entity_type=entity_type,
            related_entity_id=entity_id,
            reminder_kind=kind,
            trigger_at=trigger_at,
            cancelled=False,
        )
        try:
            return await self.create(session, job)
        except IntegrityError as exc:
            raise SchedulingConflictError(entity_id, kind) from exc

    async def cancel_pending(self, session: AsyncSession, entity_id: str, at: datetime) -> int:
        """Cancel every un-sent job of an entity; sent jobs stay as history."""
        result = await session.execute(
            update(ReminderJob)
            .where(ReminderJob.related_entity_id == entity_id, _pending())
            .values(cancelled=True, cancelled_at=at, updated_at=at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def list_due_ids(
        self, session: AsyncSession, now: datetime, claim_ttl: timedelta, limit: int
    ) -> list[UUID]:
        stmt = (
            select(ReminderJob.id)
            .where(
                _pending(),
                ReminderJob.trigger_at <= now,
                or_(ReminderJob.claimed_at.is_(None), ReminderJob.claimed_at <= now - claim_ttl),
            )
            .order_by(ReminderJob.trigger_at)
            .limit(limit)
        )
        return list((await session.execute(stmt)).scalars().all())

    async def claim(
        self,
        session: AsyncSession,
        job_id: UUID,
        owner: str,
        now: datetime,
        claim_ttl: timedelta,
    ) -> bool:
        """Atomically claim a due job; stale claims may be taken over."""
        result = await session.execute(
            update(ReminderJob)
            .where(
                ReminderJob.id == job_id,
                _pending(),
                ReminderJob.trigger_at <= now,
                or_(ReminderJob.claimed_at.is_(None), ReminderJob.claimed_at <= now - claim_ttl),
            )
            .values(claimed_by=owner, claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) == 1

    async def mark_sent(self, session: AsyncSession, job_id: UUID, owner: str, at: datetime) -> bool:
        result = await session.execute(
            update(ReminderJob)
            .where(ReminderJob.id == job_id, ReminderJob.claimed_by == owner, ReminderJob.sent_at.is_(None))
            .values(sent_at=at, updated_at=at)
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) == 1

    async def release_claim(self, session: AsyncSession, job_id: UUID, owner: str) -> None:
        await session.execute(
            update(ReminderJob)
            .where(ReminderJob.id == job_id, ReminderJob.claimed_by == owner, ReminderJob.sent_at.is_(None))
            .values(claimed_by=None, claimed_at=None)
            .execution_options(synchronize_session=False)
        )

    async def cancel_job(self, session: AsyncSession, job_id: UUID, at: datetime) -> bool:
        result = await session.execute(
            update(ReminderJob)
            .where(ReminderJob.id == job_id, _pending())
            .values(cancelled=True, cancelled_at=at, updated_at=at)
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) == 1

    async def count_due(self, session: AsyncSession, now: datetime) -> int:
        stmt = select(func.count()).where(_pending(), ReminderJob.trigger_at <= now)
        return (await session.execute(stmt)).scalar_one()
