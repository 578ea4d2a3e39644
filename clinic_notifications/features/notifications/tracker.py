"""Delivery state transitions and read receipts.

The tracker is the only component that writes DeliveryAttempt status fields
or Notification status fields (sent_at, read flags, cancellation), and the
only one that deletes notifications. Each transition runs in its own short
unit of work; the matching domain event is published on the EventBus after
that unit has committed.

Attempt state machine::

    scheduled ──► sent ──► delivered
        │  ▲
        │  └── transient failure, retries left (retry_count += 1)
        ├──► failed      (permanent error or retries exhausted)
        └──► cancelled   (notification cancelled or expired before the send)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from clinic_notifications.core.clock import Clock, system_clock
from clinic_notifications.core.exceptions import EntityNotFoundError
from clinic_notifications.infra.logging import get_lazy_logger

from .channels.base import OutboundMessage
from .enums import Channel, DeliveryStatus
from .events import (
    DeliveryStateChangedEvent,
    NotificationCancelledEvent,
    NotificationCreatedEvent,
    NotificationDeletedEvent,
    NotificationReadEvent,
)
from .metrics import (
    delivery_outcome_total,
    delivery_retry_exhausted_total,
    delivery_retry_total,
    notification_created_total,
    notification_deleted_total,
    notification_read_total,
)
from .models import DeliveryAttempt, Notification
from .repository import DeliveryAttemptRepository, NotificationRepository
from .schemas import NotificationRead

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime, timedelta
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from clinic_notifications.core.database import Database
    from clinic_notifications.core.events import EventBus
    from clinic_notifications.core.exceptions import DeliveryError
    from clinic_notifications.utils.retry import BackoffPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LeasedAttempt:
    """An attempt whose send lease is held by the caller."""

    attempt_id: UUID
    notification_id: UUID
    channel: Channel
    retry_count: int
    max_retries: int
    message: OutboundMessage


class DeliveryTracker:
    """Records delivery transitions and read receipts, then announces them."""

    def __init__(
        self,
        db: Database,
        bus: EventBus,
        backoff: BackoffPolicy,
        clock: Clock = system_clock,
        notifications: NotificationRepository | None = None,
        attempts: DeliveryAttemptRepository | None = None,
    ) -> None:
        self._db = db
        self._bus = bus
        self._backoff = backoff
        self._clock = clock
        self._notifications = notifications or NotificationRepository(Notification)
        self._attempts = attempts or DeliveryAttemptRepository(DeliveryAttempt)
        self._lazy = get_lazy_logger(__name__)

    # ------------------------------------------------------------------
    # Notification lifecycle
    # ------------------------------------------------------------------

    async def record_created(self, notification: Notification) -> Notification:
        """Persist a freshly built notification."""
        async with self._db.session() as session:
            await self._notifications.create(session, notification)
            payload = await self._payload(session, notification.id)

        notification_created_total.labels(
            notification_type=notification.type,
            priority=notification.priority,
        ).inc()
        logger.info(
            "Notification created",
            extra={
                "operation": "tracker.record_created",
                "notification_id": str(notification.id),
                "notification_type": notification.type,
                "recipient_id": notification.recipient_id,
            },
        )
        await self._bus.publish(
            NotificationCreatedEvent(
                notification_id=str(notification.id),
                recipient_id=notification.recipient_id,
                notification_type=notification.type,
                priority=notification.priority,
                channels=list(notification.channels),
                payload=payload,
            )
        )
        return notification

    async def cancel_notification(self, notification_id: UUID) -> bool:
        """Prevent any further sends for a notification.

        Attempts waiting to be sent become ``cancelled``; an attempt whose
        send is already in flight completes normally.

        Raises:
            EntityNotFoundError: If the notification does not exist.
        """
        now = self._clock()
        async with self._db.session() as session:
            notification = await self._notifications.get_or_raise(session, notification_id)
            recipient_id, notification_type = notification.recipient_id, notification.type
            changed = await self._notifications.cancel(session, notification_id, now)
            cancelled_attempts = 0
            payload: dict[str, Any] = {}
            if changed:
                cancelled_attempts = await self._attempts.cancel_scheduled(session, notification_id, now)
                payload = await self._payload(session, notification_id)

        if not changed:
            return False

        logger.info(
            "Notification cancelled",
            extra={
                "operation": "tracker.cancel_notification",
                "notification_id": str(notification_id),
                "cancelled_attempts": cancelled_attempts,
            },
        )
        await self._bus.publish(
            NotificationCancelledEvent(
                notification_id=str(notification_id),
                recipient_id=recipient_id,
                notification_type=notification_type,
                cancelled_at=now,
                payload=payload,
            )
        )
        return True

    # ------------------------------------------------------------------
    # Attempt lifecycle
    # ------------------------------------------------------------------

    async def record_scheduled(
        self,
        notification_id: UUID,
        channel: Channel,
        *,
        max_retries: int,
        not_before: datetime | None = None,
    ) -> DeliveryAttempt:
        """Return the attempt for (notification, channel), creating it when absent.

        A new attempt becomes due at ``not_before`` (default: now).
        """
        now = self._clock()
        async with self._db.session() as session:
            attempt, created = await self._attempts.get_or_create(
                session,
                notification_id,
                channel.value,
                max_retries=max_retries,
                at=now,
                next_attempt_at=not_before,
            )
            payload = await self._payload(session, notification_id) if created else None

        if payload is not None:
            await self._publish_attempt(
                payload,
                attempt_id=attempt.id,
                channel=channel.value,
                status=DeliveryStatus.SCHEDULED,
                previous=None,
                retry_count=0,
                occurred_at=now,
            )
        return attempt

    async def acquire(self, attempt_id: UUID, owner: str, ttl: timedelta) -> LeasedAttempt | None:
        """Take the send lease for an attempt.

        Returns None when the attempt is not due, not scheduled, leased by
        someone else, or was cancelled here because its notification has
        been cancelled or has expired.
        """
        now = self._clock()
        async with self._db.session() as session:
            if not await self._attempts.acquire_lease(session, attempt_id, owner, now, ttl):
                return None

            attempt = await self._attempts.get_or_raise(session, attempt_id)
            notification = await self._notifications.get_fresh(session, attempt.notification_id)
            if notification is None:
                raise EntityNotFoundError("Notification", attempt.notification_id)

            reason = None
            if notification.is_cancelled:
                reason = "notification cancelled"
            elif notification.is_expired(now):
                reason = "notification expired"

            if reason is None:
                return LeasedAttempt(
                    attempt_id=attempt.id,
                    notification_id=notification.id,
                    channel=Channel(attempt.channel),
                    retry_count=attempt.retry_count,
                    max_retries=attempt.max_retries,
                    message=OutboundMessage(
                        notification_id=notification.id,
                        notification_type=notification.type,
                        priority=notification.priority,
                        recipient_id=notification.recipient_id,
                        title_ar=notification.title_ar,
                        title_en=notification.title_en,
                        body_ar=notification.body_ar,
                        body_en=notification.body_en,
                        data=dict(notification.data or {}),
                    ),
                )

            channel, retry_count = attempt.channel, attempt.retry_count
            await self._attempts.update_owned(
                session,
                attempt_id,
                owner,
                {
                    "status": DeliveryStatus.CANCELLED.value,
                    "last_error": reason,
                    "lease_owner": None,
                    "lease_expires_at": None,
                    "updated_at": now,
                },
            )
            payload = await self._payload(session, notification.id)

        delivery_outcome_total.labels(channel=channel, status=DeliveryStatus.CANCELLED.value).inc()
        self._lazy.debug(lambda: f"tracker.acquire: {attempt_id} cancelled before send ({reason})")
        await self._publish_attempt(
            payload,
            attempt_id=attempt_id,
            channel=channel,
            status=DeliveryStatus.CANCELLED,
            previous=DeliveryStatus.SCHEDULED,
            retry_count=retry_count,
            occurred_at=now,
            error=reason,
        )
        return None

    async def record_sent(self, leased: LeasedAttempt, owner: str, external_ref: str | None) -> bool:
        """scheduled → sent. Sets Notification.sent_at on the first channel."""
        now = self._clock()
        async with self._db.session() as session:
            changed = await self._attempts.update_owned(
                session,
                leased.attempt_id,
                owner,
                {
                    "status": DeliveryStatus.SENT.value,
                    "external_ref": external_ref,
                    "last_attempted_at": now,
                    "last_error": None,
                    "lease_owner": None,
                    "lease_expires_at": None,
                    "updated_at": now,
                },
            )
            payload = None
            if changed:
                await self._notifications.mark_sent_once(session, leased.notification_id, now)
                payload = await self._payload(session, leased.notification_id)

        if payload is None:
            logger.warning(
                "Lost delivery lease before recording send",
                extra={
                    "operation": "tracker.record_sent",
                    "attempt_id": str(leased.attempt_id),
                    "channel": leased.channel.value,
                },
            )
            return False

        delivery_outcome_total.labels(channel=leased.channel.value, status=DeliveryStatus.SENT.value).inc()
        await self._publish_attempt(
            payload,
            attempt_id=leased.attempt_id,
            channel=leased.channel.value,
            status=DeliveryStatus.SENT,
            previous=DeliveryStatus.SCHEDULED,
            retry_count=leased.retry_count,
            occurred_at=now,
        )
        return True

    async def record_delivered(self, attempt_id: UUID) -> bool:
        """sent → delivered. A no-op for attempts in any other state."""
        now = self._clock()
        async with self._db.session() as session:
            attempt = await self._attempts.get_or_raise(session, attempt_id)
            channel, retry_count, notification_id = attempt.channel, attempt.retry_count, attempt.notification_id
            changed = await self._attempts.update_from(
                session,
                attempt_id,
                DeliveryStatus.SENT,
                {"status": DeliveryStatus.DELIVERED.value, "delivered_at": now, "updated_at": now},
            )
            payload = await self._payload(session, notification_id) if changed else None

        if payload is None:
            return False

        delivery_outcome_total.labels(channel=channel, status=DeliveryStatus.DELIVERED.value).inc()
        await self._publish_attempt(
            payload,
            attempt_id=attempt_id,
            channel=channel,
            status=DeliveryStatus.DELIVERED,
            previous=DeliveryStatus.SENT,
            retry_count=retry_count,
            occurred_at=now,
        )
        return True

    async def record_failed(
        self,
        leased: LeasedAttempt,
        owner: str,
        error: DeliveryError,
        *,
        terminal: bool,
    ) -> DeliveryStatus | None:
        """Record a failed send.

        A non-terminal failure with retries left goes back to ``scheduled``
        with ``retry_count + 1`` and a backoff wake time; anything else is
        ``failed`` for good. Returns the resulting status, or None if the
        lease was lost.
        """
        now = self._clock()
        exhausted = leased.retry_count >= leased.max_retries
        if terminal or exhausted:
            status = DeliveryStatus.FAILED
            values: dict[str, Any] = {
                "status": status.value,
                "failed_at": now,
            }
            retry_count = leased.retry_count
        else:
            status = DeliveryStatus.SCHEDULED
            retry_count = leased.retry_count + 1
            values = {
                "status": status.value,
                "retry_count": retry_count,
                "next_attempt_at": self._backoff.next_attempt_at(now, leased.retry_count),
            }
        values.update(
            last_attempted_at=now,
            last_error=str(error)[:2000],
            lease_owner=None,
            lease_expires_at=None,
            updated_at=now,
        )

        async with self._db.session() as session:
            changed = await self._attempts.update_owned(session, leased.attempt_id, owner, values)
            payload = await self._payload(session, leased.notification_id) if changed else None

        if payload is None:
            return None

        channel = leased.channel.value
        if status is DeliveryStatus.FAILED:
            delivery_outcome_total.labels(channel=channel, status=status.value).inc()
            if exhausted and not terminal:
                delivery_retry_exhausted_total.labels(channel=channel).inc()
            logger.warning(
                "Delivery failed",
                extra={
                    "operation": "tracker.record_failed",
                    "attempt_id": str(leased.attempt_id),
                    "channel": channel,
                    "retry_count": retry_count,
                    "permanent": terminal,
                    "error": str(error),
                },
            )
        else:
            delivery_retry_total.labels(channel=channel).inc()
            self._lazy.info(
                lambda: f"tracker.record_failed: {channel} attempt {leased.attempt_id} "
                f"requeued (retry {retry_count}/{leased.max_retries})"
            )

        await self._publish_attempt(
            payload,
            attempt_id=leased.attempt_id,
            channel=channel,
            status=status,
            previous=DeliveryStatus.SCHEDULED,
            retry_count=retry_count,
            occurred_at=now,
            will_retry=status is DeliveryStatus.SCHEDULED,
            error=str(error),
        )
        return status

    async def confirm_delivery(self, external_ref: str) -> bool:
        """Transport callback: the message identified by ``external_ref`` arrived.

        Raises:
            EntityNotFoundError: If no attempt carries that reference.
        """
        async with self._db.session() as session:
            attempt = await self._attempts.find_by_external_ref(session, external_ref)
            if attempt is None:
                raise EntityNotFoundError("DeliveryAttempt", external_ref)
            attempt_id = attempt.id
        return await self.record_delivered(attempt_id)

    async def attempts_for(self, notification_id: UUID) -> Sequence[DeliveryAttempt]:
        async with self._db.session() as session:
            return await self._attempts.list_for_notification(session, notification_id)

    # ------------------------------------------------------------------
    # Read receipts
    # ------------------------------------------------------------------

    async def mark_read(self, notification_id: UUID, user_id: str) -> bool:
        """Mark one notification as read.

        Idempotent: an already-read notification is left untouched and the
        call returns False.

        Raises:
            EntityNotFoundError: If the notification does not exist or belongs
                to another user.
        """
        now = self._clock()
        async with self._db.session() as session:
            if not await self._notifications.owned_ids(session, [notification_id], user_id):
                raise EntityNotFoundError("Notification", notification_id)
            changed = await self._notifications.mark_read(session, [notification_id], user_id, now) == 1
            payload = await self._payload(session, notification_id) if changed else None

        if payload is not None:
            await self._publish_read(payload, now)
        return changed

    async def bulk_mark_read(self, notification_ids: Sequence[UUID], user_id: str) -> int:
        """Mark several notifications as read; ids the user does not own are ignored."""
        ids = list(dict.fromkeys(notification_ids))
        if not ids:
            return 0

        now = self._clock()
        async with self._db.session() as session:
            unread = await self._notifications.unread_ids(session, ids, user_id)
            updated = await self._notifications.mark_read(session, unread, user_id, now)
            payloads = [await self._payload(session, notification_id) for notification_id in unread]

        for payload in payloads:
            await self._publish_read(payload, now)

        self._lazy.debug(lambda: f"tracker.bulk_mark_read: {user_id} {updated}/{len(ids)} updated")
        return updated

    async def mark_all_read(self, user_id: str) -> int:
        """Mark every unread notification of a user as read."""
        now = self._clock()
        async with self._db.session() as session:
            unread = await self._notifications.unread_ids_for(session, user_id)
            updated = await self._notifications.mark_read(session, unread, user_id, now)
            payloads = [await self._payload(session, notification_id) for notification_id in unread]

        for payload in payloads:
            await self._publish_read(payload, now)

        logger.info(
            "Notifications marked as read",
            extra={"operation": "tracker.mark_all_read", "recipient_id": user_id, "updated": updated},
        )
        return updated

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete_notification(self, notification_id: UUID, user_id: str) -> None:
        """Delete one notification together with its delivery attempts.

        Raises:
            EntityNotFoundError: If the notification does not exist or belongs
                to another user.
        """
        if not await self._delete_owned([notification_id], user_id):
            raise EntityNotFoundError("Notification", notification_id)

    async def bulk_delete(self, notification_ids: Sequence[UUID], user_id: str) -> int:
        """Delete several notifications; ids the user does not own are ignored."""
        ids = list(dict.fromkeys(notification_ids))
        if not ids:
            return 0
        deleted = await self._delete_owned(ids, user_id)
        self._lazy.debug(lambda: f"tracker.bulk_delete: {user_id} {deleted}/{len(ids)} deleted")
        return deleted

    async def _delete_owned(self, notification_ids: Sequence[UUID], user_id: str) -> int:
        now = self._clock()
        async with self._db.session() as session:
            owned = await self._notifications.owned_ids(session, notification_ids, user_id)
            targets = [notification_id for notification_id in notification_ids if notification_id in owned]
            payloads = [await self._payload(session, notification_id) for notification_id in targets]
            deleted = await self._notifications.delete_many(session, targets)

        for payload in payloads:
            notification_deleted_total.labels(notification_type=payload["type"]).inc()
            logger.info(
                "Notification deleted",
                extra={
                    "operation": "tracker.delete",
                    "notification_id": payload["id"],
                    "recipient_id": user_id,
                },
            )
            await self._bus.publish(
                NotificationDeletedEvent(
                    notification_id=payload["id"],
                    recipient_id=payload["recipient_id"],
                    notification_type=payload["type"],
                    deleted_at=now,
                    payload=payload,
                )
            )
        return deleted

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _payload(self, session: AsyncSession, notification_id: UUID) -> dict[str, Any]:
        notification = await self._notifications.get_fresh(session, notification_id)
        if notification is None:
            raise EntityNotFoundError("Notification", notification_id)
        return NotificationRead.model_validate(notification).model_dump(mode="json")

    async def _publish_read(self, payload: dict[str, Any], read_at: datetime) -> None:
        notification_read_total.labels(notification_type=payload["type"]).inc()
        await self._bus.publish(
            NotificationReadEvent(
                notification_id=payload["id"],
                recipient_id=payload["recipient_id"],
                notification_type=payload["type"],
                read_at=read_at,
                payload=payload,
            )
        )

    async def _publish_attempt(
        self,
        payload: dict[str, Any],
        *,
        attempt_id: UUID,
        channel: str,
        status: DeliveryStatus,
        previous: DeliveryStatus | None,
        retry_count: int,
        occurred_at: datetime,
        will_retry: bool = False,
        error: str | None = None,
    ) -> None:
        await self._bus.publish(
            DeliveryStateChangedEvent(
                notification_id=payload["id"],
                recipient_id=payload["recipient_id"],
                notification_type=payload["type"],
                attempt_id=str(attempt_id),
                channel=channel,
                status=status.value,
                previous_status=previous.value if previous else None,
                retry_count=retry_count,
                will_retry=will_retry,
                error=error,
                occurred_at=occurred_at,
                payload=payload,
            )
        )
