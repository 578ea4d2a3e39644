"""Entity-anchored reminder scheduling.

For a session starting at T three jobs are kept:

    day_before   T - 24h   session_reminder ("tomorrow")
    hour_before  T - 1h    session_reminder ("in one hour")
    now          T         session_started

Jobs are rows in ``reminder_jobs``; the poll loop calls ``process_due`` which
claims each due job with a conditional UPDATE before firing it, so several
scheduler instances can poll the same table without double-firing.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from clinic_notifications.core.clock import Clock, system_clock
from clinic_notifications.core.exceptions import (
    EntityNotFoundError,
    SchedulingConflictError,
    TemplateValidationError,
    ValidationException,
)
from clinic_notifications.infra.logging import get_lazy_logger, log_context

from .enums import NotificationType, ReminderKind
from .metrics import reminder_jobs_cancelled_total, reminder_jobs_fired_total
from .models import ReminderJob
from .repository import ReminderJobRepository

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from clinic_notifications.core.database import Database
    from clinic_notifications.core.settings import NotificationSettings

    from .builder import NotificationBuilder
    from .channels.dispatcher import DeliveryDispatcher
    from .directory import SessionDirectory, SessionInfo
    from .models import Notification
    from .tracker import DeliveryTracker

logger = logging.getLogger(__name__)

SESSION_ENTITY = "session"

REMINDER_OFFSETS: dict[ReminderKind, timedelta] = {
    ReminderKind.DAY_BEFORE: timedelta(hours=24),
    ReminderKind.HOUR_BEFORE: timedelta(hours=1),
    ReminderKind.NOW: timedelta(0),
}

REMINDER_TYPES: dict[ReminderKind, NotificationType] = {
    ReminderKind.DAY_BEFORE: NotificationType.SESSION_REMINDER,
    ReminderKind.HOUR_BEFORE: NotificationType.SESSION_REMINDER,
    ReminderKind.NOW: NotificationType.SESSION_STARTED,
}


class ReminderScheduler:
    """Creates, replaces, cancels and fires reminder jobs for sessions."""

    def __init__(
        self,
        db: Database,
        directory: SessionDirectory,
        builder: NotificationBuilder,
        tracker: DeliveryTracker,
        dispatcher: DeliveryDispatcher,
        settings: NotificationSettings,
        *,
        owner: str,
        clock: Clock = system_clock,
        jobs: ReminderJobRepository | None = None,
    ) -> None:
        self._db = db
        self._directory = directory
        self._builder = builder
        self._tracker = tracker
        self._dispatcher = dispatcher
        self._settings = settings
        self._owner = owner
        self._clock = clock
        self._jobs = jobs or ReminderJobRepository(ReminderJob)
        self._claim_ttl = timedelta(seconds=settings.claim_ttl_seconds)
        self._lazy = get_lazy_logger(__name__)

    # ------------------------------------------------------------------
    # Job management
    # ------------------------------------------------------------------

    async def schedule(self, entity_id: str, baseline: datetime | None = None) -> list[ReminderJob]:
        """Create the reminder jobs for a session.

        ``baseline`` defaults to the start time the session directory reports.
        A cancelled session, or one that has already started, gets no jobs.
        If pending jobs already exist they are replaced.

        Raises:
            EntityNotFoundError: If the session is unknown.
        """
        info = await self._require_session(entity_id)
        starts_at = _require_aware(baseline or info.starts_at)
        if not self._schedulable(info, starts_at):
            return []

        try:
            async with self._db.session() as session:
                jobs = await self._create_jobs(session, entity_id, starts_at)
        except SchedulingConflictError as exc:
            logger.info(
                "Pending reminders already exist, rescheduling",
                extra={
                    "operation": "scheduler.schedule",
                    "entity_id": entity_id,
                    "reminder_kind": exc.reminder_kind,
                },
            )
            return await self._replace(entity_id, starts_at)

        self._log_scheduled("scheduler.schedule", entity_id, jobs)
        return jobs

    async def reschedule(self, entity_id: str, new_baseline: datetime) -> list[ReminderJob]:
        """Cancel every un-sent job of the session and create fresh ones.

        Jobs that already fired are left as history.

        Raises:
            EntityNotFoundError: If the session is unknown.
        """
        info = await self._require_session(entity_id)
        starts_at = _require_aware(new_baseline)
        if not self._schedulable(info, starts_at):
            await self.cancel(entity_id)
            return []
        return await self._replace(entity_id, starts_at)

    async def cancel(self, entity_id: str) -> int:
        """Cancel the un-sent jobs of an entity. Returns how many were cancelled.

        Works from the job table alone, so it also succeeds after the
        session itself has been deleted.
        """
        now = self._clock()
        async with self._db.session() as session:
            cancelled = await self._jobs.cancel_pending(session, entity_id, now)

        logger.info(
            "Reminder jobs cancelled",
            extra={"operation": "scheduler.cancel", "entity_id": entity_id, "cancelled": cancelled},
        )
        return cancelled

    async def list_jobs(self, entity_id: str, *, pending_only: bool = False) -> Sequence[ReminderJob]:
        async with self._db.session() as session:
            return await self._jobs.list_for_entity(session, entity_id, pending_only=pending_only)

    async def send_manual_reminder(self, entity_id: str, kind: ReminderKind | str) -> list[UUID]:
        """Build and dispatch a reminder right away, without touching jobs.

        Returns the ids of the created notifications (one per stakeholder).

        Raises:
            EntityNotFoundError: If the session is unknown.
            TemplateValidationError: If the session lacks template fields.
        """
        reminder_kind = ReminderKind(kind)
        info = await self._require_session(entity_id)
        notifications = self._build(info, reminder_kind, SESSION_ENTITY)
        await self._deliver(notifications)

        logger.info(
            "Manual reminder sent",
            extra={
                "operation": "scheduler.send_manual_reminder",
                "entity_id": entity_id,
                "reminder_kind": reminder_kind.value,
                "recipients": len(notifications),
            },
        )
        return [notification.id for notification in notifications]

    # ------------------------------------------------------------------
    # Poll loop
    # ------------------------------------------------------------------

    async def process_due(self, now: datetime | None = None) -> int:
        """Claim and fire every due job. Returns the number fired.

        A job that fails to fire has its claim released so a later poll
        picks it up again.
        """
        now = now or self._clock()
        async with self._db.session() as session:
            due = await self._jobs.list_due_ids(session, now, self._claim_ttl, self._settings.poll_batch_size)

        fired = 0
        for job_id in due:
            async with self._db.session() as session:
                job = None
                if await self._jobs.claim(session, job_id, self._owner, now, self._claim_ttl):
                    job = await self._jobs.get(session, job_id)
            if job is None:
                continue

            try:
                with log_context(job_id=str(job_id), entity_id=job.related_entity_id, reminder_kind=job.reminder_kind):
                    if await self._fire(job, now):
                        fired += 1
            except Exception:
                logger.exception(
                    "Reminder job failed to fire",
                    extra={
                        "operation": "scheduler.process_due",
                        "job_id": str(job_id),
                        "entity_id": job.related_entity_id,
                    },
                )
                async with self._db.session() as session:
                    await self._jobs.release_claim(session, job_id, self._owner)

        if due:
            self._lazy.info(lambda: f"scheduler.process_due: {fired}/{len(due)} job(s) fired")
        return fired

    async def _fire(self, job: ReminderJob, now: datetime) -> bool:
        kind = ReminderKind(job.reminder_kind)
        info = await self._directory.get_session(job.related_entity_id)

        reason = None
        if info is None:
            reason = "session not found"
        elif info.cancelled:
            reason = "session cancelled"

        notifications: list[Notification] = []
        if info is not None and reason is None:
            try:
                notifications = self._build(info, kind, job.related_entity_type)
            except TemplateValidationError as exc:
                reason = f"invalid session data: {exc.detail}"

        if reason is not None:
            async with self._db.session() as session:
                await self._jobs.cancel_job(session, job.id, now)
            reminder_jobs_cancelled_total.labels(reminder_kind=kind.value).inc()
            logger.warning(
                "Reminder job cancelled at fire time",
                extra={
                    "operation": "scheduler.fire",
                    "job_id": str(job.id),
                    "entity_id": job.related_entity_id,
                    "reason": reason,
                },
            )
            return False

        async with self._db.session() as session:
            marked = await self._jobs.mark_sent(session, job.id, self._owner, now)
        if not marked:
            logger.warning(
                "Lost reminder claim before firing",
                extra={"operation": "scheduler.fire", "job_id": str(job.id)},
            )
            return False

        await self._deliver(notifications)
        reminder_jobs_fired_total.labels(reminder_kind=kind.value).inc()
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _require_session(self, entity_id: str) -> SessionInfo:
        info = await self._directory.get_session(entity_id)
        if info is None:
            raise EntityNotFoundError("Session", entity_id)
        return info

    def _schedulable(self, info: SessionInfo, starts_at: datetime) -> bool:
        if info.cancelled:
            logger.info(
                "Session is cancelled, no reminders scheduled",
                extra={"operation": "scheduler.schedule", "entity_id": info.session_id},
            )
            return False
        if starts_at <= self._clock():
            logger.info(
                "Session already started, no reminders scheduled",
                extra={"operation": "scheduler.schedule", "entity_id": info.session_id},
            )
            return False
        return True

    async def _create_jobs(self, session: AsyncSession, entity_id: str, starts_at: datetime) -> list[ReminderJob]:
        now = self._clock()
        jobs = []
        for kind in ReminderKind:
            trigger_at = max(starts_at - REMINDER_OFFSETS[kind], now)
            jobs.append(
                await self._jobs.create_pending(
                    session,
                    entity_type=SESSION_ENTITY,
                    entity_id=entity_id,
                    kind=kind.value,
                    trigger_at=trigger_at,
                )
            )
        return jobs

    async def _replace(self, entity_id: str, starts_at: datetime) -> list[ReminderJob]:
        async with self._db.session() as session:
            cancelled = await self._jobs.cancel_pending(session, entity_id, self._clock())
            jobs = await self._create_jobs(session, entity_id, starts_at)

        self._lazy.debug(lambda: f"scheduler.reschedule: {entity_id} replaced {cancelled} pending job(s)")
        self._log_scheduled("scheduler.reschedule", entity_id, jobs)
        return jobs

    def _build(self, info: SessionInfo, kind: ReminderKind, entity_type: str) -> list[Notification]:
        notification_type = REMINDER_TYPES[kind]
        params = dict(info.params)
        if notification_type is NotificationType.SESSION_REMINDER:
            params["when"] = kind.value
        return [
            self._builder.build(
                notification_type,
                params,
                recipient,
                related_entity_type=entity_type,
                related_entity_id=info.session_id,
            )
            for recipient in info.stakeholders
        ]

    async def _deliver(self, notifications: Sequence[Notification]) -> None:
        for notification in notifications:
            await self._tracker.record_created(notification)
        await asyncio.gather(*(self._dispatcher.dispatch(notification) for notification in notifications))

    @staticmethod
    def _log_scheduled(operation: str, entity_id: str, jobs: Sequence[ReminderJob]) -> None:
        logger.info(
            "Reminder jobs scheduled",
            extra={
                "operation": operation,
                "entity_id": entity_id,
                "triggers": {job.reminder_kind: job.trigger_at.isoformat() for job in jobs},
            },
        )


def _require_aware(value: datetime) -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        msg = "Session start time must be timezone-aware"
        raise ValidationException(msg, extra={"field": "baseline"})
    return value
