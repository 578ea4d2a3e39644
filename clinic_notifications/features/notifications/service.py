"""NotificationService: the operations callers use.

The service is a thin orchestrator over the engine components. It owns no
state of its own; everything is injected by the ServiceContext.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any

from clinic_notifications.core.clock import Clock, system_clock
from clinic_notifications.core.exceptions import EntityNotFoundError
from clinic_notifications.core.services import BaseService

from .enums import DeliveryStatus, NotificationType, ReminderKind
from .models import DeliveryAttempt, Notification, NotificationPreference, ReminderJob
from .repository import (
    DeliveryAttemptRepository,
    NotificationRepository,
    PreferenceRepository,
    ReminderJobRepository,
)
from .schemas import (
    CreateNotificationOptions,
    NotificationFilters,
    NotificationPage,
    NotificationRead,
    OutcomeCounts,
    PreferenceRead,
    PreferenceUpdate,
    ReminderJobRead,
    SystemHealth,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from datetime import date, datetime
    from uuid import UUID

    from clinic_notifications.core.database import Database
    from clinic_notifications.core.settings import NotificationSettings
    from clinic_notifications.infra.realtime import MessageHandle, RealtimeNotifier

    from .analytics import AnalyticsAggregator
    from .builder import NotificationBuilder
    from .channels.dispatcher import DeliveryDispatcher
    from .directory import Recipient
    from .scheduler import ReminderScheduler
    from .tracker import DeliveryTracker


class NotificationService(BaseService):
    """Create, schedule, read and observe notifications."""

    def __init__(
        self,
        db: Database,
        builder: NotificationBuilder,
        tracker: DeliveryTracker,
        dispatcher: DeliveryDispatcher,
        scheduler: ReminderScheduler,
        notifier: RealtimeNotifier,
        analytics: AnalyticsAggregator,
        settings: NotificationSettings,
        *,
        clock: Clock = system_clock,
    ) -> None:
        super().__init__()
        self._db = db
        self._builder = builder
        self._tracker = tracker
        self._dispatcher = dispatcher
        self._scheduler = scheduler
        self._notifier = notifier
        self._analytics = analytics
        self._settings = settings
        self._clock = clock

        self._notifications = NotificationRepository(Notification)
        self._attempts = DeliveryAttemptRepository(DeliveryAttempt)
        self._preferences = PreferenceRepository(NotificationPreference)
        self._jobs = ReminderJobRepository(ReminderJob)

    # ------------------------------------------------------------------
    # Creation and delivery
    # ------------------------------------------------------------------

    async def create_notification(
        self,
        notification_type: NotificationType | str,
        params: dict[str, Any],
        recipient: Recipient,
        options: CreateNotificationOptions | None = None,
    ) -> UUID:
        """Build, persist and dispatch a notification. Returns its id.

        Template and option errors are raised before anything is stored.
        Delivery failures are recorded on the attempts and never raised.

        Raises:
            TemplateValidationError: If params do not satisfy the template.
        """
        options = options or CreateNotificationOptions()
        notification = self._builder.build(
            notification_type,
            params,
            recipient,
            options.priority,
            channels=options.channels,
            scheduled_at=options.scheduled_at,
            expires_in_hours=options.expires_in_hours,
            related_entity_type=options.related_entity_type,
            related_entity_id=options.related_entity_id,
        )
        await self._tracker.record_created(notification)
        attempts = await self._dispatcher.dispatch(notification)

        self._lazy.debug(
            lambda: f"service.create_notification: {notification.id} -> "
            f"{[(attempt.channel, attempt.status) for attempt in attempts]}"
        )
        return notification.id

    async def cancel_notification(self, notification_id: UUID) -> bool:
        """Stop further sends. False when it was already cancelled."""
        return await self._tracker.cancel_notification(notification_id)

    async def confirm_delivery(self, external_ref: str) -> bool:
        """Transport callback. False when the attempt was not in ``sent``."""
        return await self._tracker.confirm_delivery(external_ref)

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    async def schedule_entity_reminders(
        self, entity_id: str, baseline: datetime | None = None
    ) -> list[ReminderJobRead]:
        jobs = await self._scheduler.schedule(entity_id, baseline)
        return [ReminderJobRead.model_validate(job) for job in jobs]

    async def reschedule_entity_reminders(self, entity_id: str, new_baseline: datetime) -> list[ReminderJobRead]:
        jobs = await self._scheduler.reschedule(entity_id, new_baseline)
        return [ReminderJobRead.model_validate(job) for job in jobs]

    async def cancel_entity_reminders(self, entity_id: str) -> int:
        return await self._scheduler.cancel(entity_id)

    async def send_manual_reminder(self, entity_id: str, reminder_kind: ReminderKind | str) -> list[UUID]:
        return await self._scheduler.send_manual_reminder(entity_id, reminder_kind)

    async def list_entity_reminders(self, entity_id: str, *, pending_only: bool = False) -> list[ReminderJobRead]:
        jobs = await self._scheduler.list_jobs(entity_id, pending_only=pending_only)
        return [ReminderJobRead.model_validate(job) for job in jobs]

    # ------------------------------------------------------------------
    # Inbox
    # ------------------------------------------------------------------

    async def get_user_notifications(
        self, user_id: str, filters: NotificationFilters | None = None
    ) -> NotificationPage:
        """Newest-first page of a user's notifications with the unread total."""
        filters = filters or NotificationFilters()
        async with self._db.session() as session:
            result = await self._notifications.list_for_user(
                session,
                user_id,
                unread_only=filters.unread_only,
                types=[str(t) for t in filters.types] if filters.types else None,
                include_expired=filters.include_expired,
                now=self._clock(),
                limit=filters.limit,
                offset=filters.offset,
            )
            unread = await self._notifications.count_unread(session, user_id)
            items = [NotificationRead.model_validate(item) for item in result.items]

        return NotificationPage(
            items=items,
            total=result.total,
            unread_count=unread,
            limit=result.limit,
            offset=result.offset,
            has_next=result.has_next,
        )

    async def get_notification(self, notification_id: UUID, user_id: str) -> NotificationRead:
        """One notification of ``user_id`` with its delivery attempts.

        Raises:
            EntityNotFoundError: If it does not exist or belongs to someone else.
        """
        async with self._db.session() as session:
            notification = await self._notifications.get_fresh(session, notification_id)
            if notification is None or notification.recipient_id != user_id:
                raise EntityNotFoundError("Notification", notification_id)
            return NotificationRead.model_validate(notification)

    async def get_unread_count(self, user_id: str) -> int:
        async with self._db.session() as session:
            return await self._notifications.count_unread(session, user_id)

    async def mark_as_read(self, notification_id: UUID, user_id: str) -> bool:
        """Idempotent read receipt. True only on the first call."""
        return await self._tracker.mark_read(notification_id, user_id)

    async def bulk_mark_as_read(self, notification_ids: Sequence[UUID], user_id: str) -> int:
        return await self._tracker.bulk_mark_read(notification_ids, user_id)

    async def mark_all_as_read(self, user_id: str) -> int:
        return await self._tracker.mark_all_read(user_id)

    async def delete_notification(self, notification_id: UUID, user_id: str) -> None:
        """Remove a notification and its delivery history at the recipient's request.

        Raises:
            EntityNotFoundError: If it does not exist or belongs to someone else.
        """
        await self._tracker.delete_notification(notification_id, user_id)

    async def bulk_delete(self, notification_ids: Sequence[UUID], user_id: str) -> int:
        """Delete the listed notifications the user owns. Returns how many were removed."""
        return await self._tracker.bulk_delete(notification_ids, user_id)

    def subscribe(self, user_id: str, on_event: MessageHandle) -> Callable[[], None]:
        """Receive every state change of the user's notifications.

        Must be called from a running event loop.
        """
        return self._notifier.subscribe(user_id, on_event)

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    async def set_preference(
        self,
        user_id: str,
        notification_type: NotificationType | str,
        update: PreferenceUpdate,
    ) -> PreferenceRead:
        notification_type = NotificationType(notification_type)
        async with self._db.session() as session:
            preference = await self._preferences.upsert(
                session,
                user_id,
                notification_type.value,
                channels=[channel.value for channel in dict.fromkeys(update.channels)],
                enabled=update.enabled,
                quiet_hours_start=update.quiet_hours_start,
                quiet_hours_end=update.quiet_hours_end,
                timezone=update.timezone,
            )
            result = PreferenceRead.model_validate(preference)

        self.logger.info(
            "Notification preference updated",
            extra={
                "operation": "service.set_preference",
                "user_id": user_id,
                "notification_type": notification_type.value,
                "enabled": update.enabled,
                "channels": result.channels,
            },
        )
        return result

    async def get_preferences(self, user_id: str) -> list[PreferenceRead]:
        async with self._db.session() as session:
            rows = await self._preferences.list_for_user(session, user_id)
            return [PreferenceRead.model_validate(row) for row in rows]

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    async def get_system_health(self) -> SystemHealth:
        """In-flight sends, pending work and the recent failure rate."""
        now = self._clock()
        since = now - timedelta(minutes=self._settings.health_window_minutes)
        async with self._db.session() as session:
            scheduled = await self._attempts.count_scheduled(session)
            due_jobs = await self._jobs.count_due(session, now)
            outcomes = await self._attempts.outcome_counts_since(session, since)

        failed = outcomes.get(DeliveryStatus.FAILED.value, 0)
        finished = (
            outcomes.get(DeliveryStatus.SENT.value, 0) + outcomes.get(DeliveryStatus.DELIVERED.value, 0) + failed
        )
        return SystemHealth(
            active_workers=self._dispatcher.in_flight,
            queue_depth=scheduled + due_jobs,
            recent_failure_rate=failed / finished if finished else 0.0,
            realtime_subscriptions=self._notifier.subscription_count,
        )

    def get_analytics(
        self,
        *,
        notification_type: str | None = None,
        channel: str | None = None,
        day: date | None = None,
    ) -> list[OutcomeCounts]:
        return self._analytics.snapshot(notification_type=notification_type, channel=channel, day=day)

