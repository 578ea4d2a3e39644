"""Tests for service administration, the poll worker and the service context."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest

from clinic_notifications.app.context import ServiceContext
from clinic_notifications.core.exceptions import PermanentDeliveryError, TransientDeliveryError
from clinic_notifications.core.settings import DatabaseSettings, NotificationSettings, RedisSettings
from clinic_notifications.features.notifications import Channel, NotificationType
from clinic_notifications.features.notifications.channels import GatewaySender, InAppSender
from clinic_notifications.features.notifications.schemas import CreateNotificationOptions, PreferenceUpdate
from tests.utils import PARENT, SESSION_PARAMS, FakeClock, RecordingSender

if TYPE_CHECKING:
    from clinic_notifications.features.notifications import InMemorySessionDirectory


async def _reminder(context: ServiceContext, **options: Any) -> None:
    await context.service.create_notification(
        NotificationType.SESSION_REMINDER,
        dict(SESSION_PARAMS),
        PARENT,
        CreateNotificationOptions(**options) if options else None,
    )


@pytest.mark.integration
class TestSystemHealth:
    async def test_idle_engine(self, context: ServiceContext) -> None:
        health = await context.service.get_system_health()

        assert health.active_workers == 0
        assert health.queue_depth == 0
        assert health.recent_failure_rate == 0.0
        assert health.realtime_subscriptions == 0

    async def test_failure_rate_and_queue_depth(
        self, context: ServiceContext, sender: RecordingSender, clock: FakeClock
    ) -> None:
        sender.failures[Channel.SMS] = [PermanentDeliveryError("invalid number", channel="sms")]
        await _reminder(context)

        health = await context.service.get_system_health()
        assert health.recent_failure_rate == pytest.approx(1 / 3)

        await _reminder(context, channels=[Channel.EMAIL], scheduled_at=clock() + timedelta(days=2))
        await context.service.schedule_entity_reminders("session-1")
        clock.advance(hours=24)

        health = await context.service.get_system_health()
        # one deferred attempt plus the day-before reminder job
        assert health.queue_depth == 2
        # the failure has left the health window
        assert health.recent_failure_rate == 0.0

    async def test_counts_realtime_subscriptions(self, context: ServiceContext) -> None:
        async def on_event(message: dict[str, Any]) -> None:
            return None

        unsubscribe = context.service.subscribe("parent-1", on_event)
        assert (await context.service.get_system_health()).realtime_subscriptions == 1

        unsubscribe()
        assert (await context.service.get_system_health()).realtime_subscriptions == 0


@pytest.mark.integration
class TestAnalytics:
    async def test_outcomes_are_rolled_up(
        self, context: ServiceContext, sender: RecordingSender, clock: FakeClock
    ) -> None:
        sender.failures[Channel.SMS] = [TransientDeliveryError("gateway busy", channel="sms")]
        await _reminder(context)
        clock.advance(seconds=1)
        await context.dispatcher.process_due_retries()

        rows = {row.channel: row for row in context.service.get_analytics(notification_type="session_reminder")}

        assert set(rows) == {"in_app", "sms", "email"}
        assert (rows["sms"].sent, rows["sms"].delivered, rows["sms"].retried) == (1, 1, 1)
        assert (rows["email"].sent, rows["email"].delivered, rows["email"].failed) == (1, 1, 0)
        assert rows["sms"].day == clock().date()
        assert context.service.get_analytics(channel="whatsapp") == []


@pytest.mark.integration
class TestPreferences:
    async def test_set_and_list(self, context: ServiceContext) -> None:
        saved = await context.service.set_preference(
            "parent-1",
            NotificationType.SESSION_REMINDER,
            PreferenceUpdate(
                channels=[Channel.SMS, Channel.IN_APP, Channel.SMS],
                quiet_hours_start="21:00",
                quiet_hours_end="07:00",
                timezone="Asia/Riyadh",
            ),
        )
        assert saved.channels == ["sms", "in_app"]

        updated = await context.service.set_preference(
            "parent-1", "session_reminder", PreferenceUpdate(enabled=False)
        )
        assert updated.enabled is False
        assert updated.quiet_hours_start is None

        preferences = await context.service.get_preferences("parent-1")
        assert len(preferences) == 1
        assert preferences[0].enabled is False
        assert await context.service.get_preferences("therapist-1") == []


@pytest.mark.integration
class TestReminderWorker:
    async def test_run_once_fires_reminders_and_retries(
        self, context: ServiceContext, sender: RecordingSender, clock: FakeClock
    ) -> None:
        sender.failures[Channel.SMS] = [TransientDeliveryError("gateway busy", channel="sms")]
        await context.service.schedule_entity_reminders("session-1")

        clock.advance(hours=24)
        assert await context.worker.run_once() == {"reminders_fired": 1, "attempts_processed": 0}

        clock.advance(seconds=1)
        assert await context.worker.run_once() == {"reminders_fired": 0, "attempts_processed": 1}
        assert len(sender.calls_for(Channel.SMS)) == 3

    async def test_a_failing_half_does_not_stop_the_other(
        self, context: ServiceContext, sender: RecordingSender, clock: FakeClock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        await _reminder(context, channels=[Channel.SMS], scheduled_at=clock() + timedelta(minutes=5))
        monkeypatch.setattr(context.scheduler, "process_due", AsyncMock(side_effect=RuntimeError("db down")))

        clock.advance(minutes=5)
        result = await context.worker.run_once()

        assert result == {"reminders_fired": 0, "attempts_processed": 1}
        assert len(sender.calls_for(Channel.SMS)) == 1

    async def test_start_and_stop(self, context: ServiceContext) -> None:
        await context.worker.start()
        assert context.worker.running

        await context.worker.start()
        await context.worker.stop()
        assert not context.worker.running


@pytest.mark.integration
class TestServiceContext:
    async def test_owns_and_initialises_its_database(self, directory: InMemorySessionDirectory) -> None:
        ctx = ServiceContext(
            directory=directory,
            notification_settings=NotificationSettings(
                worker_id="ctx-worker", scheduler_enabled=False, gateway_url="https://gateway.test"
            ),
            db_settings=DatabaseSettings(url="sqlite+aiosqlite:///:memory:", create_tables=True),
            redis_settings=RedisSettings(url=None),
        )
        assert isinstance(ctx.senders[Channel.IN_APP], InAppSender)
        assert isinstance(ctx.senders[Channel.SMS], GatewaySender)
        assert ctx.owner == "ctx-worker"

        await ctx.start()
        try:
            assert not ctx.worker.running
            assert not ctx.notifier.uses_redis
            page = await ctx.service.get_user_notifications("parent-1")
            assert page.total == 0
        finally:
            await ctx.stop()
            await ctx.stop()

        with pytest.raises(RuntimeError, match="restarted"):
            await ctx.start()

    async def test_starts_the_worker_when_enabled(self, context: ServiceContext) -> None:
        assert not context.worker.running

        ctx = ServiceContext(
            database=context.db,
            notification_settings=NotificationSettings(worker_id="poller", scheduler_enabled=True),
            db_settings=DatabaseSettings(url="sqlite+aiosqlite:///:memory:"),
            redis_settings=RedisSettings(url=None),
        )
        await ctx.start()
        try:
            assert ctx.worker.running
        finally:
            await ctx.stop()
        assert not ctx.worker.running
