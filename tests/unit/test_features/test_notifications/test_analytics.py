"""Unit tests for the delivery outcome aggregator."""

from __future__ import annotations

from datetime import UTC, date, datetime

import pytest

from clinic_notifications.core.events import EventBus
from clinic_notifications.features.notifications.analytics import AnalyticsAggregator
from clinic_notifications.features.notifications.events import DeliveryStateChangedEvent

DAY = datetime(2025, 3, 2, 12, 0, tzinfo=UTC)


def _event(channel: str, status: str, *, will_retry: bool = False, occurred_at: datetime = DAY) -> DeliveryStateChangedEvent:
    return DeliveryStateChangedEvent(
        notification_id="n-1",
        recipient_id="parent-1",
        notification_type="session_reminder",
        attempt_id="a-1",
        channel=channel,
        status=status,
        will_retry=will_retry,
        occurred_at=occurred_at,
    )


@pytest.mark.unit
class TestAnalyticsAggregator:
    async def test_counts_outcomes_per_type_channel_and_day(self) -> None:
        aggregator = AnalyticsAggregator()
        bus = EventBus()
        aggregator.attach(bus)

        await bus.publish(_event("sms", "scheduled"))
        await bus.publish(_event("sms", "scheduled", will_retry=True))
        await bus.publish(_event("sms", "sent"))
        await bus.publish(_event("sms", "delivered"))
        await bus.publish(_event("email", "failed"))
        await bus.publish(_event("email", "cancelled"))

        rows = aggregator.snapshot()

        assert [(row.channel, row.sent, row.delivered, row.failed, row.retried) for row in rows] == [
            ("email", 0, 0, 1, 0),
            ("sms", 1, 1, 0, 1),
        ]
        assert all(row.day == date(2025, 3, 2) for row in rows)

    async def test_snapshot_filters(self) -> None:
        aggregator = AnalyticsAggregator()
        await aggregator.handle(_event("sms", "sent"))
        await aggregator.handle(_event("sms", "sent", occurred_at=datetime(2025, 3, 3, 1, 0, tzinfo=UTC)))
        await aggregator.handle(_event("push", "sent"))

        assert len(aggregator.snapshot(channel="sms")) == 2
        assert len(aggregator.snapshot(day=date(2025, 3, 3))) == 1
        assert aggregator.snapshot(notification_type="goal_completed") == []

    async def test_failure_rate_and_reset(self) -> None:
        aggregator = AnalyticsAggregator()
        await aggregator.handle(_event("sms", "sent"))
        await aggregator.handle(_event("sms", "sent"))
        await aggregator.handle(_event("sms", "sent"))
        await aggregator.handle(_event("sms", "failed"))

        assert aggregator.failure_rate() == 0.25

        aggregator.reset()
        assert aggregator.snapshot() == []
        assert aggregator.failure_rate() == 0.0

    async def test_detach(self) -> None:
        aggregator = AnalyticsAggregator()
        bus = EventBus()
        detach = aggregator.attach(bus)
        detach()

        await bus.publish(_event("sms", "sent"))

        assert aggregator.snapshot() == []
