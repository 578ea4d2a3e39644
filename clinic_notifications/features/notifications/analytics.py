"""Delivery outcome rollups per (notification type, channel, day).

The aggregator is a passive EventBus consumer. The bus isolates handler
failures, so nothing here can block or roll back a delivery.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import UTC, date
from typing import TYPE_CHECKING

from .enums import DeliveryStatus
from .events import DeliveryStateChangedEvent
from .metrics import analytics_outcome_total
from .schemas import OutcomeCounts

if TYPE_CHECKING:
    from collections.abc import Callable

    from clinic_notifications.core.events import EventBus


_OUTCOMES = {
    DeliveryStatus.SENT.value: "sent",
    DeliveryStatus.DELIVERED.value: "delivered",
    DeliveryStatus.FAILED.value: "failed",
}


@dataclass(slots=True)
class _Counters:
    sent: int = 0
    delivered: int = 0
    failed: int = 0
    retried: int = 0


class AnalyticsAggregator:
    """In-memory counters mirrored into Prometheus.

    Example:
        aggregator = AnalyticsAggregator()
        unsubscribe = aggregator.attach(bus)
        ...
        rows = aggregator.snapshot()
    """

    def __init__(self) -> None:
        self._counters: defaultdict[tuple[str, str, date], _Counters] = defaultdict(_Counters)

    def attach(self, bus: EventBus) -> Callable[[], None]:
        return bus.subscribe(DeliveryStateChangedEvent, self.handle)

    async def handle(self, event: DeliveryStateChangedEvent) -> None:
        occurred = event.occurred_at or event.timestamp
        key = (event.notification_type, event.channel, occurred.astimezone(UTC).date())

        if event.will_retry:
            self._counters[key].retried += 1
            analytics_outcome_total.labels(
                notification_type=event.notification_type, channel=event.channel, outcome="retried"
            ).inc()
            return

        outcome = _OUTCOMES.get(event.status)
        if outcome is None:
            return

        counters = self._counters[key]
        setattr(counters, outcome, getattr(counters, outcome) + 1)
        analytics_outcome_total.labels(
            notification_type=event.notification_type, channel=event.channel, outcome=outcome
        ).inc()

    def snapshot(
        self,
        *,
        notification_type: str | None = None,
        channel: str | None = None,
        day: date | None = None,
    ) -> list[OutcomeCounts]:
        """Current counters, optionally filtered, ordered by day, type, channel."""
        rows = [
            OutcomeCounts(
                notification_type=key_type,
                channel=key_channel,
                day=key_day,
                sent=counters.sent,
                delivered=counters.delivered,
                failed=counters.failed,
                retried=counters.retried,
            )
            for (key_type, key_channel, key_day), counters in self._counters.items()
            if (notification_type is None or key_type == notification_type)
            and (channel is None or key_channel == channel)
            and (day is None or key_day == day)
        ]
        rows.sort(key=lambda row: (row.day, row.notification_type, row.channel))
        return rows

    def failure_rate(self) -> float:
        """Terminal failures over all sends that reached an outcome."""
        sent = sum(counters.sent for counters in self._counters.values())
        failed = sum(counters.failed for counters in self._counters.values())
        total = sent + failed
        return failed / total if total else 0.0

    def reset(self) -> None:
        self._counters.clear()
