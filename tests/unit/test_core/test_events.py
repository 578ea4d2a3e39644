"""Unit tests for the domain event base class and the in-process EventBus."""

from __future__ import annotations

from typing import ClassVar

import pytest
from pydantic import ValidationError

from clinic_notifications.core.events import DomainEvent, EventBus
from clinic_notifications.features.notifications.events import (
    DeliveryStateChangedEvent,
    NotificationReadEvent,
    NotificationStateEvent,
)


class SampleEvent(DomainEvent):
    event_type: ClassVar[str] = "sample.happened"
    value: int


def _read_event(**overrides: object) -> NotificationReadEvent:
    values: dict[str, object] = {
        "notification_id": "n-1",
        "recipient_id": "parent-1",
        "notification_type": "session_reminder",
    }
    values.update(overrides)
    return NotificationReadEvent(**values)


# ──────────────────────────────────────────────────────────────
# DomainEvent
# ──────────────────────────────────────────────────────────────


@pytest.mark.unit
class TestDomainEvent:
    def test_event_has_id_and_aware_timestamp(self) -> None:
        event = SampleEvent(value=1)

        assert len(event.event_id) == 36
        assert event.timestamp.tzinfo is not None

    def test_events_are_immutable(self) -> None:
        event = SampleEvent(value=1)

        with pytest.raises(ValidationError):
            event.value = 2  # type: ignore[misc]

    def test_subclass_without_event_type_is_rejected(self) -> None:
        with pytest.raises(TypeError, match="event_type"):

            class Nameless(DomainEvent):
                value: int


# ──────────────────────────────────────────────────────────────
# EventBus
# ──────────────────────────────────────────────────────────────


@pytest.mark.unit
class TestEventBus:
    async def test_handlers_run_in_subscription_order(self) -> None:
        bus = EventBus()
        seen: list[str] = []

        async def first(event: SampleEvent) -> None:
            seen.append(f"first:{event.value}")

        async def second(event: SampleEvent) -> None:
            seen.append(f"second:{event.value}")

        bus.subscribe(SampleEvent, first)
        bus.subscribe(SampleEvent, second)
        await bus.publish(SampleEvent(value=1))
        await bus.publish(SampleEvent(value=2))

        assert seen == ["first:1", "second:1", "first:2", "second:2"]

    async def test_base_class_subscription_receives_subclasses(self) -> None:
        bus = EventBus()
        seen: list[str] = []

        async def on_any(event: NotificationStateEvent) -> None:
            seen.append(event.event_type)

        async def on_delivery(event: DeliveryStateChangedEvent) -> None:
            seen.append("delivery-only")

        bus.subscribe(NotificationStateEvent, on_any)
        bus.subscribe(DeliveryStateChangedEvent, on_delivery)
        await bus.publish(_read_event())

        assert seen == ["notification.read"]

    async def test_failing_handler_does_not_stop_others(self) -> None:
        bus = EventBus()
        seen: list[int] = []

        async def broken(event: SampleEvent) -> None:
            raise RuntimeError("boom")

        async def healthy(event: SampleEvent) -> None:
            seen.append(event.value)

        bus.subscribe(SampleEvent, broken)
        bus.subscribe(SampleEvent, healthy)
        await bus.publish(SampleEvent(value=7))

        assert seen == [7]

    async def test_unsubscribe(self) -> None:
        bus = EventBus()
        seen: list[int] = []

        async def handler(event: SampleEvent) -> None:
            seen.append(event.value)

        unsubscribe = bus.subscribe(SampleEvent, handler)
        unsubscribe()
        unsubscribe()
        await bus.publish(SampleEvent(value=1))

        assert seen == []
