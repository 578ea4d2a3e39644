"""Unit tests for the realtime notifier in local-only mode."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from clinic_notifications.infra.realtime import RealtimeNotifier


@pytest.fixture
async def notifier():
    notifier = RealtimeNotifier(queue_size=4)
    await notifier.start()
    yield notifier
    await notifier.stop()


@pytest.mark.unit
class TestRealtimeNotifier:
    async def test_messages_arrive_in_publish_order(self, notifier: RealtimeNotifier) -> None:
        received: list[int] = []

        async def handle(message: dict[str, Any]) -> None:
            received.append(message["seq"])

        notifier.subscribe("parent-1", handle)
        for seq in range(3):
            await notifier.publish("parent-1", {"seq": seq})
        await notifier.drain()

        assert received == [0, 1, 2]

    async def test_only_the_addressed_user_receives(self, notifier: RealtimeNotifier) -> None:
        parent: list[dict[str, Any]] = []
        therapist: list[dict[str, Any]] = []

        async def to_parent(message: dict[str, Any]) -> None:
            parent.append(message)

        async def to_therapist(message: dict[str, Any]) -> None:
            therapist.append(message)

        notifier.subscribe("parent-1", to_parent)
        notifier.subscribe("therapist-1", to_therapist)
        await notifier.publish("parent-1", {"event": "notification.created"})
        await notifier.drain()

        assert len(parent) == 1
        assert therapist == []

    async def test_publish_without_subscribers_is_a_no_op(self, notifier: RealtimeNotifier) -> None:
        await notifier.publish("nobody", {"event": "notification.created"})

        assert notifier.subscription_count == 0

    async def test_unsubscribe_stops_delivery(self, notifier: RealtimeNotifier) -> None:
        received: list[dict[str, Any]] = []

        async def handle(message: dict[str, Any]) -> None:
            received.append(message)

        unsubscribe = notifier.subscribe("parent-1", handle)
        assert notifier.subscription_count == 1

        unsubscribe()
        unsubscribe()
        await notifier.publish("parent-1", {"event": "notification.read"})

        assert notifier.subscription_count == 0
        assert received == []

    async def test_slow_subscriber_does_not_block_others(self, notifier: RealtimeNotifier) -> None:
        release = asyncio.Event()
        fast: list[int] = []

        async def stuck(message: dict[str, Any]) -> None:
            await release.wait()

        async def quick(message: dict[str, Any]) -> None:
            fast.append(message["seq"])

        notifier.subscribe("parent-1", stuck)
        notifier.subscribe("parent-1", quick)
        for seq in range(10):
            await notifier.publish("parent-1", {"seq": seq})
            await asyncio.sleep(0.001)

        # the stuck queue overflowed and dropped its oldest messages; the quick one saw everything
        assert fast == list(range(10))
        release.set()

    async def test_failing_handle_keeps_its_subscription(self, notifier: RealtimeNotifier) -> None:
        calls: list[int] = []

        async def flaky(message: dict[str, Any]) -> None:
            calls.append(message["seq"])
            if message["seq"] == 0:
                raise RuntimeError("socket closed")

        notifier.subscribe("parent-1", flaky)
        await notifier.publish("parent-1", {"seq": 0})
        await notifier.publish("parent-1", {"seq": 1})
        await notifier.drain()

        assert calls == [0, 1]
