"""Tests for the user inbox: listing, read receipts and live updates."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import pytest

from clinic_notifications.core.exceptions import EntityNotFoundError
from clinic_notifications.features.notifications import Channel, NotificationType
from clinic_notifications.features.notifications.schemas import CreateNotificationOptions, NotificationFilters
from tests.utils import PARENT, SESSION_PARAMS, THERAPIST, FakeClock, RecordingSender

if TYPE_CHECKING:
    from uuid import UUID

    from clinic_notifications.app.context import ServiceContext
    from clinic_notifications.features.notifications import Recipient

IN_APP_ONLY = CreateNotificationOptions(channels=[Channel.IN_APP])
GOAL_PARAMS = {"student_name": "Omar", "goal_title": "Two-word phrases", "progress": 80}


async def _reminder(context: ServiceContext, recipient: Recipient = PARENT) -> UUID:
    return await context.service.create_notification(
        NotificationType.SESSION_REMINDER, dict(SESSION_PARAMS), recipient, IN_APP_ONLY
    )


@pytest.mark.integration
class TestListing:
    async def test_newest_first_with_unread_total(self, context: ServiceContext, clock: FakeClock) -> None:
        first = await _reminder(context)
        clock.advance(minutes=5)
        second = await context.service.create_notification(
            NotificationType.GOAL_COMPLETED, GOAL_PARAMS, PARENT, IN_APP_ONLY
        )
        await _reminder(context, THERAPIST)

        page = await context.service.get_user_notifications("parent-1")

        assert [item.id for item in page.items] == [second, first]
        assert page.total == 2
        assert page.unread_count == 2
        assert page.has_next is False
        assert page.items[0].title_en == "🎉 Goal Achieved!"
        assert page.items[0].attempts[0].status == "delivered"

    async def test_filters(self, context: ServiceContext, clock: FakeClock) -> None:
        reminder = await _reminder(context)
        goal = await context.service.create_notification(
            NotificationType.GOAL_COMPLETED, GOAL_PARAMS, PARENT, IN_APP_ONLY
        )
        await context.service.mark_as_read(reminder, "parent-1")

        unread = await context.service.get_user_notifications("parent-1", NotificationFilters(unread_only=True))
        assert [item.id for item in unread.items] == [goal]

        by_type = await context.service.get_user_notifications(
            "parent-1", NotificationFilters(types=[NotificationType.SESSION_REMINDER])
        )
        assert [item.id for item in by_type.items] == [reminder]

        # the reminder expires after 24h, the goal after a week
        clock.advance(hours=25)
        live = await context.service.get_user_notifications("parent-1", NotificationFilters(include_expired=False))
        assert [item.id for item in live.items] == [goal]

    async def test_pagination(self, context: ServiceContext, clock: FakeClock) -> None:
        for _ in range(3):
            await _reminder(context)
            clock.advance(seconds=1)

        page = await context.service.get_user_notifications("parent-1", NotificationFilters(limit=2))

        assert len(page.items) == 2
        assert page.total == 3
        assert page.has_next is True

    async def test_get_notification_of_someone_else(self, context: ServiceContext) -> None:
        notification_id = await _reminder(context)

        with pytest.raises(EntityNotFoundError):
            await context.service.get_notification(notification_id, "therapist-1")


@pytest.mark.integration
class TestReadReceipts:
    async def test_mark_read_is_idempotent(self, context: ServiceContext, clock: FakeClock) -> None:
        notification_id = await _reminder(context)
        read_at = clock()

        assert await context.service.mark_as_read(notification_id, "parent-1") is True
        clock.advance(minutes=1)
        assert await context.service.mark_as_read(notification_id, "parent-1") is False

        notification = await context.service.get_notification(notification_id, "parent-1")
        assert notification.is_read is True
        assert notification.read_at == read_at
        assert await context.service.get_unread_count("parent-1") == 0

    async def test_mark_read_of_someone_else(self, context: ServiceContext) -> None:
        notification_id = await _reminder(context)

        with pytest.raises(EntityNotFoundError):
            await context.service.mark_as_read(notification_id, "therapist-1")
        with pytest.raises(EntityNotFoundError):
            await context.service.mark_as_read(uuid4(), "parent-1")

    async def test_bulk_mark_read_ignores_foreign_and_read_ids(self, context: ServiceContext) -> None:
        mine = [await _reminder(context) for _ in range(3)]
        theirs = await _reminder(context, THERAPIST)
        await context.service.mark_as_read(mine[0], "parent-1")

        updated = await context.service.bulk_mark_as_read([*mine, mine[1], theirs, uuid4()], "parent-1")

        assert updated == 2
        assert await context.service.get_unread_count("parent-1") == 0
        assert await context.service.get_unread_count("therapist-1") == 1

    async def test_bulk_mark_read_with_nothing(self, context: ServiceContext) -> None:
        assert await context.service.bulk_mark_as_read([], "parent-1") == 0

    async def test_mark_all_read_only_touches_the_owner(self, context: ServiceContext, clock: FakeClock) -> None:
        mine = [await _reminder(context) for _ in range(3)]
        await _reminder(context, THERAPIST)
        await context.service.mark_as_read(mine[0], "parent-1")
        clock.advance(minutes=1)

        assert await context.service.mark_all_as_read("parent-1") == 2
        assert await context.service.mark_all_as_read("parent-1") == 0

        assert await context.service.get_unread_count("parent-1") == 0
        assert await context.service.get_unread_count("therapist-1") == 1
        first = await context.service.get_notification(mine[0], "parent-1")
        assert first.read_at == clock() - timedelta(minutes=1)


@pytest.mark.integration
class TestLiveUpdates:
    async def test_subscriber_sees_every_transition_in_order(self, context: ServiceContext) -> None:
        received: list[dict[str, Any]] = []

        async def on_event(message: dict[str, Any]) -> None:
            received.append(message)

        unsubscribe = context.service.subscribe("parent-1", on_event)
        notification_id = await context.service.create_notification(
            NotificationType.SESSION_REMINDER,
            dict(SESSION_PARAMS),
            PARENT,
            CreateNotificationOptions(channels=[Channel.SMS]),
        )
        await context.service.mark_as_read(notification_id, "parent-1")
        await context.notifier.drain()
        unsubscribe()

        events = [message["event"] for message in received]
        assert events[0] == "notification.created"
        assert events[-1] == "notification.read"
        assert [message["status"] for message in received if message["event"] == "notification.delivery_changed"] == [
            "scheduled",
            "sent",
            "delivered",
        ]
        assert all(message["notification"]["id"] == str(notification_id) for message in received)
        assert received[-1]["notification"]["is_read"] is True

    async def test_other_users_events_are_not_received(self, context: ServiceContext) -> None:
        received: list[dict[str, Any]] = []

        async def on_event(message: dict[str, Any]) -> None:
            received.append(message)

        context.service.subscribe("therapist-1", on_event)
        await _reminder(context)
        await context.notifier.drain()

        assert received == []

    async def test_in_app_channel_pushes_the_rendered_message(self, context: ServiceContext) -> None:
        received: list[dict[str, Any]] = []

        async def on_event(message: dict[str, Any]) -> None:
            received.append(message)

        context.service.subscribe("parent-1", on_event)
        await _reminder(context)
        await context.notifier.drain()

        in_app = [message for message in received if message["event"] == "notification.in_app"]
        assert len(in_app) == 1
        assert in_app[0]["title_ar"] == "تذكير بموعد الجلسة"
        assert "Omar" in in_app[0]["body_en"]


@pytest.mark.integration
class TestDeletion:
    async def test_delete_removes_notification_and_attempts(self, context: ServiceContext) -> None:
        notification_id = await _reminder(context)

        await context.service.delete_notification(notification_id, "parent-1")

        with pytest.raises(EntityNotFoundError):
            await context.service.get_notification(notification_id, "parent-1")
        assert list(await context.tracker.attempts_for(notification_id)) == []
        assert (await context.service.get_user_notifications("parent-1")).total == 0

    async def test_delete_of_someone_else(self, context: ServiceContext) -> None:
        notification_id = await _reminder(context)

        with pytest.raises(EntityNotFoundError):
            await context.service.delete_notification(notification_id, "therapist-1")
        with pytest.raises(EntityNotFoundError):
            await context.service.delete_notification(uuid4(), "parent-1")

        assert (await context.service.get_notification(notification_id, "parent-1")).id == notification_id

    async def test_bulk_delete_ignores_foreign_ids(self, context: ServiceContext) -> None:
        mine = [await _reminder(context) for _ in range(3)]
        theirs = await _reminder(context, THERAPIST)

        deleted = await context.service.bulk_delete([mine[0], mine[1], mine[1], theirs, uuid4()], "parent-1")

        assert deleted == 2
        page = await context.service.get_user_notifications("parent-1")
        assert [item.id for item in page.items] == [mine[2]]
        assert (await context.service.get_user_notifications("therapist-1")).total == 1
        assert await context.service.bulk_delete([], "parent-1") == 0

    async def test_deleted_pending_notification_is_never_sent(
        self, context: ServiceContext, sender: RecordingSender, clock: FakeClock
    ) -> None:
        notification_id = await context.service.create_notification(
            NotificationType.SESSION_REMINDER,
            dict(SESSION_PARAMS),
            PARENT,
            CreateNotificationOptions(channels=[Channel.SMS], scheduled_at=clock() + timedelta(hours=1)),
        )

        await context.service.delete_notification(notification_id, "parent-1")
        clock.advance(hours=2)

        assert await context.dispatcher.process_due_retries() == 0
        assert sender.calls == []

    async def test_subscriber_is_told_about_the_deletion(self, context: ServiceContext) -> None:
        received: list[dict[str, Any]] = []

        async def on_event(message: dict[str, Any]) -> None:
            received.append(message)

        notification_id = await _reminder(context)
        unsubscribe = context.service.subscribe("parent-1", on_event)
        await context.service.bulk_delete([notification_id], "parent-1")
        await context.notifier.drain()
        unsubscribe()

        assert [message["event"] for message in received] == ["notification.deleted"]
        assert received[0]["notification"]["id"] == str(notification_id)
