"""Bilingual notification and reminder delivery for the clinic.

Architecture:
    - builder / templates: render a Notification from a NotificationType and params
    - preferences: effective channels after opt-outs and quiet hours
    - scheduler: day_before / hour_before / now reminder jobs per session
    - channels: senders and the DeliveryDispatcher
    - tracker: the only writer of delivery and read state; publishes events
    - analytics, event_handlers: EventBus consumers
    - service, router: the operations exposed to callers

Example:
    context = ServiceContext(directory=sessions, address_book=contacts)
    await context.start()

    notification_id = await context.service.create_notification(
        NotificationType.GOAL_COMPLETED,
        {"student_name": "Sara", "goal_title": "Two-word phrases", "progress": 100},
        Recipient("parent-1", RecipientRole.PARENT),
    )
"""

from __future__ import annotations

from .directory import InMemorySessionDirectory, Recipient, SessionInfo, StaticAddressBook
from .enums import Channel, DeliveryStatus, NotificationType, Priority, RecipientRole, ReminderKind
from .service import NotificationService

__all__ = [
    "Channel",
    "DeliveryStatus",
    "InMemorySessionDirectory",
    "NotificationService",
    "NotificationType",
    "Priority",
    "Recipient",
    "RecipientRole",
    "ReminderKind",
    "SessionInfo",
    "StaticAddressBook",
]
