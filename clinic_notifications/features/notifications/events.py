"""Domain events for the notifications feature.

Every state transition recorded by the DeliveryTracker is published on the
in-process EventBus once its unit of work has committed. Consumers:

- the realtime bridge, which pushes ``payload`` to live subscriptions
- the AnalyticsAggregator, which rolls delivery outcomes into counters

All events derive from ``NotificationStateEvent`` so a consumer interested in
"anything that changed a notification" subscribes once.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar

from pydantic import Field

from clinic_notifications.core.events import DomainEvent


class NotificationStateEvent(DomainEvent):
    """Common payload of every notification event.

    ``payload`` is the full notification as JSON (including its delivery
    attempts), the same shape the read API returns.
    """

    event_type: ClassVar[str] = "notification.state"

    notification_id: str = Field(description="UUID of the notification")
    recipient_id: str = Field(description="User who receives the notification")
    notification_type: str = Field(description="NotificationType value")
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Serialized notification for realtime clients",
    )


class NotificationCreatedEvent(NotificationStateEvent):
    """Published after a notification has been persisted."""

    event_type: ClassVar[str] = "notification.created"

    priority: str = Field(description="Priority level")
    channels: list[str] = Field(default_factory=list, description="Requested channels")


class DeliveryStateChangedEvent(NotificationStateEvent):
    """Published for every delivery attempt transition.

    Example:
        event = DeliveryStateChangedEvent(
            notification_id="...",
            recipient_id="parent-1",
            notification_type="session_reminder",
            channel="sms",
            status="scheduled",
            previous_status="scheduled",
            retry_count=1,
            will_retry=True,
        )
    """

    event_type: ClassVar[str] = "notification.delivery_changed"

    attempt_id: str = Field(description="UUID of the delivery attempt")
    channel: str = Field(description="Delivery channel")
    status: str = Field(description="New DeliveryStatus value")
    previous_status: str | None = Field(default=None, description="Status before the transition")
    retry_count: int = Field(default=0, description="Retries consumed so far")
    will_retry: bool = Field(default=False, description="A transient failure was requeued")
    error: str | None = Field(default=None, description="Sender error message, if any")
    occurred_at: datetime | None = Field(default=None, description="When the transition happened")


class NotificationReadEvent(NotificationStateEvent):
    """Published when a recipient marks a notification as read."""

    event_type: ClassVar[str] = "notification.read"

    read_at: datetime | None = Field(default=None, description="When it was marked as read")


class NotificationCancelledEvent(NotificationStateEvent):
    """Published when a notification is cancelled before all channels were sent."""

    event_type: ClassVar[str] = "notification.cancelled"

    cancelled_at: datetime | None = Field(default=None)


class NotificationDeletedEvent(NotificationStateEvent):
    """Published after a recipient deleted a notification.

    ``payload`` holds the notification as it was just before deletion.
    """

    event_type: ClassVar[str] = "notification.deleted"

    deleted_at: datetime | None = Field(default=None)
