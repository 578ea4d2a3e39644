"""Event handlers that push notification state to live subscriptions.

The tracker publishes every transition on the EventBus after commit. The
realtime bridge turns those events into the wire message clients receive:

    {
        "event": "notification.delivery_changed",
        "event_id": "...",
        "timestamp": "2025-01-01T12:00:00+00:00",
        "notification": {...full notification JSON...},
        "channel": "sms",          # delivery events only
        "status": "sent",          # delivery events only
    }
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .events import DeliveryStateChangedEvent, NotificationStateEvent

if TYPE_CHECKING:
    from collections.abc import Callable

    from clinic_notifications.core.events import EventBus
    from clinic_notifications.infra.realtime import RealtimeNotifier

logger = logging.getLogger(__name__)


def realtime_message(event: NotificationStateEvent) -> dict[str, Any]:
    """Wire representation of a notification event."""
    message: dict[str, Any] = {
        "event": event.event_type,
        "event_id": event.event_id,
        "timestamp": event.timestamp.isoformat(),
        "notification": event.payload,
    }
    if isinstance(event, DeliveryStateChangedEvent):
        message["channel"] = event.channel
        message["status"] = event.status
        message["retry_count"] = event.retry_count
    return message


def register_realtime_bridge(bus: EventBus, notifier: RealtimeNotifier) -> Callable[[], None]:
    """Forward every notification event to the recipient's subscriptions.

    Returns a function that detaches the bridge.
    """

    async def on_notification_event(event: NotificationStateEvent) -> None:
        await notifier.publish(event.recipient_id, realtime_message(event))

    unsubscribe = bus.subscribe(NotificationStateEvent, on_notification_event)
    logger.debug("Realtime bridge registered", extra={"operation": "event_handlers.register"})
    return unsubscribe
