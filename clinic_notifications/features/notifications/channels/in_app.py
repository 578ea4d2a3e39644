"""In-app channel sender.

The notification row itself is the in-app inbox entry, so delivery means
pushing it to any open client. The send is confirmed immediately: a user
without a live connection still sees it the next time the inbox is read.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from clinic_notifications.infra.logging import get_lazy_logger

from .base import SendReceipt

if TYPE_CHECKING:
    from clinic_notifications.features.notifications.enums import Channel
    from clinic_notifications.infra.realtime import RealtimeNotifier

    from .base import OutboundMessage


class InAppSender:
    """Publishes the rendered message through the RealtimeNotifier."""

    def __init__(self, notifier: RealtimeNotifier) -> None:
        self._notifier = notifier
        self._lazy = get_lazy_logger(__name__)

    async def send(self, channel: Channel, address: str, message: OutboundMessage) -> SendReceipt:
        await self._notifier.publish(
            address,
            {
                "event": "notification.in_app",
                "notification_id": str(message.notification_id),
                "type": message.notification_type,
                "priority": message.priority,
                "title_ar": message.title_ar,
                "title_en": message.title_en,
                "body_ar": message.body_ar,
                "body_en": message.body_en,
            },
        )
        self._lazy.debug(lambda: f"in_app.send: {message.notification_id} -> {address}")
        return SendReceipt(external_ref=f"in_app:{message.notification_id}", confirmed=True)
