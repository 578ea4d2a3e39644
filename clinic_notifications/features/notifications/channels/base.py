"""Sender protocol and the value types exchanged with it."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from uuid import UUID

    from clinic_notifications.features.notifications.enums import Channel


@dataclass(frozen=True, slots=True)
class OutboundMessage:
    """Rendered content handed to a channel sender.

    Both language variants travel together; the transport (or the device)
    picks the one matching the recipient's locale.
    """

    notification_id: UUID
    notification_type: str
    priority: str
    recipient_id: str
    title_ar: str
    title_en: str
    body_ar: str
    body_en: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class SendReceipt:
    """Result of a successful hand-off to a transport.

    Attributes:
        external_ref: Transport-assigned message id, if any.
        confirmed: Whether the transport already confirmed delivery. When
            False the attempt stays ``sent`` until ``confirm_delivery`` is
            called with ``external_ref``.
    """

    external_ref: str | None = None
    confirmed: bool = True


@runtime_checkable
class ChannelSender(Protocol):
    """Pluggable transport for one or more channels.

    Implementations raise ``TransientDeliveryError`` for failures worth
    retrying (timeouts, throttling, 5xx) and ``PermanentDeliveryError`` for
    failures that will never succeed (invalid number, rejected payload).
    """

    async def send(self, channel: Channel, address: str, message: OutboundMessage) -> SendReceipt:
        """Hand the message to the transport."""
        ...
