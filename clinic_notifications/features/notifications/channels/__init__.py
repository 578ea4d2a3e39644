"""Channel senders and the multi-channel delivery dispatcher.

Senders:
- InAppSender: pushes through the RealtimeNotifier
- GatewaySender: sms, push, email and whatsapp over an HTTP gateway

Each sender implements the ChannelSender protocol and raises
TransientDeliveryError or PermanentDeliveryError on failure.
"""

from __future__ import annotations

from .base import ChannelSender, OutboundMessage, SendReceipt
from .dispatcher import DeliveryDispatcher
from .gateway import GatewaySender
from .in_app import InAppSender

__all__ = [
    "ChannelSender",
    "DeliveryDispatcher",
    "GatewaySender",
    "InAppSender",
    "OutboundMessage",
    "SendReceipt",
]
