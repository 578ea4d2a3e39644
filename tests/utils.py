"""Test utilities shared across the suite.

Usage:
    from tests.utils import FakeClock, RecordingSender

    clock = FakeClock()
    clock.advance(hours=24)

    sender = RecordingSender({Channel.SMS: [TransientDeliveryError("busy")]})
    # the first sms send raises, the next ones succeed
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from clinic_notifications.features.notifications import Recipient, RecipientRole
from clinic_notifications.features.notifications.channels import SendReceipt

if TYPE_CHECKING:
    from clinic_notifications.features.notifications import Channel
    from clinic_notifications.features.notifications.channels import OutboundMessage

T0 = datetime(2025, 3, 2, 9, 0, tzinfo=UTC)

PARENT = Recipient(user_id="parent-1", role=RecipientRole.PARENT)
THERAPIST = Recipient(user_id="therapist-1", role=RecipientRole.THERAPIST)

SESSION_PARAMS = {
    "student_name": "Omar",
    "session_type": "Speech Therapy",
    "therapist_name": "Dr. Lina",
    "time": "10:00",
}


# ============================================================================
# Time
# ============================================================================


class FakeClock:
    """Callable clock that only moves when a test tells it to."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


# ============================================================================
# Transports
# ============================================================================


class RecordingSender:
    """ChannelSender that records every call.

    ``failures`` holds, per channel, errors raised in order (one per call)
    before that channel starts succeeding.
    """

    def __init__(self, failures: dict[Channel, list[Exception]] | None = None, *, confirmed: bool = True) -> None:
        self.calls: list[tuple[Channel, str, OutboundMessage]] = []
        self.failures = {channel: list(errors) for channel, errors in (failures or {}).items()}
        self.confirmed = confirmed

    async def send(self, channel: Channel, address: str, message: OutboundMessage) -> SendReceipt:
        self.calls.append((channel, address, message))
        pending = self.failures.get(channel)
        if pending:
            raise pending.pop(0)
        return SendReceipt(external_ref=f"{channel}-{len(self.calls)}", confirmed=self.confirmed)

    def calls_for(self, channel: Channel) -> list[tuple[Channel, str, OutboundMessage]]:
        return [call for call in self.calls if call[0] == channel]
