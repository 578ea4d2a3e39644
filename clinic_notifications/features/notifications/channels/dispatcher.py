"""DeliveryDispatcher: routes a notification to its channels and drives each send.

For every channel the PreferenceResolver allows, the dispatcher makes sure a
single DeliveryAttempt row exists, then runs the send under two guards:

- an in-process ``asyncio.Lock`` keyed by (notification_id, channel)
- a database lease on the attempt row, so other processes stay out

The lease is taken inside a per-channel semaphore (one bounded worker group
per channel) and a send is cut off before the lease runs out, so a lease is
never held by an attempt that is still queued or past its deadline.

No database session is open while a sender is awaited. Failed transient
sends are requeued with a wake time and picked up later by
``process_due_retries``; nothing is retried inline.
"""

from __future__ import annotations

import asyncio
import logging
import time
import weakref
from datetime import timedelta
from typing import TYPE_CHECKING

from clinic_notifications.core.clock import Clock, system_clock
from clinic_notifications.core.exceptions import DeliveryError, PermanentDeliveryError, TransientDeliveryError
from clinic_notifications.features.notifications.enums import Channel
from clinic_notifications.features.notifications.metrics import (
    delivery_duration_seconds,
    notification_suppressed_total,
)
from clinic_notifications.features.notifications.models import DeliveryAttempt
from clinic_notifications.features.notifications.repository import DeliveryAttemptRepository
from clinic_notifications.infra.logging import get_lazy_logger, log_context

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime
    from uuid import UUID

    from clinic_notifications.core.database import Database
    from clinic_notifications.core.settings import NotificationSettings
    from clinic_notifications.features.notifications.directory import AddressBook
    from clinic_notifications.features.notifications.models import Notification
    from clinic_notifications.features.notifications.preferences import PreferenceResolver
    from clinic_notifications.features.notifications.tracker import DeliveryTracker, LeasedAttempt

    from .base import ChannelSender, SendReceipt

logger = logging.getLogger(__name__)


class DeliveryDispatcher:
    """Multi-channel delivery with at-most-one in-flight send per (notification, channel)."""

    def __init__(
        self,
        db: Database,
        tracker: DeliveryTracker,
        resolver: PreferenceResolver,
        senders: Mapping[Channel, ChannelSender],
        settings: NotificationSettings,
        *,
        owner: str,
        address_book: AddressBook | None = None,
        clock: Clock = system_clock,
        attempts: DeliveryAttemptRepository | None = None,
    ) -> None:
        self._db = db
        self._tracker = tracker
        self._resolver = resolver
        self._senders = dict(senders)
        self._settings = settings
        self._owner = owner
        self._address_book = address_book
        self._clock = clock
        self._attempts = attempts or DeliveryAttemptRepository(DeliveryAttempt)
        self._lease_ttl = timedelta(seconds=settings.lease_ttl_seconds)
        self._send_timeout = settings.send_timeout_seconds

        self._locks: weakref.WeakValueDictionary[tuple[UUID, str], asyncio.Lock] = weakref.WeakValueDictionary()
        self._semaphores = {channel: asyncio.Semaphore(settings.concurrency_for(channel)) for channel in Channel}
        self._in_flight = 0
        self._lazy = get_lazy_logger(__name__)

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def in_flight(self) -> int:
        """Sends currently awaiting a channel sender."""
        return self._in_flight

    async def dispatch(self, notification: Notification) -> list[DeliveryAttempt]:
        """Deliver a persisted notification on every channel its recipient allows.

        Preferences are evaluated at the notification's ``scheduled_at`` (or
        now, whichever is later). A notification scheduled for the future only
        gets its attempts created here; the retry poll sends them once due.

        Returns the notification's attempts after this round of sends. An
        empty list means preferences left no channel. Delivery errors are
        recorded on the attempts and never raised.
        """
        now = self._clock()
        send_at = max(now, notification.scheduled_at)
        async with self._db.session() as session:
            channels = await self._resolver.resolve_or_default(
                session,
                notification.recipient_id,
                notification.type,
                notification.priority,
                notification.channels,
                send_at,
            )

        if not channels:
            notification_suppressed_total.labels(notification_type=notification.type).inc()
            logger.info(
                "No delivery channel left after preferences",
                extra={
                    "operation": "dispatcher.dispatch",
                    "notification_id": str(notification.id),
                    "recipient_id": notification.recipient_id,
                    "notification_type": notification.type,
                },
            )
            return []

        ordered = [channel for channel in Channel if channel in channels]
        scheduled = [
            await self._tracker.record_scheduled(
                notification.id, channel, max_retries=self._settings.max_retries_for(channel), not_before=send_at
            )
            for channel in ordered
        ]

        if send_at > now:
            self._lazy.debug(lambda: f"dispatcher.dispatch: {notification.id} deferred until {send_at.isoformat()}")
            return list(scheduled)

        await asyncio.gather(
            *(self._deliver(attempt.id, notification.id, Channel(attempt.channel)) for attempt in scheduled)
        )

        self._lazy.debug(
            lambda: f"dispatcher.dispatch: {notification.id} -> {[channel.value for channel in ordered]}"
        )
        return list(await self._tracker.attempts_for(notification.id))

    async def process_due_retries(self, now: datetime | None = None) -> int:
        """Send every scheduled attempt whose wake time has passed.

        Returns the number of attempts picked up.
        """
        now = now or self._clock()
        async with self._db.session() as session:
            due = await self._attempts.list_due(session, now, self._settings.poll_batch_size)

        if not due:
            return 0

        await asyncio.gather(
            *(self._deliver(attempt_id, notification_id, Channel(channel)) for attempt_id, notification_id, channel in due)
        )
        logger.info(
            "Processed due delivery retries",
            extra={"operation": "dispatcher.process_due_retries", "count": len(due)},
        )
        return len(due)

    def _lock_for(self, key: tuple[UUID, str]) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def _deliver(self, attempt_id: UUID, notification_id: UUID, channel: Channel) -> None:
        lock = self._lock_for((notification_id, channel.value))
        with log_context(notification_id=str(notification_id), channel=channel.value, owner=self._owner):
            async with lock:
                await self._deliver_locked(attempt_id, notification_id, channel)

    async def _deliver_locked(self, attempt_id: UUID, notification_id: UUID, channel: Channel) -> None:
        async with self._semaphores[channel]:
            leased = await self._tracker.acquire(attempt_id, self._owner, self._lease_ttl)
            if leased is None:
                self._lazy.debug(lambda: f"dispatcher.deliver: {notification_id}/{channel} not acquired")
                return

            self._in_flight += 1
            started = time.perf_counter()
            try:
                async with asyncio.timeout(self._send_timeout):
                    receipt = await self._send(leased)
            except DeliveryError as exc:
                await self._tracker.record_failed(leased, self._owner, exc, terminal=not exc.retryable)
                return
            except TimeoutError:
                logger.warning(
                    "Channel send outlived its lease budget",
                    extra={
                        "operation": "dispatcher.deliver",
                        "notification_id": str(notification_id),
                        "channel": channel.value,
                        "timeout": self._send_timeout,
                    },
                )
                error = TransientDeliveryError(
                    f"Send did not finish within {self._send_timeout:g}s", channel=channel.value, code="timeout"
                )
                await self._tracker.record_failed(leased, self._owner, error, terminal=False)
                return
            except Exception as exc:
                logger.exception(
                    "Channel sender raised an unexpected error",
                    extra={
                        "operation": "dispatcher.deliver",
                        "notification_id": str(notification_id),
                        "channel": channel.value,
                    },
                )
                error = TransientDeliveryError(f"Unexpected sender error: {exc}", channel=channel.value)
                await self._tracker.record_failed(leased, self._owner, error, terminal=False)
                return
            finally:
                self._in_flight -= 1
                delivery_duration_seconds.labels(channel=channel.value).observe(time.perf_counter() - started)

            if await self._tracker.record_sent(leased, self._owner, receipt.external_ref) and receipt.confirmed:
                await self._tracker.record_delivered(leased.attempt_id)

    async def _send(self, leased: LeasedAttempt) -> SendReceipt:
        channel = leased.channel
        sender = self._senders.get(channel)
        if sender is None:
            msg = f"No sender configured for channel '{channel}'"
            raise PermanentDeliveryError(msg, channel=channel.value, code="no_sender")

        address = await self._address_for(leased.message.recipient_id, channel)
        if address is None:
            msg = f"No {channel} address for recipient '{leased.message.recipient_id}'"
            raise PermanentDeliveryError(msg, channel=channel.value, code="no_address")

        return await sender.send(channel, address, leased.message)

    async def _address_for(self, user_id: str, channel: Channel) -> str | None:
        if channel is Channel.IN_APP:
            return user_id
        if self._address_book is None:
            return None
        return await self._address_book.get_address(user_id, channel)
