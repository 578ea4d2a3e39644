"""Explicitly constructed object graph of the notification engine.

Construction is synchronous and side-effect free; ``start`` and ``stop``
bring infrastructure up and down in dependency order:

Startup:
1. Database tables (only when DB_CREATE_TABLES is set)
2. Realtime notifier (Redis PubSub listener when REDIS_URL is set)
3. Reminder worker (when NOTIFY_SCHEDULER_ENABLED)

Shutdown runs in reverse, then closes gateway clients, Redis and the engine.
"""

from __future__ import annotations

import logging
import os
import socket
from typing import TYPE_CHECKING
from uuid import uuid4

from redis.asyncio import Redis

from clinic_notifications.core.clock import Clock, system_clock
from clinic_notifications.core.database import Database
from clinic_notifications.core.events import EventBus
from clinic_notifications.core.settings import (
    DatabaseSettings,
    NotificationSettings,
    RedisSettings,
    get_db_settings,
    get_notification_settings,
    get_redis_settings,
)
from clinic_notifications.features.notifications.analytics import AnalyticsAggregator
from clinic_notifications.features.notifications.builder import NotificationBuilder
from clinic_notifications.features.notifications.channels import (
    ChannelSender,
    DeliveryDispatcher,
    GatewaySender,
    InAppSender,
)
from clinic_notifications.features.notifications.directory import InMemorySessionDirectory
from clinic_notifications.features.notifications.enums import Channel
from clinic_notifications.features.notifications.event_handlers import register_realtime_bridge
from clinic_notifications.features.notifications.models import NotificationPreference
from clinic_notifications.features.notifications.preferences import PreferenceResolver
from clinic_notifications.features.notifications.repository import PreferenceRepository
from clinic_notifications.features.notifications.scheduler import ReminderScheduler
from clinic_notifications.features.notifications.service import NotificationService
from clinic_notifications.features.notifications.tracker import DeliveryTracker
from clinic_notifications.infra.realtime import RealtimeNotifier
from clinic_notifications.utils.retry import BackoffPolicy
from clinic_notifications.workers import ReminderWorker

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from clinic_notifications.features.notifications.directory import AddressBook, SessionDirectory

logger = logging.getLogger(__name__)

GATEWAY_CHANNELS = (Channel.SMS, Channel.PUSH, Channel.EMAIL, Channel.WHATSAPP)


def default_owner() -> str:
    """Lease and claim owner id unique to this process."""
    return f"{socket.gethostname()}-{os.getpid()}-{uuid4().hex[:8]}"


class ServiceContext:
    """Builds and owns every engine component.

    Args:
        directory: Source of session data for reminders. Defaults to an empty
            in-memory directory.
        address_book: Resolves sms/push/email/whatsapp addresses.
        senders: Channel senders that replace the configured defaults.
        database: Pre-built Database (tests pass an in-memory one). When
            omitted one is built from settings and disposed on ``stop``.
        redis_client: Pre-built Redis client for realtime fan-out.
        clock: Time source shared by every component.
    """

    def __init__(
        self,
        *,
        directory: SessionDirectory | None = None,
        address_book: AddressBook | None = None,
        senders: Mapping[Channel, ChannelSender] | None = None,
        database: Database | None = None,
        redis_client: Redis | None = None,
        notification_settings: NotificationSettings | None = None,
        db_settings: DatabaseSettings | None = None,
        redis_settings: RedisSettings | None = None,
        clock: Clock = system_clock,
    ) -> None:
        self.settings = notification_settings or get_notification_settings()
        self.db_settings = db_settings or get_db_settings()
        redis_settings = redis_settings or get_redis_settings()
        self.clock = clock
        self.owner = self.settings.worker_id or default_owner()

        self._owns_db = database is None
        self.db = database or Database.from_settings(self.db_settings)

        self._owns_redis = redis_client is None and redis_settings.is_configured
        if redis_client is None and redis_settings.is_configured:
            redis_client = Redis.from_url(
                redis_settings.url,
                socket_timeout=redis_settings.socket_timeout,
                health_check_interval=redis_settings.health_check_interval,
            )
        self.redis = redis_client

        self.bus = EventBus()
        self.notifier = RealtimeNotifier(
            redis_client,
            topic_prefix=self.settings.realtime_topic_prefix,
            queue_size=self.settings.realtime_queue_size,
        )
        self.backoff = BackoffPolicy(
            base_delay=self.settings.retry_base_delay,
            max_delay=self.settings.retry_max_delay,
        )

        self.builder = NotificationBuilder(clock=clock)
        self.resolver = PreferenceResolver(PreferenceRepository(NotificationPreference))
        self.tracker = DeliveryTracker(self.db, self.bus, self.backoff, clock)

        self._gateway: GatewaySender | None = None
        self.senders = self._default_senders()
        self.senders.update(senders or {})

        self.dispatcher = DeliveryDispatcher(
            self.db,
            self.tracker,
            self.resolver,
            self.senders,
            self.settings,
            owner=self.owner,
            address_book=address_book,
            clock=clock,
        )
        self.directory = directory or InMemorySessionDirectory()
        self.scheduler = ReminderScheduler(
            self.db,
            self.directory,
            self.builder,
            self.tracker,
            self.dispatcher,
            self.settings,
            owner=self.owner,
            clock=clock,
        )
        self.analytics = AnalyticsAggregator()
        self.service = NotificationService(
            self.db,
            self.builder,
            self.tracker,
            self.dispatcher,
            self.scheduler,
            self.notifier,
            self.analytics,
            self.settings,
            clock=clock,
        )
        self.worker = ReminderWorker(self.scheduler, self.dispatcher, self.settings)

        self._detach: list[Callable[[], None]] = [
            register_realtime_bridge(self.bus, self.notifier),
            self.analytics.attach(self.bus),
        ]
        self._started = False
        self._stopped = False

    def _default_senders(self) -> dict[Channel, ChannelSender]:
        senders: dict[Channel, ChannelSender] = {Channel.IN_APP: InAppSender(self.notifier)}
        if self.settings.gateway_url:
            self._gateway = GatewaySender(
                self.settings.gateway_url,
                api_key=self.settings.gateway_api_key,
                timeout=self.settings.gateway_timeout,
            )
            for channel in GATEWAY_CHANNELS:
                senders[channel] = self._gateway
        return senders

    async def start(self, *, run_worker: bool | None = None) -> None:
        """Bring up tables, realtime fan-out and the poll loop.

        Raises:
            RuntimeError: If the context has been stopped. ``stop`` detaches
                the event handlers and closes owned clients, so build a new
                context instead.
        """
        if self._stopped:
            msg = "ServiceContext cannot be restarted after stop()"
            raise RuntimeError(msg)
        if self._started:
            return

        if self.db_settings.create_tables:
            await self.db.create_all()
            logger.info("Database tables ensured", extra={"operation": "context.start"})

        await self.notifier.start()

        if self.settings.scheduler_enabled if run_worker is None else run_worker:
            await self.worker.start()

        self._started = True
        logger.info(
            "Notification engine started",
            extra={
                "operation": "context.start",
                "owner": self.owner,
                "channels": sorted(self.senders),
                "realtime_redis": self.notifier.uses_redis,
            },
        )

    async def stop(self) -> None:
        """Tear everything down in reverse order. Safe to call twice."""
        await self.worker.stop()
        await self.notifier.stop()

        for detach in self._detach:
            detach()
        self._detach.clear()

        if self._gateway is not None:
            await self._gateway.aclose()
        if self.redis is not None and self._owns_redis:
            await self.redis.aclose()
        if self._owns_db:
            await self.db.dispose()

        self._started = False
        self._stopped = True
        logger.info("Notification engine stopped", extra={"operation": "context.stop"})
