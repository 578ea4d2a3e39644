"""Per-user realtime fan-out with optional Redis PubSub.

Each subscription owns a bounded queue and a pump task, so a slow or stuck
handle only ever delays itself. Messages for one user are enqueued in publish
order, which gives per-recipient FIFO delivery to every handle.

Two modes:
1. Local-only: ``publish`` enqueues directly for subscribers in this process.
2. Redis PubSub: ``publish`` goes to ``{prefix}{user_id}`` and a single
   pattern subscription fans messages out locally, reaching subscribers on
   every instance.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from prometheus_client import Counter, Gauge

from clinic_notifications.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from redis.asyncio import Redis
    from redis.asyncio.client import PubSub

logger = logging.getLogger(__name__)
_lazy = get_lazy_logger(__name__)

type MessageHandle = Callable[[dict[str, Any]], Awaitable[None]]

realtime_active_subscriptions = Gauge(
    "clinic_realtime_subscriptions",
    "Live realtime subscriptions in this process",
)

realtime_dropped_total = Counter(
    "clinic_realtime_dropped_total",
    "Realtime messages dropped because a subscriber queue was full",
)


@dataclass(eq=False)
class _Subscription:
    subscription_id: str
    user_id: str
    handle: MessageHandle
    queue: asyncio.Queue[dict[str, Any]]
    task: asyncio.Task[None] | None = field(default=None)


class RealtimeNotifier:
    """Pushes messages to live subscriptions of a user.

    Example:
        notifier = RealtimeNotifier()
        await notifier.start()

        unsubscribe = notifier.subscribe("parent-1", websocket.send_json)
        await notifier.publish("parent-1", {"event": "notification.created", ...})
        unsubscribe()

        await notifier.stop()
    """

    def __init__(
        self,
        redis_client: Redis | None = None,
        *,
        topic_prefix: str = "notifications:",
        queue_size: int = 256,
    ) -> None:
        self._redis = redis_client
        self._topic_prefix = topic_prefix
        self._queue_size = queue_size

        self._subscriptions: defaultdict[str, dict[str, _Subscription]] = defaultdict(dict)

        self._pubsub: PubSub | None = None
        self._listener_task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def subscription_count(self) -> int:
        return sum(len(subs) for subs in self._subscriptions.values())

    @property
    def uses_redis(self) -> bool:
        return self._redis is not None

    def topic_for(self, user_id: str) -> str:
        return f"{self._topic_prefix}{user_id}"

    async def start(self) -> None:
        """Start the PubSub listener when Redis is configured."""
        if self._running:
            return
        self._running = True

        if self._redis is not None:
            self._pubsub = self._redis.pubsub()
            await self._pubsub.psubscribe(f"{self._topic_prefix}*")
            self._listener_task = asyncio.create_task(self._pubsub_listener())
            logger.info(
                "Realtime notifier started with Redis PubSub",
                extra={"operation": "realtime.start", "topic_prefix": self._topic_prefix},
            )
        else:
            logger.info("Realtime notifier started in local-only mode", extra={"operation": "realtime.start"})

    async def stop(self) -> None:
        """Stop the listener and every subscription pump."""
        self._running = False

        if self._listener_task:
            self._listener_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listener_task
            self._listener_task = None

        if self._pubsub:
            await self._pubsub.aclose()
            self._pubsub = None

        closed = self.subscription_count
        for subs in list(self._subscriptions.values()):
            for sub in list(subs.values()):
                await self._cancel(sub)
        self._subscriptions.clear()
        realtime_active_subscriptions.set(0)

        logger.info(
            "Realtime notifier stopped",
            extra={"operation": "realtime.stop", "subscriptions_closed": closed},
        )

    def subscribe(self, user_id: str, handle: MessageHandle) -> Callable[[], None]:
        """Register a handle for a user's messages.

        Must be called from within a running event loop. Returns a function
        that removes the subscription; calling it twice is harmless.
        """
        sub = _Subscription(
            subscription_id=str(uuid4()),
            user_id=user_id,
            handle=handle,
            queue=asyncio.Queue(maxsize=self._queue_size),
        )
        sub.task = asyncio.create_task(self._pump(sub))
        self._subscriptions[user_id][sub.subscription_id] = sub
        realtime_active_subscriptions.inc()

        _lazy.debug(lambda: f"realtime.subscribe: {user_id} ({sub.subscription_id})")

        def unsubscribe() -> None:
            subs = self._subscriptions.get(user_id)
            if not subs or subs.pop(sub.subscription_id, None) is None:
                return
            if not subs:
                del self._subscriptions[user_id]
            realtime_active_subscriptions.dec()
            if sub.task is not None:
                sub.task.cancel()

        return unsubscribe

    async def publish(self, user_id: str, message: dict[str, Any]) -> None:
        """Send a message to every live subscription of ``user_id``.

        Never waits on subscribers. A user without subscriptions is a no-op.
        """
        if self._redis is not None:
            await self._redis.publish(self.topic_for(user_id), json.dumps(message, default=str))
            return
        self._fan_out(user_id, message)

    async def drain(self) -> None:
        """Wait until every queued message has been handed to its handle."""
        for subs in list(self._subscriptions.values()):
            for sub in list(subs.values()):
                await sub.queue.join()

    def _fan_out(self, user_id: str, message: dict[str, Any]) -> int:
        subs = self._subscriptions.get(user_id)
        if not subs:
            return 0

        for sub in subs.values():
            if sub.queue.full():
                # Slow consumer: drop its oldest message to keep the newest state
                with contextlib.suppress(asyncio.QueueEmpty):
                    sub.queue.get_nowait()
                    sub.queue.task_done()
                realtime_dropped_total.inc()
            sub.queue.put_nowait(message)
        return len(subs)

    async def _pump(self, sub: _Subscription) -> None:
        while True:
            message = await sub.queue.get()
            try:
                await sub.handle(message)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning(
                    "Realtime handle failed",
                    extra={
                        "operation": "realtime.pump",
                        "user_id": sub.user_id,
                        "subscription_id": sub.subscription_id,
                        "error": str(exc),
                    },
                )
            finally:
                sub.queue.task_done()

    async def _cancel(self, sub: _Subscription) -> None:
        if sub.task is None:
            return
        sub.task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sub.task

    async def _pubsub_listener(self) -> None:
        if self._pubsub is None:
            return

        try:
            async for message in self._pubsub.listen():
                if not self._running:
                    break
                if message["type"] != "pmessage":
                    continue

                try:
                    topic = message["channel"]
                    if isinstance(topic, bytes):
                        topic = topic.decode()
                    user_id = topic.removeprefix(self._topic_prefix)

                    data = message["data"]
                    if isinstance(data, bytes):
                        data = data.decode()
                    self._fan_out(user_id, json.loads(data))
                except (ValueError, TypeError) as exc:
                    logger.error(
                        "Invalid realtime PubSub message",
                        extra={"operation": "realtime.listener", "error": str(exc)},
                    )
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Realtime PubSub listener stopped", extra={"operation": "realtime.listener"})
