"""Typed in-process event bus.

Handlers subscribe to an event class and receive instances of it (and of its
subclasses). ``publish`` awaits handlers in subscription order, so a single
publisher observes a stable delivery order per handler. A failing handler is
logged and skipped; it never propagates back into the publisher.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

from clinic_notifications.infra.logging import get_lazy_logger

from .base import DomainEvent

logger = logging.getLogger(__name__)
_lazy = get_lazy_logger(__name__)

type EventHandler[E: DomainEvent] = Callable[[E], Awaitable[None]]


class EventBus:
    """Publish/subscribe keyed by event class."""

    def __init__(self) -> None:
        self._handlers: defaultdict[type[DomainEvent], list[EventHandler[Any]]] = defaultdict(list)

    def subscribe[E: DomainEvent](
        self, event_cls: type[E], handler: EventHandler[E]
    ) -> Callable[[], None]:
        """Register a handler and return a function that removes it."""
        self._handlers[event_cls].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_cls, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def handlers_for(self, event: DomainEvent) -> list[EventHandler[Any]]:
        """Handlers registered for the event's class or any of its bases."""
        matched: list[EventHandler[Any]] = []
        for cls in type(event).__mro__:
            if isinstance(cls, type) and issubclass(cls, DomainEvent):
                matched.extend(self._handlers.get(cls, ()))
        return matched

    async def publish(self, event: DomainEvent) -> None:
        """Deliver an event to every matching handler."""
        handlers = self.handlers_for(event)
        _lazy.debug(lambda: f"event.publish: {event.event_type} -> {len(handlers)} handler(s)")

        for handler in handlers:
            try:
                await handler(event)
            except Exception:
                logger.exception(
                    "Event handler failed",
                    extra={
                        "operation": "events.publish",
                        "event_type": event.event_type,
                        "event_id": event.event_id,
                        "handler": getattr(handler, "__qualname__", repr(handler)),
                    },
                )
