"""Domain events and the in-process event bus."""

from __future__ import annotations

from .base import DomainEvent
from .bus import EventBus, EventHandler

__all__ = ["DomainEvent", "EventBus", "EventHandler"]
