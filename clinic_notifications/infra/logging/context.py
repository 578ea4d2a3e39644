"""Contextvars-backed log context.

Fields set here (notification id, recipient, worker id) are injected into
every record emitted from the same async task by ``ContextInjectingFilter``.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator

_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})


def set_log_context(**kwargs: Any) -> None:
    """Add fields to the logging context of the current task.

    Example:
        ```python
        set_log_context(notification_id=str(notification.id), channel="sms")
        logger.info("Sending")  # record carries notification_id and channel
        ```
    """
    current = _log_context.get().copy()
    current.update(kwargs)
    _log_context.set(current)


def get_log_context() -> dict[str, Any]:
    """Return a copy of the current logging context."""
    return _log_context.get().copy()


def clear_log_context() -> None:
    """Drop every field from the current logging context."""
    _log_context.set({})


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Temporarily extend the logging context.

    The previous context is restored on exit, so nested dispatch loops do not
    leak a notification id into unrelated records.
    """
    token = _log_context.set({**_log_context.get(), **kwargs})
    try:
        yield
    finally:
        _log_context.reset(token)


class ContextInjectingFilter(logging.Filter):
    """Copy the current log context onto each LogRecord.

    Attached to the root logger by ``configure_logging`` so formatters see the
    fields without callers passing ``extra=`` explicitly.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get().items():
            # Explicit extra= wins over ambient context
            if not hasattr(record, key):
                setattr(record, key, value)
        return True
