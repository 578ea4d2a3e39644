"""Logging configuration setup.

- dictConfig for formatters, filters and library levels
- QueueHandler + QueueListener so handler I/O never runs on the event loop
- ContextInjectingFilter on the root logger
"""

from __future__ import annotations

import atexit
import logging
import logging.config
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from queue import Queue
from typing import TYPE_CHECKING, Any

from .context import ContextInjectingFilter
from .formatters import JSONFormatter

if TYPE_CHECKING:
    from clinic_notifications.core.settings.logs import LoggingSettings

logger = logging.getLogger(__name__)

_listener: QueueListener | None = None
_installed: list[logging.Handler] = []
_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(settings: LoggingSettings | None = None) -> None:
    """Configure root logging from settings.

    Safe to call more than once; a previous QueueListener is stopped before
    the new handlers are installed.

    Args:
        settings: Logging settings. Loaded from the environment when omitted.
    """
    global _listener

    if settings is None:
        from clinic_notifications.core.settings import get_logging_settings

        settings = get_logging_settings()

    shutdown()

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "root": {
                "level": settings.level,
                "handlers": [],
            },
            "loggers": {
                name: {"level": level} for name, level in settings.library_levels.items()
            },
        }
    )
    logging.captureWarnings(True)

    handlers = _build_handlers(settings)
    root = logging.getLogger()

    if settings.use_queue:
        queue: Queue[logging.LogRecord] = Queue(-1)
        queue_handler = QueueHandler(queue)
        queue_handler.addFilter(ContextInjectingFilter())
        root.addHandler(queue_handler)
        _installed.append(queue_handler)
        _listener = QueueListener(queue, *handlers, respect_handler_level=True)
        _listener.start()
    else:
        for handler in handlers:
            handler.addFilter(ContextInjectingFilter())
            root.addHandler(handler)
        _installed.extend(handlers)

    logger.info(
        "Logging configured",
        extra={
            "operation": "logging.configure",
            "level": settings.level,
            "json_logs": settings.json_logs,
            "queued": settings.use_queue,
        },
    )


def _build_handlers(settings: LoggingSettings) -> list[logging.Handler]:
    formatter: logging.Formatter
    if settings.json_logs:
        formatter = JSONFormatter(static={"service": settings.service_name})
    else:
        formatter = logging.Formatter(_TEXT_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    handlers: list[logging.Handler] = [console]

    if settings.file_path is not None:
        settings.file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            settings.file_path,
            maxBytes=settings.file_max_bytes,
            backupCount=settings.file_backup_count,
            encoding="utf-8",
        )
        # Files are always machine-read
        file_handler.setFormatter(JSONFormatter(static={"service": settings.service_name}))
        handlers.append(file_handler)

    return handlers


def shutdown() -> None:
    """Stop the QueueListener and remove installed root handlers."""
    global _listener

    if _listener is not None:
        _listener.stop()
        _listener = None

    root = logging.getLogger()
    while _installed:
        root.removeHandler(_installed.pop())


def _atexit_shutdown(*_: Any) -> None:
    if _listener is not None:
        _listener.stop()


atexit.register(_atexit_shutdown)
