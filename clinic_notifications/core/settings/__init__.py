"""Settings package with per-concern pydantic-settings classes."""

from __future__ import annotations

from .app import AppSettings
from .database import DatabaseSettings
from .loader import (
    clear_all_caches,
    get_app_settings,
    get_db_settings,
    get_logging_settings,
    get_notification_settings,
    get_redis_settings,
)
from .logs import LoggingSettings
from .notifications import SUPPORTED_CHANNELS, NotificationSettings
from .redis import RedisSettings

__all__ = [
    "SUPPORTED_CHANNELS",
    "AppSettings",
    "DatabaseSettings",
    "LoggingSettings",
    "NotificationSettings",
    "RedisSettings",
    "clear_all_caches",
    "get_app_settings",
    "get_db_settings",
    "get_logging_settings",
    "get_notification_settings",
    "get_redis_settings",
]
