"""Logging configuration settings."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class LoggingSettings(BaseSettings):
    """Structured logging configuration.

    Environment variables use LOG_ prefix.
    Example: LOG_LEVEL=INFO, LOG_JSON=true, LOG_FILE_PATH=logs/notifications.jsonl
    """

    service_name: str = Field(
        default="clinic-notifications",
        description="Service name to include in log records (static field in JSON)",
    )

    level: LogLevel = Field(
        default="INFO",
        description="Root logger level (DEBUG|INFO|WARNING|ERROR|CRITICAL)",
    )

    json_logs: bool = Field(
        default=True,
        alias="json",
        description="Enable JSON Lines formatted structured logs",
    )

    file_path: Path | None = Field(
        default=None,
        description="Optional rotating log file. When None, only the console is used.",
    )

    file_max_bytes: int = Field(
        default=10_485_760,  # 10 MiB
        ge=1024,
        description="Maximum log file size in bytes before rotation",
    )

    file_backup_count: int = Field(
        default=5,
        ge=0,
        le=100,
        description="Number of rotated log files to keep",
    )

    use_queue: bool = Field(
        default=True,
        description="Route records through a QueueHandler so I/O never blocks the event loop",
    )

    library_levels: dict[str, LogLevel] = Field(
        default_factory=lambda: {
            "sqlalchemy.engine": "WARNING",
            "apscheduler": "WARNING",
            "httpx": "WARNING",
            "uvicorn.access": "INFO",
        },
        description="Per-library logger level overrides",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        env_ignore_empty=True,
    )
