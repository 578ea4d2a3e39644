"""Redis settings for cross-process realtime fan-out."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RedisSettings(BaseSettings):
    """Redis connection settings.

    Environment variables use REDIS_ prefix.
    Example: REDIS_URL=redis://localhost:6379/0
    """

    url: str | None = Field(
        default=None,
        description="Redis URL. When unset, realtime fan-out stays in-process.",
    )

    socket_timeout: float = Field(
        default=5.0,
        ge=0.1,
        le=60.0,
        description="Socket timeout in seconds",
    )

    health_check_interval: int = Field(
        default=30,
        ge=0,
        le=300,
        description="Seconds between connection health checks",
    )

    @property
    def is_configured(self) -> bool:
        """Whether a Redis URL was provided."""
        return bool(self.url)

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )
