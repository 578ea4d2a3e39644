"""Application-level settings."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """FastAPI application settings.

    Environment variables use APP_ prefix.
    Example: APP_DEBUG=true, APP_API_PREFIX=/api/v1
    """

    service_name: str = Field(
        default="clinic-notifications",
        min_length=1,
        max_length=100,
        description="Service name used in logs and metrics",
    )

    title: str = Field(
        default="Clinic Notification Engine",
        description="OpenAPI title",
    )

    version: str = Field(default="0.1.0", description="Service version")

    debug: bool = Field(default=False, description="Enable FastAPI debug mode")

    api_prefix: str = Field(
        default="/api/v1",
        description="Prefix for all versioned API routes",
    )

    metrics_enabled: bool = Field(
        default=True,
        description="Expose Prometheus metrics at /metrics",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )
