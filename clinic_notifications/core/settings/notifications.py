"""Notification delivery and reminder scheduling settings."""

from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_CHANNELS = ("in_app", "sms", "push", "email", "whatsapp")

# Time kept between the end of a send and the end of its lease.
LEASE_MARGIN_SECONDS = 5.0


class NotificationSettings(BaseSettings):
    """Delivery, retry and scheduling configuration.

    Environment variables use NOTIFY_ prefix.
    Example: NOTIFY_POLL_INTERVAL_SECONDS=30, NOTIFY_MAX_RETRIES='{"sms": 5}'
    """

    # ──────────────────────────────────────────────────────────────
    # Retry / backoff
    # ──────────────────────────────────────────────────────────────

    default_max_retries: int = Field(
        default=3,
        ge=0,
        le=20,
        description="Retries allowed per channel when no override is configured",
    )

    max_retries: dict[str, int] = Field(
        default_factory=dict,
        description="Per-channel max_retries overrides keyed by channel name",
    )

    retry_base_delay: float = Field(
        default=1.0,
        gt=0,
        le=60.0,
        description="Base delay in seconds; retry n waits base * 2**n",
    )

    retry_max_delay: float = Field(
        default=300.0,
        gt=0,
        le=3600.0,
        description="Upper bound for a single retry delay in seconds",
    )

    # ──────────────────────────────────────────────────────────────
    # Worker pools and leases
    # ──────────────────────────────────────────────────────────────

    default_channel_concurrency: int = Field(
        default=8,
        ge=1,
        le=256,
        description="Concurrent sends allowed per channel when no override is configured",
    )

    channel_concurrency: dict[str, int] = Field(
        default_factory=dict,
        description="Per-channel worker pool sizes keyed by channel name",
    )

    lease_ttl_seconds: float = Field(
        default=60.0,
        ge=1.0,
        le=3600.0,
        description="How long a delivery lease is held before another worker may take it over",
    )

    worker_id: str | None = Field(
        default=None,
        description="Identifier used for leases and claims. Generated per process when unset.",
    )

    # ──────────────────────────────────────────────────────────────
    # Reminder scheduling
    # ──────────────────────────────────────────────────────────────

    poll_interval_seconds: float = Field(
        default=30.0,
        ge=1.0,
        le=600.0,
        description="Interval between scans for due reminder jobs and retries",
    )

    claim_ttl_seconds: float = Field(
        default=120.0,
        ge=1.0,
        le=3600.0,
        description="A claimed job not marked sent within this window may be re-claimed",
    )

    poll_batch_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Maximum jobs or retries processed per poll",
    )

    scheduler_enabled: bool = Field(
        default=True,
        description="Start the reminder poll loop with the application",
    )

    # ──────────────────────────────────────────────────────────────
    # Transport gateway
    # ──────────────────────────────────────────────────────────────

    gateway_url: str | None = Field(
        default=None,
        description="Base URL of the HTTP messaging gateway for sms/push/email/whatsapp",
    )

    gateway_api_key: str | None = Field(
        default=None,
        description="Bearer token for the messaging gateway",
    )

    gateway_timeout: float = Field(
        default=10.0,
        ge=0.5,
        le=120.0,
        description="Gateway request timeout in seconds",
    )

    # ──────────────────────────────────────────────────────────────
    # Realtime and health
    # ──────────────────────────────────────────────────────────────

    realtime_topic_prefix: str = Field(
        default="notifications:",
        max_length=50,
        description="Prefix for per-recipient realtime topics",
    )

    realtime_queue_size: int = Field(
        default=256,
        ge=1,
        le=10000,
        description="Buffered events per subscription before the oldest are dropped",
    )

    health_window_minutes: int = Field(
        default=60,
        ge=1,
        le=1440,
        description="Window used to compute the recent delivery failure rate",
    )

    @model_validator(mode="after")
    def _check_consistency(self) -> NotificationSettings:
        unknown = (set(self.max_retries) | set(self.channel_concurrency)) - set(SUPPORTED_CHANNELS)
        if unknown:
            msg = f"Unknown channel(s) in overrides: {', '.join(sorted(unknown))}"
            raise ValueError(msg)
        if self.retry_max_delay < self.retry_base_delay:
            msg = "retry_max_delay must be >= retry_base_delay"
            raise ValueError(msg)
        if self.lease_ttl_seconds < self.gateway_timeout + LEASE_MARGIN_SECONDS:
            msg = f"lease_ttl_seconds must be at least gateway_timeout + {LEASE_MARGIN_SECONDS:g}s"
            raise ValueError(msg)
        return self

    def max_retries_for(self, channel: str) -> int:
        """Configured retry budget for a channel."""
        return self.max_retries.get(channel, self.default_max_retries)

    def concurrency_for(self, channel: str) -> int:
        """Configured worker pool size for a channel."""
        return self.channel_concurrency.get(channel, self.default_channel_concurrency)

    @property
    def send_timeout_seconds(self) -> float:
        """Longest a single send may run while its lease is still held."""
        return self.lease_ttl_seconds - LEASE_MARGIN_SECONDS

    model_config = SettingsConfigDict(
        env_prefix="NOTIFY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )
