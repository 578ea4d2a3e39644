"""Unit tests for the pydantic-settings configuration classes."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from clinic_notifications.core.settings import (
    DatabaseSettings,
    NotificationSettings,
    RedisSettings,
    clear_all_caches,
    get_notification_settings,
)


@pytest.mark.unit
class TestNotificationSettings:
    """Test suite for NotificationSettings."""

    def test_defaults(self) -> None:
        settings = NotificationSettings()

        assert settings.default_max_retries == 3
        assert settings.retry_base_delay == 1.0
        assert settings.max_retries_for("sms") == 3
        assert settings.concurrency_for("email") == settings.default_channel_concurrency

    def test_per_channel_overrides(self) -> None:
        settings = NotificationSettings(max_retries={"sms": 5}, channel_concurrency={"push": 2})

        assert settings.max_retries_for("sms") == 5
        assert settings.max_retries_for("email") == 3
        assert settings.concurrency_for("push") == 2

    def test_unknown_channel_override_is_rejected(self) -> None:
        with pytest.raises(ValidationError, match="fax"):
            NotificationSettings(max_retries={"fax": 1})

    def test_max_delay_below_base_delay_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            NotificationSettings(retry_base_delay=10.0, retry_max_delay=5.0)

    def test_lease_must_outlast_the_gateway_timeout(self) -> None:
        with pytest.raises(ValidationError, match="lease_ttl_seconds"):
            NotificationSettings(gateway_timeout=30.0, lease_ttl_seconds=32.0)

        settings = NotificationSettings(gateway_timeout=30.0, lease_ttl_seconds=40.0)
        assert settings.send_timeout_seconds == 35.0

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NOTIFY_POLL_INTERVAL_SECONDS", "5")
        monkeypatch.setenv("NOTIFY_MAX_RETRIES", '{"whatsapp": 1}')
        clear_all_caches()
        try:
            settings = get_notification_settings()
            assert settings.poll_interval_seconds == 5.0
            assert settings.max_retries_for("whatsapp") == 1
        finally:
            clear_all_caches()

    def test_settings_are_frozen(self) -> None:
        settings = NotificationSettings()

        with pytest.raises(ValidationError):
            settings.default_max_retries = 9  # type: ignore[misc]


@pytest.mark.unit
class TestInfrastructureSettings:
    def test_sqlite_detection(self) -> None:
        assert DatabaseSettings(url="sqlite+aiosqlite:///:memory:").is_sqlite
        assert not DatabaseSettings(url="postgresql+psycopg://clinic@db/clinic").is_sqlite

    def test_redis_is_optional(self) -> None:
        assert not RedisSettings(url=None).is_configured
        assert RedisSettings(url="redis://localhost:6379/0").is_configured
