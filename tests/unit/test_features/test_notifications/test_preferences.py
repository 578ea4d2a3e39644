"""Unit tests for channel resolution from preferences and quiet hours."""

from __future__ import annotations

from datetime import UTC, datetime, time
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest

from clinic_notifications.core.exceptions import PreferenceResolutionError
from clinic_notifications.features.notifications import Channel, Priority
from clinic_notifications.features.notifications.preferences import (
    DEFAULT_PREFERENCE,
    EffectivePreference,
    QuietHours,
    apply_preference,
    parse_clock_time,
    to_effective,
)

RIYADH = ZoneInfo("Asia/Riyadh")
REQUESTED = [Channel.IN_APP, Channel.SMS, Channel.EMAIL]


def _row(**overrides: object) -> SimpleNamespace:
    values: dict[str, object] = {
        "user_id": "parent-1",
        "notification_type": "session_reminder",
        "channels": ["in_app", "sms", "email"],
        "enabled": True,
        "quiet_hours_start": None,
        "quiet_hours_end": None,
        "timezone": "UTC",
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def _quiet(start: str, end: str, tz: ZoneInfo = RIYADH, channels: frozenset[Channel] | None = None) -> EffectivePreference:
    return EffectivePreference(
        channels=channels or frozenset(Channel),
        enabled=True,
        quiet_hours=QuietHours(start=parse_clock_time(start), end=parse_clock_time(end), tz=tz),
    )


@pytest.mark.unit
class TestQuietHours:
    def test_window_wrapping_midnight(self) -> None:
        window = QuietHours(start=time(22, 0), end=time(7, 0), tz=RIYADH)

        # 23:00 and 06:59 Riyadh (UTC+3) are inside, 07:00 and 12:00 are not
        assert window.contains(datetime(2025, 3, 2, 20, 0, tzinfo=UTC))
        assert window.contains(datetime(2025, 3, 2, 3, 59, tzinfo=UTC))
        assert not window.contains(datetime(2025, 3, 2, 4, 0, tzinfo=UTC))
        assert not window.contains(datetime(2025, 3, 2, 9, 0, tzinfo=UTC))

    def test_same_day_window(self) -> None:
        window = QuietHours(start=time(13, 0), end=time(15, 0), tz=UTC)

        assert window.contains(datetime(2025, 3, 2, 13, 0, tzinfo=UTC))
        assert not window.contains(datetime(2025, 3, 2, 15, 0, tzinfo=UTC))

    def test_equal_start_and_end_is_empty(self) -> None:
        window = QuietHours(start=time(8, 0), end=time(8, 0), tz=UTC)

        assert not window.contains(datetime(2025, 3, 2, 8, 0, tzinfo=UTC))

    @pytest.mark.parametrize("value", ["7", "7:5", "aa:bb", "25:00", "12:60"])
    def test_parse_clock_time_rejects_garbage(self, value: str) -> None:
        with pytest.raises(ValueError):
            parse_clock_time(value)


@pytest.mark.unit
class TestApplyPreference:
    at = datetime(2025, 3, 2, 9, 0, tzinfo=UTC)
    night = datetime(2025, 3, 2, 20, 30, tzinfo=UTC)  # 23:30 in Riyadh

    def test_defaults_keep_every_requested_channel(self) -> None:
        assert apply_preference(DEFAULT_PREFERENCE, Priority.MEDIUM, REQUESTED, self.at) == set(REQUESTED)

    def test_stored_channels_intersect_requested(self) -> None:
        preference = EffectivePreference(channels=frozenset({Channel.SMS, Channel.PUSH}), enabled=True, quiet_hours=None)

        assert apply_preference(preference, Priority.MEDIUM, REQUESTED, self.at) == {Channel.SMS}

    def test_disabled_type_gets_nothing(self) -> None:
        preference = EffectivePreference(channels=frozenset(Channel), enabled=False, quiet_hours=None)

        assert apply_preference(preference, Priority.HIGH, REQUESTED, self.at) == set()

    def test_disabled_type_still_gets_in_app_when_urgent(self) -> None:
        preference = EffectivePreference(channels=frozenset(Channel), enabled=False, quiet_hours=None)

        assert apply_preference(preference, Priority.URGENT, REQUESTED, self.at) == {Channel.IN_APP}

    def test_quiet_hours_keep_only_in_app(self) -> None:
        preference = _quiet("22:00", "07:00")

        assert apply_preference(preference, Priority.HIGH, REQUESTED, self.night) == {Channel.IN_APP}
        assert apply_preference(preference, Priority.HIGH, REQUESTED, self.at) == set(REQUESTED)

    def test_quiet_hours_record_a_silent_in_app_delivery(self) -> None:
        preference = _quiet("22:00", "07:00")
        requested = [Channel.SMS, Channel.EMAIL]

        assert apply_preference(preference, Priority.MEDIUM, requested, self.night) == {Channel.IN_APP}
        assert apply_preference(preference, Priority.MEDIUM, requested, self.at) == set(requested)

    def test_quiet_hours_without_in_app_leave_nothing(self) -> None:
        preference = _quiet("22:00", "07:00", channels=frozenset({Channel.SMS}))

        assert apply_preference(preference, Priority.MEDIUM, REQUESTED, self.night) == set()

    def test_urgent_ignores_quiet_hours_and_keeps_in_app(self) -> None:
        preference = _quiet("22:00", "07:00", channels=frozenset({Channel.SMS}))

        channels = apply_preference(preference, Priority.URGENT, REQUESTED, self.night)

        assert channels == {Channel.SMS, Channel.IN_APP}


@pytest.mark.unit
class TestToEffective:
    def test_valid_row(self) -> None:
        preference = to_effective(
            _row(quiet_hours_start="22:00", quiet_hours_end="07:00", timezone="Asia/Riyadh")
        )

        assert preference.channels == frozenset({Channel.IN_APP, Channel.SMS, Channel.EMAIL})
        assert preference.quiet_hours is not None
        assert preference.quiet_hours.start == time(22, 0)

    def test_unknown_channel(self) -> None:
        with pytest.raises(PreferenceResolutionError):
            to_effective(_row(channels=["in_app", "pager"]))

    def test_half_open_quiet_hours(self) -> None:
        with pytest.raises(PreferenceResolutionError):
            to_effective(_row(quiet_hours_start="22:00"))

    def test_unknown_timezone(self) -> None:
        with pytest.raises(PreferenceResolutionError):
            to_effective(_row(quiet_hours_start="22:00", quiet_hours_end="07:00", timezone="Mars/Olympus"))
