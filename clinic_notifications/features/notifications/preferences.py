"""Effective channel resolution from user preferences, opt-outs and quiet hours."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from clinic_notifications.core.exceptions import PreferenceResolutionError
from clinic_notifications.infra.logging import get_lazy_logger

from .enums import ALL_CHANNELS, Channel, NotificationType, Priority

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

    from .models import NotificationPreference
    from .repository import PreferenceRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class QuietHours:
    """Local wall-clock window, possibly wrapping midnight.

    ``start == end`` is an empty window.
    """

    start: time
    end: time
    tz: ZoneInfo

    def contains(self, at: datetime) -> bool:
        local = at.astimezone(self.tz).time().replace(tzinfo=None)
        if self.start == self.end:
            return False
        if self.start < self.end:
            return self.start <= local < self.end
        return local >= self.start or local < self.end


@dataclass(frozen=True, slots=True)
class EffectivePreference:
    """Validated view of a stored preference row."""

    channels: frozenset[Channel]
    enabled: bool
    quiet_hours: QuietHours | None


DEFAULT_PREFERENCE = EffectivePreference(channels=ALL_CHANNELS, enabled=True, quiet_hours=None)


def parse_clock_time(value: str) -> time:
    """Parse ``HH:MM`` into a time. Raises ValueError on anything else."""
    hours, sep, minutes = value.partition(":")
    if not sep or len(minutes) != 2 or not hours.isdigit() or not minutes.isdigit():
        msg = f"expected HH:MM, got {value!r}"
        raise ValueError(msg)
    return time(int(hours), int(minutes))


def to_effective(preference: NotificationPreference) -> EffectivePreference:
    """Validate a stored row.

    Raises:
        PreferenceResolutionError: On unknown channels, bad times or timezones.
    """
    try:
        channels = frozenset(Channel(value) for value in preference.channels)
    except ValueError as exc:
        raise PreferenceResolutionError(
            preference.user_id, preference.notification_type, f"unknown channel: {exc}"
        ) from exc

    quiet: QuietHours | None = None
    if preference.quiet_hours_start or preference.quiet_hours_end:
        if not (preference.quiet_hours_start and preference.quiet_hours_end):
            raise PreferenceResolutionError(
                preference.user_id, preference.notification_type, "quiet hours need both start and end"
            )
        try:
            quiet = QuietHours(
                start=parse_clock_time(preference.quiet_hours_start),
                end=parse_clock_time(preference.quiet_hours_end),
                tz=ZoneInfo(preference.timezone or "UTC"),
            )
        except (ValueError, ZoneInfoNotFoundError) as exc:
            raise PreferenceResolutionError(
                preference.user_id, preference.notification_type, str(exc)
            ) from exc

    return EffectivePreference(channels=channels, enabled=preference.enabled, quiet_hours=quiet)


def apply_preference(
    preference: EffectivePreference,
    priority: Priority,
    requested_channels: Iterable[Channel | str],
    at: datetime,
) -> set[Channel]:
    """Pure channel resolution.

    Order of rules:
      1. stored channels intersected with requested channels
      2. disabled type: nothing, or only in_app when urgent
      3. urgent always keeps in_app
      4. inside quiet hours and not urgent: a silent in_app delivery replaces
         everything, unless the stored channels leave in_app out
    """
    requested = {Channel(value) for value in requested_channels}
    urgent = priority == Priority.URGENT

    if not preference.enabled:
        return {Channel.IN_APP} if urgent else set()

    channels = set(preference.channels) & requested
    if urgent:
        channels.add(Channel.IN_APP)
        return channels

    if preference.quiet_hours is not None and preference.quiet_hours.contains(at):
        return {Channel.IN_APP} if Channel.IN_APP in preference.channels else set()

    return channels


class PreferenceResolver:
    """Computes the channels a notification may use for a recipient."""

    def __init__(self, repository: PreferenceRepository) -> None:
        self._repository = repository
        self._lazy = get_lazy_logger(__name__)

    async def load(
        self,
        session: AsyncSession,
        user_id: str,
        notification_type: NotificationType | str,
    ) -> EffectivePreference:
        """Load and validate the stored preference.

        A missing row yields the defaults (all channels, no quiet hours).

        Raises:
            PreferenceResolutionError: When the stored row is malformed.
        """
        row = await self._repository.get_for(session, user_id, str(notification_type))
        if row is None:
            return DEFAULT_PREFERENCE
        return to_effective(row)

    async def resolve(
        self,
        session: AsyncSession,
        user_id: str,
        notification_type: NotificationType | str,
        priority: Priority | str,
        requested_channels: Iterable[Channel | str],
        at: datetime,
    ) -> set[Channel]:
        """Effective channel set for one notification.

        Raises:
            PreferenceResolutionError: When the stored row is malformed.
        """
        preference = await self.load(session, user_id, notification_type)
        channels = apply_preference(preference, Priority(priority), requested_channels, at)
        self._lazy.debug(
            lambda: f"preferences.resolve: user={user_id} type={notification_type} "
            f"priority={priority} -> {sorted(channels)}"
        )
        return channels

    async def resolve_or_default(
        self,
        session: AsyncSession,
        user_id: str,
        notification_type: NotificationType | str,
        priority: Priority | str,
        requested_channels: Iterable[Channel | str],
        at: datetime,
    ) -> set[Channel]:
        """Like ``resolve`` but falls back to defaults on malformed data."""
        requested = list(requested_channels)
        try:
            return await self.resolve(session, user_id, notification_type, priority, requested, at)
        except PreferenceResolutionError as exc:
            logger.warning(
                "Malformed notification preference, using defaults",
                extra={
                    "operation": "preferences.resolve",
                    "user_id": user_id,
                    "notification_type": str(notification_type),
                    "reason": exc.reason,
                },
            )
            return apply_preference(DEFAULT_PREFERENCE, Priority(priority), requested, at)
