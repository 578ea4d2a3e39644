"""Turns a typed template and a parameter bag into a Notification record."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from clinic_notifications.core.clock import Clock, system_clock
from clinic_notifications.core.exceptions import TemplateValidationError
from clinic_notifications.infra.logging import get_lazy_logger

from .enums import Channel, NotificationType, Priority
from .models import Notification
from .templates import TemplateRenderer, get_template

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .directory import Recipient


class NotificationBuilder:
    """Renders unpersisted Notification records.

    Both language variants are always produced; the caller's locale never
    matters here. Persisting the result is the caller's job.
    """

    def __init__(self, renderer: TemplateRenderer | None = None, clock: Clock = system_clock) -> None:
        self._renderer = renderer or TemplateRenderer()
        self._clock = clock
        self._lazy = get_lazy_logger(__name__)

    def build(
        self,
        notification_type: NotificationType | str,
        params: dict[str, Any],
        recipient: Recipient,
        priority_override: Priority | str | None = None,
        *,
        channels: Iterable[Channel | str] | None = None,
        scheduled_at: datetime | None = None,
        expires_in_hours: float | None = None,
        related_entity_type: str | None = None,
        related_entity_id: str | None = None,
    ) -> Notification:
        """Build a notification for one recipient.

        Args:
            notification_type: Template to render.
            params: Values for the template's required (and optional) fields.
            recipient: Who receives it.
            priority_override: Replaces the template's default priority.
            channels: Replaces the template's default channels.
            scheduled_at: Defaults to now.
            expires_in_hours: Replaces the template's expiry window.
            related_entity_type: e.g. "session".
            related_entity_id: Identifier of the related entity.

        Raises:
            TemplateValidationError: If a required field is missing, the type
                is unknown, or the requested channel list is empty or invalid.
        """
        definition = get_template(notification_type)
        content = self._renderer.render(definition, params)

        priority = Priority(priority_override) if priority_override else definition.priority
        resolved_channels = self._channels(definition.type, channels, definition.channels)

        scheduled = scheduled_at or self._clock()
        hours = expires_in_hours if expires_in_hours is not None else definition.expires_after_hours
        expires_at = scheduled + timedelta(hours=hours) if hours is not None else None

        notification = Notification(
            type=definition.type.value,
            priority=priority.value,
            recipient_id=recipient.user_id,
            recipient_role=recipient.role.value,
            title_ar=content.title_ar,
            title_en=content.title_en,
            body_ar=content.body_ar,
            body_en=content.body_en,
            channels=[channel.value for channel in resolved_channels],
            data=dict(params),
            scheduled_at=scheduled,
            expires_at=expires_at,
            is_read=False,
            related_entity_type=related_entity_type,
            related_entity_id=related_entity_id,
        )

        self._lazy.debug(
            lambda: f"notification.build: {definition.type} for {recipient.user_id} "
            f"priority={priority} channels={notification.channels}"
        )
        return notification

    @staticmethod
    def _channels(
        notification_type: NotificationType,
        requested: Iterable[Channel | str] | None,
        default: tuple[Channel, ...],
    ) -> list[Channel]:
        if requested is None:
            return list(default)

        resolved: list[Channel] = []
        for value in requested:
            try:
                channel = Channel(value)
            except ValueError as exc:
                raise TemplateValidationError(
                    notification_type.value, "channels", reason=f"unknown channel '{value}'"
                ) from exc
            if channel not in resolved:
                resolved.append(channel)

        if not resolved:
            raise TemplateValidationError(notification_type.value, "channels", reason="empty")
        return resolved
