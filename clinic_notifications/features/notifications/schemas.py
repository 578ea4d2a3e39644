"""Pydantic schemas for the notifications API."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, field_validator, model_validator

from .enums import Channel, NotificationType, Priority, RecipientRole, ReminderKind
from .preferences import parse_clock_time

# ============================================================================
# Read models
# ============================================================================


class DeliveryAttemptRead(BaseModel):
    """Channel-level delivery state."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    notification_id: UUID
    channel: str
    status: str
    retry_count: int
    max_retries: int
    next_attempt_at: datetime | None = None
    last_attempted_at: datetime | None = None
    delivered_at: datetime | None = None
    failed_at: datetime | None = None
    external_ref: str | None = None
    last_error: str | None = None


class NotificationRead(BaseModel):
    """Notification as returned to clients and pushed over realtime."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    type: str
    priority: str
    recipient_id: str
    recipient_role: str
    title_ar: str
    title_en: str
    body_ar: str
    body_en: str
    channels: list[str]
    data: dict[str, Any] = Field(default_factory=dict)
    scheduled_at: datetime
    sent_at: datetime | None = None
    expires_at: datetime | None = None
    is_read: bool
    read_at: datetime | None = None
    cancelled_at: datetime | None = None
    related_entity_type: str | None = None
    related_entity_id: str | None = None
    created_at: datetime
    updated_at: datetime
    attempts: list[DeliveryAttemptRead] = Field(default_factory=list)


class NotificationPage(BaseModel):
    """One page of a user's notifications."""

    items: list[NotificationRead]
    total: int
    unread_count: int
    limit: int
    offset: int
    has_next: bool


class UnreadCount(BaseModel):
    user_id: str
    unread_count: int


class MarkReadResult(BaseModel):
    updated: int = Field(description="Notifications that changed from unread to read")


class DeleteResult(BaseModel):
    deleted: int = Field(description="Notifications removed")


# ============================================================================
# Requests
# ============================================================================


class NotificationFilters(BaseModel):
    """Filters for listing a user's notifications."""

    unread_only: bool = False
    types: list[NotificationType] | None = None
    include_expired: bool = True
    limit: int = Field(default=50, ge=1, le=200)
    offset: int = Field(default=0, ge=0)


class CreateNotificationOptions(BaseModel):
    """Per-call overrides of the template defaults."""

    priority: Priority | None = None
    channels: list[Channel] | None = Field(default=None, min_length=1)
    scheduled_at: AwareDatetime | None = None
    expires_in_hours: float | None = Field(default=None, gt=0)
    related_entity_type: str | None = Field(default=None, max_length=50)
    related_entity_id: str | None = Field(default=None, max_length=255)


class CreateNotificationRequest(BaseModel):
    notification_type: NotificationType
    params: dict[str, Any] = Field(default_factory=dict)
    recipient_id: str = Field(..., min_length=1, max_length=255)
    recipient_role: RecipientRole = RecipientRole.PARENT
    options: CreateNotificationOptions | None = None


class CreatedNotification(BaseModel):
    id: UUID


class BulkMarkReadRequest(BaseModel):
    notification_ids: list[UUID] = Field(..., min_length=1, max_length=500)


class BulkDeleteRequest(BaseModel):
    notification_ids: list[UUID] = Field(..., min_length=1, max_length=500)


class ScheduleRemindersRequest(BaseModel):
    baseline: AwareDatetime | None = Field(
        default=None,
        description="Session start time; defaults to the time known to the session directory",
    )


class RescheduleRemindersRequest(BaseModel):
    new_baseline: AwareDatetime


class ManualReminderRequest(BaseModel):
    reminder_kind: ReminderKind = ReminderKind.NOW


class ReminderJobRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    related_entity_type: str
    related_entity_id: str
    reminder_kind: str
    trigger_at: datetime
    sent_at: datetime | None = None
    cancelled: bool
    cancelled_at: datetime | None = None


class ConfirmDeliveryRequest(BaseModel):
    external_ref: str = Field(..., min_length=1, max_length=255)


# ============================================================================
# Preferences
# ============================================================================


class PreferenceUpdate(BaseModel):
    """Stored preference for one (user, notification type)."""

    channels: list[Channel] = Field(default_factory=lambda: list(Channel))
    enabled: bool = True
    quiet_hours_start: str | None = Field(default=None, description="Local HH:MM")
    quiet_hours_end: str | None = Field(default=None, description="Local HH:MM")
    timezone: str = Field(default="UTC", description="IANA timezone name")

    @field_validator("quiet_hours_start", "quiet_hours_end")
    @classmethod
    def validate_clock_time(cls, v: str | None) -> str | None:
        if v is None:
            return v
        parse_clock_time(v)
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            msg = f"Unknown timezone: {v}"
            raise ValueError(msg) from exc
        return v

    @model_validator(mode="after")
    def validate_quiet_hours_pair(self) -> PreferenceUpdate:
        if (self.quiet_hours_start is None) != (self.quiet_hours_end is None):
            msg = "quiet_hours_start and quiet_hours_end must be set together"
            raise ValueError(msg)
        return self


class PreferenceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    notification_type: str
    channels: list[str]
    enabled: bool
    quiet_hours_start: str | None = None
    quiet_hours_end: str | None = None
    timezone: str


# ============================================================================
# Health and analytics
# ============================================================================


class OutcomeCounts(BaseModel):
    notification_type: str
    channel: str
    day: date
    sent: int = 0
    delivered: int = 0
    failed: int = 0
    retried: int = 0


class SystemHealth(BaseModel):
    """Administrator view of the delivery engine."""

    active_workers: int = Field(description="Channel sends currently in flight")
    queue_depth: int = Field(description="Scheduled attempts plus due reminder jobs")
    recent_failure_rate: float = Field(ge=0.0, le=1.0)
    realtime_subscriptions: int = 0
