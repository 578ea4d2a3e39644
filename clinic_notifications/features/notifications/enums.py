"""Closed vocabularies for notifications, channels and reminders."""

from __future__ import annotations

from enum import StrEnum


class NotificationType(StrEnum):
    SESSION_REMINDER = "session_reminder"
    SESSION_STARTED = "session_started"
    SESSION_COMPLETED = "session_completed"
    SESSION_CANCELLED = "session_cancelled"
    SESSION_RESCHEDULED = "session_rescheduled"
    ATTENDANCE_CHECKIN = "attendance_checkin"
    ATTENDANCE_CHECKOUT = "attendance_checkout"
    ATTENDANCE_LATE = "attendance_late"
    ATTENDANCE_ABSENT = "attendance_absent"
    ASSESSMENT_DUE = "assessment_due"
    ASSESSMENT_COMPLETED = "assessment_completed"
    ASSESSMENT_OVERDUE = "assessment_overdue"
    GOAL_COMPLETED = "goal_completed"
    PROGRESS_UPDATE = "progress_update"
    MILESTONE_REACHED = "milestone_reached"
    PAYMENT_DUE = "payment_due"
    PAYMENT_RECEIVED = "payment_received"
    DOCUMENT_REQUIRED = "document_required"
    SYSTEM_UPDATE = "system_update"
    EMERGENCY_CONTACT = "emergency_contact"


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class Channel(StrEnum):
    IN_APP = "in_app"
    SMS = "sms"
    PUSH = "push"
    EMAIL = "email"
    WHATSAPP = "whatsapp"


ALL_CHANNELS: frozenset[Channel] = frozenset(Channel)


class DeliveryStatus(StrEnum):
    """DeliveryAttempt lifecycle.

    scheduled -> sent -> delivered | failed, with failed -> scheduled while
    retries remain. ``cancelled`` is terminal and means no send happened
    because the notification was cancelled or expired first.
    """

    SCHEDULED = "scheduled"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryStatus.DELIVERED, DeliveryStatus.FAILED, DeliveryStatus.CANCELLED)


class RecipientRole(StrEnum):
    STUDENT = "student"
    PARENT = "parent"
    THERAPIST = "therapist"
    ADMIN = "admin"


class ReminderKind(StrEnum):
    DAY_BEFORE = "day_before"
    HOUR_BEFORE = "hour_before"
    NOW = "now"
