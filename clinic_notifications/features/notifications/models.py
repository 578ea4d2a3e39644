"""SQLAlchemy models for notifications, delivery attempts, preferences and reminder jobs."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_notifications.core.database import StringArray, TimestampedBase, UTCDateTime

from .enums import DeliveryStatus


class Notification(TimestampedBase):
    """One message to one recipient, independent of how many channels carry it.

    Both language variants are stored; clients pick which one to display.
    """

    __tablename__ = "notifications"

    type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
        comment="NotificationType value",
    )
    priority: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="low, medium, high or urgent",
    )
    recipient_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
        comment="User identifier of the recipient",
    )
    recipient_role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="student, parent, therapist or admin",
    )

    title_ar: Mapped[str] = mapped_column(String(500), nullable=False)
    title_en: Mapped[str] = mapped_column(String(500), nullable=False)
    body_ar: Mapped[str] = mapped_column(Text(), nullable=False)
    body_en: Mapped[str] = mapped_column(Text(), nullable=False)

    channels: Mapped[list[str]] = mapped_column(
        StringArray(),
        nullable=False,
        default=list,
        comment="Requested delivery channels",
    )
    data: Mapped[dict[str, Any]] = mapped_column(
        JSONB().with_variant(JSON(), "sqlite"),
        nullable=False,
        default=dict,
        comment="Template parameters the notification was rendered from",
    )

    scheduled_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
        comment="When the first channel reached sent",
    )
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True, index=True)

    is_read: Mapped[bool] = mapped_column(Boolean(), default=False, nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
        comment="Set when further sends must be prevented",
    )

    related_entity_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    related_entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    attempts: Mapped[list[DeliveryAttempt]] = relationship(
        "DeliveryAttempt",
        back_populates="notification",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="DeliveryAttempt.channel",
    )

    __table_args__ = (
        Index("idx_notifications_recipient_read", "recipient_id", "is_read"),
        Index("idx_notifications_related_entity", "related_entity_type", "related_entity_id"),
    )

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled_at is not None

    def is_expired(self, at: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= at

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, type={self.type}, recipient={self.recipient_id})>"


class DeliveryAttempt(TimestampedBase):
    """Channel-specific delivery state for a notification.

    Exactly one row per (notification, channel); retries update the row
    rather than adding new ones.
    """

    __tablename__ = "delivery_attempts"

    notification_id: Mapped[UUID] = mapped_column(
        ForeignKey("notifications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=DeliveryStatus.SCHEDULED.value,
        comment="scheduled, sent, delivered, failed or cancelled",
    )

    retry_count: Mapped[int] = mapped_column(Integer(), default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer(), default=3, nullable=False)
    next_attempt_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
        comment="Earliest time the next send may run",
    )
    last_attempted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    external_ref: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="Transport-assigned message id",
    )
    last_error: Mapped[str | None] = mapped_column(Text(), nullable=True)

    lease_owner: Mapped[str | None] = mapped_column(String(100), nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    notification: Mapped[Notification] = relationship("Notification", back_populates="attempts")

    __table_args__ = (
        UniqueConstraint("notification_id", "channel", name="uq_delivery_attempts_notification_channel"),
        Index("idx_delivery_attempts_status_next", "status", "next_attempt_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return DeliveryStatus(self.status).is_terminal

    def __repr__(self) -> str:
        return (
            f"<DeliveryAttempt(notification_id={self.notification_id}, channel={self.channel}, "
            f"status={self.status}, retry_count={self.retry_count})>"
        )


class NotificationPreference(TimestampedBase):
    """Per-user, per-type channel selection and quiet hours.

    Quiet hours are local ``HH:MM`` wall-clock times in ``timezone``; the
    window may wrap midnight (22:00-07:00).
    """

    __tablename__ = "notification_preferences"

    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    notification_type: Mapped[str] = mapped_column(String(50), nullable=False)
    channels: Mapped[list[str]] = mapped_column(
        StringArray(),
        nullable=False,
        default=list,
        comment="Channels the user accepts for this type",
    )
    enabled: Mapped[bool] = mapped_column(Boolean(), default=True, nullable=False)
    quiet_hours_start: Mapped[str | None] = mapped_column(String(5), nullable=True)
    quiet_hours_end: Mapped[str | None] = mapped_column(String(5), nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC", nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "notification_type", name="uq_notification_preferences_user_type"),
    )


class ReminderJob(TimestampedBase):
    """Entity-anchored trigger that produces notifications when due."""

    __tablename__ = "reminder_jobs"

    related_entity_type: Mapped[str] = mapped_column(String(50), nullable=False, default="session")
    related_entity_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    reminder_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    trigger_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancelled: Mapped[bool] = mapped_column(Boolean(), default=False, nullable=False)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    claimed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        Index("idx_reminder_jobs_due", "sent_at", "cancelled", "trigger_at"),
        # At most one pending job per (entity, kind)
        Index(
            "uq_reminder_jobs_pending_kind",
            "related_entity_id",
            "reminder_kind",
            unique=True,
            postgresql_where=text("sent_at IS NULL AND cancelled = false"),
            sqlite_where=text("sent_at IS NULL AND cancelled = 0"),
        ),
    )

    @property
    def is_pending(self) -> bool:
        return self.sent_at is None and not self.cancelled

    def __repr__(self) -> str:
        return (
            f"<ReminderJob(entity={self.related_entity_id}, kind={self.reminder_kind}, "
            f"trigger_at={self.trigger_at}, sent_at={self.sent_at}, cancelled={self.cancelled})>"
        )
