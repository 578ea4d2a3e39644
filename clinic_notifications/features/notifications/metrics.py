"""Prometheus metrics for notification delivery and reminder scheduling.

Usage:
    from clinic_notifications.features.notifications.metrics import (
        notification_created_total,
        delivery_outcome_total,
    )

    notification_created_total.labels(notification_type="session_reminder", priority="medium").inc()
    delivery_outcome_total.labels(channel="sms", status="delivered").inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# =============================================================================
# Notification lifecycle
# =============================================================================

notification_created_total = Counter(
    "clinic_notification_created_total",
    "Total number of notifications created",
    labelnames=["notification_type", "priority"],
)

notification_read_total = Counter(
    "clinic_notification_read_total",
    "Total number of notifications marked as read",
    labelnames=["notification_type"],
)

notification_deleted_total = Counter(
    "clinic_notification_deleted_total",
    "Total number of notifications deleted by their recipient",
    labelnames=["notification_type"],
)

notification_suppressed_total = Counter(
    "clinic_notification_suppressed_total",
    "Notifications whose preferences left no channel to deliver on",
    labelnames=["notification_type"],
)

# =============================================================================
# Delivery
# =============================================================================

delivery_outcome_total = Counter(
    "clinic_notification_delivery_total",
    "Delivery attempt transitions by channel and resulting status",
    labelnames=["channel", "status"],
)
"""
Labels:
    channel: in_app, sms, push, email, whatsapp
    status: sent, delivered, failed, cancelled
"""

delivery_duration_seconds = Histogram(
    "clinic_notification_delivery_duration_seconds",
    "Time spent inside a channel sender",
    labelnames=["channel"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

delivery_retry_total = Counter(
    "clinic_notification_delivery_retry_total",
    "Transient failures requeued for another attempt",
    labelnames=["channel"],
)

delivery_retry_exhausted_total = Counter(
    "clinic_notification_delivery_retry_exhausted_total",
    "Attempts that failed after using every retry",
    labelnames=["channel"],
)

# =============================================================================
# Analytics rollups (mirrored from the AnalyticsAggregator)
# =============================================================================

analytics_outcome_total = Counter(
    "clinic_notification_outcome_total",
    "Delivery outcomes by notification type and channel",
    labelnames=["notification_type", "channel", "outcome"],
)

# =============================================================================
# Scheduling
# =============================================================================

reminder_jobs_fired_total = Counter(
    "clinic_reminder_jobs_fired_total",
    "Reminder jobs that produced notifications",
    labelnames=["reminder_kind"],
)

reminder_jobs_cancelled_total = Counter(
    "clinic_reminder_jobs_cancelled_total",
    "Reminder jobs cancelled at fire time because their session was gone",
    labelnames=["reminder_kind"],
)
