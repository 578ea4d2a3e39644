"""Exception hierarchy for the notification engine.

Caller-facing errors follow RFC 7807 Problem Details through ``AppException``
and are rendered by the FastAPI exception handler. Delivery errors are raised
by channel senders and never leave the dispatcher; they derive from
``DeliveryError`` instead.
"""

from __future__ import annotations

from typing import Any


class AppException(Exception):
    """Base application exception.

    Attributes:
        status_code: HTTP status code for the error.
        detail: Human-readable error message.
        type: Error type identifier (RFC 7807 ``type``).
        title: Short, human-readable summary of the problem type.
        instance: URI reference identifying this occurrence.
        extra: Additional context-specific information.
    """

    def __init__(
        self,
        status_code: int,
        detail: str,
        type: str = "about:blank",
        title: str | None = None,
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.status_code = status_code
        self.detail = detail
        self.type = type
        self.title = title or self._default_title(status_code)
        self.instance = instance
        self.extra = extra or {}
        super().__init__(detail)

    @staticmethod
    def _default_title(status_code: int) -> str:
        titles = {
            400: "Bad Request",
            404: "Not Found",
            409: "Conflict",
            422: "Unprocessable Entity",
            500: "Internal Server Error",
            503: "Service Unavailable",
        }
        return titles.get(status_code, "Error")


class NotFoundException(AppException):
    """A requested resource does not exist."""

    def __init__(
        self,
        detail: str,
        type: str = "not-found",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=404,
            detail=detail,
            type=type,
            title="Not Found",
            instance=instance,
            extra=extra,
        )


class ValidationException(AppException):
    """Caller input failed validation."""

    def __init__(
        self,
        detail: str,
        type: str = "validation-error",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=422,
            detail=detail,
            type=type,
            title="Validation Error",
            instance=instance,
            extra=extra,
        )


class ConflictException(AppException):
    """Request conflicts with current resource state."""

    def __init__(
        self,
        detail: str,
        type: str = "conflict",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=409,
            detail=detail,
            type=type,
            title="Conflict",
            instance=instance,
            extra=extra,
        )


# ============================================================================
# Construction-time errors (returned synchronously to the caller)
# ============================================================================


class TemplateValidationError(ValidationException):
    """Parameters do not satisfy the template's required fields.

    Example:
            raise TemplateValidationError("session_reminder", "therapist_name")
    """

    def __init__(self, notification_type: str, field: str, reason: str = "missing") -> None:
        self.notification_type = notification_type
        self.field = field
        super().__init__(
            detail=f"Template '{notification_type}' requires field '{field}' ({reason})",
            type="template-validation-error",
            extra={"notification_type": notification_type, "field": field},
        )


class EntityNotFoundError(NotFoundException):
    """A referenced entity (notification, session) does not exist."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            detail=f"{entity_type} '{entity_id}' not found",
            type="entity-not-found",
            extra={"entity_type": entity_type, "entity_id": str(entity_id)},
        )


class SchedulingConflictError(ConflictException):
    """An un-sent reminder job already exists for the same entity and kind.

    Resolved internally by the reschedule protocol; only surfaces when a
    caller bypasses the scheduler.
    """

    def __init__(self, entity_id: str, reminder_kind: str) -> None:
        self.entity_id = entity_id
        self.reminder_kind = reminder_kind
        super().__init__(
            detail=f"Pending '{reminder_kind}' reminder already exists for '{entity_id}'",
            type="scheduling-conflict",
            extra={"entity_id": entity_id, "reminder_kind": reminder_kind},
        )


class PreferenceResolutionError(Exception):
    """Stored preference data is malformed.

    Logged by the service layer, which then falls back to defaults.
    """

    def __init__(self, user_id: str, notification_type: str, reason: str) -> None:
        self.user_id = user_id
        self.notification_type = notification_type
        self.reason = reason
        super().__init__(
            f"Invalid preference for user '{user_id}' type '{notification_type}': {reason}"
        )


# ============================================================================
# Delivery-time errors (recorded on the attempt, never raised to callers)
# ============================================================================


class DeliveryError(Exception):
    """Base class for channel sender failures."""

    retryable: bool = False

    def __init__(self, message: str, *, channel: str | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.channel = channel
        self.code = code


class TransientDeliveryError(DeliveryError):
    """Temporary failure (timeout, 5xx, throttling). Retried with backoff."""

    retryable = True


class PermanentDeliveryError(DeliveryError):
    """Unrecoverable failure (invalid address, rejected payload). Never retried."""

    retryable = False
