"""RFC 7807 Problem Details bodies for error responses."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ProblemDetails(BaseModel):
    """RFC 7807 Problem Details.

    Example:
        {
            "type": "template-validation-error",
            "title": "Validation Error",
            "status": 422,
            "detail": "Template 'session_reminder' requires field 'time' (missing)",
            "instance": "http://testserver/api/v1/notifications",
            "notification_type": "session_reminder",
            "field": "time"
        }

    Exception-specific context is merged into the top level of the body.
    """

    type: str = Field(default="about:blank", min_length=1, max_length=200)
    title: str = Field(min_length=1, max_length=200)
    status: int = Field(ge=100, le=599)
    detail: str | None = Field(default=None, max_length=2000)
    instance: str | None = Field(default=None, max_length=500)

    model_config = ConfigDict(str_strip_whitespace=True)


class FieldError(BaseModel):
    """One failed field of a request body, path or query."""

    field: str
    message: str
    type: str
    value: Any = None


class ValidationProblemDetails(ProblemDetails):
    errors: list[FieldError] = Field(default_factory=list)
