"""RFC 7807 Problem Details schema for error responses."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ProblemDetails(BaseModel):
    """RFC 7807 Problem Details for HTTP APIs.

    See: https://datatracker.ietf.org/doc/html/rfc7807

    Fields beyond the standard five (request_id, errors, context-specific
    extras) are allowed and serialized at the top level.
    """

    type: str = Field(
        default="about:blank",
        min_length=1,
        max_length=200,
        description="URI reference identifying the problem type",
    )
    title: str = Field(
        min_length=1, max_length=200, description="Short, human-readable summary of the problem"
    )
    status: int = Field(ge=100, le=599, description="HTTP status code")
    detail: str | None = Field(
        default=None,
        max_length=2000,
        description="Human-readable explanation specific to this occurrence",
    )
    instance: str | None = Field(
        default=None,
        max_length=500,
        description="URI reference identifying the specific occurrence",
    )
    request_id: str | None = Field(default=None, description="Correlation id of the failed request")
    errors: list[dict[str, Any]] | None = Field(
        default=None,
        description="Field-level validation errors",
    )

    model_config = ConfigDict(
        extra="allow",
        json_schema_extra={
            "example": {
                "type": "unknown-notification-type",
                "title": "Validation Error",
                "status": 422,
                "detail": "Unknown notification type: task.archived",
                "instance": "/api/v1/notifications/dispatch",
            }
        },
        str_strip_whitespace=True,
    )
