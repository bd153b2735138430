"""Error body returned by every endpoint on failure."""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

NOT_FOUND_EXAMPLE = {
    "error_code": "NOT_FOUND",
    "message": "Webhook subscription 42 not found",
    "details": {"subscription_id": 42},
    "correlation_id": "550e8400-e29b-41d4-a716-446655440000",
    "request_id": "req-660e8400-e29b-41d4-a716-446655440000",
    "timestamp": "2026-01-14T12:00:00+00:00",
    "severity": "LOW",
    "service_info": {
        "name": "TaskTracker",
        "version": "0.1.0",
        "environment": "production",
    },
}


class ServiceInfo(BaseModel):
    """The service instance that produced the error."""

    name: str
    version: str
    environment: str = Field(examples=["development", "staging", "production"])


class ErrorResponse(BaseModel):
    """Failure body: a stable ``error_code`` plus context for debugging.

    ``debug_info`` is only filled in development.
    """

    model_config = ConfigDict(json_schema_extra={"examples": [NOT_FOUND_EXAMPLE]})

    error_code: str = Field(
        description="Machine-readable error identifier",
        examples=["VALIDATION_ERROR", "NOT_FOUND", "CONNECTION_ERROR"],
    )
    message: str
    details: dict[str, Any] | None = Field(
        default=None,
        description="Redacted error context, or field errors for 422 responses",
    )
    correlation_id: str | None = None
    request_id: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    severity: str | None = Field(default=None, examples=["LOW", "HIGH"])
    service_info: ServiceInfo | None = None
    debug_info: dict[str, Any] | None = None
