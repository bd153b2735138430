"""Exception handlers that render every failure as an ``ErrorResponse``.

Application errors map to HTTP status codes by type; anything not listed in
``STATUS_BY_ERROR_TYPE`` (e.g. ``TransactionError``) is a 500.
"""

import traceback
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import Response
from loguru import logger
from starlette.exceptions import HTTPException

from src.api.schemas.errors import ErrorResponse, ServiceInfo
from src.api.utils.responses import ORJSONResponse
from src.core.config import get_settings
from src.core.context import RequestContext, generate_request_id
from src.core.error_context import sanitize_dict, sanitize_error_context
from src.core.exceptions import (
    DatabaseConnectionError,
    ErrorCode,
    NotFoundError,
    Severity,
    TaskTrackerError,
    ValidationError,
)

# First matching type wins
STATUS_BY_ERROR_TYPE: tuple[tuple[type[TaskTrackerError], int], ...] = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (DatabaseConnectionError, status.HTTP_503_SERVICE_UNAVAILABLE),
)

GENERIC_ERROR_MESSAGE = "An internal server error occurred"


def status_code_for(exc: TaskTrackerError) -> int:
    """Return the HTTP status an application error is reported with."""
    return next(
        (
            code
            for error_type, code in STATUS_BY_ERROR_TYPE
            if isinstance(exc, error_type)
        ),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def _request_fields(request: Request) -> dict[str, str]:
    return {"request_method": request.method, "request_path": request.url.path}


def _respond(
    status_code: int,
    error_code: ErrorCode | str,
    message: str,
    severity: Severity,
    *,
    details: dict[str, Any] | None = None,
    debug_info: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> Response:
    settings = get_settings()
    body = ErrorResponse(
        error_code=getattr(error_code, "value", error_code),
        message=message,
        details=details,
        correlation_id=RequestContext.get_correlation_id(),
        request_id=generate_request_id(),
        severity=severity.value,
        service_info=ServiceInfo(
            name=settings.app_name,
            version=settings.app_version,
            environment=settings.environment,
        ),
        debug_info=debug_info,
    )
    return ORJSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json"),
        headers=headers,
    )


async def task_tracker_error_handler(request: Request, exc: Exception) -> Response:
    """Render an application error.

    Expected errors (LOW/MEDIUM severity) log at WARNING, the rest at ERROR.
    In development the body also carries the stack trace and the cause.

    Raises:
        TypeError: If ``exc`` is not a ``TaskTrackerError``.
    """
    if not isinstance(exc, TaskTrackerError):
        raise TypeError(f"Expected TaskTrackerError, got {type(exc).__name__}")

    status_code = status_code_for(exc)
    logger.log(
        "WARNING" if exc.is_expected else "ERROR",
        "{} answered with {}: {}",
        type(exc).__name__,
        status_code,
        exc.message,
        status_code=status_code,
        fingerprint=exc.fingerprint,
        **sanitize_error_context(exc, _request_fields(request)),
    )

    details = sanitize_dict(exc.context) if exc.context else None
    debug_info = None
    if get_settings().environment == "development":
        debug_info = {
            "exception_type": type(exc).__name__,
            "stack_trace": exc.stack_trace,
            "error_context": details or {},
        }
        if exc.cause is not None:
            debug_info["cause"] = {
                "type": type(exc.cause).__name__,
                "message": str(exc.cause),
            }

    return _respond(
        status_code,
        exc.error_code,
        exc.message,
        exc.severity,
        details=details,
        debug_info=debug_info,
    )


async def validation_error_handler(request: Request, exc: Exception) -> Response:
    """Render request body/path validation failures as 422, grouped by field.

    Raises:
        TypeError: If ``exc`` is not a ``RequestValidationError``.
    """
    if not isinstance(exc, RequestValidationError):
        raise TypeError(f"Expected RequestValidationError, got {type(exc).__name__}")

    # ("body", "events", 0) -> "events.0"
    field_errors: dict[str, list[str]] = {}
    for error in exc.errors():
        location = error.get("loc", ())[1:]
        field = ".".join(str(part) for part in location) or "root"
        field_errors.setdefault(field, []).append(error.get("msg", "Invalid value"))

    logger.warning(
        "Request validation failed",
        validation_errors=field_errors,
        **_request_fields(request),
    )
    return _respond(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        ErrorCode.VALIDATION_ERROR,
        "Request validation failed",
        Severity.LOW,
        details={"validation_errors": field_errors},
    )


async def http_exception_handler(request: Request, exc: Exception) -> Response:
    """Render Starlette HTTP errors such as unknown routes.

    Raises:
        TypeError: If ``exc`` is not an ``HTTPException``.
    """
    if not isinstance(exc, HTTPException):
        raise TypeError(f"Expected HTTPException, got {type(exc).__name__}")

    if exc.status_code == status.HTTP_404_NOT_FOUND:
        error_code, severity = ErrorCode.NOT_FOUND, Severity.LOW
    elif exc.status_code < status.HTTP_500_INTERNAL_SERVER_ERROR:
        error_code, severity = ErrorCode.VALIDATION_ERROR, Severity.LOW
    else:
        error_code, severity = ErrorCode.INTERNAL_ERROR, Severity.HIGH

    logger.warning(
        "HTTP {}: {}",
        exc.status_code,
        exc.detail,
        status_code=exc.status_code,
        **_request_fields(request),
    )
    return _respond(
        exc.status_code,
        error_code,
        str(exc.detail),
        severity,
        headers=exc.headers,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> Response:
    """Render any unhandled exception as a 500; production hides the details."""
    logger.opt(exception=exc).error(
        "Unhandled {}",
        type(exc).__name__,
        **sanitize_error_context(exc, _request_fields(request)),
    )

    if get_settings().environment == "production":
        return _respond(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            ErrorCode.INTERNAL_ERROR,
            GENERIC_ERROR_MESSAGE,
            Severity.CRITICAL,
        )
    return _respond(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        ErrorCode.INTERNAL_ERROR,
        f"Internal server error: {type(exc).__name__}",
        Severity.CRITICAL,
        details={"error": str(exc), "type": type(exc).__name__},
        debug_info={
            "exception_type": type(exc).__name__,
            "stack_trace": traceback.format_tb(exc.__traceback__),
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TaskTrackerError, task_tracker_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
    logger.debug("Exception handlers registered")
