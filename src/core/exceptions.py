"""Application error hierarchy.

Every error carries a machine-readable ``error_code``, a ``Severity`` that
picks the log level, optional structured ``context`` and a ``fingerprint``
grouping errors raised from the same place.

Who sees what:
- ``DatabaseConnectionError`` and ``TransactionError`` reach the caller of the
  failing operation, which may simply issue the operation again.
- ``ValidationError`` and ``NotFoundError`` are raised before anything is
  written and become 400 / 404 responses.
- ``DeliveryError`` stays inside the webhook dispatcher.
"""

import hashlib
import traceback
from enum import Enum
from typing import Any, ClassVar

FINGERPRINT_FRAMES = 5
FINGERPRINT_LENGTH = 16


class ErrorCode(Enum):
    """Error identifiers returned to API clients."""

    INTERNAL_ERROR = "INTERNAL_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    TRANSACTION_ERROR = "TRANSACTION_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    DELIVERY_ERROR = "DELIVERY_ERROR"


class Severity(Enum):
    """How bad an error is; LOW and MEDIUM are part of normal operation."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class TaskTrackerError(Exception):
    """Base class for all application errors.

    Args:
        error_code: An ``ErrorCode`` or a free-form code string.
        message: Human-readable description.
        severity: Defaults to MEDIUM.
        context: Structured details for logs and error responses.
        cause: The exception being wrapped; also set as ``__cause__``.
    """

    def __init__(
        self,
        error_code: str | ErrorCode,
        message: str,
        severity: Severity = Severity.MEDIUM,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = (
            error_code.value if isinstance(error_code, ErrorCode) else error_code
        )
        self.message = message
        self.severity = severity
        self.context = context or {}
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

        frames = traceback.extract_stack()[:-1]
        self.stack_trace = traceback.format_list(frames)
        self.fingerprint = self._fingerprint(frames)

    def _fingerprint(self, frames: traceback.StackSummary) -> str:
        """Hash the error class, its code and the innermost application frames."""
        own_frames = [
            f"{frame.filename}:{frame.lineno}"
            for frame in frames[-FINGERPRINT_FRAMES:]
            if "/src/" in frame.filename and "site-packages" not in frame.filename
        ]
        material = ":".join([type(self).__name__, self.error_code, *own_frames])
        return hashlib.sha256(material.encode()).hexdigest()[:FINGERPRINT_LENGTH]

    @property
    def is_expected(self) -> bool:
        return self.severity in (Severity.LOW, Severity.MEDIUM)

    @property
    def should_alert(self) -> bool:
        return self.severity in (Severity.HIGH, Severity.CRITICAL)

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        extra = f", context={self.context}" if self.context else ""
        return (
            f"{type(self).__name__}(error_code='{self.error_code}', "
            f"message='{self.message}', severity={self.severity.value}{extra})"
        )


class _CodedError(TaskTrackerError):
    """An error whose code and severity are fixed by its class."""

    default_code: ClassVar[ErrorCode]
    default_severity: ClassVar[Severity]

    def __init__(
        self,
        message: str,
        error_code: str | ErrorCode | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            error_code or self.default_code,
            message,
            self.default_severity,
            context,
            cause,
        )


class DatabaseConnectionError(_CodedError):
    """The persistence connection could not be opened, used or closed.

    The connection manager does not retry by itself; the next
    ``get_connection()`` call starts a fresh attempt.
    """

    default_code = ErrorCode.CONNECTION_ERROR
    default_severity = Severity.HIGH


class TransactionError(_CodedError):
    """Beginning, committing or rolling back a transaction failed."""

    default_code = ErrorCode.TRANSACTION_ERROR
    default_severity = Severity.HIGH


class ValidationError(_CodedError):
    default_code = ErrorCode.VALIDATION_ERROR
    default_severity = Severity.LOW


class NotFoundError(_CodedError):
    default_code = ErrorCode.NOT_FOUND
    default_severity = Severity.LOW


class DeliveryError(TaskTrackerError):
    """One webhook delivery attempt failed.

    Args:
        message: What went wrong.
        retryable: True for transport errors and 5xx answers.
        status_code: The subscriber's HTTP status, when it answered at all.
        context: Structured details for logs.
        cause: The underlying transport exception, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        retryable: bool,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        self.retryable = retryable
        self.status_code = status_code
        super().__init__(
            ErrorCode.DELIVERY_ERROR, message, Severity.MEDIUM, context, cause
        )
