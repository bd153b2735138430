"""Unit tests for the exception hierarchy in src/core/exceptions.py."""

import pytest

from src.core.exceptions import (
    DatabaseConnectionError,
    DeliveryError,
    ErrorCode,
    NotFoundError,
    Severity,
    TaskTrackerError,
    TransactionError,
    ValidationError,
)


@pytest.mark.unit
class TestTaskTrackerError:
    """Behaviour shared by all application errors."""

    def test_accepts_enum_or_string_code(self) -> None:
        """Error codes are stored as strings."""
        from_enum = TaskTrackerError(ErrorCode.INTERNAL_ERROR, "boom")
        from_string = TaskTrackerError("CUSTOM", "boom")

        assert from_enum.error_code == "INTERNAL_ERROR"
        assert from_string.error_code == "CUSTOM"

    def test_str_and_repr(self) -> None:
        """String forms include the code, message and context."""
        error = TaskTrackerError(
            ErrorCode.INTERNAL_ERROR, "boom", context={"key": "value"}
        )

        assert str(error) == "[INTERNAL_ERROR] boom"
        assert "context={'key': 'value'}" in repr(error)
        assert "severity=MEDIUM" in repr(error)

    def test_cause_is_chained(self) -> None:
        """The cause becomes ``__cause__``."""
        cause = OSError("network down")

        error = TaskTrackerError(ErrorCode.INTERNAL_ERROR, "wrapped", cause=cause)

        assert error.cause is cause
        assert error.__cause__ is cause

    def test_fingerprint_is_stable_for_same_site(self) -> None:
        """Errors raised from the same place share a fingerprint."""

        def make() -> TaskTrackerError:
            return TaskTrackerError(ErrorCode.INTERNAL_ERROR, "boom")

        assert make().fingerprint == make().fingerprint
        assert len(make().fingerprint) == 16

    def test_fingerprint_differs_by_code(self) -> None:
        """Different error codes produce different fingerprints."""
        first = TaskTrackerError("A", "same")
        second = TaskTrackerError("B", "same")

        assert first.fingerprint != second.fingerprint


@pytest.mark.unit
class TestSpecializedErrors:
    """Codes and severities of the concrete error classes."""

    @pytest.mark.parametrize(
        ("error", "code", "severity"),
        [
            (
                DatabaseConnectionError("down"),
                ErrorCode.CONNECTION_ERROR,
                Severity.HIGH,
            ),
            (TransactionError("failed"), ErrorCode.TRANSACTION_ERROR, Severity.HIGH),
            (ValidationError("bad"), ErrorCode.VALIDATION_ERROR, Severity.LOW),
            (NotFoundError("missing"), ErrorCode.NOT_FOUND, Severity.LOW),
            (
                DeliveryError("failed", retryable=True),
                ErrorCode.DELIVERY_ERROR,
                Severity.MEDIUM,
            ),
        ],
    )
    def test_code_and_severity(
        self, error: TaskTrackerError, code: ErrorCode, severity: Severity
    ) -> None:
        """Each error class carries its code and severity."""
        assert error.error_code == code.value
        assert error.severity is severity
        assert isinstance(error, TaskTrackerError)

    def test_connection_error_does_not_shadow_builtin(self) -> None:
        """The persistence connection error is not the builtin ConnectionError."""
        assert not issubclass(DatabaseConnectionError, ConnectionError)

    def test_alerting_flags(self) -> None:
        """HIGH severity errors alert; LOW severity errors are expected."""
        assert TransactionError("failed").should_alert
        assert not TransactionError("failed").is_expected
        assert NotFoundError("missing").is_expected
        assert not NotFoundError("missing").should_alert

    def test_delivery_error_attributes(self) -> None:
        """DeliveryError records retryability and the status code."""
        error = DeliveryError("rejected", retryable=False, status_code=404)

        assert error.retryable is False
        assert error.status_code == 404
        assert error.message == "rejected"
