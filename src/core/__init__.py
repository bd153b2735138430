"""Cross-cutting building blocks shared by every layer.

- **config**: settings from environment variables and ``.env``
- **context**: correlation, request and delivery identifiers
- **exceptions**: the ``TaskTrackerError`` hierarchy and error codes
- **error_context**: redaction of sensitive values before logging
- **logging**: Loguru setup and stdlib interception
- **observability**: OpenTelemetry tracing helpers
- **types**: shared type aliases
"""
