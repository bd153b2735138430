"""FastAPI middleware for cross-cutting request/response concerns.

- **RequestContextMiddleware**: correlation IDs in context, logs and headers
- **RequestLoggingMiddleware**: request logging with timing
- **error_handler**: exception handlers producing ``ErrorResponse`` bodies

Request context runs outermost so the request log already carries the
correlation ID.
"""
