"""Per-request state carried across ``await`` points, plus id generators.

The correlation ID lives in a ``ContextVar``. ``asyncio`` copies the current
context into every task it creates, so webhook deliveries fanned out while
serving a request see that request's correlation ID without passing it along.
"""

import uuid
from contextvars import ContextVar

REQUEST_ID_PREFIX = "req"
DELIVERY_ID_PREFIX = "dlv"

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


class RequestContext:
    """Static accessors for the correlation ID of the running request."""

    @staticmethod
    def set_correlation_id(correlation_id: str) -> None:
        _correlation_id.set(correlation_id)

    @staticmethod
    def get_correlation_id() -> str | None:
        """Return the correlation ID, or None outside of a request."""
        return _correlation_id.get()

    @staticmethod
    def clear() -> None:
        _correlation_id.set(None)


def _prefixed_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4()}"


def generate_correlation_id() -> str:
    """Return a bare UUID4 used when the caller sent no correlation ID."""
    return str(uuid.uuid4())


def generate_request_id() -> str:
    """Return an id for one HTTP request, e.g. ``req-<uuid4>``."""
    return _prefixed_id(REQUEST_ID_PREFIX)


def generate_delivery_id() -> str:
    """Return the id shared by every attempt of one webhook delivery.

    Delivery is at-least-once, so subscribers deduplicate on this value.

    Examples:
        >>> generate_delivery_id().startswith("dlv-")
        True
    """
    return _prefixed_id(DELIVERY_ID_PREFIX)
