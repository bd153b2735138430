"""Redaction of secrets before data reaches a log sink or an error body.

A key is sensitive when it matches ``SENSITIVE_KEY_PATTERN`` or contains one
of the names in ``LogConfig.sensitive_fields``. Webhook secrets and the
``X-Webhook-Signature`` header are both caught. Every function here returns a
new structure; inputs are left untouched.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Any, Final

from src.core.config import get_settings
from src.core.constants import REDACTED

SENSITIVE_KEY_PATTERN: Final = re.compile(
    r"secret|signature|passw(or)?d|pwd|token|api[_-]?key|auth|credential"
    r"|private[_-]?key|session|connection[_-]?string",
    re.IGNORECASE,
)

SENSITIVE_HEADERS: Final = frozenset(
    {
        "authorization",
        "proxy-authorization",
        "cookie",
        "set-cookie",
        "x-api-key",
        "x-webhook-signature",
    }
)

# Nesting deeper than this is replaced wholesale
MAX_DEPTH: Final = 10

# Exception attributes that are never copied into error context
_SKIPPED_ERROR_ATTRIBUTES: Final = frozenset({"stack_trace", "cause"})


@lru_cache(maxsize=1)
def _get_sensitive_fields() -> tuple[str, ...]:
    return tuple(name.lower() for name in get_settings().log_config.sensitive_fields)


def is_sensitive_field(field_name: str) -> bool:
    """Return True if values stored under ``field_name`` must be redacted."""
    if SENSITIVE_KEY_PATTERN.search(field_name):
        return True
    lowered = field_name.lower()
    return any(name in lowered for name in _get_sensitive_fields())


def sanitize_value(value: Any, field_name: str = "", depth: int = 0) -> Any:
    """Redact ``value`` if its key is sensitive, recursing into containers.

    Args:
        value: Any JSON-like value.
        field_name: The key ``value`` was stored under, if any.
        depth: Current nesting level; past ``MAX_DEPTH`` the value is dropped.

    Returns:
        Any: A redacted copy of ``value``.
    """
    if depth > MAX_DEPTH or (field_name and is_sensitive_field(field_name)):
        return REDACTED
    if isinstance(value, dict):
        return {k: sanitize_value(item, k, depth + 1) for k, item in value.items()}
    if isinstance(value, list | tuple):
        items = [sanitize_value(item, "", depth + 1) for item in value]
        return items if isinstance(value, list) else tuple(items)
    return value


def sanitize_dict(data: dict[str, Any]) -> dict[str, Any]:
    return {key: sanitize_value(value, key) for key, value in data.items()}


def sanitize_headers(headers: dict[str, str]) -> dict[str, str]:
    """Redact credential and signature headers, matching names case-insensitively."""
    return {
        name: REDACTED if name.lower() in SENSITIVE_HEADERS else value
        for name, value in headers.items()
    }


def sanitize_error_context(
    error: Exception, context: dict[str, Any] | None = None
) -> dict[str, Any]:
    """Build a loggable description of ``error``.

    Public attributes of the exception are included under
    ``error_attributes``; ``context`` entries are merged at the top level.
    Both are redacted.
    """
    described: dict[str, Any] = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        **sanitize_dict(context or {}),
    }

    attributes = {
        name: value
        for name, value in vars(error).items()
        if not name.startswith("_") and name not in _SKIPPED_ERROR_ATTRIBUTES
    }
    if attributes:
        described["error_attributes"] = sanitize_dict(attributes)
    return described
