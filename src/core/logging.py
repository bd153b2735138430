"""Loguru configuration for the whole process.

``log_formatter_type`` picks one of two sinks:

- **console**: colorized lines with the request or delivery context inline,
  the most useful fields first (development default)
- **json**: one JSON object per line for log shippers (default elsewhere)

Records from standard library loggers (uvicorn, SQLAlchemy, httpx) are
forwarded to Loguru by ``InterceptHandler`` and formatted the same way.
Context comes from ``logger.contextualize()`` in the request middleware and
from keyword arguments on individual log calls.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final, cast

import orjson
from loguru import logger

from src.core.constants import REDACTED
from src.core.error_context import is_sensitive_field

if TYPE_CHECKING:
    from src.core.config import Settings

DEFAULT_LOG_FORMAT: Final = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "{message}"
)
CORRELATION_ID_DISPLAY_LENGTH: Final = 8
MAX_FIELD_VALUE_LENGTH: Final = 100

# Console order of the fields worth reading first
PRIORITY_FIELDS: Final = (
    "correlation_id",
    "request_id",
    "method",
    "path",
    "status_code",
    "duration_ms",
    "event_name",
    "subscription_id",
    "url",
    "attempt",
    "key",
)

_STATUS_COLORS: Final = {
    "2": "<green>{}</green>",
    "3": "<yellow>{}</yellow>",
    "4": "<red>{}</red>",
    "5": "<red><bold>{}</bold></red>",
}

_NOISY_STDLIB_LOGGERS: Final = ("httpx", "httpcore")


@dataclass
class _LoggingState:
    configured: bool = False


_state = _LoggingState()


def _escape(value: object) -> str:
    """Double the braces so Loguru does not treat values as format fields."""
    return str(value).replace("{", "{{").replace("}", "}}")


def _format_priority_field(field: str, value: object) -> str:
    text = str(value)
    if field == "status_code" and text[:1] in _STATUS_COLORS:
        return _STATUS_COLORS[text[:1]].format(text)
    if field == "correlation_id":
        text = text[:CORRELATION_ID_DISPLAY_LENGTH]
    elif field == "duration_ms":
        text = f"{text}ms"
    elif field == "attempt":
        text = f"#{text}"
    return _escape(text)


def _format_extra_field(key: str, value: object) -> str:
    """Render ``key=value``; sensitive keys are redacted, long values cut."""
    if is_sensitive_field(key):
        text = REDACTED
    else:
        text = str(value)
        if len(text) > MAX_FIELD_VALUE_LENGTH:
            text = text[: MAX_FIELD_VALUE_LENGTH - 3] + "..."
    return f"{_escape(key)}={_escape(text)}"


def format_console_with_context(record: dict[str, Any]) -> str:
    """Build the Loguru format string for one console record.

    Falls back to ``DEFAULT_LOG_FORMAT`` if the record is missing fields.
    """
    try:
        extra = record.get("extra", {})
        fields = [
            f"[<yellow>{_format_priority_field(name, extra[name])}</yellow>]"
            for name in PRIORITY_FIELDS
            if extra.get(name) is not None
        ]
        fields += [
            f"[<dim>{_format_extra_field(name, value)}</dim>]"
            for name, value in extra.items()
            if name not in PRIORITY_FIELDS
            and not name.startswith("_")
            and value is not None
        ]

        columns = [
            f"<green>{record['time'].strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]}</green>",
            f"<level>{record['level'].name: <8}</level>",
            f"<cyan>{record['name']}:{record['function']}:{record['line']}</cyan>",
        ]
        if fields:
            columns.append(" ".join(fields))
        columns.append(_escape(record.get("message", "")))
    except (AttributeError, TypeError, ValueError, KeyError):
        return DEFAULT_LOG_FORMAT + "\n"

    line = " | ".join(columns)
    if record.get("exception"):
        line += " | \n{exception}"
    return line + "\n"


def serialize_for_json(record: dict[str, Any]) -> str:
    """Render one record as a JSON line; private (``_``) extras are dropped."""
    entry: dict[str, Any] = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "logger": record["name"],
        "function": record["function"],
        "line": record["line"],
    }
    entry.update(
        (key, value)
        for key, value in record.get("extra", {}).items()
        if not key.startswith("_")
    )
    if exception := record.get("exception"):
        entry["exception"] = {
            "type": exception.type.__name__ if exception.type else None,
            "value": str(exception.value) if exception.value else None,
        }
    return orjson.dumps(entry, default=str).decode() + "\n"


def _add_console_sink(settings: Settings) -> None:
    logger.add(
        sys.stdout,
        format=cast("Any", format_console_with_context),
        level=settings.log_config.log_level,
        colorize=True,
        enqueue=True,
        backtrace=settings.debug,
        diagnose=settings.debug,
    )


def _add_json_sink(settings: Settings) -> None:
    def write(message: Any) -> None:  # noqa: ANN401 - loguru Message
        sys.stdout.write(serialize_for_json(message.record))
        sys.stdout.flush()

    logger.add(
        write,
        level=settings.log_config.log_level,
        enqueue=True,
        backtrace=False,
        diagnose=False,
    )


LOG_SINKS: dict[str, Callable[[Settings], None]] = {
    "console": _add_console_sink,
    "json": _add_json_sink,
}


# Every attribute a bare LogRecord has; anything else was passed via ``extra=``
_LOG_RECORD_ATTRIBUTES: Final = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime", "color_message", "scope"}


class InterceptHandler(logging.Handler):
    """Forward standard library records to Loguru, keeping the caller frame."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        extra = {
            key: value
            for key, value in vars(record).items()
            if key not in _LOG_RECORD_ATTRIBUTES and not key.startswith("_")
        }
        # uvicorn access records carry the ASGI scope rather than plain fields
        scope = getattr(record, "scope", None)
        if record.name == "uvicorn.access" and isinstance(scope, dict):
            extra.setdefault("method", scope.get("method", ""))
            extra.setdefault("path", scope.get("path", ""))

        logger.opt(depth=depth, exception=record.exc_info).bind(**extra).log(
            level, record.getMessage()
        )


def setup_logging(settings: Settings) -> None:
    """Install the configured sink and take over standard library logging.

    Only the first call has an effect.
    """
    if _state.configured:
        return

    formatter_type = settings.log_config.log_formatter_type or "console"
    logger.remove()
    LOG_SINKS[formatter_type](settings)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        stdlib_logger = logging.getLogger(name)
        stdlib_logger.handlers = [InterceptHandler()]
        stdlib_logger.propagate = False
    # One INFO line per outbound request; the dispatcher already logs attempts
    for name in _NOISY_STDLIB_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _state.configured = True
    logger.info(
        "Logging configured with {} formatter",
        formatter_type,
        log_level=settings.log_config.log_level,
    )
