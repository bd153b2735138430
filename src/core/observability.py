"""OpenTelemetry tracing.

``observability_config.exporter_type`` selects where finished spans go:
``console`` logs them through Loguru at DEBUG, ``otlp`` ships them to a
collector over gRPC, ``none`` records spans without exporting them.

Domain code opens spans with ``trace_operation``. Key allocation, registry
calls and every webhook delivery attempt are traced, and each span carries
the correlation ID of the request that caused it.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Final

from loguru import logger
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

from src.core.context import RequestContext

if TYPE_CHECKING:
    from collections.abc import Generator, Sequence

    from fastapi import FastAPI

    from src.core.config import Settings

TRACER_NAME: Final = "task-tracker"
CORRELATION_ID_ATTRIBUTE: Final = "correlation_id"
DEFAULT_OTLP_ENDPOINT: Final = "http://localhost:4317"
UNTRACED_PATHS: Final = "/health,/docs,/redoc,/openapi.json"
NANOSECONDS_PER_MILLISECOND: Final = 1_000_000

# Instrumentation internals; logging them drowns out the useful spans
_SKIPPED_SPAN_NAMES: Final = frozenset(
    {"connect", "http send", "http receive", "cursor.execute"}
)


class LoguruSpanExporter(SpanExporter):
    """Writes one DEBUG log line per finished span."""

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        for span in spans:
            context = span.get_span_context()
            if context is None or span.name in _SKIPPED_SPAN_NAMES:
                continue

            duration_ms = None
            if span.start_time and span.end_time:
                duration_ms = (
                    span.end_time - span.start_time
                ) // NANOSECONDS_PER_MILLISECOND

            logger.debug(
                "Span {} finished",
                span.name,
                trace_id=trace.format_trace_id(context.trace_id),
                span_id=trace.format_span_id(context.span_id),
                correlation_id=(span.attributes or {}).get(CORRELATION_ID_ATTRIBUTE),
                duration_ms=duration_ms,
                status=span.status.status_code.name,
            )
        return SpanExportResult.SUCCESS


def get_span_exporter(settings: Settings) -> SpanExporter | None:
    """Return the configured exporter, or None when spans are not exported."""
    config = settings.observability_config
    match config.exporter_type:
        case "console":
            return LoguruSpanExporter()
        case "otlp":
            return OTLPSpanExporter(
                endpoint=config.exporter_endpoint or DEFAULT_OTLP_ENDPOINT,
                insecure=settings.environment == "development",
            )
        case _:
            return None


def setup_tracing(settings: Settings) -> None:
    """Install the global tracer provider if tracing is enabled."""
    config = settings.observability_config
    if not config.enable_tracing:
        logger.info("Tracing disabled")
        return

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.app_name,
                "service.version": settings.app_version,
                "deployment.environment": settings.environment,
            }
        ),
        sampler=TraceIdRatioBased(config.trace_sample_rate),
    )
    exporter = get_span_exporter(settings)
    if exporter is not None:
        provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    logger.info(
        "Tracing enabled with {} exporter",
        config.exporter_type,
        sample_rate=config.trace_sample_rate,
        exporter_endpoint=config.exporter_endpoint,
    )


def add_correlation_id_to_span(span: trace.Span, scope: dict[str, Any]) -> None:
    """FastAPI server request hook; ``scope`` is unused."""
    _ = scope
    correlation_id = RequestContext.get_correlation_id()
    if correlation_id and span.is_recording():
        span.set_attribute(CORRELATION_ID_ATTRIBUTE, correlation_id)


def instrument_app(app: FastAPI, settings: Settings) -> None:
    """Trace incoming requests and SQL statements when tracing is enabled."""
    if not settings.observability_config.enable_tracing:
        return

    FastAPIInstrumentor.instrument_app(
        app,
        excluded_urls=UNTRACED_PATHS,
        server_request_hook=add_correlation_id_to_span,
    )
    SQLAlchemyInstrumentor().instrument()


@contextmanager
def trace_operation(
    name: str, **attributes: str | int | float | bool
) -> Generator[trace.Span]:
    """Run the block in a child span of whatever span is current.

    An exception leaving the block is recorded on the span and re-raised.

    Example:
        >>> with trace_operation("keys.allocate", prefix="PROJ"):
        ...     key = await allocator.allocate("PROJ")
    """
    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(name, attributes=attributes) as span:
        add_correlation_id_to_span(span, {})
        yield span
