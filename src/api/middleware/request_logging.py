"""One log line per request, with duration and an ``X-Request-ID``.

Paths in ``LogConfig.excluded_paths`` (``/health`` by default) pass through
silently. Requests slower than ``slow_request_threshold_ms`` log at WARNING.
"""

import time

from fastapi import Request, Response
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from src.api.constants import REQUEST_ID_HEADER
from src.core.config import LogConfig
from src.core.constants import MILLISECONDS_PER_SECOND
from src.core.context import generate_request_id


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * MILLISECONDS_PER_SECOND, 2)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, *, log_config: LogConfig) -> None:
        super().__init__(app)
        self.excluded_paths = frozenset(log_config.excluded_paths)
        self.slow_threshold_ms = log_config.slow_request_threshold_ms

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        """Time the request; everything logged meanwhile carries its request ID."""
        if request.url.path in self.excluded_paths:
            return await call_next(request)

        request_id = request.headers.get(REQUEST_ID_HEADER) or generate_request_id()
        with logger.contextualize(
            request_id=request_id, method=request.method, path=request.url.path
        ):
            started = time.perf_counter()
            try:
                response = await call_next(request)
            except Exception as exc:
                logger.error(
                    "{} {} raised {}",
                    request.method,
                    request.url.path,
                    type(exc).__name__,
                    duration_ms=_elapsed_ms(started),
                )
                raise

            duration_ms = _elapsed_ms(started)
            slow = duration_ms > self.slow_threshold_ms
            logger.log(
                "WARNING" if slow else "INFO",
                "{} {} -> {}{}",
                request.method,
                request.url.path,
                response.status_code,
                " (slow)" if slow else "",
                status_code=response.status_code,
                duration_ms=duration_ms,
                client_host=request.client.host if request.client else None,
            )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
