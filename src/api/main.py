"""FastAPI application factory and lifespan.

The lifespan owns the ``AppContext``: it opens the database connection and
creates the schema before the first request, and closes the HTTP client and
the connection on shutdown. A database that cannot be reached aborts startup.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from src.api.middleware.error_handler import register_exception_handlers
from src.api.middleware.request_context import RequestContextMiddleware
from src.api.middleware.request_logging import RequestLoggingMiddleware
from src.api.routes import keys, service, webhooks
from src.api.utils.responses import ORJSONResponse
from src.bootstrap import AppContext
from src.core.config import Settings, get_settings
from src.core.logging import setup_logging
from src.core.observability import instrument_app, setup_tracing


@asynccontextmanager
async def lifespan(app_instance: FastAPI) -> AsyncGenerator[None]:
    context = AppContext.create(app_instance.state.settings)
    try:
        await context.start()
    except Exception:
        await context.aclose()
        raise

    app_instance.state.context = context
    logger.info("{} v{} started", app_instance.title, app_instance.version)
    try:
        yield
    finally:
        await context.aclose()
        app_instance.state.context = None
        logger.info("{} stopped", app_instance.title)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application; ``settings`` defaults to ``get_settings()``."""
    settings = settings or get_settings()
    setup_logging(settings)
    setup_tracing(settings)

    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        docs_url=settings.docs_url,
        redoc_url=settings.redoc_url,
        openapi_url=settings.openapi_url,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )
    application.state.settings = settings
    application.state.context = None

    register_exception_handlers(application)

    # Added last runs first: the correlation ID is set before requests are logged
    application.add_middleware(RequestLoggingMiddleware, log_config=settings.log_config)
    application.add_middleware(RequestContextMiddleware)

    for module in (service, webhooks, keys):
        application.include_router(module.router)

    instrument_app(application, settings)
    return application


app = create_app()
