"""Liveness and build information."""

from typing import Annotated, Literal

from fastapi import APIRouter, Depends
from loguru import logger
from pydantic import BaseModel

from src.api.dependencies import AppContextDep
from src.core.config import Settings, get_settings

router = APIRouter(tags=["service"])


class HealthView(BaseModel):
    status: Literal["healthy", "degraded"]
    database: bool


class InfoView(BaseModel):
    app_name: str
    version: str
    environment: str
    debug: bool


@router.get("/health", response_model=HealthView)
async def health(context: AppContextDep) -> HealthView:
    """Probe the database; an unreachable database degrades, it does not fail."""
    reachable, error = await context.connections.check_connection()
    if not reachable:
        logger.warning("Database health check failed: {}", error)
    return HealthView(status="healthy" if reachable else "degraded", database=reachable)


@router.get("/info", response_model=InfoView)
async def info(settings: Annotated[Settings, Depends(get_settings)]) -> InfoView:
    return InfoView(
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
        debug=settings.debug,
    )
