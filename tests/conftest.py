"""Fixtures and markers shared by the unit and integration suites."""

import os
from collections.abc import AsyncGenerator, Generator

import pytest

from src.core.config import get_settings
from src.core.context import RequestContext
from src.core.error_context import _get_sensitive_fields
from src.infrastructure.database.session import ConnectionManager

SQLITE_MEMORY_URL = "sqlite+aiosqlite:///:memory:"

# Environment variables read by Settings; removed so the host cannot leak in
SETTINGS_ENV_PREFIXES = (
    "APP_",
    "API_",
    "ENVIRONMENT",
    "DEBUG",
    "DOCS_URL",
    "REDOC_URL",
    "OPENAPI_URL",
    "LOG_CONFIG__",
    "OBSERVABILITY_CONFIG__",
    "DATABASE_CONFIG__",
    "KEY_CONFIG__",
    "WEBHOOK_CONFIG__",
)


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: fast tests of one component")
    config.addinivalue_line(
        "markers", "integration: tests through the HTTP API or a real database"
    )


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None]:
    """Start every test from default settings and an empty request context."""
    for name in list(os.environ):
        if name.upper().startswith(SETTINGS_ENV_PREFIXES):
            monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    _get_sensitive_fields.cache_clear()
    RequestContext.clear()
    yield
    get_settings.cache_clear()
    _get_sensitive_fields.cache_clear()
    RequestContext.clear()


@pytest.fixture
async def sqlite_manager() -> AsyncGenerator[ConnectionManager]:
    """A ConnectionManager over a private in-memory SQLite database.

    The database lives exactly as long as the manager's single connection.
    """
    manager = ConnectionManager(SQLITE_MEMORY_URL)
    yield manager
    await manager.close()
