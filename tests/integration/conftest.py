"""Fixtures for integration tests against the full ASGI application.

``ASGITransport`` does not run the lifespan, so the fixtures start an
``AppContext`` themselves and attach it to ``app.state`` the way the lifespan
would. Webhook subscribers are simulated with ``httpx.MockTransport``.
"""

from collections.abc import AsyncGenerator

import httpx
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from src.api.main import create_app
from src.bootstrap import AppContext
from src.core.config import DatabaseConfig, Settings, get_settings
from src.domain.webhooks.retry import RetryPolicy


class FakeSubscribers:
    """Records webhook deliveries and answers with a per-URL status code."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.status_codes: dict[str, int] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_codes.get(str(request.url), 200))


@pytest.fixture
def integration_settings() -> Settings:
    """Settings with an in-memory database and no tracing."""
    return Settings(
        app_name="TaskTracker-Test",
        environment="development",
        database_config=DatabaseConfig(database_url="sqlite+aiosqlite:///:memory:"),
    )


@pytest.fixture
def subscribers() -> FakeSubscribers:
    """Fake webhook receivers."""
    return FakeSubscribers()


@pytest.fixture
async def app_context(
    integration_settings: Settings, subscribers: FakeSubscribers
) -> AsyncGenerator[AppContext]:
    """Started application context with instant retries."""
    context = AppContext.create(
        integration_settings,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(subscribers)),
        retry_policy=RetryPolicy(base_delay=0, max_delay=0),
    )
    await context.start()
    yield context
    await context.aclose()


@pytest.fixture
def app(integration_settings: Settings, app_context: AppContext) -> FastAPI:
    """Application wired to the test context."""
    application = create_app(integration_settings)
    application.state.context = app_context
    application.dependency_overrides[get_settings] = lambda: integration_settings
    return application


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """HTTP client talking to the application in-process."""
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as test_client:
        yield test_client
