"""Construction and teardown of the application's long-lived services.

An ``AppContext`` replaces module-level singletons: every service is created
once, from one ``Settings`` instance, and handed to whoever needs it. The
FastAPI lifespan owns one context; tests build their own.
"""

from dataclasses import dataclass

import httpx
from loguru import logger

from src.core.config import Settings
from src.domain.keys import KeyAllocator
from src.domain.webhooks.dispatcher import WebhookDispatcher
from src.domain.webhooks.registry import WebhookRegistry
from src.domain.webhooks.retry import RetryPolicy
from src.infrastructure.database.session import ConnectionManager


@dataclass
class AppContext:
    """The services shared by the whole application."""

    settings: Settings
    connections: ConnectionManager
    http_client: httpx.AsyncClient
    key_allocator: KeyAllocator
    webhook_registry: WebhookRegistry
    webhook_dispatcher: WebhookDispatcher

    @classmethod
    def create(
        cls,
        settings: Settings,
        *,
        http_client: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> "AppContext":
        """Wire the services together. Nothing is connected yet.

        Args:
            settings: Application settings.
            http_client: Client for webhook deliveries; a new one by default.
            retry_policy: Overrides the policy derived from ``webhook_config``.

        Returns:
            AppContext: The assembled context.
        """
        webhook_config = settings.webhook_config
        connections = ConnectionManager(settings.database_config.database_url)
        client = http_client or httpx.AsyncClient(
            timeout=webhook_config.request_timeout_seconds,
            follow_redirects=False,
        )
        registry = WebhookRegistry(connections)

        return cls(
            settings=settings,
            connections=connections,
            http_client=client,
            key_allocator=KeyAllocator(
                connections, counter_name=settings.key_config.counter_name
            ),
            webhook_registry=registry,
            webhook_dispatcher=WebhookDispatcher(
                registry,
                client,
                retry_policy=retry_policy or RetryPolicy.from_config(webhook_config),
                timeout_seconds=webhook_config.request_timeout_seconds,
                user_agent=webhook_config.user_agent,
            ),
        )

    async def start(self) -> None:
        """Connect to the database and create any missing tables.

        Raises:
            DatabaseConnectionError: If the database is unreachable.
        """
        await self.connections.ensure_schema()
        logger.info("Application context started")

    async def aclose(self) -> None:
        """Close the HTTP client and the database connection."""
        try:
            await self.http_client.aclose()
        finally:
            await self.connections.close()
        logger.info("Application context closed")
