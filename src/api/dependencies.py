"""FastAPI dependencies exposing the application's services to routes.

The services live on the ``AppContext`` stored in ``app.state.context`` by
the lifespan handler. The ``Annotated`` aliases keep route signatures short:

    @router.get("/webhooks")
    async def list_webhooks(registry: WebhookRegistryDep) -> ...
"""

from typing import Annotated

from fastapi import Depends, Request

from src.bootstrap import AppContext
from src.domain.keys import KeyAllocator
from src.domain.webhooks.dispatcher import WebhookDispatcher
from src.domain.webhooks.registry import WebhookRegistry


def get_app_context(request: Request) -> AppContext:
    """Return the application context created at startup.

    Raises:
        RuntimeError: If the application was not started through its lifespan.
    """
    context: AppContext | None = getattr(request.app.state, "context", None)
    if context is None:
        msg = "Application context is not initialized"
        raise RuntimeError(msg)
    return context


AppContextDep = Annotated[AppContext, Depends(get_app_context)]


def get_webhook_registry(context: AppContextDep) -> WebhookRegistry:
    """Provide the webhook registry."""
    return context.webhook_registry


def get_key_allocator(context: AppContextDep) -> KeyAllocator:
    """Provide the key allocator."""
    return context.key_allocator


def get_webhook_dispatcher(context: AppContextDep) -> WebhookDispatcher:
    """Provide the webhook dispatcher."""
    return context.webhook_dispatcher


WebhookRegistryDep = Annotated[WebhookRegistry, Depends(get_webhook_registry)]
KeyAllocatorDep = Annotated[KeyAllocator, Depends(get_key_allocator)]
WebhookDispatcherDep = Annotated[WebhookDispatcher, Depends(get_webhook_dispatcher)]
