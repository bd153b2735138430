"""Webhook subscription endpoints and manual event dispatch."""

from typing import Any

from fastapi import APIRouter, Response, status
from pydantic import BaseModel, Field

from src.api.constants import WEBHOOKS_PREFIX, WEBHOOKS_TAG
from src.api.dependencies import WebhookDispatcherDep, WebhookRegistryDep
from src.api.schemas.webhooks import (
    WebhookCreateRequest,
    WebhookSubscriptionView,
    WebhookUpdateRequest,
)

router = APIRouter(prefix=WEBHOOKS_PREFIX, tags=[WEBHOOKS_TAG])


class DispatchRequest(BaseModel):
    """Body of ``POST /webhooks/dispatch``."""

    event_name: str = Field(..., min_length=1, examples=["issue_created"])
    payload: dict[str, Any] = Field(
        default_factory=dict, examples=[{"key": "TASK-1", "title": "Write docs"}]
    )
    entity_field: str | None = Field(
        default=None, description="Body field carrying the payload (default 'issue')"
    )


class DeliveryView(BaseModel):
    """Outcome for one subscription."""

    subscription_id: int
    delivered: bool
    attempts: int
    status_code: int | None = None
    error: str | None = None


class DispatchView(BaseModel):
    """Summary of a dispatch."""

    event_name: str
    matched: int
    delivered: int
    failed: int
    deliveries: list[DeliveryView]


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=WebhookSubscriptionView,
)
async def create_webhook(
    body: WebhookCreateRequest, registry: WebhookRegistryDep
) -> WebhookSubscriptionView:
    """Register a webhook subscription."""
    subscription = await registry.register(
        body.url, body.events, body.secret, active=body.active
    )
    return WebhookSubscriptionView.from_subscription(subscription)


@router.get("", response_model=list[WebhookSubscriptionView])
async def list_webhooks(registry: WebhookRegistryDep) -> list[WebhookSubscriptionView]:
    """List all webhook subscriptions."""
    return [
        WebhookSubscriptionView.from_subscription(subscription)
        for subscription in await registry.list_subscriptions()
    ]


@router.get("/{subscription_id}", response_model=WebhookSubscriptionView)
async def get_webhook(
    subscription_id: int, registry: WebhookRegistryDep
) -> WebhookSubscriptionView:
    """Return one webhook subscription."""
    subscription = await registry.get(subscription_id)
    return WebhookSubscriptionView.from_subscription(subscription)


@router.patch("/{subscription_id}", response_model=WebhookSubscriptionView)
async def update_webhook(
    subscription_id: int, body: WebhookUpdateRequest, registry: WebhookRegistryDep
) -> WebhookSubscriptionView:
    """Change the fields given in the body."""
    subscription = await registry.update(
        subscription_id,
        url=body.url,
        events=body.events,
        active=body.active,
        secret=body.secret,
    )
    return WebhookSubscriptionView.from_subscription(subscription)


@router.delete("/{subscription_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_webhook(
    subscription_id: int, registry: WebhookRegistryDep
) -> Response:
    """Remove a webhook subscription."""
    await registry.remove(subscription_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/dispatch", response_model=DispatchView)
async def dispatch_event(
    body: DispatchRequest, dispatcher: WebhookDispatcherDep
) -> DispatchView:
    """Deliver an event to its subscribers and report the outcome.

    Waits for all deliveries, including retries, before answering.
    """
    report = await dispatcher.trigger(
        body.event_name, body.payload, entity_field=body.entity_field
    )
    return DispatchView(
        event_name=report.event_name,
        matched=report.matched,
        delivered=report.delivered_count,
        failed=report.failed_count,
        deliveries=[
            DeliveryView(
                subscription_id=result.subscription_id,
                delivered=result.delivered,
                attempts=result.attempts,
                status_code=result.status_code,
                error=result.error,
            )
            for result in report.results
        ],
    )
