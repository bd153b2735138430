"""Request and response bodies for the webhook subscription endpoints.

URL and event rules are enforced by the registry, so clients get the same
``VALIDATION_ERROR`` whether they call the API or the registry directly.
Request models only check shapes.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from src.domain.webhooks.registry import WebhookSubscription


class WebhookCreateRequest(BaseModel):
    """Body of ``POST /webhooks``."""

    url: str = Field(
        ...,
        description="Absolute http(s) URL deliveries are POSTed to",
        examples=["https://hooks.example.com/tracker"],
    )
    events: list[str] = Field(
        ...,
        description="Event names to subscribe to; matched exactly",
        examples=[["issue_created", "issue_updated"]],
    )
    secret: str | None = Field(
        default=None,
        description="Shared secret used to sign deliveries (never returned)",
    )
    active: bool = Field(default=True, description="Whether deliveries are made")


class WebhookUpdateRequest(BaseModel):
    """Body of ``PATCH /webhooks/{id}``; omitted fields are left unchanged."""

    url: str | None = Field(default=None, description="New delivery URL")
    events: list[str] | None = Field(default=None, description="New event list")
    secret: str | None = Field(
        default=None,
        description="New shared secret; an empty string removes it",
    )
    active: bool | None = Field(default=None, description="Enable or disable")


class WebhookSubscriptionView(BaseModel):
    """Public representation of a subscription; the secret is never included."""

    id: int = Field(..., examples=[1])
    url: str = Field(..., examples=["https://hooks.example.com/tracker"])
    events: list[str] = Field(..., examples=[["issue_created"]])
    active: bool = Field(..., examples=[True])
    has_secret: bool = Field(..., description="Whether deliveries are signed")
    created_at: datetime | None = None

    @classmethod
    def from_subscription(
        cls, subscription: WebhookSubscription
    ) -> "WebhookSubscriptionView":
        """Build the view from a registry value."""
        return cls(
            id=subscription.id,
            url=subscription.url,
            events=list(subscription.events),
            active=subscription.active,
            has_secret=subscription.secret is not None,
            created_at=subscription.created_at,
        )
