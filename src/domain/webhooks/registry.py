"""Persistent registry of webhook subscriptions."""

from collections.abc import Iterable
from datetime import datetime
from typing import Any

from loguru import logger
from pydantic import AnyHttpUrl, BaseModel, ConfigDict, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from src.core.exceptions import NotFoundError, ValidationError
from src.core.observability import trace_operation
from src.infrastructure.database.models import WebhookSubscriptionRecord
from src.infrastructure.database.repository import BaseRepository
from src.infrastructure.database.session import ConnectionManager

_http_url_adapter: TypeAdapter[AnyHttpUrl] = TypeAdapter(AnyHttpUrl)


class WebhookSubscription(BaseModel):
    """A registered webhook subscriber.

    Attributes:
        id: Registry-assigned identifier.
        url: Absolute http(s) URL deliveries are POSTed to.
        events: Event names the subscriber receives, matched exactly.
        active: Inactive subscriptions are kept but receive nothing.
        secret: Shared secret used to sign deliveries, if any.
        created_at: When the subscription was registered.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    url: str
    events: tuple[str, ...]
    active: bool = True
    secret: str | None = None
    created_at: datetime | None = None

    def matches(self, event_name: str) -> bool:
        """Whether this subscription should receive ``event_name``."""
        return self.active and event_name in self.events

    @classmethod
    def from_record(cls, record: WebhookSubscriptionRecord) -> "WebhookSubscription":
        """Build the value object from its table row."""
        return cls(
            id=record.id,
            url=record.url,
            events=tuple(record.events),
            active=record.active,
            secret=record.secret,
            created_at=record.created_at,
        )


def validate_url(url: str) -> str:
    """Return ``url`` if it is an absolute http(s) URL.

    Raises:
        ValidationError: If the URL is empty or malformed.
    """
    if not isinstance(url, str) or not url.strip():
        raise ValidationError("Webhook URL must not be empty", context={"url": url})
    try:
        _http_url_adapter.validate_python(url.strip())
    except PydanticValidationError as e:
        raise ValidationError(
            "Webhook URL must be an absolute http(s) URL",
            context={"url": url},
            cause=e,
        ) from e
    return url.strip()


def validate_events(events: Iterable[str]) -> list[str]:
    """Return the event names with duplicates removed, keeping their order.

    Raises:
        ValidationError: If no event is given or any name is blank.
    """
    if isinstance(events, str):
        events = [events]

    normalized: list[str] = []
    for event in events:
        if not isinstance(event, str) or not event.strip():
            raise ValidationError(
                "Event names must be non-empty strings", context={"event": event}
            )
        if event not in normalized:
            normalized.append(event)

    if not normalized:
        raise ValidationError("At least one event is required")
    return normalized


class WebhookSubscriptionRepository(BaseRepository[WebhookSubscriptionRecord]):
    model = WebhookSubscriptionRecord


class WebhookRegistry:
    """Create, list, update and remove webhook subscriptions.

    Args:
        connections: Connection manager all registry access goes through.
    """

    def __init__(self, connections: ConnectionManager) -> None:
        self._connections = connections

    async def register(
        self,
        url: str,
        events: Iterable[str],
        secret: str | None = None,
        *,
        active: bool = True,
    ) -> WebhookSubscription:
        """Register a new subscription.

        Raises:
            ValidationError: If the URL or events are invalid; nothing is stored.
        """
        record = WebhookSubscriptionRecord(
            url=validate_url(url),
            events=validate_events(events),
            active=active,
            secret=secret or None,
        )

        with trace_operation("webhooks.register"):
            async with self._connections.session() as session:
                created = await WebhookSubscriptionRepository(session).create(record)
                subscription = WebhookSubscription.from_record(created)

        logger.info(
            "Registered webhook subscription {}",
            subscription.id,
            subscription_id=subscription.id,
            url=subscription.url,
            events=list(subscription.events),
        )
        return subscription

    async def list_subscriptions(self) -> list[WebhookSubscription]:
        """Return every subscription, active or not, ordered by id."""
        async with self._connections.session() as session:
            records = await WebhookSubscriptionRepository(session).get_all()
            return [WebhookSubscription.from_record(record) for record in records]

    async def get(self, subscription_id: int) -> WebhookSubscription:
        """Return one subscription.

        Raises:
            NotFoundError: If no subscription has this id.
        """
        async with self._connections.session() as session:
            record = await WebhookSubscriptionRepository(session).get_by_id(
                subscription_id
            )
            if record is None:
                raise _not_found(subscription_id)
            return WebhookSubscription.from_record(record)

    async def update(
        self,
        subscription_id: int,
        *,
        url: str | None = None,
        events: Iterable[str] | None = None,
        active: bool | None = None,
        secret: str | None = None,
    ) -> WebhookSubscription:
        """Change the given fields of a subscription; omitted fields are kept.

        An empty ``secret`` removes the secret.

        Raises:
            ValidationError: If a new URL or event list is invalid.
            NotFoundError: If no subscription has this id.
        """
        changes: dict[str, Any] = {}
        if url is not None:
            changes["url"] = validate_url(url)
        if events is not None:
            changes["events"] = validate_events(events)
        if active is not None:
            changes["active"] = active
        if secret is not None:
            changes["secret"] = secret or None

        async with self._connections.session() as session:
            repository = WebhookSubscriptionRepository(session)
            record = await repository.update(subscription_id, changes)
            if record is None:
                raise _not_found(subscription_id)
            subscription = WebhookSubscription.from_record(record)

        logger.info(
            "Updated webhook subscription {}",
            subscription_id,
            subscription_id=subscription_id,
            fields=sorted(changes),
        )
        return subscription

    async def remove(self, subscription_id: int) -> None:
        """Delete a subscription.

        Raises:
            NotFoundError: If no subscription has this id.
        """
        async with self._connections.session() as session:
            deleted = await WebhookSubscriptionRepository(session).delete(
                subscription_id
            )
            if not deleted:
                raise _not_found(subscription_id)

        logger.info(
            "Removed webhook subscription {}",
            subscription_id,
            subscription_id=subscription_id,
        )


def _not_found(subscription_id: int) -> NotFoundError:
    return NotFoundError(
        f"Webhook subscription {subscription_id} not found",
        context={"subscription_id": subscription_id},
    )
