"""Fan-out delivery of domain events to webhook subscribers.

``trigger()`` loads the subscriptions, keeps the active ones subscribed to the
exact event name, and delivers to all of them concurrently. Each subscription
gets its own retry loop, so a slow or failing subscriber delays nobody else.
``trigger()`` itself never raises: every failure, including a registry that
cannot be read, is logged and reported in the returned ``DispatchReport``.

Delivery is at-least-once. All attempts of one delivery carry the same
``X-Webhook-Delivery`` id so subscribers can drop duplicates.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime

import httpx
import orjson
from loguru import logger

from src.core.constants import (
    CORRELATION_ID_HEADER,
    MILLISECONDS_PER_SECOND,
    WEBHOOK_ATTEMPT_HEADER,
    WEBHOOK_DELIVERY_HEADER,
    WEBHOOK_EVENT_HEADER,
    WEBHOOK_SIGNATURE_HEADER,
    WEBHOOK_TIMESTAMP_HEADER,
)
from src.core.context import RequestContext, generate_delivery_id
from src.core.error_context import sanitize_headers
from src.core.exceptions import DeliveryError
from src.core.observability import trace_operation
from src.core.types import EventPayload
from src.domain.webhooks.registry import WebhookRegistry, WebhookSubscription
from src.domain.webhooks.retry import RetryPolicy
from src.domain.webhooks.signing import sign_payload

DEFAULT_ENTITY_FIELD = "issue"
DEFAULT_USER_AGENT = "TaskTracker-Webhooks/1.0"


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of delivering one event to one subscription."""

    subscription_id: int
    url: str
    delivery_id: str
    delivered: bool
    attempts: int
    status_code: int | None = None
    error: str | None = None


@dataclass(frozen=True)
class DispatchReport:
    """Outcome of one ``trigger()`` call."""

    event_name: str
    results: list[DeliveryResult] = field(default_factory=list)
    registry_error: str | None = None

    @property
    def matched(self) -> int:
        """Number of subscriptions the event was delivered to (or attempted)."""
        return len(self.results)

    @property
    def delivered_count(self) -> int:
        """Number of subscriptions that acknowledged the event."""
        return sum(1 for result in self.results if result.delivered)

    @property
    def failed_count(self) -> int:
        """Number of subscriptions whose delivery finally failed."""
        return self.matched - self.delivered_count


def build_body(
    event_name: str, payload: EventPayload, entity_field: str = DEFAULT_ENTITY_FIELD
) -> bytes:
    """Serialize the wire body ``{"webhookEvent": ..., <entity_field>: payload}``."""
    return orjson.dumps({"webhookEvent": event_name, entity_field: payload})


def _undelivered(subscription: WebhookSubscription, error: str) -> DeliveryResult:
    return DeliveryResult(
        subscription_id=subscription.id,
        url=subscription.url,
        delivery_id="",
        delivered=False,
        attempts=0,
        error=error,
    )


class WebhookDispatcher:
    """Delivers events to matching subscriptions with bounded retries.

    Args:
        registry: Source of subscriptions.
        client: Shared HTTP client used for every attempt.
        retry_policy: Attempt bound and backoff between attempts.
        timeout_seconds: Timeout of a single attempt.
        entity_field: Body field carrying the payload, ``"issue"`` by default.
        user_agent: ``User-Agent`` header sent with every attempt.
    """

    def __init__(
        self,
        registry: WebhookRegistry,
        client: httpx.AsyncClient,
        retry_policy: RetryPolicy | None = None,
        timeout_seconds: float = 10.0,
        entity_field: str = DEFAULT_ENTITY_FIELD,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self._registry = registry
        self._client = client
        self._retry_policy = retry_policy or RetryPolicy()
        self._timeout = timeout_seconds
        self._entity_field = entity_field
        self._user_agent = user_agent

    async def trigger(
        self,
        event_name: str,
        payload: EventPayload,
        *,
        entity_field: str | None = None,
    ) -> DispatchReport:
        """Deliver ``event_name`` to every active subscription listening for it.

        Returns once every matching subscription has either succeeded or run
        out of attempts. Never raises.

        Args:
            event_name: Event to deliver, e.g. ``"issue_created"``.
            payload: Snapshot of the entity the event is about.
            entity_field: Overrides the body field carrying ``payload``.

        Returns:
            DispatchReport: Per-subscription outcomes.
        """
        with trace_operation("webhooks.trigger", event_name=event_name):
            try:
                subscriptions = await self._registry.list_subscriptions()
            except Exception as e:
                logger.opt(exception=e).error(
                    "Could not load webhook subscriptions for {}: {}",
                    event_name,
                    e,
                    event_name=event_name,
                )
                return DispatchReport(event_name=event_name, registry_error=str(e))

            matching = [s for s in subscriptions if s.matches(event_name)]
            if not matching:
                logger.debug(
                    "No subscriptions for {}", event_name, event_name=event_name
                )
                return DispatchReport(event_name=event_name)

            try:
                body = build_body(
                    event_name, payload, entity_field or self._entity_field
                )
            except orjson.JSONEncodeError as e:
                logger.error(
                    "Cannot serialize {} payload: {}",
                    event_name,
                    e,
                    event_name=event_name,
                )
                return DispatchReport(
                    event_name=event_name,
                    results=[_undelivered(s, str(e)) for s in matching],
                )

            outcomes = await asyncio.gather(
                *(self._deliver(s, event_name, body) for s in matching),
                return_exceptions=True,
            )

        results: list[DeliveryResult] = []
        for subscription, outcome in zip(matching, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                logger.opt(exception=outcome).error(
                    "Unexpected error delivering {} to subscription {}",
                    event_name,
                    subscription.id,
                    event_name=event_name,
                    subscription_id=subscription.id,
                )
                outcome = _undelivered(subscription, str(outcome))
            results.append(outcome)

        report = DispatchReport(event_name=event_name, results=results)
        logger.info(
            "Dispatched {} to {} subscription(s): {} delivered, {} failed",
            event_name,
            report.matched,
            report.delivered_count,
            report.failed_count,
            event_name=event_name,
        )
        return report

    async def _deliver(
        self, subscription: WebhookSubscription, event_name: str, body: bytes
    ) -> DeliveryResult:
        delivery_id = generate_delivery_id()
        attempts = 0
        log = logger.bind(
            event_name=event_name,
            subscription_id=subscription.id,
            url=subscription.url,
            delivery_id=delivery_id,
        )

        async def attempt_delivery(attempt: int) -> httpx.Response:
            nonlocal attempts
            attempts = attempt
            return await self._post(
                subscription, event_name, body, delivery_id, attempt
            )

        try:
            response = await self._retry_policy.run(attempt_delivery)
        except DeliveryError as e:
            log.warning(
                "Webhook delivery failed after {} attempt(s): {}",
                attempts,
                e.message,
                attempt=attempts,
                status_code=e.status_code,
            )
            return DeliveryResult(
                subscription_id=subscription.id,
                url=subscription.url,
                delivery_id=delivery_id,
                delivered=False,
                attempts=attempts,
                status_code=e.status_code,
                error=e.message,
            )

        log.info(
            "Webhook delivered",
            attempt=attempts,
            status_code=response.status_code,
        )
        return DeliveryResult(
            subscription_id=subscription.id,
            url=subscription.url,
            delivery_id=delivery_id,
            delivered=True,
            attempts=attempts,
            status_code=response.status_code,
        )

    async def _post(
        self,
        subscription: WebhookSubscription,
        event_name: str,
        body: bytes,
        delivery_id: str,
        attempt: int,
    ) -> httpx.Response:
        """Make one delivery attempt and classify its outcome.

        Raises:
            DeliveryError: Retryable for transport errors, timeouts and 5xx
                responses, permanent for 4xx responses.
        """
        headers = self._headers(subscription, event_name, body, delivery_id, attempt)
        start = time.perf_counter()

        with trace_operation(
            "webhooks.deliver",
            subscription_id=subscription.id,
            attempt=attempt,
        ):
            try:
                # httpx times each phase separately; this bounds the whole attempt
                async with asyncio.timeout(self._timeout):
                    response = await self._client.post(
                        subscription.url,
                        content=body,
                        headers=headers,
                        timeout=self._timeout,
                    )
            except TimeoutError as e:
                raise DeliveryError(
                    f"Attempt timed out after {self._timeout}s",
                    retryable=True,
                    context={"subscription_id": subscription.id, "attempt": attempt},
                    cause=e,
                ) from e
            except httpx.RequestError as e:
                raise DeliveryError(
                    f"Request failed: {type(e).__name__}: {e}",
                    retryable=True,
                    context={"subscription_id": subscription.id, "attempt": attempt},
                    cause=e,
                ) from e

        duration_ms = round((time.perf_counter() - start) * MILLISECONDS_PER_SECOND, 2)
        logger.debug(
            "Webhook attempt answered with {}",
            response.status_code,
            event_name=event_name,
            subscription_id=subscription.id,
            attempt=attempt,
            status_code=response.status_code,
            duration_ms=duration_ms,
            headers=sanitize_headers(headers),
        )

        if response.status_code >= httpx.codes.INTERNAL_SERVER_ERROR:
            raise DeliveryError(
                f"Subscriber responded with {response.status_code}",
                retryable=True,
                status_code=response.status_code,
            )
        if response.status_code >= httpx.codes.BAD_REQUEST:
            raise DeliveryError(
                f"Subscriber rejected the delivery with {response.status_code}",
                retryable=False,
                status_code=response.status_code,
            )
        return response

    def _headers(
        self,
        subscription: WebhookSubscription,
        event_name: str,
        body: bytes,
        delivery_id: str,
        attempt: int,
    ) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self._user_agent,
            WEBHOOK_EVENT_HEADER: event_name,
            WEBHOOK_DELIVERY_HEADER: delivery_id,
            WEBHOOK_ATTEMPT_HEADER: str(attempt),
            WEBHOOK_TIMESTAMP_HEADER: datetime.now(UTC).isoformat(),
        }
        if correlation_id := RequestContext.get_correlation_id():
            headers[CORRELATION_ID_HEADER] = correlation_id
        if subscription.secret:
            headers[WEBHOOK_SIGNATURE_HEADER] = sign_payload(body, subscription.secret)
        return headers
