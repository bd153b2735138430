"""Webhook subscriptions and event delivery.

- **registry**: persistent subscriptions (register, list, get, update, remove)
- **dispatcher**: concurrent, retried delivery of events to subscribers
- **retry**: the bounded retry policy used per subscription
- **signing**: HMAC-SHA256 body signatures
"""

from src.domain.webhooks.dispatcher import (
    DeliveryResult,
    DispatchReport,
    WebhookDispatcher,
    build_body,
)
from src.domain.webhooks.registry import WebhookRegistry, WebhookSubscription
from src.domain.webhooks.retry import RetryPolicy
from src.domain.webhooks.signing import sign_payload, verify_signature

__all__ = [
    "DeliveryResult",
    "DispatchReport",
    "RetryPolicy",
    "WebhookDispatcher",
    "WebhookRegistry",
    "WebhookSubscription",
    "build_body",
    "sign_payload",
    "verify_signature",
]
