"""API-related constants."""

# HTTP Headers
REQUEST_ID_HEADER = "X-Request-ID"

# Routing
WEBHOOKS_PREFIX = "/webhooks"
WEBHOOKS_TAG = "webhooks"
