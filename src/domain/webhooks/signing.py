"""HMAC-SHA256 signatures for webhook bodies.

The signature covers the exact bytes sent on the wire and is transmitted as
``X-Webhook-Signature: sha256=<hex digest>``.
"""

import hashlib
import hmac
from typing import Final

SIGNATURE_PREFIX: Final[str] = "sha256="


def sign_payload(body: bytes, secret: str) -> str:
    """Return the ``sha256=<hex>`` signature of ``body`` keyed with ``secret``."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(body: bytes, signature: str, secret: str) -> bool:
    """Check a received signature against ``body`` in constant time.

    Args:
        body: Raw request body as received.
        signature: Header value, with or without the ``sha256=`` prefix.
        secret: Shared secret of the subscription.

    Returns:
        bool: True if the signature matches.
    """
    if not signature:
        return False
    if not signature.startswith(SIGNATURE_PREFIX):
        signature = f"{SIGNATURE_PREFIX}{signature}"
    return hmac.compare_digest(sign_payload(body, secret), signature)
