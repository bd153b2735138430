"""Unit tests for webhook body signatures."""

import hashlib
import hmac

import pytest

from src.domain.webhooks.signing import (
    SIGNATURE_PREFIX,
    sign_payload,
    verify_signature,
)

BODY = b'{"webhookEvent":"issue_created","issue":{"key":"TASK-1"}}'
SECRET = "s3cr3t"


@pytest.mark.unit
class TestSignPayload:
    """sign_payload()."""

    def test_matches_hmac_sha256(self) -> None:
        """The signature is the prefixed hex HMAC-SHA256 of the body."""
        expected = hmac.new(SECRET.encode(), BODY, hashlib.sha256).hexdigest()

        assert sign_payload(BODY, SECRET) == f"sha256={expected}"

    def test_depends_on_secret(self) -> None:
        """Different secrets give different signatures."""
        assert sign_payload(BODY, SECRET) != sign_payload(BODY, "other")


@pytest.mark.unit
class TestVerifySignature:
    """verify_signature()."""

    def test_valid_with_prefix(self) -> None:
        """The header value as sent is accepted."""
        assert verify_signature(BODY, sign_payload(BODY, SECRET), SECRET)

    def test_valid_without_prefix(self) -> None:
        """The bare hex digest is accepted too."""
        bare = sign_payload(BODY, SECRET).removeprefix(SIGNATURE_PREFIX)

        assert verify_signature(BODY, bare, SECRET)

    @pytest.mark.parametrize(
        ("body", "secret"),
        [(BODY + b" ", SECRET), (BODY, "wrong")],
    )
    def test_tampered(self, body: bytes, secret: str) -> None:
        """A changed body or the wrong secret fails verification."""
        assert not verify_signature(body, sign_payload(BODY, SECRET), secret)

    def test_empty_signature(self) -> None:
        """A missing signature never verifies."""
        assert not verify_signature(BODY, "", SECRET)
