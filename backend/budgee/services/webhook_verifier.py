"""
Plaid webhook verification.

Plaid signs every webhook with an ES256 JWT in the ``Plaid-Verification``
header. The JWT carries the SHA-256 of the raw request body and is signed
with a key fetched from /webhook_verification_key/get by ``kid``.

Any failure rejects the webhook.
"""
import base64
import hashlib
import hmac
import logging
import threading
import time
from typing import Any, Dict, Optional

import jwt
from cryptography.hazmat.primitives.asymmetric.ec import EllipticCurvePublicNumbers, SECP256R1

from budgee.config import settings

logger = logging.getLogger(__name__)


class WebhookVerificationError(Exception):
    """Raised when a webhook cannot be authenticated."""


def _b64url_int(value: str) -> int:
    padded = value + "=" * (-len(value) % 4)
    return int.from_bytes(base64.urlsafe_b64decode(padded), "big")


def jwk_to_public_key(jwk: Dict[str, Any]):
    if not jwk or jwk.get("kty") != "EC" or jwk.get("crv") != "P-256" or not jwk.get("x") or not jwk.get("y"):
        raise WebhookVerificationError("invalid or unsupported JWK")
    numbers = EllipticCurvePublicNumbers(
        x=_b64url_int(jwk["x"]),
        y=_b64url_int(jwk["y"]),
        curve=SECP256R1(),
    )
    return numbers.public_key()


class WebhookVerifier:
    """Verifies Plaid-Verification JWTs, caching verification keys by kid."""

    def __init__(self, key_fetcher=None, max_age_seconds: Optional[int] = None, clock=time.time):
        self._key_fetcher = key_fetcher
        self.max_age_seconds = max_age_seconds if max_age_seconds is not None else settings.PLAID_WEBHOOK_MAX_AGE_SECONDS
        self._clock = clock
        self._keys: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def _fetch_key(self, key_id: str) -> Dict[str, Any]:
        with self._lock:
            cached = self._keys.get(key_id)
        if cached is not None and not cached.get("expired_at"):
            return cached

        fetcher = self._key_fetcher
        if fetcher is None:
            from budgee.services.plaid_client import plaid_client
            fetcher = plaid_client.get_webhook_verification_key

        jwk = fetcher(key_id)
        if jwk is None:
            raise WebhookVerificationError(f"verification key {key_id} unavailable")
        with self._lock:
            self._keys[key_id] = jwk
        return jwk

    def verify(self, body: bytes, signed_jwt: Optional[str]) -> Dict[str, Any]:
        """
        Verify a webhook; returns the decoded JWT claims.

        Raises:
            WebhookVerificationError: on a missing header, bad signature, stale
                token or body hash mismatch
        """
        if not signed_jwt:
            raise WebhookVerificationError("missing Plaid-Verification header")

        try:
            header = jwt.get_unverified_header(signed_jwt)
        except jwt.InvalidTokenError as e:
            raise WebhookVerificationError(f"malformed JWT: {e}") from e

        if header.get("alg") != "ES256":
            raise WebhookVerificationError(f"unexpected alg {header.get('alg')!r}")
        key_id = header.get("kid")
        if not key_id:
            raise WebhookVerificationError("missing kid in JWT header")

        public_key = jwk_to_public_key(self._fetch_key(key_id))
        try:
            claims = jwt.decode(
                signed_jwt,
                public_key,
                algorithms=["ES256"],
                options={"require": ["iat"]},
                leeway=30,
            )
        except jwt.InvalidTokenError as e:
            raise WebhookVerificationError(f"invalid webhook JWT: {e}") from e

        if self._clock() - claims["iat"] > self.max_age_seconds:
            raise WebhookVerificationError("webhook token too old")

        expected = str(claims.get("request_body_sha256") or "").lower()
        actual = hashlib.sha256(body).hexdigest()
        if not expected or not hmac.compare_digest(actual, expected):
            raise WebhookVerificationError("webhook body hash mismatch")

        return claims


webhook_verifier = WebhookVerifier()
