import base64
import hashlib
import time

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import ec

from budgee.services.webhook_verifier import (
    WebhookVerificationError,
    WebhookVerifier,
    jwk_to_public_key,
)

BODY = b'{"webhook_type": "TRANSACTIONS", "webhook_code": "SYNC_UPDATES_AVAILABLE", "item_id": "plaid-item-1"}'


def _b64url(number: int) -> str:
    return base64.urlsafe_b64encode(number.to_bytes(32, "big")).rstrip(b"=").decode()


@pytest.fixture
def signing_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def jwk(signing_key):
    numbers = signing_key.public_key().public_numbers()
    return {"kid": "key-1", "kty": "EC", "crv": "P-256", "alg": "ES256",
            "x": _b64url(numbers.x), "y": _b64url(numbers.y), "expired_at": None}


def _sign(key, body=BODY, iat=None, kid="key-1", algorithm="ES256"):
    claims = {
        "iat": int(iat if iat is not None else time.time()),
        "request_body_sha256": hashlib.sha256(body).hexdigest(),
    }
    return jwt.encode(claims, key, algorithm=algorithm, headers={"kid": kid})


def _verifier(jwk, fetches=None):
    def fetch(key_id):
        if fetches is not None:
            fetches.append(key_id)
        return jwk if key_id == jwk["kid"] else None
    return WebhookVerifier(key_fetcher=fetch, max_age_seconds=300)


def test_valid_webhook_returns_claims(signing_key, jwk):
    claims = _verifier(jwk).verify(BODY, _sign(signing_key))
    assert claims["request_body_sha256"] == hashlib.sha256(BODY).hexdigest()


def test_keys_are_cached_by_kid(signing_key, jwk):
    fetches = []
    verifier = _verifier(jwk, fetches)
    verifier.verify(BODY, _sign(signing_key))
    verifier.verify(BODY, _sign(signing_key))
    assert fetches == ["key-1"]


def test_missing_header_is_rejected(jwk):
    with pytest.raises(WebhookVerificationError, match="missing"):
        _verifier(jwk).verify(BODY, None)


def test_tampered_body_is_rejected(signing_key, jwk):
    with pytest.raises(WebhookVerificationError, match="hash"):
        _verifier(jwk).verify(BODY.replace(b"SYNC", b"XSYNC"), _sign(signing_key))


def test_stale_token_is_rejected(signing_key, jwk):
    with pytest.raises(WebhookVerificationError, match="too old"):
        _verifier(jwk).verify(BODY, _sign(signing_key, iat=time.time() - 600))


def test_wrong_signing_key_is_rejected(jwk):
    impostor = ec.generate_private_key(ec.SECP256R1())
    with pytest.raises(WebhookVerificationError, match="invalid webhook JWT"):
        _verifier(jwk).verify(BODY, _sign(impostor))


def test_unknown_kid_is_rejected(signing_key, jwk):
    with pytest.raises(WebhookVerificationError, match="unavailable"):
        _verifier(jwk).verify(BODY, _sign(signing_key, kid="key-9"))


def test_non_es256_algorithm_is_rejected(jwk):
    token = jwt.encode({"iat": int(time.time())}, "k" * 32, algorithm="HS256", headers={"kid": "key-1"})
    with pytest.raises(WebhookVerificationError, match="unexpected alg"):
        _verifier(jwk).verify(BODY, token)


def test_garbage_token_is_rejected(jwk):
    with pytest.raises(WebhookVerificationError, match="malformed"):
        _verifier(jwk).verify(BODY, "not-a-jwt")


def test_jwk_must_be_p256():
    with pytest.raises(WebhookVerificationError):
        jwk_to_public_key({"kty": "RSA", "n": "abc", "e": "AQAB"})
