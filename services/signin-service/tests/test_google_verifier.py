"""Verification of provider identity tokens."""

from __future__ import annotations

import time
from types import SimpleNamespace

import jwt
import pytest

from signin.domain.errors import Unauthorized
from signin.security.google import GoogleIdentityVerifier, extract_identity_claims

SERVER_ID = "server-audience.apps.googleusercontent.com"
CLIENT_ID = "android-client.apps.googleusercontent.com"


class StaticKeySource:
    def __init__(self, key, error: Exception | None = None) -> None:
        self._key = key
        self._error = error

    def get_signing_key_from_jwt(self, token: str):
        if self._error is not None:
            raise self._error
        return SimpleNamespace(key=self._key)


@pytest.fixture
def verifier(public_key) -> GoogleIdentityVerifier:
    return GoogleIdentityVerifier(
        audience=SERVER_ID,
        authorized_party=CLIENT_ID,
        key_source=StaticKeySource(public_key),
    )


@pytest.fixture
def mint(rsa_private_key):
    def _mint(**overrides) -> str:
        now = int(time.time())
        payload = {
            "iss": "https://accounts.google.com",
            "aud": SERVER_ID,
            "azp": CLIENT_ID,
            "sub": "110169484474386276334",
            "email": "ada@example.com",
            "name": "Ada Lovelace",
            "picture": "https://lh3.googleusercontent.com/a/ada",
            "iat": now,
            "exp": now + 3600,
        }
        payload.update(overrides)
        payload = {k: v for k, v in payload.items() if v is not None}
        return jwt.encode(payload, rsa_private_key, algorithm="RS256")

    return _mint


def test_valid_token_yields_typed_claims(verifier, mint):
    claims = verifier.verify(mint())
    assert claims.subject == "110169484474386276334"
    assert claims.email == "ada@example.com"
    assert claims.name == "Ada Lovelace"
    assert claims.picture == "https://lh3.googleusercontent.com/a/ada"


def test_bare_issuer_is_accepted(verifier, mint):
    assert verifier.verify(mint(iss="accounts.google.com")).subject


@pytest.mark.parametrize(
    "overrides",
    [
        {"aud": "someone-else"},
        {"iss": "https://evil.example.com"},
        {"exp": int(time.time()) - 600, "iat": int(time.time()) - 4200},
        {"azp": "unknown-client"},
        {"azp": None},
        {"email": None},
        {"name": ""},
        {"sub": 42},
        {"picture": ["not", "a", "string"]},
    ],
)
def test_invalid_tokens_are_unauthorized(verifier, mint, overrides):
    with pytest.raises(Unauthorized):
        verifier.verify(mint(**overrides))


def test_token_signed_by_other_key_is_unauthorized(mint):
    from cryptography.hazmat.primitives.asymmetric import rsa

    other = rsa.generate_private_key(public_exponent=65537, key_size=2048).public_key()
    verifier = GoogleIdentityVerifier(
        audience=SERVER_ID, authorized_party=CLIENT_ID, key_source=StaticKeySource(other)
    )
    with pytest.raises(Unauthorized):
        verifier.verify(mint())


def test_key_lookup_failure_is_unauthorized(public_key, mint):
    verifier = GoogleIdentityVerifier(
        audience=SERVER_ID,
        authorized_party=CLIENT_ID,
        key_source=StaticKeySource(public_key, error=jwt.PyJWKClientError("kid not found")),
    )
    with pytest.raises(Unauthorized):
        verifier.verify(mint())


@pytest.mark.parametrize("token", ["", "not.a.jwt"])
def test_malformed_tokens_are_unauthorized(verifier, token):
    with pytest.raises(Unauthorized):
        verifier.verify(token)


def test_missing_picture_defaults_to_blank():
    claims = extract_identity_claims({"sub": "s", "email": "e@x.com", "name": "N"})
    assert claims.picture == ""
