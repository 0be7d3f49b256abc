from __future__ import annotations

from datetime import datetime, timezone

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from signin.domain.account import Account
from signin.domain.contracts import ExternalIdentityClaims
from signin.domain.errors import SigningKeyUnavailable, Unauthorized


class StaticKeyProvider:
    """Key provider serving a fixed PEM; set ``pem`` to ``None`` to simulate an outage."""

    def __init__(self, pem: bytes | None) -> None:
        self.pem = pem
        self.requested: list[str] = []

    def fetch_signing_key(self, name: str) -> bytes:
        self.requested.append(name)
        if self.pem is None:
            raise SigningKeyUnavailable(f"signing key {name!r} is unavailable")
        return self.pem


class FakeVerifier:
    """Identity verifier returning canned claims or rejecting every token."""

    def __init__(self, claims: ExternalIdentityClaims | None = None, reject: str | None = None) -> None:
        self.claims = claims
        self.reject = reject
        self.tokens: list[str] = []

    def verify(self, token: str) -> ExternalIdentityClaims:
        self.tokens.append(token)
        if self.reject is not None or self.claims is None:
            raise Unauthorized(self.reject or "no claims configured")
        return self.claims


def make_account(**overrides) -> Account:
    now = datetime.now(timezone.utc)
    values = dict(
        account_id="acc-1",
        display_name="Ada Lovelace",
        username="0f1e2d3c4b5a",
        email="ada@example.com",
        external_identity_id="google-ada",
        created_at=now,
        updated_at=now,
    )
    values.update(overrides)
    return Account(**values)


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_pem(rsa_private_key) -> bytes:
    return rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture(scope="session")
def public_key(rsa_private_key) -> rsa.RSAPublicKey:
    return rsa_private_key.public_key()


@pytest.fixture
def key_provider(private_pem) -> StaticKeyProvider:
    return StaticKeyProvider(private_pem)
