"""Issuance and signing of application access and refresh credentials."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable

import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from ..domain.account import Account
from ..domain.contracts import CredentialStore, NewRefreshCredential, SigningKeyProvider
from ..domain.credentials import ClaimSet, DeviceDescriptor, TokenType
from ..domain.errors import SignatureFailure, SigningKeyUnavailable

logger = logging.getLogger(__name__)

REFRESH_ALGORITHM = "RS512"
ACCESS_ALGORITHM = "RS256"


def _utcnow() -> datetime:
    # claim timestamps are whole seconds; keep stored times aligned with them
    return datetime.now(timezone.utc).replace(microsecond=0)


class CredentialIssuer:
    """Mint signed credentials bound to an account.

    Parameters
    ----------
    credentials:
        Store receiving one record per issued refresh credential.
    key_provider:
        Capability returning the PEM-encoded RSA private key by name.
    signing_key_name:
        Name of the secret holding the private key.
    issuer, audience:
        Fixed ``iss`` and ``aud`` values written into every claim set.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        key_provider: SigningKeyProvider,
        *,
        signing_key_name: str,
        issuer: str,
        audience: str,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._credentials = credentials
        self._key_provider = key_provider
        self._signing_key_name = signing_key_name
        self._issuer = issuer
        self._audience = audience
        self._clock = clock

    def issue_refresh_credential(
        self, account: Account, ttl_seconds: int, device: DeviceDescriptor
    ) -> str:
        """Persist a refresh credential record and return its RS512-signed token.

        The record is written before the key is fetched. A key or signing
        failure after that point still raises, leaving the unsigned record
        behind.
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        now = self._clock()
        record = self._credentials.create(
            NewRefreshCredential(
                account_id=account.account_id,
                expires_at=now + timedelta(seconds=ttl_seconds),
                device=device.device,
                os=device.os,
                client_name=device.client_name,
                created_at=now,
            )
        )
        claims = ClaimSet(
            token_id=record.credential_id,
            subject=account.account_id,
            issuer=self._issuer,
            audience=self._audience,
            issued_at=int(record.created_at.timestamp()),
            expires_at=int(record.expires_at.timestamp()),
            token_type=TokenType.refresh,
        )
        token = self._sign(claims, REFRESH_ALGORITHM)
        logger.info(
            "refresh credential %s issued for account %s", record.credential_id, account.account_id
        )
        return token

    def issue_access_credential(self, account: Account, ttl_seconds: int) -> str:
        """Return an RS256-signed access token; nothing is persisted."""
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        issued_at = int(self._clock().timestamp())
        claims = ClaimSet(
            token_id=uuid.uuid4().hex,
            subject=account.account_id,
            issuer=self._issuer,
            audience=self._audience,
            issued_at=issued_at,
            expires_at=issued_at + ttl_seconds,
            token_type=TokenType.access,
        )
        return self._sign(claims, ACCESS_ALGORITHM)

    def _sign(self, claims: ClaimSet, algorithm: str) -> str:
        key = self._load_private_key()
        try:
            return jwt.encode(claims.to_payload(), key, algorithm=algorithm)
        except (jwt.PyJWTError, ValueError, TypeError) as exc:
            logger.error("signing %s claims failed: %s", claims.token_type.value, exc)
            raise SignatureFailure(str(exc)) from exc

    def _load_private_key(self) -> RSAPrivateKey:
        pem = self._key_provider.fetch_signing_key(self._signing_key_name)
        try:
            key = serialization.load_pem_private_key(pem, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise SigningKeyUnavailable(
                f"signing key {self._signing_key_name!r} is not a valid PEM private key"
            ) from exc
        if not isinstance(key, RSAPrivateKey):
            raise SigningKeyUnavailable(f"signing key {self._signing_key_name!r} is not an RSA key")
        return key
