"""Verification of Google-issued identity tokens."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Protocol

import jwt
from jwt import PyJWK, PyJWKClient

from ..domain.contracts import ExternalIdentityClaims
from ..domain.errors import Unauthorized

logger = logging.getLogger(__name__)

GOOGLE_JWKS_URL = "https://www.googleapis.com/oauth2/v3/certs"
GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")


class SigningKeySource(Protocol):
    def get_signing_key_from_jwt(self, token: str) -> PyJWK: ...


def extract_identity_claims(payload: Mapping[str, Any]) -> ExternalIdentityClaims:
    """Pull the fields the resolver needs out of a verified token payload.

    ``sub``, ``email`` and ``name`` must be present as non-empty strings;
    ``picture`` is optional.
    """
    values: dict[str, str] = {}
    for claim in ("sub", "email", "name"):
        value = payload.get(claim)
        if not isinstance(value, str) or not value.strip():
            raise Unauthorized(f"identity token is missing the {claim!r} claim")
        values[claim] = value.strip()

    picture = payload.get("picture", "")
    if not isinstance(picture, str):
        raise Unauthorized("identity token carries a non-string 'picture' claim")

    return ExternalIdentityClaims(
        subject=values["sub"],
        email=values["email"],
        name=values["name"],
        picture=picture,
    )


class GoogleIdentityVerifier:
    """Validate a Google ID token against Google's published signing keys.

    The token must be RS256-signed by a current Google key, carry one of the
    Google issuers, be minted for ``audience`` and name ``authorized_party``
    as its ``azp``.
    """

    def __init__(
        self,
        *,
        audience: str,
        authorized_party: str,
        issuers: Iterable[str] = GOOGLE_ISSUERS,
        jwks_url: str = GOOGLE_JWKS_URL,
        key_source: SigningKeySource | None = None,
    ) -> None:
        self._audience = audience
        self._authorized_party = authorized_party
        self._issuers = list(issuers)
        self._key_source = key_source or PyJWKClient(jwks_url, cache_keys=True)

    def verify(self, token: str) -> ExternalIdentityClaims:
        if not token:
            raise Unauthorized("identity token is empty")
        try:
            signing_key = self._key_source.get_signing_key_from_jwt(token)
            payload = jwt.decode(
                token,
                signing_key.key,
                algorithms=["RS256"],
                audience=self._audience,
                issuer=self._issuers,
                options={"require": ["exp", "iat", "iss", "sub", "aud"]},
            )
        except jwt.PyJWTError as exc:
            logger.info("identity token rejected: %s", exc)
            raise Unauthorized(str(exc)) from exc

        if payload.get("azp") != self._authorized_party:
            raise Unauthorized("client application is not authorized by this server")

        return extract_identity_claims(payload)
