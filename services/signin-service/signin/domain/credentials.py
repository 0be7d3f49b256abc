"""Refresh credential records and the claim sets signed at issuance time."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class TokenType(str, Enum):
    access = "access_token"
    refresh = "refresh_token"


@dataclass(frozen=True, slots=True)
class DeviceDescriptor:
    """Client metadata recorded against an issued refresh credential."""

    device: str = ""
    os: str = ""
    client_name: str = ""


@dataclass(slots=True)
class RefreshCredentialRecord:
    """Persisted row backing one issued refresh credential."""

    credential_id: str
    account_id: str
    expires_at: datetime
    device: str
    os: str
    client_name: str
    created_at: datetime


@dataclass(frozen=True, slots=True)
class ClaimSet:
    """Transient payload of a signed credential; never stored."""

    token_id: str
    subject: str
    issuer: str
    audience: str
    issued_at: int
    expires_at: int
    token_type: TokenType

    def to_payload(self) -> dict[str, Any]:
        return {
            "jti": self.token_id,
            "sub": self.subject,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": self.issued_at,
            "exp": self.expires_at,
            "typ": self.token_type.value,
        }
