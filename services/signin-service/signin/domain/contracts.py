"""Domain-level contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from .account import Account
from .credentials import RefreshCredentialRecord


@dataclass(slots=True)
class CreateAccountInput:
    """Candidate account handed to the repository for creation."""

    display_name: str
    username: str
    email: str
    external_identity_id: str
    picture_url: str = ""
    blocked: bool = False


@dataclass(frozen=True, slots=True)
class ExternalIdentityClaims:
    """Validated claims extracted from a verified provider identity token."""

    subject: str
    email: str
    name: str
    picture: str = ""


@dataclass(slots=True)
class NewRefreshCredential:
    """Refresh credential fields supplied by the issuer before persistence."""

    account_id: str
    expires_at: datetime
    device: str
    os: str
    client_name: str
    created_at: datetime


class AccountStore(Protocol):
    def find_by_external_identity(
        self, external_identity_id: str, *, include_trashed: bool = False
    ) -> Account: ...

    def find_by_id(self, account_id: str, *, include_trashed: bool = False) -> Account: ...

    def create(self, candidate: CreateAccountInput) -> Account: ...

    def update(self, account: Account) -> Account: ...

    def soft_delete(self, account_id: str) -> None: ...

    def restore(self, account_id: str) -> None: ...

    def delete(self, account_id: str) -> None: ...


class CredentialStore(Protocol):
    def create(self, credential: NewRefreshCredential) -> RefreshCredentialRecord: ...

    def get(self, credential_id: str) -> RefreshCredentialRecord: ...

    def list_for_account(self, account_id: str) -> list[RefreshCredentialRecord]: ...

    def delete(self, credential_id: str) -> None: ...


class IdentityVerifier(Protocol):
    def verify(self, token: str) -> ExternalIdentityClaims: ...


class SigningKeyProvider(Protocol):
    def fetch_signing_key(self, name: str) -> bytes: ...
