"""In-memory account and credential stores for local development and tests."""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime, timezone
from threading import Lock

from .domain.account import Account
from .domain.contracts import CreateAccountInput, NewRefreshCredential
from .domain.credentials import RefreshCredentialRecord
from .domain.errors import (
    DuplicateEmail,
    DuplicateExternalIdentity,
    DuplicateUsername,
    NotFound,
)


class InMemoryAccountRepository:
    """Thread-safe account store; one lock covers check-then-insert."""

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self._lock = Lock()

    def find_by_external_identity(
        self, external_identity_id: str, *, include_trashed: bool = False
    ) -> Account:
        """Return the oldest account linked to ``external_identity_id``."""
        with self._lock:
            matches = sorted(
                (
                    account
                    for account in self._accounts.values()
                    if account.external_identity_id == external_identity_id
                    and (include_trashed or not account.trashed)
                ),
                key=lambda a: (a.created_at, a.account_id),
            )
            if not matches:
                raise NotFound(f"no account for external identity {external_identity_id!r}")
            return replace(matches[0])

    def find_by_id(self, account_id: str, *, include_trashed: bool = False) -> Account:
        """Return a copy of the account, hiding trashed ones unless asked."""
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None or (account.trashed and not include_trashed):
                raise NotFound(f"account {account_id!r} not found")
            return replace(account)

    def create(self, candidate: CreateAccountInput) -> Account:
        """Insert ``candidate`` after checking username, email and external identity in turn."""
        with self._lock:
            existing = list(self._accounts.values())
            if any(a.username == candidate.username for a in existing):
                raise DuplicateUsername(candidate.username)
            if any(a.email == candidate.email for a in existing):
                raise DuplicateEmail(candidate.email)
            if any(a.external_identity_id == candidate.external_identity_id for a in existing):
                raise DuplicateExternalIdentity(candidate.external_identity_id)

            now = datetime.now(timezone.utc)
            account = Account(
                account_id=str(uuid.uuid4()),
                display_name=candidate.display_name,
                username=candidate.username,
                email=candidate.email,
                external_identity_id=candidate.external_identity_id,
                picture_url=candidate.picture_url,
                blocked=candidate.blocked,
                created_at=now,
                updated_at=now,
            )
            self._accounts[account.account_id] = account
            return replace(account)

    def update(self, account: Account) -> Account:
        """Replace mutable fields; ``created_at`` is kept and ``updated_at`` never moves back."""
        with self._lock:
            stored = self._accounts.get(account.account_id)
            if stored is None:
                raise NotFound(f"account {account.account_id!r} not found")
            updated = replace(
                stored,
                display_name=account.display_name,
                username=account.username,
                email=account.email,
                external_identity_id=account.external_identity_id,
                picture_url=account.picture_url,
                blocked=account.blocked,
                updated_at=max(stored.updated_at, datetime.now(timezone.utc)),
            )
            self._accounts[account.account_id] = updated
            return replace(updated)

    def soft_delete(self, account_id: str) -> None:
        """Mark the account trashed, keeping the first deletion time."""
        with self._lock:
            stored = self._accounts.get(account_id)
            if stored is None:
                raise NotFound(f"account {account_id!r} not found")
            if stored.deleted_at is None:
                stored.deleted_at = datetime.now(timezone.utc)

    def restore(self, account_id: str) -> None:
        with self._lock:
            stored = self._accounts.get(account_id)
            if stored is None:
                raise NotFound(f"account {account_id!r} not found")
            stored.deleted_at = None

    def delete(self, account_id: str) -> None:
        """Remove the account for good; unknown ids are ignored."""
        with self._lock:
            self._accounts.pop(account_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._accounts)


class InMemoryCredentialStore:
    """Thread-safe refresh credential store keyed by credential id."""

    def __init__(self) -> None:
        self._records: dict[str, RefreshCredentialRecord] = {}
        self._lock = Lock()

    def create(self, credential: NewRefreshCredential) -> RefreshCredentialRecord:
        """Persist ``credential`` under a fresh identifier and return the record."""
        record = RefreshCredentialRecord(
            credential_id=str(uuid.uuid4()),
            account_id=credential.account_id,
            expires_at=credential.expires_at,
            device=credential.device,
            os=credential.os,
            client_name=credential.client_name,
            created_at=credential.created_at,
        )
        with self._lock:
            self._records[record.credential_id] = record
        return replace(record)

    def get(self, credential_id: str) -> RefreshCredentialRecord:
        with self._lock:
            record = self._records.get(credential_id)
        if record is None:
            raise NotFound(f"refresh credential {credential_id!r} not found")
        return replace(record)

    def list_for_account(self, account_id: str) -> list[RefreshCredentialRecord]:
        """Return the account's credentials, newest first."""
        with self._lock:
            records = [r for r in self._records.values() if r.account_id == account_id]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return [replace(r) for r in records]

    def delete(self, credential_id: str) -> None:
        with self._lock:
            self._records.pop(credential_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
