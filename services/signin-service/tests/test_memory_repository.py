"""Behaviour of the in-memory account and credential stores."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from signin.domain.contracts import CreateAccountInput, NewRefreshCredential
from signin.domain.errors import (
    DuplicateEmail,
    DuplicateExternalIdentity,
    DuplicateUsername,
    NotFound,
)
from signin.memory_repository import InMemoryAccountRepository, InMemoryCredentialStore


def _candidate(suffix: str, **overrides) -> CreateAccountInput:
    values = dict(
        display_name=f"User {suffix}",
        username=f"user-{suffix}",
        email=f"{suffix}@example.com",
        external_identity_id=f"ext-{suffix}",
    )
    values.update(overrides)
    return CreateAccountInput(**values)


@pytest.fixture
def repository() -> InMemoryAccountRepository:
    return InMemoryAccountRepository()


def test_create_assigns_id_and_timestamps(repository):
    account = repository.create(_candidate("a", picture_url="https://img/a.png"))
    assert account.account_id
    assert account.created_at == account.updated_at
    assert account.deleted_at is None
    assert account.blocked is False
    assert account.picture_url == "https://img/a.png"
    assert repository.find_by_id(account.account_id) == account


def test_create_rejects_duplicate_username_without_writing(repository):
    repository.create(_candidate("a"))
    with pytest.raises(DuplicateUsername):
        repository.create(_candidate("b", username="user-a"))
    assert len(repository) == 1


def test_duplicate_precedence_is_username_then_email_then_external_id(repository):
    repository.create(_candidate("a"))

    with pytest.raises(DuplicateUsername):
        repository.create(_candidate("a"))
    with pytest.raises(DuplicateEmail):
        repository.create(_candidate("b", email="a@example.com", external_identity_id="ext-a"))
    with pytest.raises(DuplicateExternalIdentity):
        repository.create(_candidate("c", external_identity_id="ext-a"))


def test_uniqueness_covers_soft_deleted_accounts(repository):
    account = repository.create(_candidate("a"))
    repository.soft_delete(account.account_id)
    with pytest.raises(DuplicateEmail):
        repository.create(_candidate("b", email="a@example.com"))


def test_concurrent_distinct_creates_all_succeed(repository):
    with ThreadPoolExecutor(max_workers=8) as pool:
        accounts = list(pool.map(lambda i: repository.create(_candidate(str(i))), range(16)))
    assert len({a.account_id for a in accounts}) == 16
    assert len(repository) == 16


def test_concurrent_creates_for_same_external_identity_admit_one(repository):
    barrier = threading.Barrier(8)

    def attempt(i: int):
        barrier.wait()
        try:
            return repository.create(_candidate(str(i), external_identity_id="ext-race"))
        except DuplicateExternalIdentity as exc:
            return exc

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(attempt, range(8)))

    created = [r for r in results if not isinstance(r, Exception)]
    assert len(created) == 1
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 7
    assert all(isinstance(r, DuplicateExternalIdentity) for r in failures)
    assert repository.find_by_external_identity("ext-race").account_id == created[0].account_id
    assert len(repository) == 1


def test_find_by_external_identity_hides_trashed_accounts(repository):
    account = repository.create(_candidate("a"))
    repository.soft_delete(account.account_id)

    with pytest.raises(NotFound):
        repository.find_by_external_identity("ext-a")
    trashed = repository.find_by_external_identity("ext-a", include_trashed=True)
    assert trashed.account_id == account.account_id


def test_find_by_id_treats_trashed_as_not_found(repository):
    account = repository.create(_candidate("a"))
    repository.soft_delete(account.account_id)

    with pytest.raises(NotFound):
        repository.find_by_id(account.account_id)
    trashed = repository.find_by_id(account.account_id, include_trashed=True)
    assert trashed.email == "a@example.com"
    assert trashed.deleted_at is not None


def test_find_by_id_unknown(repository):
    with pytest.raises(NotFound):
        repository.find_by_id("missing", include_trashed=True)


def test_soft_delete_twice_keeps_first_timestamp(repository):
    account = repository.create(_candidate("a"))
    repository.soft_delete(account.account_id)
    first = repository.find_by_id(account.account_id, include_trashed=True)
    time.sleep(0.01)
    repository.soft_delete(account.account_id)
    second = repository.find_by_id(account.account_id, include_trashed=True)

    assert second.deleted_at == first.deleted_at
    assert second.deleted_at >= second.created_at
    assert second.username == account.username
    assert second.updated_at == account.updated_at


def test_restore_makes_account_visible_again(repository):
    account = repository.create(_candidate("a"))
    repository.soft_delete(account.account_id)
    repository.restore(account.account_id)
    assert repository.find_by_id(account.account_id).deleted_at is None


def test_update_replaces_fields_but_keeps_identity(repository):
    account = repository.create(_candidate("a"))
    previous_updated_at = account.updated_at
    account.display_name = "Renamed"
    account.blocked = True
    account.created_at = account.created_at - timedelta(days=3)

    updated = repository.update(account)

    assert updated.display_name == "Renamed"
    assert updated.blocked is True
    stored = repository.find_by_id(account.account_id)
    assert stored.created_at == updated.created_at
    assert stored.created_at != account.created_at
    assert stored.updated_at >= previous_updated_at


def test_update_does_not_recheck_uniqueness(repository):
    first = repository.create(_candidate("a"))
    second = repository.create(_candidate("b"))
    second.email = first.email
    assert repository.update(second).email == first.email


def test_update_unknown_account(repository):
    account = repository.create(_candidate("a"))
    repository.delete(account.account_id)
    with pytest.raises(NotFound):
        repository.update(account)


def test_delete_removes_record(repository):
    account = repository.create(_candidate("a"))
    repository.delete(account.account_id)
    with pytest.raises(NotFound):
        repository.find_by_id(account.account_id, include_trashed=True)
    repository.delete(account.account_id)


def test_credential_store_lifecycle():
    store = InMemoryCredentialStore()
    now = datetime.now(timezone.utc)
    older = store.create(
        NewRefreshCredential("acc-1", now + timedelta(days=1), "iPhone", "iOS", "Mobile Safari", now - timedelta(hours=1))
    )
    newer = store.create(
        NewRefreshCredential("acc-1", now + timedelta(days=1), "Other", "Linux", "Firefox", now)
    )
    store.create(NewRefreshCredential("acc-2", now + timedelta(days=1), "", "", "", now))

    assert store.get(older.credential_id).device == "iPhone"
    assert [r.credential_id for r in store.list_for_account("acc-1")] == [
        newer.credential_id,
        older.credential_id,
    ]

    store.delete(older.credential_id)
    with pytest.raises(NotFound):
        store.get(older.credential_id)
