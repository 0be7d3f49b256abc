"""Postgres repositories for accounts and issued refresh credentials."""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

import psycopg
from psycopg import Cursor
from psycopg.rows import tuple_row
from psycopg_pool import ConnectionPool

from .domain.account import Account
from .domain.contracts import CreateAccountInput, NewRefreshCredential
from .domain.credentials import RefreshCredentialRecord
from .domain.errors import (
    DuplicateAccountError,
    DuplicateEmail,
    DuplicateExternalIdentity,
    DuplicateUsername,
    NotFound,
    StoreError,
)

logger = logging.getLogger(__name__)

_ACCOUNT_COLUMNS = """
    account_id, display_name, username, email, external_identity_id,
    picture_url, blocked, created_at, updated_at, deleted_at
"""

_CREDENTIAL_COLUMNS = "credential_id, account_id, expires_at, device, os, client_name, created_at"

# Checked in this order; the first collision wins.
_UNIQUE_ACCOUNT_FIELDS: tuple[tuple[str, type[DuplicateAccountError]], ...] = (
    ("username", DuplicateUsername),
    ("email", DuplicateEmail),
    ("external_identity_id", DuplicateExternalIdentity),
)


class _PostgresRepository:
    """Shared transaction handling for the Postgres-backed stores."""

    def __init__(self, pool: ConnectionPool, *, statement_timeout_ms: int = 5000) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool
        self._statement_timeout_ms = statement_timeout_ms

    @contextmanager
    def _transaction(self) -> Iterator[Cursor]:
        """Yield a cursor inside a transaction that rolls back on any error.

        Driver failures, including pool checkout timeouts and statements
        cancelled by ``statement_timeout``, surface as ``StoreError``.
        """
        try:
            with self._pool.connection() as conn:
                with conn.transaction():
                    with conn.cursor(row_factory=tuple_row) as cur:
                        cur.execute(
                            "SELECT set_config('statement_timeout', %s, true)",
                            (str(self._statement_timeout_ms),),
                        )
                        yield cur
        except psycopg.Error as exc:
            raise StoreError(str(exc)) from exc


class PostgresAccountRepository(_PostgresRepository):
    """Account persistence with creation-time uniqueness enforcement."""

    def find_by_external_identity(
        self, external_identity_id: str, *, include_trashed: bool = False
    ) -> Account:
        """Return the first account registered for the provider subject id."""
        trash_clause = "" if include_trashed else "AND deleted_at IS NULL"
        with self._transaction() as cur:
            cur.execute(
                f"""
                SELECT {_ACCOUNT_COLUMNS}
                FROM accounts
                WHERE external_identity_id = %s {trash_clause}
                ORDER BY created_at, account_id
                LIMIT 1
                """,
                (external_identity_id,),
            )
            row = cur.fetchone()
        if row is None:
            raise NotFound(f"no account for external identity {external_identity_id!r}")
        return self._map_account(row)

    def find_by_id(self, account_id: str, *, include_trashed: bool = False) -> Account:
        with self._transaction() as cur:
            cur.execute(
                f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE account_id = %s",
                (account_id,),
            )
            row = cur.fetchone()
        if row is None:
            raise NotFound(f"account {account_id!r} not found")
        account = self._map_account(row)
        if account.trashed and not include_trashed:
            raise NotFound(f"account {account_id!r} not found")
        return account

    def create(self, candidate: CreateAccountInput) -> Account:
        """Insert a new account unless one of its unique fields is taken.

        The existence checks and the insert share one transaction. Before
        checking, the transaction takes an advisory lock per candidate value,
        so a concurrent creation carrying any of the same values waits for this
        one to commit and then observes the inserted row.
        """
        values = {
            "username": candidate.username,
            "email": candidate.email,
            "external_identity_id": candidate.external_identity_id,
        }
        # stable order so two creations never wait on each other's locks crosswise
        lock_keys = sorted({f"accounts:{column}:{value}" for column, value in values.items()})
        account_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)

        with self._transaction() as cur:
            for key in lock_keys:
                cur.execute("SELECT pg_advisory_xact_lock(hashtextextended(%s, 0))", (key,))

            for column, error in _UNIQUE_ACCOUNT_FIELDS:
                cur.execute(
                    f"SELECT 1 FROM accounts WHERE {column} = %s LIMIT 1",
                    (values[column],),
                )
                if cur.fetchone() is not None:
                    logger.info("account creation rejected: duplicate %s", column)
                    raise error(values[column])

            cur.execute(
                f"""
                INSERT INTO accounts (
                    account_id, display_name, username, email, external_identity_id,
                    picture_url, blocked, created_at, updated_at, deleted_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, NULL)
                RETURNING {_ACCOUNT_COLUMNS}
                """,
                (
                    account_id,
                    candidate.display_name,
                    candidate.username,
                    candidate.email,
                    candidate.external_identity_id,
                    candidate.picture_url,
                    candidate.blocked,
                    now,
                    now,
                ),
            )
            row = cur.fetchone()

        logger.info("account %s created", account_id)
        return self._map_account(row)

    def update(self, account: Account) -> Account:
        """Replace the mutable fields of ``account`` and refresh ``updated_at``."""
        now = datetime.now(timezone.utc)
        with self._transaction() as cur:
            cur.execute(
                f"""
                UPDATE accounts
                SET display_name = %s,
                    username = %s,
                    email = %s,
                    external_identity_id = %s,
                    picture_url = %s,
                    blocked = %s,
                    updated_at = GREATEST(updated_at, %s)
                WHERE account_id = %s
                RETURNING {_ACCOUNT_COLUMNS}
                """,
                (
                    account.display_name,
                    account.username,
                    account.email,
                    account.external_identity_id,
                    account.picture_url,
                    account.blocked,
                    now,
                    account.account_id,
                ),
            )
            row = cur.fetchone()
        if row is None:
            raise NotFound(f"account {account.account_id!r} not found")
        return self._map_account(row)

    def soft_delete(self, account_id: str) -> None:
        """Mark the account trashed; a repeated call keeps the first timestamp."""
        with self._transaction() as cur:
            cur.execute(
                """
                UPDATE accounts
                SET deleted_at = COALESCE(deleted_at, %s)
                WHERE account_id = %s
                """,
                (datetime.now(timezone.utc), account_id),
            )
            if cur.rowcount == 0:
                raise NotFound(f"account {account_id!r} not found")

    def restore(self, account_id: str) -> None:
        with self._transaction() as cur:
            cur.execute(
                "UPDATE accounts SET deleted_at = NULL WHERE account_id = %s",
                (account_id,),
            )
            if cur.rowcount == 0:
                raise NotFound(f"account {account_id!r} not found")

    def delete(self, account_id: str) -> None:
        with self._transaction() as cur:
            cur.execute("DELETE FROM accounts WHERE account_id = %s", (account_id,))

    def _map_account(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            account_id=row[0],
            display_name=row[1],
            username=row[2],
            email=row[3],
            external_identity_id=row[4],
            picture_url=row[5],
            blocked=row[6],
            created_at=row[7],
            updated_at=row[8],
            deleted_at=row[9],
        )


class PostgresCredentialStore(_PostgresRepository):
    """Refresh credential rows; immutable once written."""

    def create(self, credential: NewRefreshCredential) -> RefreshCredentialRecord:
        credential_id = str(uuid.uuid4())
        with self._transaction() as cur:
            cur.execute(
                f"""
                INSERT INTO refresh_credentials ({_CREDENTIAL_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING {_CREDENTIAL_COLUMNS}
                """,
                (
                    credential_id,
                    credential.account_id,
                    credential.expires_at,
                    credential.device,
                    credential.os,
                    credential.client_name,
                    credential.created_at,
                ),
            )
            row = cur.fetchone()
        return RefreshCredentialRecord(*row)

    def get(self, credential_id: str) -> RefreshCredentialRecord:
        with self._transaction() as cur:
            cur.execute(
                f"SELECT {_CREDENTIAL_COLUMNS} FROM refresh_credentials WHERE credential_id = %s",
                (credential_id,),
            )
            row = cur.fetchone()
        if row is None:
            raise NotFound(f"refresh credential {credential_id!r} not found")
        return RefreshCredentialRecord(*row)

    def list_for_account(self, account_id: str) -> list[RefreshCredentialRecord]:
        """Return every refresh credential issued to the account, newest first."""
        with self._transaction() as cur:
            cur.execute(
                f"""
                SELECT {_CREDENTIAL_COLUMNS}
                FROM refresh_credentials
                WHERE account_id = %s
                ORDER BY created_at DESC
                """,
                (account_id,),
            )
            rows = cur.fetchall()
        return [RefreshCredentialRecord(*row) for row in rows]

    def delete(self, credential_id: str) -> None:
        """Revoke a refresh credential by removing its record."""
        with self._transaction() as cur:
            cur.execute(
                "DELETE FROM refresh_credentials WHERE credential_id = %s",
                (credential_id,),
            )
