"""Map a verified external identity onto a local account."""

from __future__ import annotations

import logging
import uuid
from typing import Callable

from .account import Account
from .contracts import AccountStore, CreateAccountInput, ExternalIdentityClaims
from .errors import AccountLookupFailed, NotFound, StoreError
from ..metrics import ACCOUNTS_PROVISIONED

logger = logging.getLogger(__name__)


def generate_username() -> str:
    """Return an opaque username unrelated to any provider-supplied value."""
    return uuid.uuid4().hex


class IdentityResolver:
    """Find the account for an external identity, provisioning it on first sight."""

    def __init__(
        self,
        accounts: AccountStore,
        *,
        username_factory: Callable[[], str] = generate_username,
    ) -> None:
        self._accounts = accounts
        self._username_factory = username_factory

    def resolve(self, claims: ExternalIdentityClaims) -> Account:
        """Return the existing account for ``claims.subject`` or create one.

        Duplicate errors raised by the repository propagate unchanged: they
        mean a concurrent first sign-in won the race or the data is
        inconsistent, and are not retried here. A store failure during the
        lookup is raised as :class:`AccountLookupFailed`.
        """
        try:
            return self._accounts.find_by_external_identity(claims.subject)
        except NotFound:
            pass
        except StoreError as exc:
            raise AccountLookupFailed(str(exc)) from exc

        account = self._accounts.create(
            CreateAccountInput(
                display_name=claims.name,
                username=self._username_factory(),
                email=claims.email,
                external_identity_id=claims.subject,
                picture_url=claims.picture,
            )
        )
        ACCOUNTS_PROVISIONED.inc()
        logger.info("provisioned account %s for a new external identity", account.account_id)
        return account
