"""Typed failures raised across the sign-in pipeline."""

from __future__ import annotations

from enum import Enum


class SignInError(Exception):
    """Base class for every failure the sign-in core can raise."""


class UnsupportedProvider(SignInError):
    def __init__(self, provider: str) -> None:
        super().__init__(f"provider {provider!r} is not registered")
        self.provider = provider


class Unauthorized(SignInError):
    """The identity assertion is forged, expired, or meant for another audience."""


class NotFound(SignInError):
    """A lookup matched no visible record."""


class DuplicateAccountError(SignInError):
    """An account creation collided with an existing record on a unique field."""

    field: str = ""

    def __init__(self, value: str) -> None:
        super().__init__(self.message)
        self.value = value

    @property
    def message(self) -> str:
        return f"{self.field} has been picked by another account"


class DuplicateUsername(DuplicateAccountError):
    field = "username"


class DuplicateEmail(DuplicateAccountError):
    field = "email"


class DuplicateExternalIdentity(DuplicateAccountError):
    field = "external_identity_id"

    @property
    def message(self) -> str:
        return "external identity has been registered by another account"


class SigningKeyUnavailable(SignInError):
    """The private signing key could not be fetched or parsed."""


class SignatureFailure(SignInError):
    """The claim set could not be signed with the fetched key."""


class StoreError(SignInError):
    """Generic downstream persistence failure."""


class AccountLookupFailed(StoreError):
    """The account store failed while looking up an existing account."""


class RejectionReason(str, Enum):
    unsupported_provider = "unsupported_provider"
    unauthorized = "unauthorized"
    provisioning_failed = "provisioning_failed"
    issuance_failed = "issuance_failed"


class SignInRejected(SignInError):
    """Terminal ``Rejected`` outcome of a sign-in attempt.

    ``cause`` holds the underlying typed error so callers can report it
    without string matching.
    """

    def __init__(self, reason: RejectionReason, cause: SignInError) -> None:
        super().__init__(f"{reason.value}: {cause}")
        self.reason = reason
        self.cause = cause
