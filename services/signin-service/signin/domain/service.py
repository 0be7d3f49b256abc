"""Sign-in orchestration: verify the assertion, resolve the account, issue credentials."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping

from .account import Account
from .contracts import IdentityVerifier
from .credentials import DeviceDescriptor
from .errors import (
    RejectionReason,
    SignInError,
    SignInRejected,
    UnsupportedProvider,
)
from .resolver import IdentityResolver
from ..metrics import SIGNIN_OUTCOMES
from ..security.tokens import CredentialIssuer

logger = logging.getLogger(__name__)


class SignInState(str, Enum):
    received = "received"
    dispatched = "dispatched"
    verifying = "verifying"
    resolving = "resolving"
    issuing = "issuing"
    completed = "completed"
    rejected = "rejected"


@dataclass(slots=True)
class SignInRequest:
    """Inbound provider assertion plus the caller's device descriptor."""

    provider: str
    token: str
    device: DeviceDescriptor = field(default_factory=DeviceDescriptor)


@dataclass(slots=True)
class TokenBundle:
    """Encapsulates the access/refresh token pair returned to API consumers."""

    access_token: str
    access_expires_in: int
    refresh_token: str
    account: Account
    token_type: str = "Bearer"


class SessionOrchestrator:
    """Drive one sign-in from ``received`` to ``completed`` or ``rejected``.

    Holds no per-request state; every call to :meth:`sign_in` starts fresh.
    Nothing is retried, and this is the only place where component errors are
    translated into a :class:`SignInRejected` reason.

    Non-positive lifetimes raise ``ValueError`` at construction, so a bad
    configuration fails at startup rather than per request.
    """

    def __init__(
        self,
        verifiers: Mapping[str, IdentityVerifier],
        resolver: IdentityResolver,
        issuer: CredentialIssuer,
        *,
        access_ttl_seconds: int,
        refresh_ttl_seconds: int,
    ) -> None:
        if access_ttl_seconds <= 0 or refresh_ttl_seconds <= 0:
            raise ValueError("access and refresh lifetimes must be positive")
        self._verifiers = {name.lower(): verifier for name, verifier in verifiers.items()}
        self._resolver = resolver
        self._issuer = issuer
        self._access_ttl_seconds = access_ttl_seconds
        self._refresh_ttl_seconds = refresh_ttl_seconds

    def sign_in(self, request: SignInRequest) -> TokenBundle:
        """Exchange a provider identity token for application credentials.

        Raises
        ------
        SignInRejected
            With the reason matching the state the attempt failed in.
        """
        state = self._advance(SignInState.received, SignInState.dispatched)

        verifier = self._verifiers.get(request.provider.strip().lower())
        if verifier is None:
            raise self._reject(
                state, RejectionReason.unsupported_provider, UnsupportedProvider(request.provider)
            )
        state = self._advance(state, SignInState.verifying)

        try:
            claims = verifier.verify(request.token)
        except SignInError as exc:
            raise self._reject(state, RejectionReason.unauthorized, exc) from exc
        state = self._advance(state, SignInState.resolving)

        try:
            account = self._resolver.resolve(claims)
        except SignInError as exc:
            raise self._reject(state, RejectionReason.provisioning_failed, exc) from exc
        state = self._advance(state, SignInState.issuing)

        try:
            refresh_token = self._issuer.issue_refresh_credential(
                account, self._refresh_ttl_seconds, request.device
            )
            access_token = self._issuer.issue_access_credential(account, self._access_ttl_seconds)
        except SignInError as exc:
            raise self._reject(state, RejectionReason.issuance_failed, exc) from exc
        self._advance(state, SignInState.completed)

        SIGNIN_OUTCOMES.labels(outcome=SignInState.completed.value).inc()
        return TokenBundle(
            access_token=access_token,
            access_expires_in=self._access_ttl_seconds,
            refresh_token=refresh_token,
            account=account,
        )

    def _advance(self, current: SignInState, target: SignInState) -> SignInState:
        logger.debug("sign-in %s -> %s", current.value, target.value)
        return target

    def _reject(
        self, state: SignInState, reason: RejectionReason, cause: SignInError
    ) -> SignInRejected:
        logger.warning(
            "sign-in rejected in %s: %s (%s)", state.value, reason.value, type(cause).__name__
        )
        SIGNIN_OUTCOMES.labels(outcome=reason.value).inc()
        return SignInRejected(reason, cause)
