"""HTTP route definitions for the sign-in service."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, FastAPI, Header, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..domain.account import Account
from ..domain.errors import AccountLookupFailed, RejectionReason, SignInRejected
from ..domain.service import SessionOrchestrator, SignInRequest
from ..security.rate_limiter import RateLimiter
from ..security.user_agent import parse_device

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")


class SignInPayload(BaseModel):
    """JSON body exchanging a provider identity token for credentials."""

    token: str
    provider: str


class UserResponse(BaseModel):
    """Public projection of the signed-in account."""

    name: str
    username: str
    picture: str

    @classmethod
    def from_domain(cls, account: Account) -> "UserResponse":
        return cls(
            name=account.display_name,
            username=account.username,
            picture=account.picture_url,
        )


class SignInResponse(BaseModel):
    """Credential pair and account summary returned on a completed sign-in."""

    access_token: str
    type: str = "Bearer"
    expires_in: int
    refresh_token: str
    user: UserResponse


class ErrorResponse(BaseModel):
    """Envelope returned for every failed request."""

    code: int
    message: str
    errors: str


class RateLimited(Exception):
    """Raised when the caller exhausted its sign-in window; carries the wait in seconds."""

    def __init__(self, retry_after: int) -> None:
        super().__init__("rate limited")
        self.retry_after = retry_after


_REJECTION_RESPONSES: dict[RejectionReason, tuple[int, str]] = {
    RejectionReason.unsupported_provider: (
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "The provider is not registered in our system.",
    ),
    RejectionReason.unauthorized: (status.HTTP_401_UNAUTHORIZED, "Token rejected."),
    RejectionReason.provisioning_failed: (
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Error creating user",
    ),
    RejectionReason.issuance_failed: (
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Failed to generate token.",
    ),
}


def get_orchestrator(request: Request) -> SessionOrchestrator:
    """Resolve the `SessionOrchestrator` stored on the FastAPI application state."""
    orchestrator: SessionOrchestrator = request.app.state.session_orchestrator
    return orchestrator


def get_rate_limiter(request: Request) -> RateLimiter:
    """Resolve the limiter guarding sign-in from the application state."""
    limiter: RateLimiter = request.app.state.rate_limiter
    return limiter


@router.post(
    "/auth/signin",
    response_model=SignInResponse,
    responses={
        401: {"model": ErrorResponse},
        405: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
def sign_in(
    payload: SignInPayload,
    request: Request,
    user_agent: str | None = Header(default=None, alias="User-Agent"),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
) -> SignInResponse:
    """Verify a provider identity token and issue application credentials."""
    client_host = request.client.host if request.client else "unknown"
    decision = rate_limiter.check(f"signin:{client_host}")
    if not decision.allowed:
        logger.info("sign-in rate limited for %s", client_host)
        raise RateLimited(decision.retry_after)

    bundle = orchestrator.sign_in(
        SignInRequest(
            provider=payload.provider,
            token=payload.token,
            device=parse_device(user_agent),
        )
    )
    return SignInResponse(
        access_token=bundle.access_token,
        type=bundle.token_type,
        expires_in=bundle.access_expires_in,
        refresh_token=bundle.refresh_token,
        user=UserResponse.from_domain(bundle.account),
    )


def _error_response(
    status_code: int, message: str, errors: str, headers: dict[str, str] | None = None
) -> JSONResponse:
    body = ErrorResponse(code=status_code, message=message, errors=errors)
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


async def _handle_rejection(request: Request, exc: SignInRejected) -> JSONResponse:
    status_code, message = _REJECTION_RESPONSES[exc.reason]
    if isinstance(exc.cause, AccountLookupFailed):
        message = "Failed to fetch user info."
    return _error_response(status_code, message, str(exc.cause))


async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg', '')}"
        for error in exc.errors()
    )
    return _error_response(422, "Failed to process request body", details)


async def _handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
        message = "HTTP Method not allowed"
        errors = f"method {request.method} is not allowed"
    else:
        message = str(exc.detail)
        errors = str(exc.detail)
    return _error_response(exc.status_code, message, errors, getattr(exc, "headers", None))


async def _handle_rate_limited(request: Request, exc: RateLimited) -> JSONResponse:
    return _error_response(
        status.HTTP_429_TOO_MANY_REQUESTS,
        "Too many sign-in attempts",
        "rate limited",
        {"Retry-After": str(exc.retry_after)},
    )


async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", type(exc).__name__
    )


def register_error_handlers(app: FastAPI) -> None:
    """Render every failure as the ``{code, message, errors}`` envelope."""
    app.add_exception_handler(SignInRejected, _handle_rejection)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)
    app.add_exception_handler(StarletteHTTPException, _handle_http_error)
    app.add_exception_handler(RateLimited, _handle_rate_limited)
    app.add_exception_handler(Exception, _handle_unexpected)
