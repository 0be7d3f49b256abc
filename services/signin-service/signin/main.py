"""FastAPI application wiring for the sign-in service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis
from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.routes import register_error_handlers, router as v1_router
from .config import Settings, get_settings
from .domain.contracts import AccountStore, CredentialStore
from .domain.resolver import IdentityResolver
from .domain.service import SessionOrchestrator
from .memory_repository import InMemoryAccountRepository, InMemoryCredentialStore
from .repository import PostgresAccountRepository, PostgresCredentialStore
from .security.google import GoogleIdentityVerifier
from .security.rate_limiter import RateLimiter, RedisSlidingWindowRateLimiter, SlidingWindowRateLimiter
from .security.signing_keys import build_signing_key_provider
from .security.tokens import CredentialIssuer

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_orchestrator(
    settings: Settings, accounts: AccountStore, credentials: CredentialStore
) -> SessionOrchestrator:
    """Assemble the sign-in pipeline from configuration and the chosen stores."""
    verifier = GoogleIdentityVerifier(
        audience=settings.server_id,
        authorized_party=settings.google_client_id,
        issuers=settings.google_issuers,
        jwks_url=settings.google_jwks_url,
    )
    issuer = CredentialIssuer(
        credentials,
        build_signing_key_provider(settings.secrets_dir, settings.signing_key_cache_seconds),
        signing_key_name=settings.signing_key_name,
        issuer=settings.token_issuer,
        audience=settings.token_audience,
    )
    return SessionOrchestrator(
        {"google": verifier},
        IdentityResolver(accounts),
        issuer,
        access_ttl_seconds=settings.access_ttl_seconds,
        refresh_ttl_seconds=settings.refresh_ttl_seconds,
    )


def build_rate_limiter(settings: Settings) -> RateLimiter:
    """Instantiate the configured rate limiter backend, preferring Redis when available."""
    if settings.rate_limit_backend == "redis" and settings.redis_url:
        try:
            client = redis.from_url(settings.redis_url)
            # ensure connectivity early to fail fast and fall back
            client.ping()
        except redis.RedisError as exc:
            logger.warning("redis rate limiter unavailable, falling back to in-memory: %s", exc)
        else:
            logger.info("rate limiter configured for redis backend")
            return RedisSlidingWindowRateLimiter(
                client,
                max_requests=settings.rate_limit_requests,
                window_seconds=settings.rate_limit_window_seconds,
            )

    logger.info("rate limiter using in-memory backend")
    return SlidingWindowRateLimiter(
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (store handles, pipeline) for the app lifecycle."""
    pool: ConnectionPool | None = None
    if settings.store_backend == "memory":
        logger.warning("using in-memory stores; accounts are lost on restart")
        accounts: AccountStore = InMemoryAccountRepository()
        credentials: CredentialStore = InMemoryCredentialStore()
    else:
        pool = ConnectionPool(settings.database_url, open=False)
        pool.open()
        timeout_ms = settings.store_statement_timeout_ms
        accounts = PostgresAccountRepository(pool, statement_timeout_ms=timeout_ms)
        credentials = PostgresCredentialStore(pool, statement_timeout_ms=timeout_ms)

    app.state.session_orchestrator = build_orchestrator(settings, accounts, credentials)
    app.state.rate_limiter = build_rate_limiter(settings)
    try:
        yield
    finally:
        if pool is not None:
            pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)
register_error_handlers(app)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


@app.get("/metrics", tags=["health"])
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(v1_router)
