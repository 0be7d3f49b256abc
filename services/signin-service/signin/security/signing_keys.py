"""Retrieval of the private key used to sign issued credentials."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from threading import Lock
from typing import Callable

from ..domain.contracts import SigningKeyProvider
from ..domain.errors import SigningKeyUnavailable

logger = logging.getLogger(__name__)


class FileSigningKeyProvider:
    """Read named PEM secrets from a mounted secrets directory.

    The file is read on every call, so a secret rotated in place on the volume
    is picked up by the next issuance without a restart.
    """

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    def fetch_signing_key(self, name: str) -> bytes:
        if not name or Path(name).name != name:
            raise SigningKeyUnavailable(f"invalid signing key name {name!r}")
        path = self._directory / name
        try:
            data = path.read_bytes()
        except OSError as exc:
            logger.error("signing key %s could not be read from %s: %s", name, self._directory, exc)
            raise SigningKeyUnavailable(f"signing key {name!r} is unavailable") from exc
        if not data.strip():
            raise SigningKeyUnavailable(f"signing key {name!r} is empty")
        return data


class CachedSigningKeyProvider:
    """Time-bounded cache in front of another key provider.

    Entries expire after ``ttl_seconds`` so rotated keys are served once the
    window lapses. Failed fetches are never cached.
    """

    def __init__(
        self,
        inner: SigningKeyProvider,
        ttl_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._inner = inner
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, bytes]] = {}
        self._lock = Lock()

    def fetch_signing_key(self, name: str) -> bytes:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(name)
            if entry is not None and now - entry[0] < self._ttl:
                return entry[1]
        key = self._inner.fetch_signing_key(name)
        with self._lock:
            self._entries[name] = (now, key)
        return key


def build_signing_key_provider(directory: str | Path, cache_seconds: int) -> SigningKeyProvider:
    """Return a file-backed provider, cached when ``cache_seconds`` is positive."""
    provider: SigningKeyProvider = FileSigningKeyProvider(directory)
    if cache_seconds > 0:
        provider = CachedSigningKeyProvider(provider, cache_seconds)
    return provider
