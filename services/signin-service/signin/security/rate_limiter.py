"""Sliding window rate limiters guarding the sign-in endpoint."""

from __future__ import annotations

import logging
import math
import time
from collections import deque
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Deque, Dict, Final, Protocol

from redis import Redis
from redis.exceptions import RedisError, ResponseError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    allowed: bool
    retry_after: int = 0


class RateLimiter(Protocol):
    def check(self, key: str) -> RateLimitDecision: ...


class SlidingWindowRateLimiter:
    """Thread-safe in-process sliding window limiter.

    Keys whose newest request left the window are swept at most once per
    window, so addresses that never return do not accumulate.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._max_requests = max_requests
        self._window = window_seconds
        self._clock = clock
        self._events: Dict[str, Deque[float]] = {}
        self._last_sweep = clock()
        self._lock = Lock()

    def check(self, key: str) -> RateLimitDecision:
        """Record a request for ``key`` unless its window is already full."""
        now = self._clock()
        with self._lock:
            if now - self._last_sweep > self._window:
                self._sweep(now)
            queue = self._events.setdefault(key, deque())
            while queue and now - queue[0] > self._window:
                queue.popleft()
            if len(queue) >= self._max_requests:
                wait = self._window - (now - queue[0])
                return RateLimitDecision(False, max(1, math.ceil(wait)))
            queue.append(now)
            return RateLimitDecision(True)

    def _sweep(self, now: float) -> None:
        stale = [
            key
            for key, queue in self._events.items()
            if not queue or now - queue[-1] > self._window
        ]
        for key in stale:
            del self._events[key]
        self._last_sweep = now

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


class RedisSlidingWindowRateLimiter:
    """Limiter shared by every replica, kept in Redis sorted sets."""

    # Returns 0 when admitted, otherwise milliseconds until the oldest entry leaves the window.
    _LUA_SCRIPT: Final[str] = """
    local key = KEYS[1]
    local counter_key = key .. ':seq'
    local window_ms = tonumber(ARGV[1])
    local max_requests = tonumber(ARGV[2])
    local now_ms = tonumber(ARGV[3])

    redis.call('ZREMRANGEBYSCORE', key, 0, now_ms - window_ms)
    if redis.call('ZCARD', key) >= max_requests then
        local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
        return math.max(1, window_ms - (now_ms - tonumber(oldest[2])))
    end
    local seq = redis.call('INCR', counter_key)
    redis.call('PEXPIRE', counter_key, window_ms)
    redis.call('ZADD', key, now_ms, tostring(now_ms) .. ':' .. tostring(seq))
    redis.call('PEXPIRE', key, window_ms)
    return 0
    """

    def __init__(
        self,
        client: Redis,
        *,
        max_requests: int,
        window_seconds: int,
        key_prefix: str = "signin-rate",
    ) -> None:
        self._client = client
        self._max_requests = max_requests
        self._window_ms = window_seconds * 1000
        self._key_prefix = key_prefix
        self._script = client.register_script(self._LUA_SCRIPT)

    def check(self, key: str) -> RateLimitDecision:
        """Record a request for ``key`` in Redis; admits the request if Redis is unreachable."""
        now_ms = int(time.time() * 1000)
        redis_key = f"{self._key_prefix}:{key}"
        try:
            wait_ms = self._run_script(redis_key, now_ms)
        except RedisError as exc:
            logger.warning("rate limiter backend error, admitting %s: %s", key, exc)
            return RateLimitDecision(True)
        if wait_ms <= 0:
            return RateLimitDecision(True)
        return RateLimitDecision(False, max(1, math.ceil(wait_ms / 1000)))

    def _run_script(self, redis_key: str, now_ms: int) -> int:
        try:
            return int(
                self._script(keys=[redis_key], args=[self._window_ms, self._max_requests, now_ms])
            )
        except ResponseError as exc:
            message = str(exc).lower()
            if "unknown command `evalsha`" in message or "unknown command `eval`" in message:
                return self._check_without_lua(redis_key, now_ms)
            raise

    def _check_without_lua(self, redis_key: str, now_ms: int) -> int:
        """Non-atomic equivalent of the Lua script for servers without scripting."""
        self._client.zremrangebyscore(redis_key, 0, now_ms - self._window_ms)
        if self._client.zcard(redis_key) >= self._max_requests:
            oldest = self._client.zrange(redis_key, 0, 0, withscores=True)
            oldest_ms = int(oldest[0][1]) if oldest else now_ms
            return max(1, self._window_ms - (now_ms - oldest_ms))
        seq = self._client.incr(f"{redis_key}:seq")
        self._client.pexpire(f"{redis_key}:seq", self._window_ms)
        self._client.zadd(redis_key, {f"{now_ms}:{seq}": now_ms})
        self._client.pexpire(redis_key, self._window_ms)
        return 0
