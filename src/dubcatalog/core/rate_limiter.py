"""Window rate limiters keyed by client identity.

Each client key owns a counting window that opens on the first request and
lasts ``window_seconds``.  Requests inside the window are counted until
``max_requests`` is reached; further requests are rejected without being
counted until the window expires, at which point a fresh window opens.

Two backends implement the :class:`RateLimiter` interface:

- :class:`MemoryRateLimiter`: a process-wide dict guarded by a
  ``threading.Lock``.  Budgets are per process.
- :class:`RedisRateLimiter`: one Redis counter per client, checked and
  incremented by an atomic Lua script so every instance behind a load
  balancer shares the same budget.

Typical usage::

    limiter = MemoryRateLimiter(RateLimitConfig(max_requests=20, window_seconds=60))

    if not await limiter.admit(client_key_from_headers(request.headers)):
        raise RateLimitError(retry_after=limiter.window_seconds)
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Mapping

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT_KEY: str = "unknown"
"""Shared bucket for requests that carry no forwarded-IP header."""


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass
class RateLimitConfig:
    """Rate limit configuration.

    Attributes:
        max_requests: Maximum requests admitted per client within one window.
        window_seconds: Window length in seconds.
    """

    max_requests: int = 20
    window_seconds: int = 60


@dataclass
class RateWindow:
    """Counting window for a single client key.

    Attributes:
        count: Requests admitted in the current window.
        window_reset_at: Clock reading after which the window is stale.
    """

    count: int
    window_reset_at: float


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------


class RateLimiter(ABC):
    """Per-client admission control shared by every request."""

    config: RateLimitConfig

    @property
    def window_seconds(self) -> int:
        """Window length; rejected clients are told to retry after this many seconds."""
        return int(self.config.window_seconds)

    @abstractmethod
    async def admit(self, client_key: str) -> bool:
        """Admit or reject one request for *client_key*.

        Args:
            client_key: Caller identity, usually derived from a forwarded-IP header.

        Returns:
            ``True`` if the request is admitted and has been counted.
            ``False`` if the client's budget for the current window is spent.
        """

    async def close(self) -> None:  # noqa: B027
        """Release backend resources.  No-op unless the backend holds connections."""


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


@dataclass
class MemoryRateLimiter(RateLimiter):
    """In-process window rate limiter.

    Attributes:
        config: Budget and window length.
        clock: Monotonic time source in seconds.  Tests inject a fake clock.
    """

    config: RateLimitConfig = field(default_factory=RateLimitConfig)
    clock: Callable[[], float] = time.monotonic
    _windows: dict[str, RateWindow] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def _current_window(self, client_key: str, now: float) -> RateWindow:
        """Return the live window for *client_key*, opening a fresh one if needed.

        Must be called with ``_lock`` held.
        """
        window = self._windows.get(client_key)
        if window is None or now > window.window_reset_at:
            window = RateWindow(count=0, window_reset_at=now + self.config.window_seconds)
            self._windows[client_key] = window
        return window

    async def admit(self, client_key: str) -> bool:
        with self._lock:
            window = self._current_window(client_key, self.clock())
            if window.count >= self.config.max_requests:
                logger.info(
                    "rate_limiter: rejecting %s (%d/%d in window)",
                    client_key,
                    window.count,
                    self.config.max_requests,
                )
                return False
            window.count += 1
            return True

    def retry_after(self, client_key: str) -> float:
        """Return seconds until *client_key*'s window resets, or ``0.0`` if none is open."""
        with self._lock:
            window = self._windows.get(client_key)
            if window is None:
                return 0.0
            return max(0.0, window.window_reset_at - self.clock())

    def reset(self, client_key: str | None = None) -> None:
        """Forget the window for *client_key*, or for every client when ``None``."""
        with self._lock:
            if client_key is None:
                self._windows.clear()
            else:
                self._windows.pop(client_key, None)

    def purge_expired(self) -> int:
        """Drop windows that have already expired.

        Not needed for correctness (stale windows are replaced lazily by
        :meth:`admit`) but bounds memory when many distinct clients appear.

        Returns:
            Number of windows removed.
        """
        with self._lock:
            now = self.clock()
            stale = [key for key, win in self._windows.items() if now > win.window_reset_at]
            for key in stale:
                del self._windows[key]
        if stale:
            logger.debug("rate_limiter: purged %d expired windows", len(stale))
        return len(stale)


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------

# Atomic check-and-increment for one client window.
#
# KEYS[1]: counter key for the client
# ARGV[1]: maximum requests allowed in the window
# ARGV[2]: window length in milliseconds
#
# Returns 1 if the request was admitted and counted, 0 if rejected.
# A rejected request leaves the counter untouched; the first admitted
# request of a window starts the expiry clock.
_LUA_ADMIT = """
local key     = KEYS[1]
local limit   = tonumber(ARGV[1])
local window  = tonumber(ARGV[2])

local current = tonumber(redis.call('GET', key) or '0')
if current >= limit then
    return 0
end
current = redis.call('INCR', key)
if current == 1 then
    redis.call('PEXPIRE', key, window)
end
return 1
"""


@dataclass
class RedisRateLimiter(RateLimiter):
    """Redis-backed window rate limiter shared by every service instance.

    Counters are keyed as ``{prefix}{client_key}`` and expire with their
    window.  The Lua script is uploaded lazily on the first request.  When
    Redis is unreachable the request is admitted and the error logged, so
    a Redis outage degrades to no rate limiting rather than to an outage.

    Attributes:
        redis_client: An initialised ``redis.asyncio.Redis`` connection.
        config: Budget and window length.
        prefix: Key namespace.
    """

    redis_client: aioredis.Redis
    config: RateLimitConfig = field(default_factory=RateLimitConfig)
    prefix: str = "dubcatalog:ratelimit:"
    _sha_admit: str = field(default="", init=False, repr=False)

    @classmethod
    def from_url(cls, url: str, config: RateLimitConfig) -> "RedisRateLimiter":
        return cls(aioredis.from_url(url, decode_responses=True), config=config)

    def _key(self, client_key: str) -> str:
        return f"{self.prefix}{client_key}"

    async def _ensure_script_loaded(self) -> None:
        if not self._sha_admit:
            self._sha_admit = await self.redis_client.script_load(_LUA_ADMIT)

    async def admit(self, client_key: str) -> bool:
        try:
            await self._ensure_script_loaded()
            result = await self.redis_client.evalsha(  # type: ignore[attr-defined]
                self._sha_admit,
                1,
                self._key(client_key),
                str(self.config.max_requests),
                str(int(self.config.window_seconds * 1000)),
            )
        except aioredis.RedisError:
            logger.exception(
                "rate_limiter: redis error for %s; admitting without rate limiting",
                client_key,
            )
            return True
        if not result:
            logger.info("rate_limiter: rejecting %s (budget spent)", client_key)
            return False
        return True

    async def close(self) -> None:
        await self.redis_client.aclose()


# ---------------------------------------------------------------------------
# Client identity
# ---------------------------------------------------------------------------


def client_key_from_headers(headers: Mapping[str, str]) -> str:
    """Derive a rate-limit key from proxy headers.

    Uses the first address in ``X-Forwarded-For``, then ``X-Real-IP``, and
    finally the shared :data:`UNKNOWN_CLIENT_KEY` bucket.

    Args:
        headers: Case-insensitive request header mapping (Starlette ``Headers``).

    Returns:
        The client key string.
    """
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = (headers.get("x-real-ip") or "").strip()
    return real_ip or UNKNOWN_CLIENT_KEY
