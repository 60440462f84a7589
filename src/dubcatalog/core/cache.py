"""TTL cache backends for extracted pages.

The pipeline depends only on the :class:`Cache` interface; the concrete
backend is chosen at application start-up from ``settings.cache_backend``:

- :class:`MemoryCache`: process-wide dict with lazy expiry.  Not durable
  across restarts and not shared between instances.
- :class:`RedisCache`: JSON payloads in Redis with server-side expiry,
  for deployments that run several instances behind a load balancer.

All methods are coroutines so both backends are interchangeable.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A cached value with its creation and expiry timestamps.

    Attributes:
        data: The cached payload.
        created_at: Clock reading when the entry was stored.
        expires_at: Clock reading after which the entry is stale.
    """

    data: T
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class Cache(ABC):
    """Key → value store with a per-entry time-to-live."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the cached value, or ``None`` on a miss (absent or expired)."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: float) -> None:
        """Store *value* under *key* for *ttl* seconds, overwriting any existing entry."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Evict *key* if present."""

    @abstractmethod
    async def clear(self) -> None:
        """Evict every entry owned by this cache."""

    async def close(self) -> None:  # noqa: B027
        """Release backend resources.  No-op unless the backend holds connections."""


def _check_ttl(ttl: float) -> None:
    if ttl <= 0:
        raise ValueError(f"cache TTL must be positive, got {ttl!r}")


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class MemoryCache(Cache):
    """Process-wide in-memory cache with lazy expiry.

    Expired entries are evicted when a ``get`` finds them stale; the
    optional :meth:`purge_expired` sweep bounds memory between lookups.

    Args:
        clock: Time source in seconds.  Defaults to :func:`time.monotonic`.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, CacheEntry[Any]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    async def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                logger.debug("cache: evicted expired entry %s", key)
                return None
            return entry.data

    async def set(self, key: str, value: Any, ttl: float) -> None:
        _check_ttl(ttl)
        with self._lock:
            now = self._clock()
            self._entries[key] = CacheEntry(data=value, created_at=now, expires_at=now + ttl)

    async def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    async def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def purge_expired(self) -> int:
        """Remove every expired entry.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            now = self._clock()
            stale = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in stale:
                del self._entries[key]
        return len(stale)


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------


class RedisCache(Cache):
    """Redis-backed cache storing JSON-serialisable payloads.

    Expiry is enforced by Redis (``SET ... EX``) so a ``get`` after the TTL
    is a miss without any client-side bookkeeping.  Keys are namespaced with
    *prefix* so :meth:`clear` only touches this cache's entries.

    Args:
        redis_client: An initialised ``redis.asyncio.Redis`` connection.
        prefix: Key namespace.
    """

    def __init__(self, redis_client: aioredis.Redis, prefix: str = "dubcatalog:") -> None:
        self._redis = redis_client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "dubcatalog:") -> "RedisCache":
        return cls(aioredis.from_url(url, decode_responses=True), prefix=prefix)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Any | None:
        raw = await self._redis.get(self._key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("cache: discarding undecodable redis entry %s", key)
            await self._redis.delete(self._key(key))
            return None

    async def set(self, key: str, value: Any, ttl: float) -> None:
        _check_ttl(ttl)
        # Redis EX takes whole seconds; never round a positive TTL down to 0.
        await self._redis.set(self._key(key), json.dumps(value), ex=max(1, int(round(ttl))))

    async def delete(self, key: str) -> None:
        await self._redis.delete(self._key(key))

    async def clear(self) -> None:
        keys = [k async for k in self._redis.scan_iter(match=f"{self._prefix}*")]
        if keys:
            await self._redis.delete(*keys)

    async def close(self) -> None:
        await self._redis.aclose()
