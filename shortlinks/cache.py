"""Link cache backends for the cache-aside read path.

The cache is a pure acceleration layer: absence is never an error, only a cue
to consult the durable store, and clearing it never affects correctness.

Backend Layout
==============
::
    LinkCache (contract)
    ├─ get(key) -> Link | None
    ├─ set(key, link)
    ├─ invalidate(key)
    ├─ clear()
    ├─ size() -> int
    └─ close()
        │
        ├── MemoryLinkCache   in-process TTLCache (bounded, LRU + TTL)
        └── RedisLinkCache    shared Redis keys "{prefix}:{key}" with EX ttl

How to Use
===========
**Step 1 — Build from settings**::
    cache = build_link_cache(settings)

**Step 2 — Read and write**::
    await cache.set(link.key, link)
    cached = await cache.get(link.key)

Key Behaviours
===============
- Entries older than the TTL read as absent even before eviction.
- Values are stored as ``CachedLinkPayload`` snapshots; every read returns a
  fresh detached ``Link`` so cached state is never shared between sessions.
- ``RedisLinkCache`` leaves capacity bounding to the server's
  ``maxmemory-policy`` (configure ``allkeys-lru``).

Classes:
    LinkCache:  Abstract cache contract used by the resolver.
    MemoryLinkCache:  Bounded in-process cache.
    RedisLinkCache:  Shared Redis-backed cache.

Functions:
    build_link_cache():  Select a backend from settings.
"""

import abc
import logging
import threading

import redis.asyncio as redis
from cachetools import TTLCache
from prometheus_client import Counter

from shortlinks.config import Settings
from shortlinks.enums import CacheBackend
from shortlinks.models import Link
from shortlinks.schemas import CachedLinkPayload

__all__ = ["LinkCache", "MemoryLinkCache", "RedisLinkCache", "build_link_cache"]

logger = logging.getLogger("shortlinks")

CACHE_OPERATIONS_TOTAL = Counter(
    "shortlinks_cache_operations_total",
    "Link cache operations by backend and operation",
    ["backend", "operation"],
)


class LinkCache(abc.ABC):
    """Contract shared by every link cache backend."""

    @abc.abstractmethod
    async def get(self, key: str) -> Link | None: ...

    @abc.abstractmethod
    async def set(self, key: str, link: Link) -> None: ...

    @abc.abstractmethod
    async def invalidate(self, key: str) -> None: ...

    @abc.abstractmethod
    async def clear(self) -> None: ...

    @abc.abstractmethod
    async def size(self) -> int: ...

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class MemoryLinkCache(LinkCache):
    """Bounded in-process cache with least-recently-used eviction and a fixed TTL.

    Args:
        max_capacity: Maximum number of entries kept before LRU eviction.
        ttl_seconds: Lifetime of each entry from the moment it is set.
    """

    backend = CacheBackend.MEMORY

    def __init__(self, max_capacity: int, ttl_seconds: float) -> None:
        assert max_capacity > 0, f"max_capacity must be positive, got {max_capacity!r}"
        assert ttl_seconds > 0, f"ttl_seconds must be positive, got {ttl_seconds!r}"
        self._entries = TTLCache(maxsize=max_capacity, ttl=ttl_seconds)
        self._lock = threading.Lock()

    async def get(self, key: str) -> Link | None:
        CACHE_OPERATIONS_TOTAL.labels(backend=self.backend, operation="get").inc()
        with self._lock:
            payload = self._entries.get(key)
        return payload.to_link() if payload is not None else None

    async def set(self, key: str, link: Link) -> None:
        CACHE_OPERATIONS_TOTAL.labels(backend=self.backend, operation="set").inc()
        payload = CachedLinkPayload.model_validate(link)
        with self._lock:
            self._entries[key] = payload

    async def invalidate(self, key: str) -> None:
        CACHE_OPERATIONS_TOTAL.labels(backend=self.backend, operation="invalidate").inc()
        with self._lock:
            self._entries.pop(key, None)

    async def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    async def size(self) -> int:
        with self._lock:
            self._entries.expire()
            return len(self._entries)


class RedisLinkCache(LinkCache):
    """Shared cache storing link snapshots as JSON strings in Redis.

    Args:
        client: Redis client created with ``decode_responses=True``.
        ttl_seconds: Expiry applied with every ``SET``.
        prefix: Namespace for cache keys.
    """

    backend = CacheBackend.REDIS

    def __init__(self, client: redis.Redis, ttl_seconds: int, prefix: str = "link") -> None:
        assert client is not None, "client must not be None"
        self._client = client
        self._ttl = ttl_seconds
        self._prefix = prefix

    def _cache_key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def get(self, key: str) -> Link | None:
        cached = await self._client.get(self._cache_key(key))
        CACHE_OPERATIONS_TOTAL.labels(backend=self.backend, operation="get").inc()
        if not cached:
            return None
        try:
            return CachedLinkPayload.model_validate_json(cached).to_link()
        except ValueError as exc:
            logger.error(f"Cache deserialization error for {key}: {exc}")
            return None

    async def set(self, key: str, link: Link) -> None:
        payload = CachedLinkPayload.model_validate(link)
        await self._client.set(self._cache_key(key), payload.model_dump_json(), ex=self._ttl)
        CACHE_OPERATIONS_TOTAL.labels(backend=self.backend, operation="set").inc()

    async def invalidate(self, key: str) -> None:
        await self._client.delete(self._cache_key(key))
        CACHE_OPERATIONS_TOTAL.labels(backend=self.backend, operation="invalidate").inc()

    async def clear(self) -> None:
        batch: list[str] = []
        async for cache_key in self._client.scan_iter(match=f"{self._prefix}:*", count=500):
            batch.append(cache_key)
            if len(batch) >= 500:
                await self._client.delete(*batch)
                batch.clear()
        if batch:
            await self._client.delete(*batch)

    async def size(self) -> int:
        count = 0
        async for _ in self._client.scan_iter(match=f"{self._prefix}:*", count=500):
            count += 1
        return count

    async def ping(self) -> bool:
        return bool(await self._client.ping())

    async def close(self) -> None:
        await self._client.aclose()


def build_link_cache(settings: Settings, client: redis.Redis | None = None) -> LinkCache:
    if settings.CACHE_BACKEND is CacheBackend.REDIS:
        if client is None:
            client = redis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
        return RedisLinkCache(client, settings.CACHE_TTL_SECONDS, settings.CACHE_KEY_PREFIX)
    return MemoryLinkCache(settings.CACHE_MAX_CAPACITY, settings.CACHE_TTL_SECONDS)
