"""Link resolution service — cache-aside orchestration between cache and store.

This module owns every consistency decision between the ``LinkCache`` and the
``LinkStore``. Neither collaborator knows about the other.

Request Flow Diagrams
=====================

Resolve (cache-aside read)
--------------------------
::
    ┌─────────────┐
    │ cache.get   │
    └──────┬──────┘
    HIT?  │
    ┌─────┴──────────────┐
    │ NO                  │ YES
    │              expired?┴──────┐
    │              │ NO           │ YES
    │              ▼              ▼
    │         ┌─────────┐   ┌────────────┐
    │         │ return  │   │ invalidate │
    │         └─────────┘   └─────┬──────┘
    ▼                              │
    ┌─────────────┐◀───────────────┘
    │ store.find  │
    └──────┬──────┘
    live? │ YES → cache.set → return
          │ NO  → None (expired rows are left to the sweeper)

Create
------
::
    validate URL ─▶ claim alias | generate key ─▶ store.create ─▶ cache.set

Click increment
---------------
::
    store.increment_click_count (atomic) ─▶ cache.invalidate

How to Use
===========
**Step 1 — Build per request**::
    resolver = LinkResolver.from_context(ctx)

**Step 2 — Create and resolve**::
    link = await resolver.create(LinkCreate(url="https://example.com"))
    same = await resolver.resolve(link.key)

Key Behaviours
===============
- Validation happens before any store or cache access.
- A newly created link is cached before it is returned, so the next read
  hits the cache instead of a possibly lagging replica.
- Expired links are not found for every caller, even while the row exists.
- Click increments invalidate the cached entry instead of updating it in
  place; the next read fetches the authoritative count.
- No transaction spans store and cache; a crash between the two steps leaves
  the cache stale until TTL or cold until the next read.
"""

import datetime
import logging
import time
from collections.abc import Sequence
from contextlib import aclosing
from typing import TYPE_CHECKING
from urllib.parse import urlsplit, urlunsplit

import validators
from prometheus_client import Counter, Histogram

from shortlinks.cache import LinkCache
from shortlinks.config import Settings, get_settings
from shortlinks.enums import CacheStatus, RequestStatus
from shortlinks.errors import ConflictError, KeyGenerationExhausted, ValidationError
from shortlinks.keygen import KeyGenerator
from shortlinks.models import Link, utcnow
from shortlinks.schemas import LinkCreate
from shortlinks.store import LinkStore

if TYPE_CHECKING:
    from shortlinks.dependencies import RequestContext

__all__ = ["LinkResolver", "validate_destination_url", "ALLOWED_SCHEMES", "MAX_URL_LENGTH"]

ALLOWED_SCHEMES = ("http", "https")
MAX_URL_LENGTH = 2048

LINK_CREATION_REQUESTS_TOTAL = Counter(
    "shortlinks_creation_requests_total",
    "Total link creation requests",
    ["status"],
)
LINK_LOOKUP_REQUESTS_TOTAL = Counter(
    "shortlinks_lookup_requests_total",
    "Total link lookup requests",
    ["status", "cache_hit"],
)
LINK_CREATION_DURATION = Histogram(
    "shortlinks_creation_duration_seconds",
    "Time taken to create links",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)
LINK_LOOKUP_DURATION = Histogram(
    "shortlinks_lookup_duration_seconds",
    "Time taken to resolve keys",
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)


def validate_destination_url(url: str, max_length: int = MAX_URL_LENGTH) -> str:
    """Reject anything that is not an absolute http(s) URL with a host.

    Raises:
        ValidationError: If the URL is oversized, unparsable, uses another
            scheme or has no host.
    """
    if len(url) > max_length:
        raise ValidationError(f"URL exceeds maximum length of {max_length} characters")
    try:
        parts = urlsplit(url)
        host = parts.hostname
    except ValueError as exc:
        raise ValidationError("Invalid URL format") from exc
    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        raise ValidationError("URL must use HTTP or HTTPS protocol")
    if not host:
        raise ValidationError("URL must have a valid host")
    # Underscores appear in real host labels but fail the RFC hostname check.
    checked = urlunsplit(parts._replace(netloc=parts.netloc.replace("_", "-")))
    if not validators.url(checked, simple_host=True):
        raise ValidationError("Invalid URL format")
    return url


class LinkResolver:
    """Cache-aside orchestration for link reads and writes.

    Args:
        store: Durable store bound to the caller's session.
        cache: Shared link cache.
        keygen: Key generator; built over ``store`` when omitted.
        logger: Logger or request-scoped adapter.
        settings: Limits for keys, aliases, URLs and listing.
    """

    def __init__(
        self,
        store: LinkStore,
        cache: LinkCache,
        keygen: KeyGenerator | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._store = store
        self._cache = cache
        self._logger = logger or logging.getLogger("shortlinks")
        self._keygen = keygen or KeyGenerator(
            store,
            length=self._settings.KEY_LENGTH,
            max_attempts=self._settings.KEY_MAX_ATTEMPTS,
            alias_max_length=self._settings.ALIAS_MAX_LENGTH,
            logger=self._logger,
        )

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "LinkResolver":
        return cls(LinkStore(ctx.database), ctx.cache, logger=ctx.logger, settings=ctx.settings)

    # ========================================================================
    # READ PATH
    # ========================================================================

    async def resolve(self, key: str) -> Link | None:
        start_time = time.perf_counter()

        cached = await self._cache.get(key)
        if cached is not None:
            if not cached.is_expired():
                LINK_LOOKUP_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, cache_hit=CacheStatus.HIT).inc()
                LINK_LOOKUP_DURATION.observe(time.perf_counter() - start_time)
                return cached
            self._logger.debug(f"Cached link expired, invalidating: {key}")
            await self._cache.invalidate(key)

        link = await self._store.find_by_key(key)
        if link is None or link.is_expired():
            LINK_LOOKUP_REQUESTS_TOTAL.labels(status=RequestStatus.NOT_FOUND, cache_hit=CacheStatus.MISS).inc()
            LINK_LOOKUP_DURATION.observe(time.perf_counter() - start_time)
            return None

        await self._cache.set(key, link)
        LINK_LOOKUP_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, cache_hit=CacheStatus.MISS).inc()
        LINK_LOOKUP_DURATION.observe(time.perf_counter() - start_time)
        return link

    async def get_stats(self, key: str) -> Link | None:
        """Read the authoritative row, bypassing the cache."""
        link = await self._store.find_by_key(key)
        if link is None or link.is_expired():
            return None
        return link

    async def list_links(self, limit: int | None = None, offset: int = 0) -> Sequence[Link]:
        if limit is None:
            limit = self._settings.LIST_DEFAULT_LIMIT
        limit = max(1, min(limit, self._settings.LIST_MAX_LIMIT))
        return await self._store.list_links(limit, max(0, offset))

    # ========================================================================
    # WRITE PATH
    # ========================================================================

    async def create(self, request: LinkCreate) -> Link:
        start_time = time.perf_counter()
        try:
            validate_destination_url(request.url, self._settings.URL_MAX_LENGTH)
            expires_at = self._expiry_from(request.expires_in)

            if request.custom_alias is not None:
                key = await self._keygen.claim_alias(request.custom_alias)
                link = await self._store.create(key, request.url, expires_at, request.owner_id)
            else:
                link = await self._create_with_generated_key(request, expires_at)

            await self._cache.set(link.key, link)
        except ValidationError as exc:
            LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.VALIDATION_ERROR).inc()
            self._logger.warning(f"Link creation rejected: {exc.message}")
            raise
        except ConflictError as exc:
            LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.CONFLICT).inc()
            self._logger.warning(f"Link creation conflict: {exc.message}")
            raise
        except Exception as exc:
            LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.ERROR).inc()
            self._logger.error(f"Link creation error: {exc}")
            raise
        finally:
            LINK_CREATION_DURATION.observe(time.perf_counter() - start_time)

        LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        self._logger.info(f"Link created: {link.key} -> {link.original_url}")
        return link

    async def record_click(self, key: str) -> None:
        await self._store.increment_click_count(key)
        await self._cache.invalidate(key)

    async def delete(self, key: str) -> bool:
        deleted = await self._store.delete(key)
        if deleted:
            await self._cache.invalidate(key)
            self._logger.info(f"Link deleted: {key}")
        return deleted

    # ========================================================================
    # PRIVATE HELPERS
    # ========================================================================

    @staticmethod
    def _expiry_from(expires_in: int | None) -> datetime.datetime | None:
        if expires_in is None:
            return None
        try:
            return utcnow() + datetime.timedelta(seconds=expires_in)
        except OverflowError as exc:
            raise ValidationError("expires_in is out of range") from exc

    async def _create_with_generated_key(
        self, request: LinkCreate, expires_at: datetime.datetime | None
    ) -> Link:
        # exists() and the insert are not atomic; a concurrent create can still
        # take the key, which the unique constraint reports as a conflict.
        # Collisions and lost races draw from the same attempt budget.
        async with aclosing(self._keygen.unique_keys()) as keys:
            async for key in keys:
                try:
                    return await self._store.create(key, request.url, expires_at, request.owner_id)
                except ConflictError:
                    self._logger.warning(f"Generated key lost an insert race: {key}")
        raise KeyGenerationExhausted(f"Failed to insert a generated key after {self._keygen.max_attempts} attempts")
