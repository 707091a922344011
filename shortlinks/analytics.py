"""Click analytics capture — derivation and detached persistence.

Capture runs after the redirect decision has been returned to the caller. It
is best-effort: one attempt, no retry, and failures never reach the redirect.

Flow Diagram — Redirect Side Effects
====================================
::
    GET /{key}
        │
        ├─ resolve ─▶ 30x response returned to client
        │
        └─ dispatch ─▶ asyncio task (own DB session)
                          ├─ LinkResolver.record_click(key)
                          │     store.increment ─▶ cache.invalidate
                          └─ capture(link_id, referrer, ua, ip)
                                ├─ hash_ip(ip)            sha256 hex
                                ├─ parse_user_agent(ua)   browser / os / device
                                ├─ extract_referrer_domain(referrer)
                                └─ store.record_click_event(...)

How to Use
===========
**Step 1 — Dispatch from the redirect handler**::
    capture.dispatch(link.key, link.id, referrer=..., user_agent=..., ip=...)

**Step 2 — Drain on shutdown**::
    await capture.drain(timeout=5.0)

Key Behaviours
===============
- Only the IP hash is persisted, never the raw address.
- Unrecognised browser or OS yields no value rather than a placeholder.
- The raw referrer is stored as given even when no domain can be derived.
- Country and city are left for an external geolocation collaborator.
"""

import asyncio
import hashlib
import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from urllib.parse import urlsplit

from prometheus_client import Counter
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from user_agents import parse as parse_ua

from shortlinks.cache import LinkCache
from shortlinks.enums import DeviceCategory
from shortlinks.resolver import LinkResolver
from shortlinks.store import LinkStore

__all__ = [
    "AnalyticsCapture",
    "ClientInfo",
    "client_ip_from_headers",
    "extract_referrer_domain",
    "hash_ip",
    "parse_user_agent",
]

UNKNOWN_FAMILY = "Other"

CAPTURES_RECORDED_TOTAL = Counter(
    "shortlinks_captures_recorded_total",
    "Click events persisted by the detached capture path",
)
CAPTURES_FAILED_TOTAL = Counter(
    "shortlinks_captures_failed_total",
    "Detached capture steps that failed and were dropped",
    ["step"],
)


@dataclass(frozen=True)
class ClientInfo:
    browser: str | None = None
    os: str | None = None
    device_type: DeviceCategory | None = None


def hash_ip(ip: str) -> str:
    return hashlib.sha256(ip.encode("utf-8")).hexdigest()


def client_ip_from_headers(headers: Mapping[str, str]) -> str | None:
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        return first or None
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip() or None
    return None


def extract_referrer_domain(referrer: str | None) -> str | None:
    if not referrer:
        return None
    try:
        parts = urlsplit(referrer)
        host = parts.hostname
    except ValueError:
        return None
    if not parts.scheme or not host:
        return None
    return host


def _family(value: str | None) -> str | None:
    if not value or value == UNKNOWN_FAMILY:
        return None
    return value[:50]


def parse_user_agent(user_agent: str | None) -> ClientInfo:
    if not user_agent:
        return ClientInfo()

    parsed = parse_ua(user_agent)
    if parsed.is_bot:
        device = DeviceCategory.BOT
    elif parsed.is_tablet:
        device = DeviceCategory.TABLET
    elif parsed.is_mobile:
        device = DeviceCategory.MOBILE
    elif parsed.is_pc:
        device = DeviceCategory.DESKTOP
    else:
        device = DeviceCategory.OTHER

    return ClientInfo(
        browser=_family(parsed.browser.family),
        os=_family(parsed.os.family),
        device_type=device,
    )


class AnalyticsCapture:
    """Fire-and-forget click capture on its own database sessions.

    Args:
        session_factory: Factory for sessions independent of any request.
        cache: Shared link cache, invalidated after click increments.
        logger: Application logger.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: LinkCache,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache
        self._logger = logger or logging.getLogger("shortlinks")
        self._pending: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def dispatch(
        self,
        key: str,
        link_id: uuid.UUID,
        referrer: str | None = None,
        user_agent: str | None = None,
        ip: str | None = None,
    ) -> asyncio.Task:
        """Schedule the click increment and capture without awaiting them."""
        task = asyncio.create_task(self._track_redirect(key, link_id, referrer, user_agent, ip))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def capture(
        self,
        link_id: uuid.UUID,
        referrer: str | None = None,
        user_agent: str | None = None,
        ip: str | None = None,
        store: LinkStore | None = None,
    ) -> None:
        """Derive click fields and persist them; failures are logged and dropped."""
        client = parse_user_agent(user_agent)
        fields = dict(
            referrer=referrer,
            referrer_domain=extract_referrer_domain(referrer),
            user_agent=user_agent,
            ip_hash=hash_ip(ip) if ip else None,
            browser=client.browser,
            os=client.os,
            device_type=client.device_type.value if client.device_type else None,
        )
        try:
            if store is not None:
                await store.record_click_event(link_id, **fields)
            else:
                async with self._session_factory() as session:
                    await LinkStore(session).record_click_event(link_id, **fields)
        except Exception as exc:
            CAPTURES_FAILED_TOTAL.labels(step="record_click_event").inc()
            self._logger.warning(f"Click capture dropped for link {link_id}: {exc}")
            return
        CAPTURES_RECORDED_TOTAL.inc()

    async def drain(self, timeout: float | None = None) -> None:
        if not self._pending:
            return
        _, not_done = await asyncio.wait(set(self._pending), timeout=timeout)
        if not_done:
            self._logger.warning(f"{len(not_done)} click captures still pending after drain")

    async def _track_redirect(
        self,
        key: str,
        link_id: uuid.UUID,
        referrer: str | None,
        user_agent: str | None,
        ip: str | None,
    ) -> None:
        try:
            async with self._session_factory() as session:
                store = LinkStore(session)
                try:
                    await LinkResolver(store, self._cache, logger=self._logger).record_click(key)
                except Exception as exc:
                    CAPTURES_FAILED_TOTAL.labels(step="record_click").inc()
                    self._logger.warning(f"Click increment dropped for {key}: {exc}")
                    await session.rollback()
                await self.capture(link_id, referrer, user_agent, ip, store=store)
        except Exception as exc:
            CAPTURES_FAILED_TOTAL.labels(step="session").inc()
            self._logger.warning(f"Click tracking dropped for {key}: {exc}")
