"""Durable link and click storage over an async SQLAlchemy session.

``LinkStore`` is the only writer of Link and ClickEvent rows. It knows nothing
about the cache; the resolver is the sole unit aware of both.

Query Overview
==============
::
    links                              link_analytics
    ├─ create / find_by_key / exists   ├─ record_click_event
    ├─ increment_click_count (atomic)  ├─ total_clicks / unique_visitors
    ├─ delete / delete_expired         ├─ top_referrers / top_countries / top_browsers
    └─ list_links (newest first)       ├─ device_breakdown
                                       ├─ daily_time_series (window, newest first)
                                       └─ list_click_events (newest first)

How to Use
===========
**Step 1 — Bind to a session**::
    store = LinkStore(session)

**Step 2 — Read and write**::
    link = await store.create("abc1234", "https://example.com")
    await store.increment_click_count("abc1234")

Key Behaviours
===============
- Each write commits immediately; no multi-statement transactions.
- The click counter is incremented with a single ``UPDATE … SET n = n + 1``.
- A unique-key violation on insert surfaces as ``ConflictError``.
- Connection-level faults surface as ``StoreUnavailable``.
- Aggregations are scoped by key through a join on ``links``.

Classes:
    LinkStore:  Durable CRUD plus aggregate queries.
"""

import contextlib
import datetime
import uuid
from collections.abc import Iterator, Sequence

from prometheus_client import Counter
from sqlalchemy import Select, delete, desc, distinct, exists, func, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shortlinks.errors import ConflictError, StoreUnavailable
from shortlinks.models import ClickEvent, Link, utcnow

__all__ = ["LinkStore"]

DATABASE_READS_TOTAL = Counter(
    "shortlinks_database_reads_total",
    "Total database read operations",
)
DATABASE_WRITES_TOTAL = Counter(
    "shortlinks_database_writes_total",
    "Total database write operations",
)


@contextlib.contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except IntegrityError:
        raise
    except DBAPIError as exc:
        raise StoreUnavailable(f"Store failure during {operation}: {exc.__class__.__name__}") from exc


class LinkStore:
    """Link and click-event persistence bound to one ``AsyncSession``."""

    def __init__(self, session: AsyncSession) -> None:
        assert session is not None, "session must not be None"
        self._db = session

    # ========================================================================
    # LINKS
    # ========================================================================

    async def create(
        self,
        key: str,
        url: str,
        expires_at: datetime.datetime | None = None,
        owner_id: uuid.UUID | None = None,
    ) -> Link:
        link = Link(key=key, original_url=url, expires_at=expires_at, owner_id=owner_id, click_count=0)
        with _store_errors("create"):
            try:
                self._db.add(link)
                await self._db.commit()
            except IntegrityError as exc:
                await self._db.rollback()
                raise ConflictError(f"Key '{key}' is already taken") from exc
            DATABASE_WRITES_TOTAL.inc()
            await self._db.refresh(link)
        return link

    async def find_by_key(self, key: str) -> Link | None:
        with _store_errors("find_by_key"):
            # Counters move underneath the identity map; always reload the row.
            result = await self._db.execute(
                select(Link).where(Link.key == key).execution_options(populate_existing=True)
            )
        DATABASE_READS_TOTAL.inc()
        return result.scalar_one_or_none()

    async def exists(self, key: str) -> bool:
        with _store_errors("exists"):
            result = await self._db.execute(select(exists().where(Link.key == key)))
        DATABASE_READS_TOTAL.inc()
        return bool(result.scalar())

    async def increment_click_count(self, key: str) -> None:
        with _store_errors("increment_click_count"):
            await self._db.execute(
                update(Link).where(Link.key == key).values(click_count=Link.click_count + 1)
            )
            await self._db.commit()
        DATABASE_WRITES_TOTAL.inc()

    async def delete(self, key: str) -> bool:
        with _store_errors("delete"):
            result = await self._db.execute(delete(Link).where(Link.key == key))
            await self._db.commit()
        DATABASE_WRITES_TOTAL.inc()
        return result.rowcount > 0

    async def delete_expired(self, now: datetime.datetime | None = None) -> int:
        cutoff = now or utcnow()
        with _store_errors("delete_expired"):
            result = await self._db.execute(
                delete(Link).where(Link.expires_at.is_not(None), Link.expires_at < cutoff)
            )
            await self._db.commit()
        DATABASE_WRITES_TOTAL.inc()
        return result.rowcount

    async def list_links(self, limit: int, offset: int) -> Sequence[Link]:
        with _store_errors("list_links"):
            result = await self._db.execute(
                select(Link).order_by(Link.created_at.desc(), Link.key).limit(limit).offset(offset)
            )
        DATABASE_READS_TOTAL.inc()
        return result.scalars().all()

    # ========================================================================
    # CLICK EVENTS
    # ========================================================================

    async def record_click_event(
        self,
        link_id: uuid.UUID,
        *,
        referrer: str | None = None,
        referrer_domain: str | None = None,
        user_agent: str | None = None,
        ip_hash: str | None = None,
        browser: str | None = None,
        os: str | None = None,
        device_type: str | None = None,
        country_code: str | None = None,
        city: str | None = None,
    ) -> None:
        event = ClickEvent(
            link_id=link_id,
            referrer=referrer,
            referrer_domain=referrer_domain,
            user_agent=user_agent,
            ip_hash=ip_hash,
            browser=browser,
            os=os,
            device_type=device_type,
            country_code=country_code,
            city=city,
        )
        with _store_errors("record_click_event"):
            self._db.add(event)
            await self._db.commit()
        DATABASE_WRITES_TOTAL.inc()

    async def list_click_events(self, key: str, limit: int) -> Sequence[ClickEvent]:
        stmt = self._for_key(select(ClickEvent), key).order_by(ClickEvent.clicked_at.desc()).limit(limit)
        with _store_errors("list_click_events"):
            result = await self._db.execute(stmt)
        DATABASE_READS_TOTAL.inc()
        return result.scalars().all()

    # ========================================================================
    # AGGREGATIONS
    # ========================================================================

    async def total_clicks(self, key: str) -> int:
        return await self._scalar_count(self._for_key(select(func.count(ClickEvent.id)), key))

    async def unique_visitors(self, key: str) -> int:
        stmt = self._for_key(select(func.count(distinct(ClickEvent.ip_hash))), key).where(
            ClickEvent.ip_hash.is_not(None)
        )
        return await self._scalar_count(stmt)

    async def top_referrers(self, key: str, limit: int) -> list[tuple[str, int]]:
        stmt = self._for_key(select(ClickEvent.referrer_domain, func.count().label("hits")), key).where(
            ClickEvent.referrer_domain.is_not(None), ClickEvent.referrer_domain != ""
        )
        return await self._ranked(stmt, ClickEvent.referrer_domain, limit)

    async def top_countries(self, key: str, limit: int) -> list[tuple[str, int]]:
        stmt = self._for_key(select(ClickEvent.country_code, func.count().label("hits")), key).where(
            ClickEvent.country_code.is_not(None)
        )
        return await self._ranked(stmt, ClickEvent.country_code, limit)

    async def top_browsers(self, key: str, limit: int) -> list[tuple[str, int]]:
        stmt = self._for_key(select(ClickEvent.browser, func.count().label("hits")), key).where(
            ClickEvent.browser.is_not(None)
        )
        return await self._ranked(stmt, ClickEvent.browser, limit)

    async def device_breakdown(self, key: str) -> list[tuple[str, int]]:
        device = func.coalesce(ClickEvent.device_type, "other")
        stmt = self._for_key(select(device, func.count()), key).group_by(device)
        with _store_errors("device_breakdown"):
            result = await self._db.execute(stmt)
        DATABASE_READS_TOTAL.inc()
        return [(name, int(count)) for name, count in result.all()]

    async def daily_time_series(
        self, key: str, days: int, now: datetime.datetime | None = None
    ) -> list[tuple[str, int, int]]:
        since = (now or utcnow()) - datetime.timedelta(days=days)
        day = func.date(ClickEvent.clicked_at)
        stmt = (
            self._for_key(
                select(day.label("day"), func.count(), func.count(distinct(ClickEvent.ip_hash))),
                key,
            )
            .where(ClickEvent.clicked_at >= since)
            .group_by(day)
            .order_by(desc("day"))
        )
        with _store_errors("daily_time_series"):
            result = await self._db.execute(stmt)
        DATABASE_READS_TOTAL.inc()
        return [(str(date), int(clicks), int(unique)) for date, clicks, unique in result.all()]

    # ========================================================================
    # PRIVATE HELPERS
    # ========================================================================

    @staticmethod
    def _for_key(stmt: Select, key: str) -> Select:
        return stmt.join(Link, ClickEvent.link_id == Link.id).where(Link.key == key)

    async def _scalar_count(self, stmt: Select) -> int:
        with _store_errors("aggregate"):
            result = await self._db.execute(stmt)
        DATABASE_READS_TOTAL.inc()
        return int(result.scalar() or 0)

    async def _ranked(self, stmt: Select, column, limit: int) -> list[tuple[str, int]]:
        stmt = stmt.group_by(column).order_by(desc("hits"), column).limit(limit)
        with _store_errors("aggregate"):
            result = await self._db.execute(stmt)
        DATABASE_READS_TOTAL.inc()
        return [(name, int(count)) for name, count in result.all()]
