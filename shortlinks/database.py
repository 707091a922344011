"""Engine, session factory and schema bootstrap for links and click events.

Every unit of work in the service runs on an ``AsyncSession`` from
``async_session``. Who opens the session depends on who owns the work.

Session Ownership
=================
::
    HTTP request ──▶ get_db() ──▶ LinkStore / LinkResolver / AnalyticsAggregator
                     (closed when the response is sent)

    redirect ──▶ AnalyticsCapture.dispatch ──▶ async_session()
                     (own session; outlives the request that spawned it)

    python -m shortlinks.reaper ──▶ async_session()
                     (one short session per sweep)

How to Use
===========
**Step 1 — Create tables on startup**::
    await init_db()

**Step 2 — Borrow the request session in a route**::
    async def get_link_stats(db: AsyncSession = Depends(get_db)): ...

**Step 3 — Open a session for detached work**::
    async with async_session() as session:
        await LinkStore(session).delete_expired()

**Step 4 — Dispose the pool on shutdown**::
    await close_db()

Key Behaviours
===============
- ``expire_on_commit=False``: a ``Link`` returned by ``LinkStore.create`` stays
  readable after its commit, so it can be cached and serialised directly.
- Pool size and overflow come from ``DATABASE_POOL_SIZE`` and
  ``DATABASE_MAX_OVERFLOW``; ``pool_pre_ping`` drops dead connections.
- ``init_db`` imports the models so both tables register on ``Base.metadata``.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shortlinks.config import get_settings

__all__ = ["Base", "async_session", "engine", "get_db", "init_db", "close_db"]

settings = get_settings()

engine: AsyncEngine = create_async_engine(
    settings.DATABASE_URL,
    echo=(settings.APP_ENV == "development"),
    pool_size=settings.DATABASE_POOL_SIZE,
    max_overflow=settings.DATABASE_MAX_OVERFLOW,
    pool_pre_ping=True,
)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        yield session


async def init_db() -> None:
    # Registers the mapped tables on Base.metadata before create_all.
    import shortlinks.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
