"""Expired link sweeper.

Runs out of process; the web app never starts it. Expired links already
resolve as not found, so the sweeper only reclaims storage. Click events of a
reaped link go with it through the ``ON DELETE CASCADE`` foreign key.

Run with::

    python -m shortlinks.reaper
"""

import asyncio
import datetime
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortlinks.config import get_settings
from shortlinks.database import async_session
from shortlinks.store import LinkStore

__all__ = ["reap_expired_links", "run"]

logger = logging.getLogger(__name__)

settings = get_settings()


async def reap_expired_links(
    session_factory: async_sessionmaker[AsyncSession],
    now: datetime.datetime | None = None,
) -> int:
    async with session_factory() as session:
        removed = await LinkStore(session).delete_expired(now)
    if removed:
        logger.info(f"Reaped {removed} expired links")
    return removed


async def run() -> None:
    iteration = 0
    while True:
        iteration += 1
        try:
            await reap_expired_links(async_session)
        except Exception as e:
            logger.warning(f"Reaper iteration {iteration} failed: {e}")

        await asyncio.sleep(settings.REAPER_INTERVAL_SECONDS)


if __name__ == "__main__":
    logging.basicConfig(level=settings.LOG_LEVEL)
    asyncio.run(run())
