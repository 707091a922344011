"""Analytics aggregation — click rows into an ``AnalyticsSummary``.

Aggregation always reads the durable store; the link cache is insensitive to
click counts and is never consulted here.

Flow Diagram — summarize(key, days)
===================================
::
    ┌──────────────────┐
    │ clamp days       │  1 ≤ days ≤ ANALYTICS_MAX_DAYS
    └────────┬─────────┘
             ▼
    ┌──────────────────┐  missing or expired
    │ store.find_by_key│ ───────────────────▶ None
    └────────┬─────────┘
             ▼
    ┌──────────────────────────────────────────────┐
    │ independent aggregate queries                 │
    │  total · unique · referrers · devices ·       │
    │  countries · browsers · daily time series     │
    └────────┬─────────────────────────────────────┘
             ▼
    ┌──────────────────┐
    │ percentages vs.  │  total == 0 → 0.0 everywhere
    │ total_clicks     │
    └──────────────────┘

Key Behaviours
===============
- Ranked lists (referrers, countries, browsers) are capped independently.
- Totals and breakdowns cover all recorded clicks; only the time series is
  scoped to the trailing ``days`` window, newest day first.
- Unknown or missing device types are counted as ``other``.
"""

import logging

from shortlinks.config import Settings, get_settings
from shortlinks.enums import DeviceCategory
from shortlinks.schemas import (
    AnalyticsSummary,
    BrowserStats,
    CountryStats,
    DeviceBreakdown,
    ReferrerStats,
    TimeSeriesPoint,
)
from shortlinks.store import LinkStore

__all__ = ["AnalyticsAggregator", "percentage"]


def percentage(count: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return (count / total) * 100.0


class AnalyticsAggregator:
    def __init__(
        self,
        store: LinkStore,
        settings: Settings | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._store = store
        self._settings = settings or get_settings()
        self._logger = logger or logging.getLogger("shortlinks")

    def clamp_days(self, days: int | None) -> int:
        if days is None:
            days = self._settings.ANALYTICS_DEFAULT_DAYS
        return max(1, min(days, self._settings.ANALYTICS_MAX_DAYS))

    async def summarize(self, key: str, days: int | None = None) -> AnalyticsSummary | None:
        days = self.clamp_days(days)
        link = await self._store.find_by_key(key)
        if link is None or link.is_expired():
            return None

        top_n = self._settings.ANALYTICS_TOP_N
        total = await self._store.total_clicks(key)
        unique = await self._store.unique_visitors(key)
        referrers = await self._store.top_referrers(key, top_n)
        devices = await self._store.device_breakdown(key)
        countries = await self._store.top_countries(key, top_n)
        browsers = await self._store.top_browsers(key, top_n)
        daily = await self._store.daily_time_series(key, days)

        breakdown = DeviceBreakdown()
        for device_type, count in devices:
            category = DeviceCategory.from_str(device_type)
            setattr(breakdown, category.value, getattr(breakdown, category.value) + count)

        self._logger.debug(f"Summarized {total} clicks for {key} over {days} days")
        return AnalyticsSummary(
            total_clicks=total,
            unique_visitors=unique,
            top_referrers=[
                ReferrerStats(domain=domain, count=count, percentage=percentage(count, total))
                for domain, count in referrers
            ],
            device_breakdown=breakdown,
            geographic_distribution=[
                CountryStats(country_code=code, count=count, percentage=percentage(count, total))
                for code, count in countries
            ],
            browser_stats=[
                BrowserStats(browser=browser, count=count, percentage=percentage(count, total))
                for browser, count in browsers
            ],
            time_series=[
                TimeSeriesPoint(date=date, clicks=clicks, unique_visitors=visitors)
                for date, clicks, visitors in daily
            ],
        )
