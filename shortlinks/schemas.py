"""Pydantic schemas for request/response validation and cache payloads.

This module defines Pydantic models for API input parsing, output
serialization, the cached link snapshot and the computed analytics summary.

Schema Hierarchy
=================
::
    LinkCreate (Input)
    ├─ url: str
    ├─ custom_alias: str | None
    ├─ expires_in: int | None (seconds, may be negative)
    └─ owner_id: UUID | None

    LinkResponse (Output)          LinkStats (Output)
    ├─ key                         ├─ key
    ├─ short_url (computed)        ├─ original_url
    ├─ original_url                ├─ click_count
    ├─ qr_code_url (computed)      ├─ created_at
    ├─ created_at                  └─ expires_at
    └─ expires_at

    AnalyticsSummary (Output, never persisted)
    ├─ total_clicks / unique_visitors
    ├─ top_referrers: list[ReferrerStats]
    ├─ device_breakdown: DeviceBreakdown
    ├─ geographic_distribution: list[CountryStats]
    ├─ browser_stats: list[BrowserStats]
    └─ time_series: list[TimeSeriesPoint]

    CachedLinkPayload (Cache)
    └─ Snapshot of a Link row shared by every cache backend

How to Use
===========
**Step 1 — Parse a create request**::
    @router.post("/api/v1/links")
    async def create_link(payload: LinkCreate): ...

**Step 2 — Serialize a link**::
    return LinkResponse.from_link(link, settings.BASE_URL)

Key Behaviours
===============
- URL and alias rules are enforced by the resolver, not here, so that
  rejection happens through the service's own ValidationError.
- All datetime fields are timezone-aware on output.
- Models are configured for ORM attribute mapping.

Classes:
    LinkCreate:  Input schema for link creation.
    LinkResponse:  Output schema for created and listed links.
    LinkStats:  Output schema for link statistics.
    ClickEventResponse:  Output schema for one raw click row.
    AnalyticsSummary:  Computed analytics projection.
    CachedLinkPayload:  Cache snapshot of a link.
    HealthResponse:  Output schema for health checks.
"""

import datetime
import uuid

from pydantic import BaseModel, Field

from shortlinks.enums import HealthStatus
from shortlinks.models import Link, as_utc

__all__ = [
    "LinkCreate",
    "LinkResponse",
    "LinkStats",
    "ClickEventResponse",
    "ReferrerStats",
    "DeviceBreakdown",
    "CountryStats",
    "BrowserStats",
    "TimeSeriesPoint",
    "AnalyticsSummary",
    "CachedLinkPayload",
    "HealthResponse",
]


class LinkCreate(BaseModel):
    url: str
    custom_alias: str | None = None
    expires_in: int | None = Field(None, description="Seconds until expiry; negative values create an expired link.")
    owner_id: uuid.UUID | None = None


class LinkResponse(BaseModel):
    key: str
    short_url: str
    original_url: str
    qr_code_url: str
    created_at: datetime.datetime
    expires_at: datetime.datetime | None = None

    @classmethod
    def from_link(cls, link: Link, base_url: str) -> "LinkResponse":
        base = base_url.rstrip("/")
        return cls(
            key=link.key,
            short_url=f"{base}/{link.key}",
            original_url=link.original_url,
            qr_code_url=f"{base}/qr/{link.key}",
            created_at=as_utc(link.created_at),
            expires_at=as_utc(link.expires_at) if link.expires_at else None,
        )


class LinkStats(BaseModel):
    key: str
    original_url: str
    click_count: int
    created_at: datetime.datetime
    expires_at: datetime.datetime | None = None

    model_config = {"from_attributes": True}


class ClickEventResponse(BaseModel):
    id: uuid.UUID
    link_id: uuid.UUID
    clicked_at: datetime.datetime
    referrer: str | None = None
    referrer_domain: str | None = None
    user_agent: str | None = None
    ip_hash: str | None = None
    country_code: str | None = None
    browser: str | None = None
    os: str | None = None
    device_type: str | None = None
    city: str | None = None

    model_config = {"from_attributes": True}


class ReferrerStats(BaseModel):
    domain: str
    count: int
    percentage: float


class DeviceBreakdown(BaseModel):
    desktop: int = 0
    mobile: int = 0
    tablet: int = 0
    bot: int = 0
    other: int = 0


class CountryStats(BaseModel):
    country_code: str
    count: int
    percentage: float


class BrowserStats(BaseModel):
    browser: str
    count: int
    percentage: float


class TimeSeriesPoint(BaseModel):
    date: str
    clicks: int
    unique_visitors: int


class AnalyticsSummary(BaseModel):
    total_clicks: int
    unique_visitors: int
    top_referrers: list[ReferrerStats]
    device_breakdown: DeviceBreakdown
    geographic_distribution: list[CountryStats]
    browser_stats: list[BrowserStats]
    time_series: list[TimeSeriesPoint]


class CachedLinkPayload(BaseModel):
    """Cache snapshot of a link — shared by the in-process and Redis caches."""

    id: uuid.UUID
    key: str
    original_url: str
    created_at: datetime.datetime
    expires_at: datetime.datetime | None = None
    click_count: int = 0
    owner_id: uuid.UUID | None = None

    model_config = {"from_attributes": True, "frozen": True}

    def to_link(self) -> Link:
        """Rebuild a detached Link; it is never attached to a session."""
        return Link(
            id=self.id,
            key=self.key,
            original_url=self.original_url,
            created_at=self.created_at,
            expires_at=self.expires_at,
            click_count=self.click_count,
            owner_id=self.owner_id,
        )


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus
