"""SQLAlchemy ORM models for links and their click events.

This module defines the database schema using SQLAlchemy declarative models
with indexes for the redirect lookup and the analytics aggregations.

Data Model Layout
=================
::
    links table
    ├─ id (UUID PRIMARY KEY)
    ├─ key (VARCHAR(10) UNIQUE, INDEXED)
    ├─ original_url (TEXT NOT NULL)
    ├─ created_at (TIMESTAMPTZ, INDEXED)
    ├─ expires_at (TIMESTAMPTZ NULL, INDEXED)
    ├─ click_count (BIGINT DEFAULT 0)
    └─ owner_id (UUID NULL, INDEXED)

    link_analytics table
    ├─ id (UUID PRIMARY KEY)
    ├─ link_id (UUID → links.id ON DELETE CASCADE, INDEXED)
    ├─ clicked_at (TIMESTAMPTZ, INDEXED)
    ├─ referrer / referrer_domain (TEXT NULL)
    ├─ user_agent (TEXT NULL)
    ├─ ip_hash (VARCHAR(64) NULL)
    ├─ browser / os (VARCHAR(50) NULL)
    ├─ device_type (VARCHAR(20) NULL, INDEXED)
    └─ country_code (VARCHAR(2) NULL) / city (VARCHAR(100) NULL)

How to Use
===========
**Step 1 — Import**::
    from shortlinks.models import Link, ClickEvent

**Step 2 — Check liveness**::
    if link.is_expired():
        ...  # treated as not found by every reader

Key Behaviours
===============
- ``key`` is unique and immutable once created.
- ``click_count`` is only changed by the atomic store-side increment.
- Click events are append-only and never updated by the service.
- ``expires_at`` is evaluated at read time; naive values (SQLite) are read
  as UTC.

Classes:
    Link:  A short key mapped to a destination URL.
    ClickEvent:  One recorded redirect with derived client metadata.
"""

import datetime
import uuid

from sqlalchemy import BigInteger, DateTime, ForeignKey, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from shortlinks.database import Base

__all__ = ["Link", "ClickEvent", "as_utc", "utcnow"]


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def as_utc(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


class Link(Base):
    __tablename__ = "links"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    key: Mapped[str] = mapped_column(String(10), unique=True, index=True, nullable=False)
    original_url: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True, nullable=False
    )
    expires_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), index=True, nullable=True)
    click_count: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    owner_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, index=True, nullable=True)

    def is_expired(self, now: datetime.datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return as_utc(self.expires_at) < (now or utcnow())

    def __repr__(self) -> str:
        return f"<Link(id={self.id}, key='{self.key}', click_count={self.click_count})>"


class ClickEvent(Base):
    __tablename__ = "link_analytics"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    link_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("links.id", ondelete="CASCADE"), index=True, nullable=False
    )
    clicked_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True, nullable=False
    )
    referrer: Mapped[str | None] = mapped_column(Text, nullable=True)
    referrer_domain: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    ip_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    browser: Mapped[str | None] = mapped_column(String(50), nullable=True)
    os: Mapped[str | None] = mapped_column(String(50), nullable=True)
    device_type: Mapped[str | None] = mapped_column(String(20), index=True, nullable=True)
    country_code: Mapped[str | None] = mapped_column(String(2), index=True, nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<ClickEvent(id={self.id}, link_id={self.link_id}, device_type='{self.device_type}')>"
