"""SQLAlchemy ORM models for the URL shortener application.

This module defines the database schema using SQLAlchemy declarative models
with proper indexing for short-link lookups and click aggregation.

Data Model Layout
=================
::
    short_links table
    ├─ id (BIGSERIAL PRIMARY KEY)
    ├─ code (VARCHAR(32) UNIQUE, INDEXED)      ← collision backstop
    ├─ original_url (TEXT NOT NULL, INDEXED)
    ├─ click_count (BIGINT DEFAULT 0)
    ├─ created_at (TIMESTAMPTZ NOT NULL)
    ├─ expires_at (TIMESTAMPTZ NULL, INDEXED)
    └─ last_accessed_at (TIMESTAMPTZ NULL)

    click_events table
    ├─ id (BIGSERIAL PRIMARY KEY)
    ├─ code (VARCHAR(32), INDEXED)
    ├─ clicked_at (TIMESTAMPTZ, INDEXED)
    ├─ clicks (INTEGER DEFAULT 1)
    ├─ user_agent (TEXT NULL)
    ├─ ip_address (VARCHAR(45) NULL)
    └─ referer (TEXT NULL)

How to Use
===========
**Step 1 — Import**::
    from shortener.models import ShortLink

**Step 2 — Create a new link**::
    link = ShortLink(code="abc123", original_url="https://example.com", created_at=utcnow())

**Step 3 — Check expiry**::
    if link.is_expired():
        raise Expired(link.code)

Key Behaviours
===============
- code is unique; a duplicate insert is how a minted-code collision surfaces.
- original_url is indexed but not unique; two concurrent first-time shortens
  of the same URL may both succeed.
- click_count only moves through atomic UPDATE ... SET click_count = click_count + n.
- Every durable click increment writes one click_events row with the batch size.

Classes:
    ShortLink:  A shortened URL mapping with click tracking and optional expiry.
    ClickEvent:  One durable click increment, used for daily aggregates.
"""

import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from shortener.database import Base

__all__ = ["ShortLink", "ClickEvent", "utcnow", "as_utc"]

# SQLite only auto-assigns INTEGER PRIMARY KEY columns
_BigIntId = BigInteger().with_variant(Integer, "sqlite")


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def as_utc(value: datetime.datetime) -> datetime.datetime:
    """Treat naive datetimes (as returned by some drivers) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


class ShortLink(Base):
    __tablename__ = "short_links"

    id: Mapped[int] = mapped_column(_BigIntId, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(32), unique=True, index=True, nullable=False)
    original_url: Mapped[str] = mapped_column(Text, index=True, nullable=False)
    click_count: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    expires_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(timezone=True), index=True, nullable=True)
    last_accessed_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def is_expired(self, now: Optional[datetime.datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return as_utc(self.expires_at) < (now or utcnow())

    def __repr__(self) -> str:
        return f"<ShortLink(id={self.id}, code='{self.code}', click_count={self.click_count})>"


class ClickEvent(Base):
    __tablename__ = "click_events"

    id: Mapped[int] = mapped_column(_BigIntId, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(32), index=True, nullable=False)
    clicked_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True, nullable=False
    )
    clicks: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    # visitor details exist only for single clicks written straight to the database
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    referer: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<ClickEvent(code='{self.code}', clicks={self.clicks}, clicked_at={self.clicked_at})>"
