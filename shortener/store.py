"""Durable PostgreSQL store for short links and click aggregates.

The store is mandatory: its errors propagate to the caller. It owns the
unique constraint on ``code`` that backstops snowflake uniqueness, and the
atomic counter update used whenever a click cannot be buffered in Redis.

Flow Diagram — increment_click_count()
======================================
::
    ┌─────────────────────────────┐
    │ UPDATE short_links          │
    │ SET click_count += n,       │
    │     last_accessed_at = now  │
    │ WHERE code = :code          │
    └──────────────┬──────────────┘
    rowcount == 0? │
    ┌──────────────┴─────┐
    │ YES                 │ NO
    ▼                     ▼
┌──────────┐     ┌────────────────┐
│ rollback │     │ INSERT          │
│ NotFound │     │ click_events    │
└──────────┘     │ (same txn)      │
                 └───────┬────────┘
                         ▼
                   ┌──────────┐
                   │ commit   │
                   └──────────┘

How to Use
===========
**Step 1 — Build with a session factory**::
    store = DurableStore(async_session)

**Step 2 — Persist and read**::
    link = await store.create_record(ShortLink(code="abc123", original_url=url))
    same = await store.get_by_code("abc123")

**Step 3 — Aggregate clicks**::
    stats = await store.get_aggregate_stats("abc123", days=30)

Key Behaviours
===============
- Each operation opens and closes its own session.
- create_record raises DuplicateCode when the code already exists.
- get_by_original_url returns the newest record for a URL.
- get_aggregate_stats returns one DailyStat per day with clicks, newest first.
"""

import datetime
import logging
from typing import Optional

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortener.clicks import ClickSource
from shortener.exceptions import DuplicateCode, NotFound
from shortener.models import ClickEvent, ShortLink, utcnow
from shortener.schemas import DailyStat

__all__ = ["DurableStore"]

logger = logging.getLogger(__name__)


class DurableStore:
    """Short-link persistence on top of an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create_record(self, link: ShortLink) -> ShortLink:
        async with self._session_factory() as session:
            session.add(link)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateCode(link.code) from exc
            await session.refresh(link)
            return link

    async def get_by_code(self, code: str) -> Optional[ShortLink]:
        async with self._session_factory() as session:
            result = await session.execute(select(ShortLink).where(ShortLink.code == code))
            return result.scalar_one_or_none()

    async def get_by_original_url(self, original_url: str) -> Optional[ShortLink]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ShortLink)
                .where(ShortLink.original_url == original_url)
                .order_by(ShortLink.created_at.desc(), ShortLink.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def increment_click_count(self, code: str, delta: int = 1, *, source: Optional[ClickSource] = None) -> None:
        if delta < 1:
            raise ValueError(f"delta must be a positive integer, got {delta!r}")

        now = utcnow()
        async with self._session_factory() as session:
            result = await session.execute(
                update(ShortLink)
                .where(ShortLink.code == code)
                .values(click_count=ShortLink.click_count + delta, last_accessed_at=now)
            )
            if result.rowcount == 0:
                await session.rollback()
                raise NotFound(code)

            event = ClickEvent(code=code, clicked_at=now, clicks=delta)
            if source is not None:
                event.user_agent = source.user_agent
                event.ip_address = source.ip_address
                event.referer = source.referer
            session.add(event)
            await session.commit()

    async def get_aggregate_stats(self, code: str, days: int) -> list[DailyStat]:
        since = utcnow() - datetime.timedelta(days=days)
        day = func.date(ClickEvent.clicked_at)

        async with self._session_factory() as session:
            result = await session.execute(
                select(day.label("day"), func.sum(ClickEvent.clicks).label("clicks"))
                .where(ClickEvent.code == code, ClickEvent.clicked_at >= since)
                .group_by(day)
                .order_by(day.desc())
            )
            return [DailyStat(date=str(row.day), clicks=int(row.clicks or 0)) for row in result]

    async def delete_expired(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(ShortLink).where(ShortLink.expires_at.is_not(None), ShortLink.expires_at < utcnow())
            )
            await session.commit()

        deleted = result.rowcount or 0
        if deleted:
            logger.info(f"Deleted {deleted} expired short links")
        return deleted

    async def health_check(self) -> None:
        async with self._session_factory() as session:
            await session.execute(text("SELECT 1"))
