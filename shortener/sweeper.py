"""Background maintenance: delete expired links and flush buffered clicks.

Redirect clicks land in Redis counters (``clicks:<code>``) first. This worker
periodically moves those counters into PostgreSQL with one atomic update per
code, and deletes links whose expiry has passed. Run it as its own process::

    shortener-sweeper            # console script
    python -m shortener.sweeper  # equivalent

Without it, buffered counters expire after CLICK_COUNTER_TTL_SECONDS and
their clicks are lost.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as redis

from shortener.cache import CacheKeySchema, FastStore
from shortener.config import get_settings
from shortener.database import async_session
from shortener.exceptions import CacheError, NotFound
from shortener.store import DurableStore

__all__ = ["SweepReport", "flush_click_buffers", "sweep_once", "run", "main"]

logger = logging.getLogger(__name__)

settings = get_settings()


@dataclass
class SweepReport:
    deleted: int = 0
    flushed_codes: int = 0
    flushed_clicks: int = 0
    lost_clicks: int = 0


async def flush_click_buffers(store: DurableStore, cache: FastStore, keys: CacheKeySchema, report: SweepReport) -> None:
    async for key in cache.scan(keys.clicks_pattern()):
        code = keys.code_from_clicks_key(key)
        buffered = await cache.pop_counter(key)
        if buffered <= 0:
            continue

        try:
            await store.increment_click_count(code, buffered)
        except NotFound:
            # link was deleted (expired) after the clicks were buffered
            report.lost_clicks += buffered
            logger.info(f"Dropped {buffered} buffered clicks for missing link {code}")
            continue
        except Exception:
            # put the clicks back so the next sweep retries them
            await cache.increment_counter(key, buffered)
            raise

        report.flushed_codes += 1
        report.flushed_clicks += buffered


async def sweep_once(store: DurableStore, cache: Optional[FastStore], keys: Optional[CacheKeySchema] = None) -> SweepReport:
    report = SweepReport()
    keys = keys or CacheKeySchema()

    if cache is not None:
        try:
            await flush_click_buffers(store, cache, keys, report)
        except CacheError as exc:
            logger.warning(f"Click buffer flush skipped, cache unavailable: {exc}")

    report.deleted = await store.delete_expired()
    return report


async def run() -> None:
    """Sweep loop; one iteration every SWEEP_INTERVAL_SECONDS."""
    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    store = DurableStore(async_session)
    cache = None
    if settings.CACHE_ENABLED:
        cache = FastStore(
            redis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True),
            timeout=settings.CACHE_OP_TIMEOUT_SECONDS,
        )

    iteration = 0
    try:
        while True:
            iteration += 1
            try:
                report = await sweep_once(store, cache)
                logger.info(f"Sweep {iteration} completed: {report}")
            except Exception as e:
                logger.warning(f"Sweep iteration {iteration} failed: {e}")

            await asyncio.sleep(settings.SWEEP_INTERVAL_SECONDS)
    finally:
        if cache is not None:
            await cache.close()


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
