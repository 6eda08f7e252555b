"""Tests for the maintenance sweep: click buffer flush and expiry cleanup."""

import datetime
from unittest.mock import AsyncMock, patch

import pytest

from shortener.cache import CacheKeySchema
from shortener.models import ShortLink, utcnow
from shortener.sweeper import main, sweep_once

KEYS = CacheKeySchema()


async def add_link(store, code, expires_at=None):
    await store.create_record(
        ShortLink(code=code, original_url=f"https://example.com/{code}", created_at=utcnow(), expires_at=expires_at)
    )


@pytest.mark.asyncio
async def test_flush_moves_counters_into_database(store, fast_store):
    await add_link(store, "abc123")
    await add_link(store, "def456")
    fast_store.data[KEYS.clicks_key("abc123")] = 3
    fast_store.data[KEYS.clicks_key("def456")] = 1
    fast_store.data[KEYS.url_key("abc123")] = "{}"

    report = await sweep_once(store, fast_store, KEYS)

    assert report.flushed_codes == 2
    assert report.flushed_clicks == 4
    assert (await store.get_by_code("abc123")).click_count == 3
    assert (await store.get_by_code("def456")).click_count == 1
    assert KEYS.clicks_key("abc123") not in fast_store.data
    assert KEYS.url_key("abc123") in fast_store.data


@pytest.mark.asyncio
async def test_flush_counts_clicks_for_deleted_links_as_lost(store, fast_store):
    fast_store.data[KEYS.clicks_key("gone01")] = 5

    report = await sweep_once(store, fast_store, KEYS)

    assert report.lost_clicks == 5
    assert report.flushed_codes == 0
    assert fast_store.data == {}


@pytest.mark.asyncio
async def test_flush_restores_counter_when_database_write_fails(store, fast_store):
    await add_link(store, "abc123")
    fast_store.data[KEYS.clicks_key("abc123")] = 4

    with patch.object(store, "increment_click_count", side_effect=RuntimeError("db down")):
        with pytest.raises(RuntimeError):
            await sweep_once(store, fast_store, KEYS)

    assert fast_store.data[KEYS.clicks_key("abc123")] == 4


@pytest.mark.asyncio
async def test_sweep_deletes_expired_links(store, fast_store):
    await add_link(store, "old001", expires_at=utcnow() - datetime.timedelta(hours=1))
    await add_link(store, "new001", expires_at=utcnow() + datetime.timedelta(hours=1))

    report = await sweep_once(store, fast_store, KEYS)

    assert report.deleted == 1
    assert await store.get_by_code("old001") is None
    assert await store.get_by_code("new001") is not None


@pytest.mark.asyncio
async def test_sweep_with_cache_down_still_deletes(store, fast_store):
    await add_link(store, "old001", expires_at=utcnow() - datetime.timedelta(hours=1))
    fast_store.fail = True

    report = await sweep_once(store, fast_store, KEYS)

    assert report.deleted == 1
    assert report.flushed_codes == 0


@pytest.mark.asyncio
async def test_sweep_without_cache(store):
    await add_link(store, "old001", expires_at=utcnow() - datetime.timedelta(hours=1))

    report = await sweep_once(store, None)
    assert report.deleted == 1


def test_console_entry_runs_sweeper_loop():
    with patch("shortener.sweeper.run", new=AsyncMock()) as run:
        main()
    run.assert_awaited_once_with()
