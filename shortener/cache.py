"""Redis fast store used by the cache-aside coordinator.

The fast store is always optional. Every call is bounded by a timeout and
every failure (connection refused, timeout, server error) is re-raised as
CacheError, which callers treat as "fall back to the durable store".

Key Layout
==========
::
    url:<code>                  → CachedShortLink JSON   (URL_CACHE_TTL_SECONDS)
    lurl:<sha256(original_url)> → CachedShortLink JSON   (URL_CACHE_TTL_SECONDS)
    clicks:<code>               → integer counter        (CLICK_COUNTER_TTL_SECONDS)
    analytics:<code>:<days>     → AnalyticsResponse JSON (ANALYTICS_CACHE_TTL_SECONDS)

How to Use
===========
**Step 1 — Wrap a client**::
    cache = FastStore(redis.from_url(settings.REDIS_URL, decode_responses=True))

**Step 2 — Read and write**::
    await cache.set(keys.url_key("abc123"), payload.model_dump_json(), ttl=3600)
    raw = await cache.get(keys.url_key("abc123"))

Key Behaviours
===============
- get() returns None on a miss; only errors raise.
- increment_counter() sends INCRBY and EXPIRE NX in one MULTI/EXEC; it raises only
  when the increment itself did not land (EXPIRE NX needs Redis 7+).
- pop_counter() reads and deletes a counter atomically (GETDEL).
"""

import asyncio
import functools
import hashlib
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any, Optional, TypeVar

import redis.asyncio as redis
from redis.exceptions import RedisError

from shortener.exceptions import CacheError

__all__ = ["CacheKeySchema", "FastStore"]

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def prefix_key(func: Callable) -> Callable:
    @functools.wraps(func)
    def wrapper(self, *args, **kwargs) -> str:
        key = func(self, *args, **kwargs)
        return f"{self.prefix}:{key}" if self.prefix is not None else key

    return wrapper


class CacheKeySchema:
    """Standardized Redis keys for short links, counters and analytics.

    An optional prefix namespaces all generated keys, e.g. "urlshortener:prod".
    """

    def __init__(self, prefix: str | None = None):
        if prefix is not None and not isinstance(prefix, str):
            raise TypeError(f"Prefix must be of type string (given type: {type(prefix)}).")
        self.prefix = prefix

    @prefix_key
    def url_key(self, code: str) -> str:
        return f"url:{code}"

    @prefix_key
    def original_url_key(self, original_url: str) -> str:
        # original URLs may be kilobytes long; key on a digest instead
        digest = hashlib.sha256(original_url.encode("utf-8")).hexdigest()
        return f"lurl:{digest}"

    @prefix_key
    def clicks_key(self, code: str) -> str:
        return f"clicks:{code}"

    @prefix_key
    def clicks_pattern(self) -> str:
        return "clicks:*"

    @prefix_key
    def analytics_key(self, code: str, days: int) -> str:
        return f"analytics:{code}:{int(days)}"

    def code_from_clicks_key(self, key: str) -> str:
        return key.removeprefix(self.clicks_key(""))


def handle_redis_errors(method: F) -> F:
    """Bound a FastStore coroutine by the store timeout and map failures to CacheError.

    Example:
        >>> @handle_redis_errors
        ... async def get(self, key):
        ...     return await self._client.get(key)
    """

    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        try:
            async with asyncio.timeout(self._timeout):
                return await method(self, *args, **kwargs)
        except TimeoutError as e:
            raise CacheError(f"Redis call {method.__name__} timed out after {self._timeout}s") from e
        except RedisError as e:
            raise CacheError(f"Redis call {method.__name__} failed: {e}") from e

    return wrapper


class FastStore:
    """Thin async facade over a redis.asyncio client."""

    def __init__(self, client: redis.Redis, timeout: Optional[float] = 0.25):
        self._client = client
        self._timeout = timeout

    @property
    def client(self) -> redis.Redis:
        return self._client

    @handle_redis_errors
    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    @handle_redis_errors
    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        await self._client.set(key, value, ex=ttl)

    @handle_redis_errors
    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    @handle_redis_errors
    async def increment_counter(self, key: str, delta: int = 1, ttl: Optional[int] = None) -> int:
        pipe = self._client.pipeline(transaction=True)
        pipe.incrby(key, delta)
        if ttl:
            # NX keeps the TTL set by the first increment
            pipe.expire(key, ttl, nx=True)
        results = await pipe.execute(raise_on_error=False)

        value = results[0]
        if isinstance(value, Exception):
            raise value
        if ttl and isinstance(results[1], Exception):
            # the increment landed, so this call must still succeed
            logger.warning(f"Counter {key} incremented but EXPIRE failed: {results[1]}")
        return int(value)

    @handle_redis_errors
    async def get_counter(self, key: str) -> int:
        value = await self._client.get(key)
        return int(value) if value else 0

    @handle_redis_errors
    async def pop_counter(self, key: str) -> int:
        value = await self._client.getdel(key)
        return int(value) if value else 0

    async def scan(self, pattern: str, count: int = 500) -> AsyncIterator[str]:
        try:
            async for key in self._client.scan_iter(match=pattern, count=count):
                yield key
        except RedisError as e:
            raise CacheError(f"Redis scan for {pattern!r} failed: {e}") from e

    @handle_redis_errors
    async def health_check(self) -> None:
        await self._client.ping()

    async def close(self) -> None:
        await self._client.aclose()
