"""Cache-aside coordinator: shorten, resolve and analytics over Redis + PostgreSQL.

This module is the core of the service. It decides when to read the fast
store, when to fall back to the durable store, when to repopulate the fast
store, and how click counts stay eventually consistent across both.

Architecture Overview
==================
::
    ┌─────────────────────────────────────────────────────────────┐
    │                  CacheAsideCoordinator                      │
    │  ┌─────────────────┐  ┌─────────────────┐  ┌──────────────┐ │
    │  │   shorten()     │  │   resolve()     │  │get_analytics()│ │
    │  │ • Gate URL      │  │ • Cache first   │  │ • Cache first │ │
    │  │ • Reuse record  │  │ • DB fallback   │  │ • DB aggregate│ │
    │  │ • Mint code     │  │ • Expiry check  │  │ • Short TTL   │ │
    │  │ • Write-through │  │ • Click dispatch│  │              │ │
    │  └─────────────────┘  └─────────────────┘  └──────────────┘ │
    └─────────────────────────────────────────────────────────────┘
          │            │                  │                  │
          ▼            ▼                  ▼                  ▼
    ┌──────────┐ ┌──────────────┐  ┌─────────────┐  ┌──────────────┐
    │Validator │ │ NodeRegistry │  │  FastStore  │  │ DurableStore │
    │  (gate)  │ │ → Snowflake  │  │  (optional) │  │ (mandatory)  │
    └──────────┘ └──────────────┘  └─────────────┘  └──────────────┘

Request Flow Diagrams
=====================

Shorten Flow
------------
::
    ┌─────────────┐
    │ Validate URL │──reject──▶ InvalidURL
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Cache lurl:  │──hit & live──▶ return existing
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ DB by URL    │──hit & live──▶ populate lurl:, return existing
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Alias given? │──mintable──▶ AliasReserved
    │              │──taken──▶ AliasTaken
    │ else mint    │
    │ snowflake    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ DB insert    │──error──▶ CreateFailed (code discarded)
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Cache url:   │  best-effort
    │ and lurl:    │
    └─────────────┘

Resolve Flow
------------
::
    ┌─────────────┐
    │ Cache url:   │──hit──▶ expired? Expired : dispatch click, return URL
    └──────┬──────┘
           ▼ miss / cache down
    ┌─────────────┐
    │ DB by code   │──none──▶ NotFound
    └──────┬──────┘
           ▼
    expired? ──▶ Expired
           ▼
    ┌─────────────┐
    │ Cache url:   │  best-effort
    │ dispatch     │  fire-and-forget
    │ return URL   │
    └─────────────┘

Click Increment Flow
--------------------
::
    ┌─────────────┐
    │ INCRBY       │──ok──▶ done (buffered, flushed by sweeper)
    │ clicks:<code>│
    └──────┬──────┘
           ▼ cache absent / error
    ┌─────────────┐
    │ DB atomic    │──error──▶ log, give up
    │ UPDATE +1    │
    └─────────────┘

Key Behaviours
===============
- The fast store is optional: with cache=None every operation still works.
- Fast-store errors are logged and counted, never raised.
- Durable-store errors propagate (shorten wraps insert failures in CreateFailed).
- Minted codes are not collision-checked; the DB unique constraint is the backstop.
- Aliases inside the minted-code space are refused, so aliases and minted codes never meet.
- Two concurrent first-time shortens of one URL can both insert; accepted race.
"""

import asyncio
import logging
import time
from typing import Optional

from prometheus_client import Counter, Histogram
from pydantic import ValidationError

from shortener.cache import CacheKeySchema, FastStore
from shortener.clicks import CLICK_INCREMENTS_TOTAL, ClickDispatcher, ClickSource
from shortener.config import Settings
from shortener.enums import CacheStatus, ClickPath, RequestStatus
from shortener.exceptions import (
    AliasReserved,
    AliasTaken,
    CacheError,
    CreateFailed,
    Expired,
    InvalidURL,
    NotFound,
)
from shortener.models import ShortLink, utcnow
from shortener.registry import NodeRegistry
from shortener.schemas import AnalyticsResponse, CachedShortLink, ShortenRequest
from shortener.store import DurableStore
from shortener.validation import URLValidator

__all__ = ["CacheAsideCoordinator"]


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

SHORTEN_REQUESTS_TOTAL = Counter(
    "url_shortener_shorten_requests_total",
    "Total shorten requests",
    ["status", "reused"],
)
RESOLVE_REQUESTS_TOTAL = Counter(
    "url_shortener_resolve_requests_total",
    "Total resolve requests",
    ["status", "cache_hit"],
)
ANALYTICS_REQUESTS_TOTAL = Counter(
    "url_shortener_analytics_requests_total",
    "Total analytics requests",
    ["status", "cache_hit"],
)
SHORTEN_DURATION = Histogram(
    "url_shortener_shorten_duration_seconds",
    "Time taken to shorten URLs",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)
RESOLVE_DURATION = Histogram(
    "url_shortener_resolve_duration_seconds",
    "Time taken to resolve short codes",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)
CODES_MINTED_TOTAL = Counter(
    "url_shortener_codes_minted_total",
    "Short codes minted by the snowflake generator",
)
CACHE_ERRORS_TOTAL = Counter(
    "url_shortener_cache_errors_total",
    "Fast-store failures absorbed by the coordinator",
    ["operation"],
)


class CacheAsideCoordinator:
    """Orchestrates read-through and write-through between Redis and PostgreSQL.

    Example:
        >>> coordinator = CacheAsideCoordinator(store, cache, validator, registry, settings)
        >>> link = await coordinator.shorten(ShortenRequest(url="https://example.com"))
        >>> await coordinator.resolve(link.code)
        'https://example.com'
    """

    def __init__(
        self,
        store: DurableStore,
        cache: Optional[FastStore],
        validator: URLValidator,
        registry: NodeRegistry,
        settings: Settings,
        *,
        dispatcher: Optional[ClickDispatcher] = None,
        keys: Optional[CacheKeySchema] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._store = store
        self._cache = cache
        self._validator = validator
        self._registry = registry
        self._settings = settings
        self._dispatcher = dispatcher
        self._keys = keys or CacheKeySchema()
        self._logger = logger or logging.getLogger("urlshortener")
        self._background_tasks: set[asyncio.Task] = set()

    @property
    def keys(self) -> CacheKeySchema:
        return self._keys

    def attach_dispatcher(self, dispatcher: Optional[ClickDispatcher]) -> None:
        self._dispatcher = dispatcher

    # ========================================================================
    # PUBLIC API METHODS
    # ========================================================================

    async def shorten(self, request: ShortenRequest) -> ShortLink:
        """Return the active record for ``request.url``, creating one if needed.

        Raises:
            InvalidURL: The validation gate rejected the URL.
            AliasTaken: The custom alias is already bound.
            AliasReserved: The custom alias is a code the generator could mint.
            ClockRegression: The generator saw the clock move backwards; retryable.
            CreateFailed: The durable insert failed after a code was chosen.
        """
        start_time = time.perf_counter()
        try:
            link, reused = await self._shorten(request)
        except (InvalidURL, AliasTaken, AliasReserved) as exc:
            SHORTEN_REQUESTS_TOTAL.labels(status=RequestStatus.VALIDATION_ERROR, reused="false").inc()
            self._logger.warning(f"Shorten rejected: {exc}")
            raise
        except Exception:
            SHORTEN_REQUESTS_TOTAL.labels(status=RequestStatus.ERROR, reused="false").inc()
            raise
        finally:
            SHORTEN_DURATION.observe(time.perf_counter() - start_time)

        SHORTEN_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, reused=str(reused).lower()).inc()
        return link

    async def resolve(self, code: str, source: Optional[ClickSource] = None) -> str:
        """Return the redirect target for ``code`` and dispatch one click increment.

        ``source`` describes the visitor; it is kept only when the click is
        written straight to the database.

        Raises:
            NotFound: The code exists in neither store.
            Expired: The record's expiry has passed.
        """
        start_time = time.perf_counter()
        cache_hit = CacheStatus.MISS
        try:
            link = await self._cache_get_link(self._keys.url_key(code))
            if link is not None:
                cache_hit = CacheStatus.HIT
            else:
                link = await self._store.get_by_code(code)
                if link is None:
                    raise NotFound(code)

            # expired cache entries are left for the sweep; TTL reclaims them
            if link.is_expired():
                raise Expired(code)

            if cache_hit is CacheStatus.MISS:
                await self._cache_put_link(link, self._keys.url_key(code))

            self._dispatch_click(code, source)
            RESOLVE_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, cache_hit=cache_hit).inc()
            return link.original_url

        except NotFound:
            RESOLVE_REQUESTS_TOTAL.labels(status=RequestStatus.NOT_FOUND, cache_hit=cache_hit).inc()
            raise
        except Expired:
            RESOLVE_REQUESTS_TOTAL.labels(status=RequestStatus.EXPIRED, cache_hit=cache_hit).inc()
            raise
        except Exception as exc:
            RESOLVE_REQUESTS_TOTAL.labels(status=RequestStatus.ERROR, cache_hit=cache_hit).inc()
            self._logger.error(f"Resolve error for {code}: {exc}")
            raise
        finally:
            RESOLVE_DURATION.observe(time.perf_counter() - start_time)

    async def increment_clicks(self, code: str, source: Optional[ClickSource] = None) -> ClickPath:
        """Count one click: Redis counter first, one durable fallback, never raises."""
        if self._cache is not None:
            try:
                await self._cache.increment_counter(
                    self._keys.clicks_key(code),
                    1,
                    ttl=self._settings.CLICK_COUNTER_TTL_SECONDS,
                )
                CLICK_INCREMENTS_TOTAL.labels(path=ClickPath.CACHE).inc()
                return ClickPath.CACHE
            except CacheError as exc:
                CACHE_ERRORS_TOTAL.labels(operation="increment").inc()
                self._logger.warning(f"Cache click increment failed for {code}, using database: {exc}")

        try:
            await self._store.increment_click_count(code, source=source)
        except Exception as exc:
            CLICK_INCREMENTS_TOTAL.labels(path=ClickPath.FAILED).inc()
            self._logger.error(f"Failed to increment click count for {code}: {exc}")
            return ClickPath.FAILED

        CLICK_INCREMENTS_TOTAL.labels(path=ClickPath.DATABASE).inc()
        return ClickPath.DATABASE

    async def get_analytics(self, code: str, days: Optional[int] = None) -> AnalyticsResponse:
        """Return click analytics for ``code`` over the last ``days`` days.

        Served from the cache when possible; computed from the durable store
        otherwise and cached for ANALYTICS_CACHE_TTL_SECONDS.

        Raises:
            NotFound: The code does not exist.
            ValueError: ``days`` is outside [1, ANALYTICS_MAX_DAYS].
        """
        if days is None:
            days = self._settings.ANALYTICS_DEFAULT_DAYS
        if not 1 <= days <= self._settings.ANALYTICS_MAX_DAYS:
            raise ValueError(f"days must be between 1 and {self._settings.ANALYTICS_MAX_DAYS}, got {days}")

        key = self._keys.analytics_key(code, days)
        cached = await self._cache_get(key)
        if cached:
            try:
                analytics = AnalyticsResponse.model_validate_json(cached)
                ANALYTICS_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, cache_hit=CacheStatus.HIT).inc()
                return analytics
            except ValidationError as exc:
                self._logger.error(f"Cache deserialization error for {key}: {exc}")

        try:
            link = await self._store.get_by_code(code)
            if link is None:
                raise NotFound(code)

            daily_stats = await self._store.get_aggregate_stats(code, days)
        except NotFound:
            ANALYTICS_REQUESTS_TOTAL.labels(status=RequestStatus.NOT_FOUND, cache_hit=CacheStatus.MISS).inc()
            raise

        buffered = await self._buffered_clicks(code)
        analytics = AnalyticsResponse(
            code=link.code,
            original_url=link.original_url,
            click_count=(link.click_count or 0) + buffered,
            days=days,
            created_at=link.created_at,
            expires_at=link.expires_at,
            last_accessed_at=link.last_accessed_at,
            daily_stats=daily_stats,
        )
        await self._cache_set(key, analytics.model_dump_json(), self._settings.ANALYTICS_CACHE_TTL_SECONDS)
        ANALYTICS_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, cache_hit=CacheStatus.MISS).inc()
        return analytics

    async def drain_clicks(self) -> None:
        """Wait for every click increment dispatched so far to finish."""
        if self._dispatcher is not None and self._dispatcher.running:
            await self._dispatcher.drain()
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    # ========================================================================
    # PRIVATE HELPER METHODS
    # ========================================================================

    async def _shorten(self, request: ShortenRequest) -> tuple[ShortLink, bool]:
        verdict = self._validator.validate(request.url)
        if not verdict:
            raise InvalidURL(request.url, verdict.reason)

        original_url = request.url
        lookup_key = self._keys.original_url_key(original_url)

        existing = await self._cache_get_link(lookup_key)
        if existing is not None and not existing.is_expired():
            self._logger.debug(f"Reusing cached short link {existing.code} for {original_url}")
            return existing, True

        existing = await self._store.get_by_original_url(original_url)
        if existing is not None and not existing.is_expired():
            await self._cache_put_link(existing, lookup_key)
            self._logger.debug(f"Reusing stored short link {existing.code} for {original_url}")
            return existing, True

        code = await self._choose_code(request)
        link = ShortLink(
            code=code,
            original_url=original_url,
            click_count=0,
            created_at=utcnow(),
            expires_at=request.expires_at,
        )
        try:
            link = await self._store.create_record(link)
        except Exception as exc:
            self._logger.error(f"Failed to persist short link {code}: {exc}")
            raise CreateFailed(code) from exc

        await self._cache_put_link(link, self._keys.url_key(code), lookup_key)
        self._logger.info(f"Short link created: {code} -> {original_url}")
        return link, False

    async def _choose_code(self, request: ShortenRequest) -> str:
        generator = self._registry.get_generator(self._settings.NODE_ID)

        if request.custom_alias:
            # an alias the generator could mint would later collide with a minted code
            if generator.in_code_space(request.custom_alias):
                raise AliasReserved(request.custom_alias)
            if await self._store.get_by_code(request.custom_alias) is not None:
                raise AliasTaken(request.custom_alias)
            return request.custom_alias

        code = generator.generate_code()
        CODES_MINTED_TOTAL.inc()
        return code

    def _dispatch_click(self, code: str, source: Optional[ClickSource]) -> None:
        if self._dispatcher is not None:
            self._dispatcher.dispatch(code, source)
            return

        # detached from the request; keep a reference so the task is not collected
        task = asyncio.create_task(self.increment_clicks(code, source))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _buffered_clicks(self, code: str) -> int:
        if self._cache is None:
            return 0
        try:
            return await self._cache.get_counter(self._keys.clicks_key(code))
        except (CacheError, ValueError) as exc:
            CACHE_ERRORS_TOTAL.labels(operation="get_counter").inc()
            self._logger.warning(f"Could not read buffered clicks for {code}: {exc}")
            return 0

    async def _cache_get(self, key: str) -> Optional[str]:
        if self._cache is None:
            return None
        try:
            return await self._cache.get(key)
        except CacheError as exc:
            CACHE_ERRORS_TOTAL.labels(operation="get").inc()
            self._logger.warning(f"Cache read failed for {key}: {exc}")
            return None

    async def _cache_set(self, key: str, value: str, ttl: int) -> None:
        if self._cache is None:
            return
        try:
            await self._cache.set(key, value, ttl=ttl)
        except CacheError as exc:
            CACHE_ERRORS_TOTAL.labels(operation="set").inc()
            self._logger.warning(f"Cache write failed for {key}: {exc}")

    async def _cache_get_link(self, key: str) -> Optional[ShortLink]:
        cached = await self._cache_get(key)
        if not cached:
            return None
        try:
            return CachedShortLink.model_validate_json(cached).to_model()
        except ValidationError as exc:
            self._logger.error(f"Cache deserialization error for {key}: {exc}")
            return None

    async def _cache_put_link(self, link: ShortLink, *keys: str) -> None:
        payload = CachedShortLink.model_validate(link).model_dump_json()
        for key in keys:
            await self._cache_set(key, payload, self._settings.URL_CACHE_TTL_SECONDS)

