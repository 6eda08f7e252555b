"""FastAPI route definitions for the URL shortener REST API.

This module is a thin layer over the CacheAsideCoordinator: it parses input,
delegates, and serializes output. Core errors (ShortenerError subclasses)
are turned into JSON error bodies by the handler registered in main.py.

API Endpoint Overview
=====================
::
    GET  /health
        └─ HealthResponse (200, or 503 when the database is down)

    POST /api/shorten
        ├─ ShortenRequest (request body)
        └─ ShortLinkResponse (201) or 400/409/422/500/503

    GET  /api/analytics/:code?days=30
        └─ AnalyticsResponse (200) or 404/422

    GET  /:code
        └─ 307 Redirect or 404/410

Key Behaviours
===============
- Redirects are 307 so browsers do not cache them and every hit is counted.
- A cache outage reports "degraded" health but keeps the service in rotation.
- Click counting never delays or alters a redirect response.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse, RedirectResponse

from shortener.clicks import ClickSource
from shortener.dependencies import RequestContext, ServiceManager, get_coordinator, get_request_context, get_service_manager
from shortener.enums import HealthStatus
from shortener.schemas import AnalyticsResponse, HealthResponse, ShortenRequest, ShortLinkResponse
from shortener.service import CacheAsideCoordinator

__all__ = ["router"]

router = APIRouter()


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(
    ctx: RequestContext = Depends(get_request_context),
    manager: ServiceManager = Depends(get_service_manager),
):
    db_status = HealthStatus.HEALTHY
    cache_status = HealthStatus.HEALTHY

    try:
        await manager.store.health_check()
    except Exception as e:
        ctx.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    if manager.cache is None:
        cache_status = HealthStatus.DEGRADED
    else:
        try:
            await manager.cache.health_check()
        except Exception as e:
            ctx.logger.warning(f"Cache health check failed: {e}")
            cache_status = HealthStatus.UNHEALTHY

    if db_status is not HealthStatus.HEALTHY:
        status = HealthStatus.UNHEALTHY
    elif cache_status is not HealthStatus.HEALTHY:
        status = HealthStatus.DEGRADED
    else:
        status = HealthStatus.HEALTHY

    body = HealthResponse(status=status, database=db_status, cache=cache_status)
    if status is HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=body.model_dump(mode="json"))
    return body


@router.post("/api/shorten", response_model=ShortLinkResponse, status_code=201, tags=["urls"])
async def shorten_url(
    payload: ShortenRequest,
    ctx: RequestContext = Depends(get_request_context),
    coordinator: CacheAsideCoordinator = Depends(get_coordinator),
) -> ShortLinkResponse:
    ctx.logger.info(
        f"URL shortening requested: {payload.url}",
        extra={"operation": "shorten", "custom_alias": payload.custom_alias},
    )

    link = await coordinator.shorten(payload)

    ctx.logger.info(
        f"URL shortened: {link.code}",
        extra={"operation": "shorten", "short_code": link.code, "duration_ms": ctx.get_duration()},
    )
    return ShortLinkResponse.from_model(link, ctx.settings.BASE_URL)


@router.get("/api/analytics/{code}", response_model=AnalyticsResponse, tags=["urls"])
async def get_analytics(
    code: str,
    days: Optional[int] = Query(None, ge=1, description="Window size in days (default 30)"),
    ctx: RequestContext = Depends(get_request_context),
    coordinator: CacheAsideCoordinator = Depends(get_coordinator),
) -> AnalyticsResponse:
    ctx.logger.info(f"Analytics requested for short code: {code}")
    try:
        return await coordinator.get_analytics(code, days)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@router.get("/{code}", tags=["redirect"])
async def redirect_to_url(
    code: str,
    ctx: RequestContext = Depends(get_request_context),
    coordinator: CacheAsideCoordinator = Depends(get_coordinator),
) -> RedirectResponse:
    source = ClickSource(user_agent=ctx.user_agent, ip_address=ctx.client_ip, referer=ctx.referer)
    original_url = await coordinator.resolve(code, source)

    ctx.logger.info(
        f"Redirect successful: {code} -> {original_url}",
        extra={"operation": "redirect", "short_code": code, "duration_ms": ctx.get_duration()},
    )
    return RedirectResponse(url=original_url, status_code=307)
