"""FastAPI route definitions for the short link REST API.

This module provides all HTTP endpoints with dependency injection, error
mapping and response serialization. Handlers stay thin: every consistency
decision lives in ``LinkResolver`` and every aggregate in
``AnalyticsAggregator``.

API Endpoint Overview
=====================
::
    GET    /health
        └─ HealthResponse (200)

    POST   /api/v1/links
        ├─ LinkCreate (request body)
        └─ LinkResponse (201) or 409/422

    GET    /api/v1/links?limit&offset
        └─ list[LinkResponse] (200), newest first

    GET    /api/v1/links/{key}/stats
        └─ LinkStats (200) or 404

    GET    /api/v1/links/{key}/analytics?days
        └─ AnalyticsSummary (200) or 404

    GET    /api/v1/links/{key}/analytics/detailed?limit
        └─ list[ClickEventResponse] (200) or 404

    DELETE /api/v1/links/{key}
        └─ 204 or 404

    GET    /qr/{key}
        └─ image/png (200) or 404

    GET    /{key}
        └─ 30x Redirect or 404

Redirect Flow Diagram
=====================
::
    ┌─────────────┐
    │ GET /{key}  │
    └──────┬──────┘
           ▼
    ┌─────────────┐   None   ┌─────────┐
    │ resolve     │ ───────▶ │  404    │
    └──────┬──────┘          └─────────┘
           ▼
    ┌─────────────┐
    │ dispatch    │  detached: increment + capture
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ 30x         │  Location: original_url
    └─────────────┘

How to Use
===========
**Step 1 — Import and include router**::
    from shortlinks.routes import router
    app.include_router(router)

**Step 2 — Access endpoints**::
    # Create
    POST http://localhost:8080/api/v1/links
    {"url": "https://example.com", "custom_alias": "docs"}

    # Redirect
    GET http://localhost:8080/docs

Key Behaviours
===============
- Validation failures map to 422 and alias conflicts to 409.
- Internal failures are logged with detail and answered with a generic 500
  by the application-level handler.
- The redirect is returned without waiting for click tracking.
- Expired links answer 404 on every read endpoint.
- The catch-all ``/{key}`` route is registered last.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.responses import RedirectResponse
from sqlalchemy import text

from shortlinks.aggregator import AnalyticsAggregator
from shortlinks.dependencies import RequestContext, get_aggregator, get_request_context, get_resolver
from shortlinks.enums import HealthStatus
from shortlinks.errors import ConflictError, ValidationError
from shortlinks.qr import render_qr_png
from shortlinks.resolver import LinkResolver
from shortlinks.schemas import (
    AnalyticsSummary,
    ClickEventResponse,
    HealthResponse,
    LinkCreate,
    LinkResponse,
    LinkStats,
)
from shortlinks.store import LinkStore

__all__ = ["router"]

router = APIRouter()

NOT_FOUND_DETAIL = "Short link not found"


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(ctx: RequestContext = Depends(get_request_context)) -> HealthResponse:
    ctx.logger.info("Health check requested")
    db_status = HealthStatus.HEALTHY
    cache_status = HealthStatus.HEALTHY

    try:
        await ctx.database.execute(text("SELECT 1"))
        ctx.logger.debug("Database health check passed")
    except Exception as e:
        ctx.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    try:
        if not await ctx.cache.ping():
            cache_status = HealthStatus.UNHEALTHY
    except Exception as e:
        ctx.logger.error(f"Cache health check failed: {e}")
        cache_status = HealthStatus.UNHEALTHY

    status = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    ctx.logger.info(f"Health check completed: {status.value}")
    return HealthResponse(status=status, database=db_status, cache=cache_status)


@router.post("/api/v1/links", response_model=LinkResponse, status_code=201, tags=["links"])
async def create_link(
    payload: LinkCreate,
    ctx: RequestContext = Depends(get_request_context),
    resolver: LinkResolver = Depends(get_resolver),
) -> LinkResponse:
    ctx.add_tag("link_creation")
    ctx.logger.info(
        f"Link creation requested: {payload.url}",
        extra={"operation": "create_link", "target_url": payload.url, "custom_alias": payload.custom_alias},
    )

    try:
        link = await resolver.create(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.message) from exc
    except ConflictError as exc:
        raise HTTPException(status_code=409, detail=exc.message) from exc

    ctx.logger.info(
        f"Link created successfully: {link.key}",
        extra={"operation": "create_link", "key": link.key, "duration_ms": ctx.get_duration()},
    )
    return LinkResponse.from_link(link, ctx.settings.BASE_URL)


@router.get("/api/v1/links", response_model=list[LinkResponse], tags=["links"])
async def list_links(
    limit: int | None = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    ctx: RequestContext = Depends(get_request_context),
    resolver: LinkResolver = Depends(get_resolver),
) -> list[LinkResponse]:
    links = await resolver.list_links(limit=limit, offset=offset)
    return [LinkResponse.from_link(link, ctx.settings.BASE_URL) for link in links]


@router.get("/api/v1/links/{key}/stats", response_model=LinkStats, tags=["links"])
async def get_link_stats(
    key: str,
    ctx: RequestContext = Depends(get_request_context),
    resolver: LinkResolver = Depends(get_resolver),
) -> LinkStats:
    ctx.logger.info(f"Stats requested for key: {key}")
    link = await resolver.get_stats(key)
    if link is None:
        ctx.logger.warning(f"Stats not found for key: {key}")
        raise HTTPException(status_code=404, detail=NOT_FOUND_DETAIL)
    return LinkStats.model_validate(link)


@router.get("/api/v1/links/{key}/analytics", response_model=AnalyticsSummary, tags=["analytics"])
async def get_link_analytics(
    key: str,
    days: int | None = Query(None),
    ctx: RequestContext = Depends(get_request_context),
    aggregator: AnalyticsAggregator = Depends(get_aggregator),
) -> AnalyticsSummary:
    ctx.add_tag("analytics")
    summary = await aggregator.summarize(key, days)
    if summary is None:
        ctx.logger.warning(f"Analytics not found for key: {key}")
        raise HTTPException(status_code=404, detail=NOT_FOUND_DETAIL)
    return summary


@router.get(
    "/api/v1/links/{key}/analytics/detailed",
    response_model=list[ClickEventResponse],
    tags=["analytics"],
)
async def get_detailed_analytics(
    key: str,
    limit: int | None = Query(None, ge=1),
    ctx: RequestContext = Depends(get_request_context),
    resolver: LinkResolver = Depends(get_resolver),
) -> list[ClickEventResponse]:
    ctx.add_tag("analytics")
    if await resolver.get_stats(key) is None:
        raise HTTPException(status_code=404, detail=NOT_FOUND_DETAIL)

    limit = min(limit or ctx.settings.LIST_DEFAULT_LIMIT, ctx.settings.DETAILED_ANALYTICS_MAX_LIMIT)
    events = await LinkStore(ctx.database).list_click_events(key, limit)
    return [ClickEventResponse.model_validate(event) for event in events]


@router.delete("/api/v1/links/{key}", status_code=204, tags=["links"])
async def delete_link(
    key: str,
    ctx: RequestContext = Depends(get_request_context),
    resolver: LinkResolver = Depends(get_resolver),
) -> Response:
    if not await resolver.delete(key):
        ctx.logger.warning(f"Delete failed - key not found: {key}")
        raise HTTPException(status_code=404, detail=NOT_FOUND_DETAIL)
    return Response(status_code=204)


@router.get("/qr/{key}", tags=["links"], response_class=Response)
async def get_qr_code(
    key: str,
    ctx: RequestContext = Depends(get_request_context),
    resolver: LinkResolver = Depends(get_resolver),
) -> Response:
    link = await resolver.resolve(key)
    if link is None:
        raise HTTPException(status_code=404, detail=NOT_FOUND_DETAIL)
    short_url = f"{ctx.settings.BASE_URL.rstrip('/')}/{link.key}"
    return Response(content=render_qr_png(short_url), media_type="image/png")


@router.get("/{key}", tags=["redirect"])
async def redirect_to_url(
    key: str,
    ctx: RequestContext = Depends(get_request_context),
    resolver: LinkResolver = Depends(get_resolver),
) -> RedirectResponse:
    ctx.add_tag("redirect")
    ctx.logger.info(
        f"Redirect requested for key: {key}",
        extra={"operation": "redirect", "key": key, "user_agent": ctx.user_agent, "client_ip": ctx.client_ip},
    )

    link = await resolver.resolve(key)
    if link is None:
        ctx.logger.warning(
            f"Redirect failed - key not found: {key}",
            extra={"operation": "redirect", "key": key, "error": "not_found", "duration_ms": ctx.get_duration()},
        )
        raise HTTPException(status_code=404, detail=NOT_FOUND_DETAIL)

    ctx.capture.dispatch(
        link.key,
        link.id,
        referrer=ctx.referrer,
        user_agent=ctx.user_agent,
        ip=ctx.client_ip,
    )

    ctx.logger.info(
        f"Redirect successful: {key} -> {link.original_url}",
        extra={"operation": "redirect", "key": key, "duration_ms": ctx.get_duration()},
    )
    return RedirectResponse(url=link.original_url, status_code=ctx.settings.REDIRECT_STATUS_CODE)
