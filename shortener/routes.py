"""FastAPI route definitions for the URL shortener REST API.

API Endpoint Overview
=====================
::
    GET    /health
        └─ HealthResponse (200)

    POST   /api/shorten
        ├─ ShortenRequest (request body)
        └─ ShortenResponse (201) or 400/503

    GET    /api/resolve/:short_code
        └─ ResolveResponse (200) or 404/503

    GET    /api/urls/:short_code
        └─ UrlInfoResponse (200) or 404/503

    DELETE /api/urls/:short_code
        └─ 204 or 503

    GET    /:short_code
        └─ 307 Redirect or 404/503

Key Behaviours
===============
- Routes translate between HTTP and ShortenerService calls only.
- ShortenerError subclasses are mapped to status codes by the exception
  handler registered in shortener.main.
- 307 redirects preserve the HTTP method.
"""

import datetime

from fastapi import APIRouter, Depends, Response
from fastapi.responses import RedirectResponse

from shortener.dependencies import RequestContext, get_request_context, get_shortener_service
from shortener.enums import HealthStatus
from shortener.schemas import (
    HealthResponse,
    ResolveResponse,
    ShortenRequest,
    ShortenResponse,
    UrlInfoResponse,
)
from shortener.service import ShortenerService

__all__ = ["router"]

router = APIRouter()


def _short_url(ctx: RequestContext, short_code: str) -> str:
    return f"{ctx.settings.BASE_URL.rstrip('/')}/{short_code}"


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(
    ctx: RequestContext = Depends(get_request_context),
    service: ShortenerService = Depends(get_shortener_service),
) -> HealthResponse:
    database, cache = await service.health()
    status = (
        HealthStatus.HEALTHY
        if database is HealthStatus.HEALTHY and cache is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    ctx.logger.info(f"Health check completed: {status.value}")
    return HealthResponse(status=status, database=database, cache=cache)


@router.post("/api/shorten", response_model=ShortenResponse, status_code=201, tags=["urls"])
async def shorten_url(
    payload: ShortenRequest,
    ctx: RequestContext = Depends(get_request_context),
    service: ShortenerService = Depends(get_shortener_service),
) -> ShortenResponse:
    expires_in = None
    if payload.expires_in_seconds is not None:
        expires_in = datetime.timedelta(seconds=payload.expires_in_seconds)

    mapping = await service.create(payload.url, expires_in=expires_in)
    ctx.logger.info(
        f"URL shortened successfully: {mapping.short_code}",
        extra={"operation": "create_short_url", "duration_ms": ctx.get_duration()},
    )
    return ShortenResponse(
        short_code=mapping.short_code,
        short_url=_short_url(ctx, mapping.short_code),
        original_url=mapping.original_url,
        created_at=mapping.created_at,
        expires_at=mapping.expires_at,
    )


@router.get("/api/resolve/{short_code}", response_model=ResolveResponse, tags=["urls"])
async def resolve_url(
    short_code: str,
    service: ShortenerService = Depends(get_shortener_service),
) -> ResolveResponse:
    mapping = await service.resolve(short_code)
    return ResolveResponse(original_url=mapping.original_url)


@router.get("/api/urls/{short_code}", response_model=UrlInfoResponse, tags=["urls"])
async def get_url_info(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: ShortenerService = Depends(get_shortener_service),
) -> UrlInfoResponse:
    mapping = await service.describe(short_code)
    return UrlInfoResponse(
        short_code=mapping.short_code,
        short_url=_short_url(ctx, mapping.short_code),
        original_url=mapping.original_url,
        created_at=mapping.created_at,
        expires_at=mapping.expires_at,
        hit_count=mapping.hit_count,
    )


@router.delete("/api/urls/{short_code}", status_code=204, tags=["urls"])
async def delete_url(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: ShortenerService = Depends(get_shortener_service),
) -> Response:
    await service.delete(short_code)
    ctx.logger.info(f"Short URL deleted: {short_code}", extra={"operation": "delete"})
    return Response(status_code=204)


@router.get("/{short_code}", tags=["redirect"])
async def redirect_to_url(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: ShortenerService = Depends(get_shortener_service),
) -> RedirectResponse:
    mapping = await service.resolve(short_code)
    ctx.logger.info(
        f"Redirect successful: {short_code} -> {mapping.original_url}",
        extra={"operation": "redirect", "duration_ms": ctx.get_duration()},
    )
    return RedirectResponse(url=mapping.original_url, status_code=307)
