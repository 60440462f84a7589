"""Catalog HTTP entry point.

A single endpoint dispatches on the ``action`` query parameter::

    GET /?action=search&title=<text>
    GET /?action=anime&slug=<slug>[&ep=<n>]

Parameter validation happens before the rate limiter is consulted, so a
malformed request never spends rate-limit budget.  All error bodies have
the shape ``{"error": <message>}``; 429 adds ``retryAfter`` and, with
``DEBUG`` enabled, 500 adds ``stack``.
"""

from __future__ import annotations

import traceback
from typing import Annotated, Any, Optional

import structlog
from fastapi import APIRouter, Depends, Query, Response, status
from fastapi.responses import JSONResponse

from dubcatalog.api.dependencies import get_app_settings, get_catalog_service, get_client_key
from dubcatalog.config.settings import Settings
from dubcatalog.core.exceptions import RateLimitError, ValidationError
from dubcatalog.scraper.service import CatalogService, build_request

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["catalog"])


def _error_response(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


@router.options("/{path:path}", include_in_schema=False)
async def preflight(path: str) -> Response:  # noqa: ARG001
    """Answer bare OPTIONS requests on any path with an empty 200."""
    return Response(status_code=status.HTTP_200_OK)


@router.get("/")
async def catalog(
    service: Annotated[CatalogService, Depends(get_catalog_service)],
    settings: Annotated[Settings, Depends(get_app_settings)],
    client_key: Annotated[str, Depends(get_client_key)],
    action: Optional[str] = Query(None, description="search or anime"),
    title: Optional[str] = Query(None, description="Search text (action=search)"),
    slug: Optional[str] = Query(None, description="Title slug (action=anime)"),
    ep: Optional[str] = Query(None, description="Episode number filter (action=anime)"),
    episode: Optional[str] = Query(None, description="Alias of ep"),
) -> JSONResponse:
    """Search the catalog or return one title's episodes and servers.

    - **action=search**: ``{animeList, totalFound}`` for ``title``.
    - **action=anime**: title metadata plus episodes for ``slug``,
      optionally narrowed to episode ``ep``.
    """
    try:
        request = build_request(action, title=title, slug=slug, episode=ep or episode)
    except ValidationError as exc:
        return _error_response(exc.status_code, str(exc))

    structlog.contextvars.bind_contextvars(action=request.action, client_key=client_key)

    try:
        payload = await service.handle(request, client_key)
    except RateLimitError as exc:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc), "retryAfter": exc.retry_after},
            headers={"Retry-After": str(exc.retry_after)},
        )
    except Exception as exc:  # noqa: BLE001
        logger.error("catalog_request_failed", cache_key=request.cache_key, exc_info=exc)
        extra: dict[str, Any] = {}
        if settings.debug:
            extra["stack"] = "".join(traceback.format_exception(exc))
        return _error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            str(exc) or "Internal server error",
            **extra,
        )

    return JSONResponse(content=payload)
