"""FastAPI application factory and entry point.

Creates the application instance, registers CORS and request-logging
middleware, mounts the catalog router and wires the pipeline objects
(HTTP client, cache backend, rate limiter) into ``app.state`` for the
lifetime of the process.

Usage::

    # Development server (from project root)
    uvicorn dubcatalog.api.main:app --reload

    # Production
    gunicorn dubcatalog.api.main:app -k uvicorn.workers.UvicornWorker
"""

from __future__ import annotations

import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

import httpx
import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dubcatalog.api.metrics import (
    get_metrics_response,
    http_request_duration_seconds,
    http_requests_total,
)
from dubcatalog.config.settings import Settings, get_settings
from dubcatalog.core.cache import Cache, MemoryCache, RedisCache
from dubcatalog.core.logging_config import configure_logging, request_id_var
from dubcatalog.core.rate_limiter import (
    MemoryRateLimiter,
    RateLimitConfig,
    RateLimiter,
    RedisRateLimiter,
)
from dubcatalog.scraper.http_fetcher import PageFetcher
from dubcatalog.scraper.service import CatalogService

configure_logging("INFO")

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Pipeline construction
# ---------------------------------------------------------------------------


def build_cache(settings: Settings) -> Cache:
    """Return the cache backend selected by ``settings.cache_backend``."""
    if settings.cache_backend == "redis":
        return RedisCache.from_url(settings.redis_url)
    return MemoryCache()


def build_rate_limiter(settings: Settings) -> RateLimiter:
    """Return the rate limiter backend; the ``redis`` cache backend also shares budgets."""
    config = RateLimitConfig(
        max_requests=settings.rate_limit_max,
        window_seconds=settings.rate_limit_window,
    )
    if settings.cache_backend == "redis":
        return RedisRateLimiter.from_url(settings.redis_url, config)
    return MemoryRateLimiter(config)


def build_service(settings: Settings, client: httpx.AsyncClient, cache: Cache) -> CatalogService:
    """Assemble a :class:`CatalogService` from settings and shared resources."""
    fetcher = PageFetcher(
        client,
        settings.upstream_base_url,
        timeout=settings.fetch_timeout,
        max_retries=settings.fetch_max_retries,
        backoff_base=settings.fetch_backoff_base,
    )
    return CatalogService(
        fetcher=fetcher,
        cache=cache,
        rate_limiter=build_rate_limiter(settings),
        search_ttl=settings.search_cache_ttl,
        detail_ttl=settings.detail_cache_ttl,
    )


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(
    settings: Settings | None = None,
    service: CatalogService | None = None,
) -> FastAPI:
    """Build and configure the FastAPI application.

    Args:
        settings: Settings to build with.  Defaults to :func:`get_settings`.
        service: A pre-built pipeline.  When given, the lifespan does not
            create its own HTTP client or cache; tests use this to inject
            fakes.

    Returns:
        A fully configured ``FastAPI`` instance.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(application: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "application_startup",
            app_name=settings.app_name,
            cache_backend=settings.cache_backend,
            rate_limit_max=settings.rate_limit_max,
        )
        if application.state.catalog_service is not None:
            yield
            logger.info("application_shutdown")
            return

        async with httpx.AsyncClient() as client:
            cache = build_cache(settings)
            pipeline = build_service(settings, client, cache)
            application.state.catalog_service = pipeline
            try:
                yield
            finally:
                await pipeline.rate_limiter.close()
                await cache.close()
                application.state.catalog_service = None
                logger.info("application_shutdown")

    application = FastAPI(
        title=settings.app_name,
        description=(
            "Search a dubbed-anime catalog and list each title's episodes "
            "and streaming servers."
        ),
        version="0.1.0",
        debug=settings.debug,
        lifespan=lifespan,
    )
    application.state.settings = settings
    application.state.catalog_service = service

    # ---- Middleware --------------------------------------------------------

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        # Browser clients send authorization, x-client-info, apikey and
        # content-type.  Any header is accepted so a preflight never fails.
        allow_headers=["*"],
    )

    @application.middleware("http")
    async def request_logging_middleware(request: Request, call_next: Callable) -> Response:
        """Bind a request ID, log the outcome and record HTTP metrics."""
        request_id = str(uuid.uuid4())
        request_id_var.set(request_id)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception as exc:
            logger.error("unhandled_exception", exc_info=exc)
            raise
        finally:
            elapsed = time.perf_counter() - start
            http_requests_total.labels(
                method=request.method, path=request.url.path, status=str(status_code)
            ).inc()
            http_request_duration_seconds.labels(
                method=request.method, path=request.url.path
            ).observe(elapsed)
            log_fn = logger.warning if status_code >= 400 else logger.info
            log_fn("request_complete", status_code=status_code, elapsed_ms=round(elapsed * 1000, 2))

        response.headers["X-Request-ID"] = request_id
        return response

    # ---- Routers -----------------------------------------------------------

    from dubcatalog.api.routes import router as catalog_router  # noqa: PLC0415

    application.include_router(catalog_router)

    # ---- System endpoints --------------------------------------------------

    @application.get("/health", tags=["system"])
    async def health() -> JSONResponse:
        """Return a minimal process-level liveness status."""
        return JSONResponse({"status": "ok"})

    if settings.metrics_enabled:

        @application.get("/metrics", tags=["system"], include_in_schema=False)
        async def metrics() -> Response:
            """Expose Prometheus metrics in text format."""
            body, content_type = get_metrics_response()
            return Response(content=body, media_type=content_type)

    return application


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

app = create_app()
"""The FastAPI application instance.

This is the ASGI callable passed to Uvicorn / Gunicorn.
"""
