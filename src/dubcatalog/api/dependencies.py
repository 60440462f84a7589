"""FastAPI dependency providers.

The pipeline objects are created once per application (see
``api/main.py``) and stored on ``app.state``; these providers hand them to
route handlers so handlers never import module-level singletons.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from dubcatalog.config.settings import Settings
from dubcatalog.core.rate_limiter import client_key_from_headers
from dubcatalog.scraper.service import CatalogService


def get_app_settings(request: Request) -> Settings:
    """Return the settings the application was built with."""
    return request.app.state.settings


def get_catalog_service(request: Request) -> CatalogService:
    """Return the application's :class:`CatalogService`.

    Raises:
        HTTPException: 503 if the application lifespan has not started yet.
    """
    service = getattr(request.app.state, "catalog_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Catalog service is not initialised",
        )
    return service


def get_client_key(request: Request) -> str:
    """Return the rate-limit key for the caller (forwarded IP or ``"unknown"``)."""
    return client_key_from_headers(request.headers)
