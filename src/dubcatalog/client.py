"""Async client for a running dubcatalog service, plus helpers for its payloads.

Usage::

    async with CatalogClient("https://catalog.example.org") as client:
        results = await client.search("black butler")
        detail = await client.get_title(results["animeList"][0]["slug"])
        url = episode_url(detail, 3, server="servabyss")
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from dubcatalog.core.exceptions import DubCatalogError
from dubcatalog.scraper.detail_extractor import EpisodeLabel, parse_episode_label

logger = logging.getLogger(__name__)

__all__ = [
    "CatalogClient",
    "CatalogClientError",
    "EpisodeLabel",
    "episode_numbers",
    "episode_url",
    "parse_episode_label",
]


class CatalogClientError(DubCatalogError):
    """Raised when the service answers with a non-2xx status.

    Args:
        message: The service's ``error`` message, or a generic description.
        status_code: HTTP status returned by the service.
    """

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class CatalogClient:
    """Thin async wrapper over the catalog HTTP API.

    Args:
        base_url: Root URL of the service.
        client: Optional pre-configured :class:`httpx.AsyncClient`.  When
            omitted the client creates and owns one.
        access_token: Optional bearer token forwarded as ``Authorization``
            for deployments behind an authenticating gateway.
        timeout: Request timeout in seconds for an owned client.
    """

    def __init__(
        self,
        base_url: str,
        client: httpx.AsyncClient | None = None,
        access_token: str | None = None,
        timeout: float = 60.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers: dict[str, str] = {"Accept": "application/json"}
        if access_token:
            self._headers["Authorization"] = f"Bearer {access_token}"

    async def __aenter__(self) -> "CatalogClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get(self, params: dict[str, str]) -> dict[str, Any]:
        response = await self._client.get(f"{self._base_url}/", params=params, headers=self._headers)
        if response.is_success:
            return response.json()
        try:
            message = response.json().get("error")
        except ValueError:
            message = None
        logger.warning("catalog client: HTTP %d for %s", response.status_code, params)
        raise CatalogClientError(
            message or f"HTTP {response.status_code}: {response.reason_phrase}",
            status_code=response.status_code,
        )

    async def search(self, title: str) -> dict[str, Any]:
        """Return ``{animeList, totalFound}`` for *title*."""
        return await self._get({"action": "search", "title": title})

    async def get_title(self, slug: str, episode: int | None = None) -> dict[str, Any]:
        """Return the title detail payload for *slug*, optionally narrowed to one episode."""
        params = {"action": "anime", "slug": slug}
        if episode is not None:
            params["ep"] = str(episode)
        return await self._get(params)

    async def is_available(self, title: str) -> bool:
        """Return ``True`` if a search for *title* finds at least one entry.

        Service errors are logged and reported as unavailable.
        """
        try:
            result = await self.search(title)
        except (CatalogClientError, httpx.HTTPError) as exc:
            logger.warning("catalog client: availability check for %r failed: %s", title, exc)
            return False
        return result.get("totalFound", 0) > 0


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------


def episode_numbers(detail: dict[str, Any]) -> list[int]:
    """Return the episode numbers present in a title payload, ascending."""
    return sorted(episode["number"] for episode in detail.get("episodes") or [])


def episode_url(detail: dict[str, Any], number: int, server: str = "filemoon") -> str | None:
    """Return the embed URL of episode *number* on *server*, or ``None``.

    Server names are matched case-insensitively (``"filemoon"`` matches
    ``"Filemoon"``).
    """
    for episode in detail.get("episodes") or []:
        if episode.get("number") != number:
            continue
        for link in episode.get("servers") or []:
            if str(link.get("name", "")).lower() == server.lower():
                return link.get("url")
    return None
