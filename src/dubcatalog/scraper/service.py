"""Request pipeline: validate → rate limit → cache → fetch → extract → cache.

:class:`CatalogService` owns the order of operations; the HTTP layer only
translates query parameters in and exceptions out.  The cache, rate
limiter and fetcher are injected at construction so tests can substitute
deterministic fakes and deployments can swap the cache backend.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional
from urllib.parse import quote_plus

from dubcatalog.api.metrics import cache_lookups_total, rate_limit_rejections_total
from dubcatalog.core.cache import Cache
from dubcatalog.core.exceptions import ExtractionError, RateLimitError, ValidationError
from dubcatalog.core.rate_limiter import RateLimiter
from dubcatalog.core.schemas import CatalogEntry, SearchResult, TitleDetail, to_payload
from dubcatalog.scraper.detail_extractor import extract_title_detail
from dubcatalog.scraper.http_fetcher import PageFetcher
from dubcatalog.scraper.search_extractor import extract_search_results

logger = logging.getLogger(__name__)

SEARCH_ACTION = "search"
DETAIL_ACTION = "anime"

MISSING_TITLE_MESSAGE = "Missing title parameter"
MISSING_SLUG_MESSAGE = "Missing slug parameter"
INVALID_ACTION_MESSAGE = "Invalid action. Use action=search or action=anime"

_EPISODE_FILTER_RE = re.compile(r"\s*([+-]?\d+)")


# ---------------------------------------------------------------------------
# Request shape
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CatalogRequest:
    """A validated request.

    Attributes:
        action: ``"search"`` or ``"anime"``.
        title: Search text (search action).
        slug: Title slug (detail action).
        episode: Episode number filter (detail action), if any.
    """

    action: str
    title: Optional[str] = None
    slug: Optional[str] = None
    episode: Optional[int] = None

    @property
    def cache_key(self) -> str:
        """Cache key built from the action and normalised parameters."""
        if self.action == SEARCH_ACTION:
            return f"search:{self.title}"
        return f"anime:{self.slug}:{self.episode if self.episode is not None else 'all'}"


def normalise_title(title: str) -> str:
    return " ".join(title.split()).casefold()


def normalise_slug(slug: str) -> str:
    return slug.strip().strip("/").lower()


def parse_episode_filter(value: str | None) -> int | None:
    """Return the episode filter from its leading digits, or ``None`` when it has none.

    Trailing text is ignored, so ``"3abc"`` is 3 and ``"1.5"`` is 1.
    """
    if value is None:
        return None
    match = _EPISODE_FILTER_RE.match(value)
    if match is None:
        logger.debug("scraper: ignoring non-numeric episode filter %r", value)
        return None
    return int(match.group(1))


def build_request(
    action: str | None,
    title: str | None = None,
    slug: str | None = None,
    episode: str | None = None,
) -> CatalogRequest:
    """Validate raw query parameters.

    Raises:
        ValidationError: Unknown action, or the action's required parameter
            is missing or blank.
    """
    if action == SEARCH_ACTION:
        if not title or not title.strip():
            raise ValidationError(MISSING_TITLE_MESSAGE)
        return CatalogRequest(action=SEARCH_ACTION, title=normalise_title(title))
    if action == DETAIL_ACTION:
        if not slug or not normalise_slug(slug):
            raise ValidationError(MISSING_SLUG_MESSAGE)
        return CatalogRequest(
            action=DETAIL_ACTION,
            slug=normalise_slug(slug),
            episode=parse_episode_filter(episode),
        )
    raise ValidationError(INVALID_ACTION_MESSAGE)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@dataclass
class CatalogService:
    """Runs one catalog request through the pipeline.

    Attributes:
        fetcher: Upstream page fetcher.
        cache: Cache backend shared by every request.
        rate_limiter: Per-client rate limiter shared by every request.
        search_ttl: Cache TTL in seconds for search results.
        detail_ttl: Cache TTL in seconds for title details.
        search_extractor: ``(html, base_url) -> list[CatalogEntry]``.
        detail_extractor: ``(html, slug, episode) -> TitleDetail``.
    """

    fetcher: PageFetcher
    cache: Cache
    rate_limiter: RateLimiter
    search_ttl: float = 600.0
    detail_ttl: float = 600.0
    search_extractor: Callable[[str, str], list[CatalogEntry]] = field(
        default=extract_search_results
    )
    detail_extractor: Callable[[str, str, Optional[int]], TitleDetail] = field(
        default=extract_title_detail
    )

    @property
    def retry_after(self) -> int:
        """Seconds a rejected client is told to wait (the full window length)."""
        return self.rate_limiter.window_seconds

    def search_url(self, title: str) -> str:
        return f"{self.fetcher.base_url}/?s={quote_plus(title)}"

    def title_url(self, slug: str) -> str:
        return f"{self.fetcher.base_url}/{slug}/"

    async def handle(self, request: CatalogRequest, client_key: str) -> dict[str, Any]:
        """Admit, serve from cache or fetch and extract, then cache the payload.

        Args:
            request: A request already validated by :func:`build_request`.
            client_key: Rate-limit identity of the caller.

        Returns:
            The JSON-ready response payload.

        Raises:
            RateLimitError: The client's window budget is spent.
            FetchError: The upstream page could not be fetched.
            ExtractionError: An extractor failed unexpectedly.
        """
        if not await self.rate_limiter.admit(client_key):
            rate_limit_rejections_total.inc()
            raise RateLimitError("Rate limit exceeded", retry_after=self.retry_after)

        key = request.cache_key
        cached = await self.cache.get(key)
        if cached is not None:
            logger.debug("scraper: cache hit for %s", key)
            cache_lookups_total.labels(entry_class=request.action, result="hit").inc()
            return cached
        cache_lookups_total.labels(entry_class=request.action, result="miss").inc()

        if request.action == SEARCH_ACTION:
            payload = await self._search(request.title or "")
            ttl = self.search_ttl
        else:
            payload = await self._detail(request.slug or "", request.episode)
            ttl = self.detail_ttl

        await self.cache.set(key, payload, ttl)
        return payload

    async def _search(self, title: str) -> dict[str, Any]:
        html = await self.fetcher.fetch_html(self.search_url(title))
        try:
            entries = self.search_extractor(html, self.fetcher.base_url)
        except Exception as exc:
            raise ExtractionError(f"Failed to extract search results: {exc}") from exc
        logger.info("scraper: search for %r found %d titles", title, len(entries))
        return to_payload(SearchResult.from_entries(entries))

    async def _detail(self, slug: str, episode: int | None) -> dict[str, Any]:
        html = await self.fetcher.fetch_html(self.title_url(slug))
        try:
            detail = self.detail_extractor(html, slug, episode)
        except Exception as exc:
            raise ExtractionError(f"Failed to extract title page {slug}: {exc}") from exc
        logger.info(
            "scraper: title %s has %d consolidated episodes", slug, len(detail.episodes)
        )
        return to_payload(detail)
