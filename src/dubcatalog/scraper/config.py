"""Constants and tuning parameters for the catalog scraper."""

from __future__ import annotations

# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

#: User-agent string sent with every upstream request.  The site serves a
#: reduced page to non-browser agents.
USER_AGENT: str = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

#: Headers attached to every upstream request.  ``Referer`` is filled in
#: from the configured base URL by the fetcher.
DEFAULT_HEADERS: dict[str, str] = {
    "User-Agent": USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

#: Status codes that are retried like network errors.  Every other 4xx is
#: returned to the caller as-is.
RETRYABLE_CLIENT_STATUSES: frozenset[int] = frozenset({429})

# ---------------------------------------------------------------------------
# Search pages
# ---------------------------------------------------------------------------

#: First path segments that belong to WordPress taxonomy or paging routes
#: rather than to a title page.
NON_TITLE_PATH_PREFIXES: frozenset[str] = frozenset({"category", "tag", "author", "page"})

#: Image attributes checked, in order, for a thumbnail URL.
THUMBNAIL_ATTRIBUTES: tuple[str, ...] = ("src", "data-src", "data-lazy-src")

# ---------------------------------------------------------------------------
# Title pages
# ---------------------------------------------------------------------------

#: Name of the JavaScript variable holding the per-server episode lists.
SERVER_VIDEOS_VARIABLE: str = "serverVideos"

#: Known embed servers, in processing order, mapped to their display names.
KNOWN_SERVERS: dict[str, str] = {
    "filemoon": "Filemoon",
    "servabyss": "Servabyss",
    "vidgroud": "Vidgroud",
}

#: Audio language of every stream listed on the site.
DEFAULT_LANGUAGE: str = "Hindi"

#: CSS selectors for optional page metadata, tried in order.
THUMBNAIL_SELECTOR: str = 'img[src*="wp-content"]'
DESCRIPTION_SELECTOR: str = "#short-desc"
RATING_SELECTOR: str = '.rating, [class*="rating"]'
