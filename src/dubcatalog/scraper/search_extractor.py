"""Catalog entry extraction from search result pages.

Each ``<article>`` element on a search page describes one title.  For every
block the extractor resolves the title page URL and slug, a display title,
a thumbnail and the category labels.  Blocks without a resolvable title
link are dropped; entries keep the order in which they appear on the page.
"""

from __future__ import annotations

import logging
from typing import Iterator
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, Tag

from dubcatalog.core.schemas import CatalogEntry
from dubcatalog.scraper.config import NON_TITLE_PATH_PREFIXES, THUMBNAIL_ATTRIBUTES

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Link helpers
# ---------------------------------------------------------------------------


def _bare_host(host: str | None) -> str:
    host = (host or "").lower()
    return host[4:] if host.startswith("www.") else host


def _is_category_link(anchor: Tag) -> bool:
    classes = anchor.get("class") or []
    rels = anchor.get("rel") or []
    return any("cat" in cls.lower() for cls in classes) or any(
        "category" in rel.lower() for rel in rels
    )


def slug_to_title(slug: str) -> str:
    """Return a human-readable title for *slug* (hyphens become spaces)."""
    return slug.replace("-", " ").strip()


def _title_links(block: Tag, base_url: str) -> Iterator[tuple[Tag, str, str]]:
    """Yield ``(anchor, absolute_url, slug)`` for anchors that point at title pages.

    Category-tagged anchors, off-site links and WordPress taxonomy routes are
    skipped.
    """
    site_host = _bare_host(urlparse(base_url).hostname)
    for anchor in block.find_all("a", href=True):
        if _is_category_link(anchor):
            continue
        absolute = urljoin(f"{base_url}/", anchor["href"].strip())
        parsed = urlparse(absolute)
        if parsed.scheme not in ("http", "https"):
            continue
        if site_host and _bare_host(parsed.hostname) != site_host:
            continue
        segments = [segment for segment in parsed.path.split("/") if segment]
        if not segments or segments[0].lower() in NON_TITLE_PATH_PREFIXES:
            continue
        yield anchor, f"{parsed.scheme}://{parsed.netloc}{parsed.path}", segments[-1]


def _visible_text(tag: Tag) -> str:
    return " ".join(tag.get_text(" ", strip=True).split())


# ---------------------------------------------------------------------------
# Field extraction
# ---------------------------------------------------------------------------


def _thumbnail(block: Tag, base_url: str) -> str | None:
    """Return the first image URL in *block*, preferring ``src`` over lazy-load attributes.

    Inline ``data:`` placeholders (common with lazy loading) are skipped.
    """
    img = block.find("img")
    if img is None:
        return None
    for attr in THUMBNAIL_ATTRIBUTES:
        value = (img.get(attr) or "").strip()
        if value and not value.startswith("data:"):
            return urljoin(f"{base_url}/", value)
    return None


def _categories(block: Tag) -> list[str]:
    labels: list[str] = []
    for anchor in block.find_all("a"):
        if not _is_category_link(anchor):
            continue
        label = _visible_text(anchor)
        if label and label not in labels:
            labels.append(label)
    return labels


def _extract_entry(block: Tag, base_url: str) -> CatalogEntry | None:
    links = list(_title_links(block, base_url))
    if not links:
        return None

    _, url, slug = links[0]
    title = ""
    for anchor, _, link_slug in links:
        if link_slug == slug:
            title = _visible_text(anchor)
            if title:
                break
    return CatalogEntry(
        title=title or slug_to_title(slug),
        slug=slug,
        url=url,
        thumbnail=_thumbnail(block, base_url),
        categories=_categories(block),
    )


# ---------------------------------------------------------------------------
# Public extraction function
# ---------------------------------------------------------------------------


def extract_search_results(html: str, base_url: str) -> list[CatalogEntry]:
    """Extract catalog entries from a search results page.

    Args:
        html: Raw HTML of the search page.
        base_url: Upstream scheme and host; relative links are resolved
            against it and off-site links are ignored.

    Returns:
        Catalog entries in page order.  An empty list is a valid outcome.
    """
    soup = BeautifulSoup(html, "html.parser")
    base_url = base_url.rstrip("/")
    entries: list[CatalogEntry] = []
    for position, block in enumerate(soup.find_all("article"), start=1):
        entry = _extract_entry(block, base_url)
        if entry is None:
            logger.debug("scraper: search block %d has no title link; skipped", position)
            continue
        entries.append(entry)
    return entries
