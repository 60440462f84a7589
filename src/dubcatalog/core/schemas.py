"""Pydantic schemas for extracted catalog data.

Produced by the extractors, cached as JSON-ready dicts, and returned by the
API.  Optional fields left as ``None`` are dropped from the serialised
payload (:func:`to_payload`), so clients only see keys the page actually
provided.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def to_payload(model: BaseModel) -> dict[str, Any]:
    """Serialise *model* to a JSON-ready dict using wire aliases and omitting ``None`` fields."""
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Search results
# ---------------------------------------------------------------------------


class CatalogEntry(BaseModel):
    """One title listed on a search results page.

    Attributes:
        title: Display title.
        slug: Last path segment of the title page URL; the title's identifier.
        url: Absolute URL of the title page.
        thumbnail: Poster image URL, if the listing showed one.
        categories: Category labels attached to the listing, in page order.
    """

    model_config = ConfigDict(frozen=True)

    title: str
    slug: str = Field(..., min_length=1)
    url: str
    thumbnail: Optional[str] = None
    categories: list[str] = Field(default_factory=list)


class SearchResult(BaseModel):
    """Response body for ``action=search``."""

    model_config = ConfigDict(populate_by_name=True)

    anime_list: list[CatalogEntry] = Field(default_factory=list, alias="animeList")
    total_found: int = Field(0, alias="totalFound")

    @classmethod
    def from_entries(cls, entries: list[CatalogEntry]) -> "SearchResult":
        return cls(anime_list=entries, total_found=len(entries))


# ---------------------------------------------------------------------------
# Title details
# ---------------------------------------------------------------------------


class ServerLink(BaseModel):
    """A single embed server offering one episode.

    Attributes:
        name: Server display name (e.g. ``"Filemoon"``).
        url: Embed URL for the episode on that server.
        language: Audio language of the stream.
        season: Season parsed from an ``S<season>E<episode>`` label, when the
            upstream used that naming scheme.
    """

    name: str
    url: str
    language: str = "Hindi"
    season: Optional[int] = None


class Episode(BaseModel):
    """All servers offering one episode number."""

    number: int = Field(..., ge=1)
    title: str
    servers: list[ServerLink] = Field(default_factory=list)


class TitleDetail(BaseModel):
    """Response body for ``action=anime``.

    ``episodes`` is sorted ascending by episode number.  Every metadata field
    is independently optional; a page without an episode payload still
    yields its metadata with an empty ``episodes`` list.
    """

    title: str
    slug: str
    thumbnail: Optional[str] = None
    description: Optional[str] = None
    rating: Optional[str] = None
    episodes: list[Episode] = Field(default_factory=list)
