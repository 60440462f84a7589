"""Title page extraction: page metadata plus a consolidated episode/server map.

Title pages embed their stream links in an inline script::

    const serverVideos = {
        filemoon: [{"name": "01", "url": "https://..."}, ...],
        servabyss: [{"name": "S1E1", "url": "https://..."}, ...],
    };

The object literal is read by an ordered sequence of strategies with an
identical contract (``literal -> {server: [RawVideo, ...]}``):

1. ``json``: normalise quotes and trailing commas, then ``json.loads``.
2. ``pattern``: a string-aware token scanner that recovers ``{name, url}``
   pairs from bare-key JavaScript that is not valid JSON.  On valid JSON it
   yields exactly what ``json`` yields.

The first strategy that does not raise :class:`ExtractionStrategyError`
wins.  Every raw label is then resolved to an episode number and the
servers are grouped per episode.

Metadata fields are independently optional and a page without a usable
script still yields a :class:`TitleDetail` with an empty episode list.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Callable, Iterator, NamedTuple, Optional

from bs4 import BeautifulSoup

from dubcatalog.api.metrics import extraction_strategy_total
from dubcatalog.core.exceptions import ExtractionStrategyError
from dubcatalog.core.schemas import Episode, ServerLink, TitleDetail
from dubcatalog.scraper.config import (
    DEFAULT_LANGUAGE,
    DESCRIPTION_SELECTOR,
    KNOWN_SERVERS,
    RATING_SELECTOR,
    SERVER_VIDEOS_VARIABLE,
    THUMBNAIL_SELECTOR,
)
from dubcatalog.scraper.search_extractor import slug_to_title

logger = logging.getLogger(__name__)


class RawVideo(NamedTuple):
    """One ``{name, url}`` item from a server's episode list."""

    name: str
    url: str


class EpisodeLabel(NamedTuple):
    """Episode number resolved from a raw label, with the season when present."""

    season: Optional[int]
    number: int


ServerVideos = dict[str, list[RawVideo]]
Strategy = Callable[[str], ServerVideos]

_SERVER_VIDEOS_RE = re.compile(
    r"(?:const|let|var)\s+" + re.escape(SERVER_VIDEOS_VARIABLE) + r"\s*=\s*(?=\{)"
)
_TRAILING_COMMA_RE = re.compile(r",\s*([\]}])")
# A double-quoted string, a single bracket, a run of anything else, or a
# stray quote.  Scanning token by token keeps brackets inside strings inert.
_TOKEN_RE = re.compile(r'"(?:[^"\\]|\\.)*"|[\[\]{}]|[^"\[\]{}]+|"')
_OPENERS = frozenset("[{")
_CLOSERS = frozenset("]}")
_KEY_SUFFIX_RE = re.compile(r"([\w$]+)?\s*:\s*$")
_SEASON_EPISODE_RE = re.compile(r"S(\d+)E(\d+)", re.IGNORECASE)
_DIGITS_RE = re.compile(r"\d+")


# ---------------------------------------------------------------------------
# Page metadata
# ---------------------------------------------------------------------------


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = " ".join(value.split())
    return value or None


def _select_text(soup: BeautifulSoup, selector: str) -> str | None:
    tag = soup.select_one(selector)
    return _clean(tag.get_text(" ", strip=True)) if tag is not None else None


def _meta_property(soup: BeautifulSoup, prop: str) -> str | None:
    tag = soup.find("meta", attrs={"property": prop})
    return _clean(tag.get("content")) if tag is not None else None


def _thumbnail(soup: BeautifulSoup) -> str | None:
    img = soup.select_one(THUMBNAIL_SELECTOR)
    if img is not None and _clean(img.get("src")):
        return _clean(img.get("src"))
    return _meta_property(soup, "og:image")


# ---------------------------------------------------------------------------
# Embedded script payload
# ---------------------------------------------------------------------------


def _balanced_end(text: str, start: int) -> int | None:
    """Return the index just past the bracket closing the one at *start*.

    Brackets inside double-quoted strings are ignored.  Returns ``None``
    when the span is never closed.
    """
    depth = 0
    for token in _TOKEN_RE.finditer(text, start):
        value = token.group(0)
        if value in _OPENERS:
            depth += 1
        elif value in _CLOSERS:
            depth -= 1
            if depth == 0:
                return token.end()
    return None


def find_server_videos_literal(soup: BeautifulSoup) -> str | None:
    """Return the quote-normalised ``serverVideos`` object literal, or ``None``."""
    for script in soup.find_all("script"):
        content = script.string or script.get_text()
        if SERVER_VIDEOS_VARIABLE not in content:
            continue
        match = _SERVER_VIDEOS_RE.search(content)
        if match is None:
            continue
        normalised = content.replace("'", '"')
        end = _balanced_end(normalised, match.end())
        if end is None:
            logger.info("scraper: serverVideos literal is never closed")
            continue
        return normalised[match.end():end]
    return None


def parse_as_json(literal: str) -> ServerVideos:
    """Strategy ``json``: parse the literal as JSON.

    Raises:
        ExtractionStrategyError: The literal is not valid JSON (e.g. bare
            keys) or is not an object.
    """
    try:
        data = json.loads(_TRAILING_COMMA_RE.sub(r"\1", literal))
    except ValueError as exc:
        raise ExtractionStrategyError(f"serverVideos is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ExtractionStrategyError("serverVideos is not an object")

    videos: ServerVideos = {}
    for server in KNOWN_SERVERS:
        items = data.get(server)
        if not isinstance(items, list):
            items = []
        videos[server] = [
            RawVideo(item["name"], item["url"])
            for item in items
            if isinstance(item, dict)
            and isinstance(item.get("name"), str)
            and isinstance(item.get("url"), str)
            and item["url"]
        ]
    return videos


def _decode_string(token: str) -> str:
    try:
        return json.loads(token)
    except ValueError:
        return token[1:-1]


def _members(body: str) -> Iterator[tuple[str, str]]:
    """Yield ``(key, raw_value)`` for each top-level member of an object body.

    Keys may be bare identifiers or quoted strings.  ``raw_value`` is either
    a quoted string token or a whole bracketed span; other scalars are
    skipped.  Later duplicates are yielded after earlier ones.
    """
    depth = 0
    key: str | None = None
    last_string: str | None = None
    value_start = 0
    for token in _TOKEN_RE.finditer(body):
        value = token.group(0)
        if value in _OPENERS:
            if depth == 0:
                value_start = token.start()
            depth += 1
        elif value in _CLOSERS:
            depth = max(0, depth - 1)
            if depth == 0 and key is not None:
                yield key, body[value_start:token.end()]
                key = None
        elif depth:
            continue
        elif value.startswith('"'):
            if key is not None:
                yield key, value
                key = None
            else:
                last_string = _decode_string(value)
        else:
            match = _KEY_SUFFIX_RE.search(value)
            key = (match.group(1) or last_string) if match else None
            last_string = None


def _top_level_objects(body: str) -> Iterator[str]:
    """Yield the ``{...}`` spans sitting directly inside an array body."""
    depth = 0
    start = 0
    for token in _TOKEN_RE.finditer(body):
        value = token.group(0)
        if value in _OPENERS:
            if depth == 0:
                start = token.start()
            depth += 1
        elif value in _CLOSERS and depth:
            depth -= 1
            if depth == 0 and body[start] == "{":
                yield body[start:token.end()]


def parse_with_patterns(literal: str) -> ServerVideos:
    """Strategy ``pattern``: recover ``{name, url}`` pairs server by server.

    A tolerant scanner rather than a parser: keys may be bare or quoted,
    ``name``/``url`` may appear in any order, trailing commas are fine, and
    brackets or braces inside string values never end a span early.

    Raises:
        ExtractionStrategyError: The literal contains no object.
    """
    start = literal.find("{")
    if start < 0:
        raise ExtractionStrategyError("serverVideos contains no object")
    end = _balanced_end(literal, start)
    body = literal[start + 1 : end - 1] if end is not None else literal[start + 1 :]

    arrays: dict[str, str] = {}
    for key, raw in _members(body):
        arrays[key] = raw

    videos: ServerVideos = {}
    for server in KNOWN_SERVERS:
        found: list[RawVideo] = []
        raw = arrays.get(server, "")
        if raw.startswith("["):
            for item in _top_level_objects(raw[1:-1]):
                fields: dict[str, str | None] = {}
                for key, value in _members(item[1:-1]):
                    fields[key] = _decode_string(value) if value.startswith('"') else None
                name, url = fields.get("name"), fields.get("url")
                if name is not None and url:
                    found.append(RawVideo(name, url))
        videos[server] = found
    return videos


STRATEGIES: tuple[tuple[str, Strategy], ...] = (
    ("json", parse_as_json),
    ("pattern", parse_with_patterns),
)


def extract_server_videos(literal: str) -> ServerVideos:
    """Run :data:`STRATEGIES` in order and return the first successful result.

    Returns:
        Raw videos per known server, or an empty dict when every strategy fails.
    """
    for name, strategy in STRATEGIES:
        try:
            videos = strategy(literal)
        except ExtractionStrategyError as exc:
            logger.info("scraper: strategy %s failed on serverVideos: %s", name, exc)
            extraction_strategy_total.labels(strategy=name, result="failed").inc()
            continue
        extraction_strategy_total.labels(strategy=name, result="ok").inc()
        return videos
    return {}


# ---------------------------------------------------------------------------
# Episode consolidation
# ---------------------------------------------------------------------------


def parse_episode_label(label: str) -> EpisodeLabel | None:
    """Resolve a raw server label to an episode number.

    ``S<season>E<episode>`` (case-insensitive) yields the episode group and
    keeps the season; otherwise the first digit run is the episode number.
    Labels without digits, or resolving to a number below 1, return ``None``.

    Examples::

        parse_episode_label("S5E12")          # EpisodeLabel(season=5, number=12)
        parse_episode_label("Episode 7")      # EpisodeLabel(season=None, number=7)
        parse_episode_label("no-digits-here") # None
    """
    match = _SEASON_EPISODE_RE.search(label)
    if match:
        season, number = int(match.group(1)), int(match.group(2))
    else:
        digits = _DIGITS_RE.search(label)
        if digits is None:
            return None
        season, number = None, int(digits.group(0))
    if number < 1:
        return None
    return EpisodeLabel(season=season, number=number)


def group_episodes(videos: ServerVideos) -> list[Episode]:
    """Group raw videos from every known server into episodes sorted by number.

    Servers are visited in :data:`KNOWN_SERVERS` order, so within an episode
    the server list follows that order.  Seasons are flattened: labels from
    different seasons sharing an episode number land in the same episode,
    with each :class:`ServerLink` keeping its own ``season``.
    """
    episodes: dict[int, Episode] = {}
    seasons_seen: dict[int, set[int]] = {}

    for server, display_name in KNOWN_SERVERS.items():
        for video in videos.get(server, []):
            label = parse_episode_label(video.name)
            if label is None:
                logger.debug("scraper: dropping %s item with label %r", server, video.name)
                continue
            episode = episodes.get(label.number)
            if episode is None:
                episode = Episode(number=label.number, title=f"Episode {label.number}")
                episodes[label.number] = episode
            episode.servers.append(
                ServerLink(
                    name=display_name,
                    url=video.url,
                    language=DEFAULT_LANGUAGE,
                    season=label.season,
                )
            )
            if label.season is not None:
                seasons_seen.setdefault(label.number, set()).add(label.season)

    for number, seasons in seasons_seen.items():
        if len(seasons) > 1:
            logger.warning(
                "scraper: episode %d merges servers from seasons %s",
                number,
                sorted(seasons),
            )

    return [episodes[number] for number in sorted(episodes)]


# ---------------------------------------------------------------------------
# Public extraction function
# ---------------------------------------------------------------------------


def extract_title_detail(
    html: str,
    slug: str,
    episode_filter: int | None = None,
) -> TitleDetail:
    """Extract page metadata and the consolidated episode list from a title page.

    Args:
        html: Raw HTML of the title page.
        slug: Title slug; used as the title fallback when the page has no heading.
        episode_filter: When given, only the episode with this number is kept.
            No match yields an empty list rather than an error.

    Returns:
        A :class:`TitleDetail` with episodes sorted ascending by number.
    """
    soup = BeautifulSoup(html, "html.parser")

    episodes: list[Episode] = []
    literal = find_server_videos_literal(soup)
    if literal is None:
        logger.info("scraper: no serverVideos script on page for %s", slug)
    else:
        episodes = group_episodes(extract_server_videos(literal))
        if not episodes:
            logger.info("scraper: serverVideos for %s yielded no episodes", slug)

    if episode_filter is not None:
        episodes = [episode for episode in episodes if episode.number == episode_filter]

    return TitleDetail(
        title=_select_text(soup, "h1") or slug_to_title(slug),
        slug=slug,
        thumbnail=_thumbnail(soup),
        description=_select_text(soup, DESCRIPTION_SELECTOR)
        or _meta_property(soup, "og:description"),
        rating=_select_text(soup, RATING_SELECTOR),
        episodes=episodes,
    )
