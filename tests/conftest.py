"""Shared pytest fixtures for dubcatalog tests.

Fixture summary
---------------
clock: Manually advanced time source for cache and limiter tests.
fake_fetcher: Stand-in for PageFetcher that serves canned HTML per URL.
service: CatalogService wired with MemoryCache, MemoryRateLimiter and fake_fetcher.
app_client: httpx.AsyncClient against the FastAPI app with ``service`` injected.

Nothing here touches the network: upstream pages are served from the
HTML fixtures below, and httpx-level tests use ``respx``.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Mapping

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from dubcatalog.api.main import create_app
from dubcatalog.config.settings import Settings
from dubcatalog.core.cache import MemoryCache
from dubcatalog.core.exceptions import FetchError
from dubcatalog.core.rate_limiter import MemoryRateLimiter, RateLimitConfig
from dubcatalog.scraper.service import CatalogService

BASE_URL = "https://animehindidubbed.in"

# ---------------------------------------------------------------------------
# HTML fixtures
# ---------------------------------------------------------------------------

SEARCH_PAGE_HTML = """
<html><body>
<main>
  <article class="post">
    <a href="https://animehindidubbed.in/black-butler/">
      <img src="https://animehindidubbed.in/wp-content/uploads/black-butler.jpg" alt="">
    </a>
    <h2 class="entry-title"><a href="https://animehindidubbed.in/black-butler/">Black Butler</a></h2>
    <a class="cat-link" href="https://animehindidubbed.in/category/hindi-dubbed/">Hindi Dubbed</a>
    <a href="https://animehindidubbed.in/category/action/" rel="category tag">Action</a>
  </article>
  <article class="post">
    <p>Sponsored block without any title link</p>
    <a class="cat-link" href="https://animehindidubbed.in/category/ads/">Ads</a>
  </article>
  <article class="post">
    <a href="/demon-slayer-season-2/">
      <img src="data:image/svg+xml;base64,AAAA" data-lazy-src="https://animehindidubbed.in/wp-content/uploads/ds2.jpg">
    </a>
  </article>
</main>
</body></html>
"""

DETAIL_PAGE_HTML = """
<html>
<head>
  <meta property="og:image" content="https://animehindidubbed.in/og/black-butler.jpg">
  <meta property="og:description" content="A demon butler serves the Phantomhive family.">
</head>
<body>
  <h1>Black Butler (Hindi Dubbed)</h1>
  <img src="https://animehindidubbed.in/wp-content/uploads/black-butler-poster.jpg">
  <div id="short-desc">  Ciel Phantomhive and his butler Sebastian.  </div>
  <span class="post-rating">8.1</span>
  <script>
    const serverVideos = {
      servabyss: [{"name":"S1E1","url":"https://x/1"}, {"name":"S1E2","url":"https://x/2"}],
      filemoon: [{"name":"01","url":"https://y/1"}]
    };
  </script>
</body>
</html>
"""


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable time source that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeFetcher:
    """Serves canned HTML keyed by URL and records every requested URL.

    URLs without a canned page raise :class:`FetchError`, mirroring an
    upstream that stays down after retries.
    """

    def __init__(self, pages: Mapping[str, str] | None = None, base_url: str = BASE_URL) -> None:
        self.base_url = base_url
        self.pages: dict[str, str] = dict(pages or {})
        self.calls: list[str] = []

    async def fetch_html(self, url: str, headers: Mapping[str, str] | None = None) -> str:
        self.calls.append(url)
        if url not in self.pages:
            raise FetchError(f"Failed to fetch {url} after 3 attempts", url=url)
        return self.pages[url]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_fetcher() -> FakeFetcher:
    return FakeFetcher(
        {
            f"{BASE_URL}/?s=black+butler": SEARCH_PAGE_HTML,
            f"{BASE_URL}/black-butler/": DETAIL_PAGE_HTML,
        }
    )


@pytest.fixture
def service(fake_fetcher: FakeFetcher, clock: FakeClock) -> CatalogService:
    return CatalogService(
        fetcher=fake_fetcher,  # type: ignore[arg-type]
        cache=MemoryCache(clock=clock),
        rate_limiter=MemoryRateLimiter(RateLimitConfig(max_requests=20, window_seconds=60), clock=clock),
        search_ttl=600,
        detail_ttl=600,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(debug=False, metrics_enabled=True)


@pytest_asyncio.fixture
async def app_client(
    settings: Settings, service: CatalogService
) -> AsyncGenerator[AsyncClient, None]:
    application = create_app(settings=settings, service=service)
    transport = ASGITransport(app=application)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
