"""Integration tests for the catalog HTTP API.

Requests go through the full FastAPI stack (middleware, CORS, dependency
injection) via ``httpx.ASGITransport``.  The pipeline is injected with a
FakeFetcher, so no network access is needed.
"""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from dubcatalog.api.main import build_cache, build_rate_limiter, create_app
from dubcatalog.config.settings import Settings
from dubcatalog.core.cache import MemoryCache, RedisCache
from dubcatalog.core.rate_limiter import MemoryRateLimiter, RateLimitConfig, RedisRateLimiter

pytestmark = pytest.mark.asyncio


class TestSearchAction:
    async def test_search_returns_entries(self, app_client: AsyncClient) -> None:
        response = await app_client.get(
            "/",
            params={"action": "search", "title": "Black Butler"},
            headers={"Origin": "https://player.example"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["totalFound"] == 2
        assert body["animeList"][0] == {
            "title": "Black Butler",
            "slug": "black-butler",
            "url": "https://animehindidubbed.in/black-butler/",
            "thumbnail": "https://animehindidubbed.in/wp-content/uploads/black-butler.jpg",
            "categories": ["Hindi Dubbed", "Action"],
        }
        assert response.headers["access-control-allow-origin"] == "*"
        assert "x-request-id" in response.headers

    async def test_missing_title(self, app_client: AsyncClient) -> None:
        response = await app_client.get("/", params={"action": "search"})

        assert response.status_code == 400
        assert response.json() == {"error": "Missing title parameter"}


class TestAnimeAction:
    async def test_detail_payload(self, app_client: AsyncClient) -> None:
        response = await app_client.get("/", params={"action": "anime", "slug": "black-butler"})

        assert response.status_code == 200
        body = response.json()
        assert body["title"] == "Black Butler (Hindi Dubbed)"
        assert [episode["number"] for episode in body["episodes"]] == [1, 2]
        first = body["episodes"][0]
        assert first["title"] == "Episode 1"
        assert {server["name"] for server in first["servers"]} == {"Filemoon", "Servabyss"}
        filemoon = next(s for s in first["servers"] if s["name"] == "Filemoon")
        assert filemoon == {"name": "Filemoon", "url": "https://y/1", "language": "Hindi"}

    @pytest.mark.parametrize("param", ["ep", "episode"])
    async def test_episode_filter_aliases(self, app_client: AsyncClient, param: str) -> None:
        response = await app_client.get(
            "/", params={"action": "anime", "slug": "black-butler", param: "2"}
        )

        assert [episode["number"] for episode in response.json()["episodes"]] == [2]

    async def test_missing_slug(self, app_client: AsyncClient) -> None:
        response = await app_client.get("/?action=anime")

        assert response.status_code == 400
        assert response.json() == {"error": "Missing slug parameter"}


class TestInvalidRequests:
    @pytest.mark.parametrize("query", ["/", "/?action=download"])
    async def test_invalid_action(self, app_client: AsyncClient, query: str) -> None:
        response = await app_client.get(query)

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid action. Use action=search or action=anime"}

    async def test_validation_failures_do_not_spend_budget(
        self, app_client: AsyncClient, service
    ) -> None:
        service.rate_limiter.config.max_requests = 1
        headers = {"X-Forwarded-For": "203.0.113.9"}
        for _ in range(5):
            await app_client.get("/?action=anime", headers=headers)

        response = await app_client.get(
            "/", params={"action": "anime", "slug": "black-butler"}, headers=headers
        )

        assert response.status_code == 200


class TestRateLimiting:
    async def test_twenty_first_request_rejected(self, app_client: AsyncClient) -> None:
        headers = {"X-Forwarded-For": "198.51.100.1, 10.0.0.1"}
        params = {"action": "anime", "slug": "black-butler"}
        for _ in range(20):
            assert (await app_client.get("/", params=params, headers=headers)).status_code == 200

        response = await app_client.get("/", params=params, headers=headers)

        assert response.status_code == 429
        assert response.json() == {"error": "Rate limit exceeded", "retryAfter": 60}
        assert response.headers["retry-after"] == "60"

    async def test_other_clients_unaffected(self, app_client: AsyncClient, service) -> None:
        service.rate_limiter.config.max_requests = 1
        params = {"action": "anime", "slug": "black-butler"}
        await app_client.get("/", params=params, headers={"X-Forwarded-For": "198.51.100.1"})

        response = await app_client.get(
            "/", params=params, headers={"X-Forwarded-For": "198.51.100.2"}
        )

        assert response.status_code == 200


class TestServerErrors:
    async def test_upstream_failure_is_500_without_stack(self, app_client: AsyncClient) -> None:
        response = await app_client.get("/", params={"action": "anime", "slug": "missing-title"})

        assert response.status_code == 500
        body = response.json()
        assert body["error"].startswith("Failed to fetch")
        assert "stack" not in body

    async def test_debug_adds_stack(self, service) -> None:
        application = create_app(settings=Settings(debug=True), service=service)
        async with AsyncClient(
            transport=ASGITransport(app=application), base_url="http://testserver"
        ) as client:
            response = await client.get("/", params={"action": "anime", "slug": "missing-title"})

        assert response.status_code == 500
        assert "FetchError" in response.json()["stack"]


class TestSystemEndpoints:
    async def test_preflight_options(self, app_client: AsyncClient) -> None:
        response = await app_client.options("/")

        assert response.status_code == 200
        assert response.content == b""

    async def test_cors_preflight(self, app_client: AsyncClient) -> None:
        response = await app_client.options(
            "/",
            headers={
                "Origin": "https://player.example",
                "Access-Control-Request-Method": "GET",
                "Access-Control-Request-Headers": "apikey",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"

    async def test_preflight_accepts_any_requested_header(self, app_client: AsyncClient) -> None:
        response = await app_client.options(
            "/",
            headers={
                "Origin": "https://player.example",
                "Access-Control-Request-Method": "GET",
                "Access-Control-Request-Headers": "x-requested-with, x-custom-trace",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"

    async def test_options_on_any_path(self, app_client: AsyncClient) -> None:
        response = await app_client.options("/anything/at/all")

        assert response.status_code == 200
        assert response.content == b""

    async def test_health(self, app_client: AsyncClient) -> None:
        response = await app_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    async def test_metrics_exposed(self, app_client: AsyncClient) -> None:
        await app_client.get("/", params={"action": "search", "title": "Black Butler"})

        response = await app_client.get("/metrics")

        assert response.status_code == 200
        assert "cache_lookups_total" in response.text

    async def test_service_unavailable_before_startup(self) -> None:
        application = create_app(settings=Settings())
        async with AsyncClient(
            transport=ASGITransport(app=application), base_url="http://testserver"
        ) as client:
            response = await client.get("/", params={"action": "search", "title": "x"})

        assert response.status_code == 503


class TestBackendSelection:
    async def test_memory_backends_by_default(self) -> None:
        settings = Settings(cache_backend="memory", rate_limit_max=7, rate_limit_window=30)

        limiter = build_rate_limiter(settings)

        assert isinstance(build_cache(settings), MemoryCache)
        assert isinstance(limiter, MemoryRateLimiter)
        assert limiter.config == RateLimitConfig(max_requests=7, window_seconds=30)

    async def test_redis_backend_shares_rate_limit(self) -> None:
        settings = Settings(cache_backend="redis", redis_url="redis://localhost:6399/0")

        limiter = build_rate_limiter(settings)
        cache = build_cache(settings)

        assert isinstance(limiter, RedisRateLimiter)
        assert isinstance(cache, RedisCache)
        assert limiter.window_seconds == settings.rate_limit_window
        await limiter.close()
        await cache.close()
