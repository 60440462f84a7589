"""Async HTTP fetcher with browser-like headers and exponential-backoff retry.

Uses ``httpx`` for all HTTP requests.  Transient failures (timeouts,
connection errors, HTTP 429 and 5xx) are retried with a delay of
``backoff_base * 2**attempt`` between attempts.  Any other 4xx response is
returned immediately so the caller can inspect the status.  When every
attempt fails a :class:`~dubcatalog.core.exceptions.FetchError` is raised
with the last cause chained.

The fetcher never reads or writes the cache or the rate limiter.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Mapping

import httpx

from dubcatalog.api.metrics import upstream_fetch_attempts_total
from dubcatalog.core.exceptions import FetchError
from dubcatalog.scraper.config import DEFAULT_HEADERS, RETRYABLE_CLIENT_STATUSES

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def build_headers(referer: str, extra: Mapping[str, str] | None = None) -> httpx.Headers:
    """Merge caller headers over the browser-like defaults.

    Caller values replace defaults (case-insensitively) but an empty value
    never removes a required header.

    Args:
        referer: ``Referer`` value for the upstream site.
        extra: Caller-supplied headers.

    Returns:
        The merged :class:`httpx.Headers`.
    """
    headers = httpx.Headers(DEFAULT_HEADERS)
    headers["Referer"] = referer
    for name, value in (extra or {}).items():
        if value:
            headers[name] = value
    return headers


def _is_retryable_status(status_code: int) -> bool:
    return status_code >= 500 or status_code in RETRYABLE_CLIENT_STATUSES


def backoff_delay(attempt: int, base: float) -> float:
    """Return the delay before retrying after the zero-based *attempt*."""
    return base * (2**attempt)


# ---------------------------------------------------------------------------
# Public fetch function
# ---------------------------------------------------------------------------


async def fetch_with_retry(
    url: str,
    *,
    client: httpx.AsyncClient,
    referer: str,
    headers: Mapping[str, str] | None = None,
    timeout: float = 30.0,
    max_retries: int = 3,
    backoff_base: float = 0.5,
    sleep: SleepFunc = asyncio.sleep,
) -> httpx.Response:
    """GET *url*, retrying transient failures with exponential backoff.

    Args:
        url: Target URL.
        client: Shared :class:`httpx.AsyncClient` instance.
        referer: ``Referer`` header value.
        headers: Optional caller headers merged over the defaults.
        timeout: Per-attempt timeout in seconds.
        max_retries: Total number of attempts (at least one is always made).
        backoff_base: Base delay in seconds for the backoff schedule.
        sleep: Awaitable sleep used between attempts; injectable for tests.

    Returns:
        The first 2xx response, or the first non-retryable 4xx response.

    Raises:
        FetchError: Every attempt failed with a network error, 429 or 5xx.
    """
    request_headers = build_headers(referer, headers)
    attempts = max(1, max_retries)
    last_exc: Exception | None = None
    last_status: int | None = None

    for attempt in range(attempts):
        try:
            response = await client.get(
                url,
                headers=request_headers,
                timeout=timeout,
                follow_redirects=True,
            )
        except httpx.TimeoutException as exc:
            logger.warning("scraper: attempt %d/%d timed out for %s", attempt + 1, attempts, url)
            upstream_fetch_attempts_total.labels(outcome="timeout").inc()
            last_exc, last_status = exc, None
        except httpx.RequestError as exc:
            logger.warning(
                "scraper: attempt %d/%d request error for %s: %s",
                attempt + 1,
                attempts,
                url,
                exc,
            )
            upstream_fetch_attempts_total.labels(outcome="network_error").inc()
            last_exc, last_status = exc, None
        else:
            if response.is_success:
                upstream_fetch_attempts_total.labels(outcome="success").inc()
                return response
            if not _is_retryable_status(response.status_code):
                logger.info("scraper: HTTP %d for %s (not retried)", response.status_code, url)
                upstream_fetch_attempts_total.labels(outcome="client_error").inc()
                return response
            logger.warning(
                "scraper: attempt %d/%d got HTTP %d for %s",
                attempt + 1,
                attempts,
                response.status_code,
                url,
            )
            upstream_fetch_attempts_total.labels(outcome="retryable_status").inc()
            last_status = response.status_code
            last_exc = httpx.HTTPStatusError(
                f"HTTP {response.status_code}", request=response.request, response=response
            )

        if attempt < attempts - 1:
            await sleep(backoff_delay(attempt, backoff_base))

    raise FetchError(
        f"Failed to fetch {url} after {attempts} attempts: {last_exc}",
        url=url,
        status_code_upstream=last_status,
    ) from last_exc


# ---------------------------------------------------------------------------
# Configured fetcher
# ---------------------------------------------------------------------------


class PageFetcher:
    """Binds a shared HTTP client to the upstream site and retry policy.

    Injected into :class:`~dubcatalog.scraper.service.CatalogService` so
    tests can substitute a fake.

    Args:
        client: Shared :class:`httpx.AsyncClient`; owned by the caller.
        base_url: Upstream scheme and host, used as the ``Referer``.
        timeout: Per-attempt timeout in seconds.
        max_retries: Total number of attempts per fetch.
        backoff_base: Base delay in seconds for the backoff schedule.
        sleep: Awaitable sleep used between attempts.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        *,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_base: float = 0.5,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self._sleep = sleep

    async def fetch_html(self, url: str, headers: Mapping[str, str] | None = None) -> str:
        """Fetch *url* and return its body text.

        Raises:
            FetchError: Retries were exhausted, or the upstream answered with
                a non-retryable error status.
        """
        response = await fetch_with_retry(
            url,
            client=self.client,
            referer=f"{self.base_url}/",
            headers=headers,
            timeout=self.timeout,
            max_retries=self.max_retries,
            backoff_base=self.backoff_base,
            sleep=self._sleep,
        )
        if not response.is_success:
            raise FetchError(
                f"Upstream returned HTTP {response.status_code} for {url}",
                url=url,
                status_code_upstream=response.status_code,
            )
        return response.text
