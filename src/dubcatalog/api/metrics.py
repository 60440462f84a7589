"""Prometheus metrics for dubcatalog.

All metrics are module-level singletons registered on the default
``REGISTRY``.  Import them from here; registering a metric name a second
time raises in prometheus_client.

Metrics defined here:

  cache_lookups_total{entry_class, result}
      Counter: cache lookups by entry class (search, anime) and result
      (hit, miss).

  rate_limit_rejections_total
      Counter: requests rejected with HTTP 429.

  upstream_fetch_attempts_total{outcome}
      Counter: individual upstream HTTP attempts by outcome (success,
      client_error, retryable_status, timeout, network_error).

  extraction_strategy_total{strategy, result}
      Counter: structured-data strategy runs on title pages by strategy
      name and result (ok, failed).

  http_requests_total{method, path, status}
      Counter: HTTP requests handled by the FastAPI application.

  http_request_duration_seconds{method, path}
      Histogram: HTTP request latency in seconds.

Usage::

    from dubcatalog.api.metrics import cache_lookups_total
    cache_lookups_total.labels(entry_class="search", result="hit").inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# ---------------------------------------------------------------------------
# Pipeline metrics
# ---------------------------------------------------------------------------

cache_lookups_total: Counter = Counter(
    "cache_lookups_total",
    "Cache lookups by entry class and result.",
    labelnames=["entry_class", "result"],
)

rate_limit_rejections_total: Counter = Counter(
    "rate_limit_rejections_total",
    "Requests rejected because the client exhausted its rate-limit window.",
)

upstream_fetch_attempts_total: Counter = Counter(
    "upstream_fetch_attempts_total",
    "Upstream HTTP attempts by outcome.",
    labelnames=["outcome"],
)
"""Counter incremented once per attempt, so a fetch retried twice counts three times."""

extraction_strategy_total: Counter = Counter(
    "extraction_strategy_total",
    "Structured-data extraction strategy runs by strategy and result.",
    labelnames=["strategy", "result"],
)

# ---------------------------------------------------------------------------
# HTTP metrics (populated by middleware in main.py)
# ---------------------------------------------------------------------------

http_requests_total: Counter = Counter(
    "http_requests_total",
    "HTTP requests handled by the FastAPI application.",
    labelnames=["method", "path", "status"],
)

http_request_duration_seconds: Histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds.",
    labelnames=["method", "path"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)


def get_metrics_response() -> tuple[bytes, str]:
    """Generate a Prometheus text-format metrics response.

    Returns:
        A tuple of (body_bytes, content_type_string) suitable for constructing
        a FastAPI ``Response`` object.
    """
    from prometheus_client import CONTENT_TYPE_LATEST, generate_latest  # noqa: PLC0415

    return generate_latest(), CONTENT_TYPE_LATEST
