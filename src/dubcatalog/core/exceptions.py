"""Application-wide exception hierarchy for dubcatalog.

All custom exceptions subclass ``DubCatalogError``, enabling consistent
error handling and structured logging across the pipeline.  Exceptions
that surface as HTTP responses carry the ``status_code`` the request router
answers with.

Hierarchy::

    DubCatalogError
    ├── ValidationError          (400)
    ├── RateLimitError           (429, retry_after: int)
    ├── FetchError               (500, url, status_code of last response)
    ├── ExtractionError          (500)
    └── ExtractionStrategyError  (internal to the detail extractor)
"""

from __future__ import annotations


class DubCatalogError(Exception):
    """Base class for all dubcatalog exceptions.

    Attributes:
        status_code: HTTP status the request router responds with when this
            error reaches it.
    """

    status_code: int = 500


# ---------------------------------------------------------------------------
# Request-level exceptions
# ---------------------------------------------------------------------------


class ValidationError(DubCatalogError):
    """Raised when a request is missing a required parameter.

    Detected before the rate limiter is consulted, so malformed requests
    never consume rate-limit budget.  Never retried.
    """

    status_code = 400


class RateLimitError(DubCatalogError):
    """Raised when a client has exhausted its request budget for the window.

    Args:
        message: Human-readable description of the rejection.
        retry_after: Seconds the caller should wait before retrying.
    """

    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded", retry_after: int = 60) -> None:
        super().__init__(message)
        self.retry_after = retry_after


# ---------------------------------------------------------------------------
# Upstream / extraction exceptions
# ---------------------------------------------------------------------------


class FetchError(DubCatalogError):
    """Raised when the upstream site stays unreachable or erroring after retries.

    The last underlying cause is chained via ``raise ... from exc`` and is
    available as ``__cause__``.

    Args:
        message: Human-readable description of the failure.
        url: The URL that could not be fetched.
        status_code_upstream: HTTP status of the last response, or ``None``
            when the last attempt failed at the network level.
    """

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code_upstream: int | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.upstream_status = status_code_upstream


class ExtractionError(DubCatalogError):
    """Raised when an extractor fails in a way that leaves no usable result."""


class ExtractionStrategyError(DubCatalogError):
    """Raised by a single structured-data strategy to signal it cannot parse its input.

    The detail extractor catches this and moves on to the next strategy; it
    never escapes to the request router.
    """
