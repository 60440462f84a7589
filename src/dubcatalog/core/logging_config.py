"""Structured logging configuration using structlog.

Call ``configure_logging()`` once at application startup (``api/main.py``
does this).  Library modules keep using the stdlib API::

    import logging
    logger = logging.getLogger(__name__)
    logger.info("scraper: cache miss for %s", key)

while the API layer binds request context through structlog::

    import structlog
    logger = structlog.get_logger(__name__)
    logger.info("request_complete", status_code=200)

Both paths end up in the same ``ProcessorFormatter`` so every record carries
the same timestamp, level, logger name and the current ``request_id``.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
"""Per-request ID set by the HTTP middleware and read by :func:`_inject_request_id`."""

_REDACTED_KEYS: frozenset[str] = frozenset(
    {"authorization", "cookie", "set-cookie", "token", "password", "api_key"}
)
"""Lower-cased substrings of event-dict keys whose values never reach a renderer."""

_NOISY_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "uvicorn.access")


def _redact_secrets(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Replace the values of sensitive keys (top level and one dict level deep)."""
    for key, value in list(event_dict.items()):
        if any(marker in key.lower() for marker in _REDACTED_KEYS):
            event_dict[key] = "[REDACTED]"
        elif isinstance(value, dict):
            for nested_key in list(value):
                if any(marker in str(nested_key).lower() for marker in _REDACTED_KEYS):
                    value[nested_key] = "[REDACTED]"
    return event_dict


def _inject_request_id(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Add ``request_id`` from the context variable when not already bound."""
    rid = request_id_var.get()
    if rid is not None and "request_id" not in event_dict:
        event_dict["request_id"] = rid
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        _inject_request_id,
        _redact_secrets,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structlog and route stdlib logging through it.

    At ``DEBUG`` level the output is coloured console text; at any other
    level it is newline-delimited JSON for log aggregators.  The function
    is idempotent: previously attached root handlers are replaced.

    Args:
        log_level: Logging verbosity string, case-insensitive.  Unknown
            values fall back to ``INFO``.
    """
    level_upper = log_level.upper()
    numeric_level = getattr(logging, level_upper, logging.INFO)
    is_development = level_upper == "DEBUG"

    shared = _shared_processors()
    renderer: Processor
    if is_development:
        renderer = structlog.dev.ConsoleRenderer(colors=True)
    else:
        renderer = structlog.processors.JSONRenderer()

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(numeric_level)

    if not is_development:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=shared + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
