"""Configuration package for dubcatalog.

Re-exports the settings symbols so that callers can write::

    from dubcatalog.config import get_settings
"""

from __future__ import annotations

from dubcatalog.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
