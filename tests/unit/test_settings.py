"""Unit tests for environment-driven settings."""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from pydantic import ValidationError

from dubcatalog.config.settings import Settings, get_settings

_ENV_VARS = (
    "CACHE_TTL",
    "ANIMEHINDI_CACHE_TTL",
    "SEARCH_CACHE_TTL",
    "DETAIL_CACHE_TTL",
    "RATE_LIMIT_MAX",
    "ANIMEHINDI_RATE_LIMIT",
    "RATE_LIMIT_WINDOW",
    "DEBUG",
    "CACHE_BACKEND",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestDefaults:
    def test_defaults(self) -> None:
        settings = Settings(_env_file=None)

        assert settings.upstream_base_url == "https://animehindidubbed.in"
        assert settings.cache_ttl == 600
        assert settings.search_cache_ttl == 600
        assert settings.detail_cache_ttl == 600
        assert settings.rate_limit_max == 20
        assert settings.rate_limit_window == 60
        assert settings.fetch_max_retries == 3
        assert settings.debug is False
        assert settings.cache_backend == "memory"


class TestEnvironmentAliases:
    def test_cache_ttl_applies_to_every_entry_class(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CACHE_TTL", "120")

        settings = Settings(_env_file=None)

        assert settings.search_cache_ttl == 120
        assert settings.detail_cache_ttl == 120

    def test_legacy_names_accepted(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ANIMEHINDI_CACHE_TTL", "300")
        monkeypatch.setenv("ANIMEHINDI_RATE_LIMIT", "5")

        settings = Settings(_env_file=None)

        assert settings.cache_ttl == 300
        assert settings.rate_limit_max == 5

    def test_entry_class_ttl_overrides_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CACHE_TTL", "120")
        monkeypatch.setenv("DETAIL_CACHE_TTL", "3600")

        settings = Settings(_env_file=None)

        assert settings.search_cache_ttl == 120
        assert settings.detail_cache_ttl == 3600

    def test_debug_flag(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DEBUG", "true")
        assert Settings(_env_file=None).debug is True


class TestValidation:
    def test_non_positive_ttl_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CACHE_TTL", "0")
        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_unknown_cache_backend_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CACHE_BACKEND", "memcached")
        with pytest.raises(ValidationError):
            Settings(_env_file=None)


class TestGetSettings:
    def test_cached_singleton(self) -> None:
        assert get_settings() is get_settings()

    def test_cache_clear_rereads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        first = get_settings()
        monkeypatch.setenv("RATE_LIMIT_MAX", "7")
        get_settings.cache_clear()

        assert get_settings() is not first
        assert get_settings().rate_limit_max == 7
