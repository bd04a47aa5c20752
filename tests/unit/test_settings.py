"""Unit tests for environment-driven settings."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from eol_scraper.config.settings import Settings, get_settings


class TestDefaults:
    def test_defaults_fit_small_container(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for var in ("SCRAPING_API_KEY", "ALLOWED_ORIGINS", "RESOLVE_HOSTNAMES", "LOG_LEVEL"):
            monkeypatch.delenv(var, raising=False)
        settings = Settings(_env_file=None)

        assert settings.scraping_api_key == ""
        assert settings.port == 3000
        assert settings.memory_limit_mb == 450
        assert settings.memory_warning_mb == 380
        assert settings.restart_wait_for_drain is False
        assert settings.retry_after_seconds == 30
        assert settings.callback_max_retries == 3
        assert settings.allowed_origin_list == [
            "http://localhost:3000",
            "http://localhost:5000",
            "http://localhost:8888",
        ]


class TestEnvironment:
    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SCRAPING_API_KEY", "from-env")
        monkeypatch.setenv("ALLOWED_ORIGINS", " https://a.example.com , https://b.example.com,")
        monkeypatch.setenv("MEMORY_LIMIT_MB", "900")
        monkeypatch.setenv("RESTART_WAIT_FOR_DRAIN", "true")
        settings = Settings(_env_file=None)

        assert settings.scraping_api_key == "from-env"
        assert settings.allowed_origin_list == ["https://a.example.com", "https://b.example.com"]
        assert settings.memory_limit_mb == 900
        assert settings.restart_wait_for_drain is True

    def test_rejects_origin_without_scheme(self) -> None:
        with pytest.raises(ValidationError, match="Invalid origin format"):
            Settings(allowed_origins="jobs.example.com", _env_file=None)

    def test_get_settings_is_cached(self) -> None:
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()
