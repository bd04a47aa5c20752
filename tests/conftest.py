"""Shared pytest fixtures for the scraping service tests.

Fixture summary
---------------
settings       : Settings with a known API key and DNS resolution disabled.
http_client    : Bare httpx.AsyncClient (wrap calls in ``respx.mock``).
fake_process   : MagicMock standing in for ``psutil.Process`` (120 MB RSS).
process_factory: Builds such stand-ins for an arbitrary RSS.
no_sleep       : AsyncMock replacing ``asyncio.sleep`` in injected seams.

No test touches the network or launches a real browser.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio

# ---------------------------------------------------------------------------
# Test environment bootstrap
# ---------------------------------------------------------------------------
# Set env vars before any application modules are imported so that the
# module-level ``app`` is built with test settings.

_TEST_ENV_DEFAULTS: dict[str, str] = {
    "SCRAPING_API_KEY": "test-api-key",
    "ALLOWED_ORIGINS": "https://jobs.example.com,http://localhost:3000",
    "RESOLVE_HOSTNAMES": "false",
    "LOG_LEVEL": "WARNING",
}

for _key, _default in _TEST_ENV_DEFAULTS.items():
    os.environ.setdefault(_key, _default)

from eol_scraper.config.settings import Settings, get_settings  # noqa: E402

# Clear the lru_cache so Settings() re-reads from the patched environment.
get_settings.cache_clear()

TEST_API_KEY = _TEST_ENV_DEFAULTS["SCRAPING_API_KEY"]
CALLBACK_URL = "https://jobs.example.com/api/scrape-callback"

_MB = 1024 * 1024


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(
        scraping_api_key=TEST_API_KEY,
        allowed_origins="https://jobs.example.com,http://localhost:3000",
        resolve_hostnames=False,
        restart_delay_seconds=0,
        _env_file=None,
    )


@pytest_asyncio.fixture
async def http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient() as client:
        yield client


def _make_process(rss_mb: int = 120, uss_mb: int = 100, vms_mb: int = 900) -> MagicMock:
    """Return a ``psutil.Process`` stand-in reporting the given sizes."""
    process = MagicMock()
    process.memory_info.return_value = SimpleNamespace(rss=rss_mb * _MB, vms=vms_mb * _MB)
    process.memory_full_info.return_value = SimpleNamespace(uss=uss_mb * _MB)
    return process


@pytest.fixture
def fake_process() -> MagicMock:
    return _make_process()


@pytest.fixture
def process_factory():
    """Return a factory building psutil.Process stand-ins: ``process_factory(rss_mb=500)``."""
    return _make_process


@pytest.fixture
def no_sleep() -> AsyncMock:
    return AsyncMock(return_value=None)
