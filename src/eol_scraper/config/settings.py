"""Service settings loaded from environment variables.

The API key, trusted callback origins, memory thresholds and callback
retry policy are read here and nowhere else; other modules receive a
``Settings`` instance instead of reading ``os.environ``.

Usage::

    from eol_scraper.config.settings import get_settings

    settings = get_settings()
    origins = settings.allowed_origin_list
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_ALLOWED_ORIGINS = (
    "http://localhost:3000,http://localhost:5000,http://localhost:8888"
)


class Settings(BaseSettings):
    """Service configuration backed by environment variables and an optional .env file.

    Only ``scraping_api_key`` is security-relevant; every other field has a
    working default tuned for a 512 MB container.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Security
    # ------------------------------------------------------------------

    scraping_api_key: str = ""
    """Shared secret expected in the ``X-API-Key`` header of every scraping
    request.  When empty, protected endpoints answer HTTP 500 so that a
    misconfigured deployment never runs unauthenticated."""

    allowed_origins: str = _DEFAULT_ALLOWED_ORIGINS
    """Comma-separated list of trusted origins.  Callback URLs must point at
    one of these hosts (or a subdomain of a public one)."""

    resolve_hostnames: bool = True
    """Resolve target hostnames via DNS and reject any that map to a
    private, loopback, link-local or reserved address."""

    # ------------------------------------------------------------------
    # Server
    # ------------------------------------------------------------------

    host: str = "0.0.0.0"
    port: int = 3000
    app_name: str = "EOL Scraping Service"
    debug: bool = False

    log_level: str = "INFO"
    """Logging verbosity.  One of: DEBUG, INFO, WARNING, ERROR, CRITICAL."""

    # ------------------------------------------------------------------
    # Memory governor
    # ------------------------------------------------------------------

    memory_limit_mb: int = 450
    """RSS at which the service stops accepting work and restarts itself.
    Leaves ~60 MB of headroom below a 512 MB host limit."""

    memory_warning_mb: int = 380
    """RSS at which verbose memory diagnostics are logged."""

    memory_history_size: int = 20

    restart_delay_seconds: float = 2.0
    """Grace period between entering the restarting state and process exit."""

    restart_wait_for_drain: bool = False
    """Wait for the in-flight browser task to finish before exiting."""

    restart_drain_timeout_seconds: float = 30.0

    retry_after_seconds: int = 30
    """``retryAfter`` hint returned with HTTP 503 responses."""

    # ------------------------------------------------------------------
    # Callback delivery
    # ------------------------------------------------------------------

    callback_max_retries: int = 3
    callback_base_delay_seconds: float = 1.0
    callback_restart_extra_delay_seconds: float = 3.0
    callback_timeout_seconds: float = 30.0

    @field_validator("allowed_origins")
    @classmethod
    def _check_origin_format(cls, value: str) -> str:
        for origin in value.split(","):
            origin = origin.strip()
            if origin and not origin.startswith(("http://", "https://")):
                raise ValueError(
                    f"Invalid origin format: {origin!r} "
                    "(origins must start with http:// or https://)"
                )
        return value

    @property
    def allowed_origin_list(self) -> list[str]:
        """Return ``allowed_origins`` split into a list of stripped origins."""
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    """Return the cached settings singleton.

    In tests, call ``get_settings.cache_clear()`` after patching environment
    variables.
    """
    return Settings()
