"""FastAPI dependency injection providers.

Provides the shared-secret check, the shutdown gate and access to the
process-wide :class:`~eol_scraper.scraper.service.ScrapingService`.

Dependency order on every scraping route::

    require_api_key  : 500 if no key is configured, 401 on mismatch
    ensure_accepting : 503 while the memory governor is restarting
    get_service      : the ScrapingService stored on ``app.state``
"""

from __future__ import annotations

import hmac
from typing import Annotated, Optional

import structlog
from fastapi import Depends, Header, HTTPException, Request, status

from eol_scraper.config.settings import Settings, get_settings
from eol_scraper.scraper.service import ScrapingService

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Service & settings
# ---------------------------------------------------------------------------


def get_service(request: Request) -> ScrapingService:
    """Return the ``ScrapingService`` created at application startup.

    Raises:
        HTTPException 503: If startup has not completed yet.
    """
    service: ScrapingService | None = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "Service starting"},
        )
    return service


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


async def require_api_key(
    settings: Annotated[Settings, Depends(get_settings)],
    x_api_key: Annotated[Optional[str], Header(alias="x-api-key")] = None,
) -> None:
    """Check the ``X-API-Key`` header against ``SCRAPING_API_KEY``.

    Raises:
        HTTPException 500: If no API key is configured on the server.
        HTTPException 401: If the header is missing or does not match.
    """
    expected = settings.scraping_api_key
    if not expected:
        logger.error("api_key_not_configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Service misconfigured"},
        )
    if not x_api_key or not hmac.compare_digest(x_api_key, expected):
        logger.warning("unauthorized_request")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "Unauthorized - invalid API key"},
        )


# ---------------------------------------------------------------------------
# Shutdown gate
# ---------------------------------------------------------------------------


async def ensure_accepting(
    service: Annotated[ScrapingService, Depends(get_service)],
) -> None:
    """Reject new work once the memory governor has begun a restart.

    Raises:
        HTTPException 503: With ``retryAfter`` seconds in the body.
    """
    if service.governor.accepting_requests:
        return
    logger.info("request_rejected_during_shutdown", state=service.governor.state.value)
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={
            "error": "Service restarting",
            "retryAfter": service.settings.retry_after_seconds,
        },
    )


ServiceDep = Annotated[ScrapingService, Depends(get_service)]
