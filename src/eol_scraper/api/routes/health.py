"""Health check route handlers for the scraping service.

``GET /health``
    Liveness plus memory telemetry, request count, governor state and
    browser-queue depth.

``GET /status``
    Compact status used by the job orchestrator to decide whether to send
    more work (``"ok"`` or ``"shutting_down"``).

Neither endpoint requires the API key, and neither is refused while the
service is restarting.  They must never raise HTTP 5xx errors once the
service has started.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from eol_scraper.api.dependencies import ServiceDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["system"])


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/health")
async def health(service: ServiceDep) -> JSONResponse:
    """Return memory usage, request count and shutdown state.

    Returns:
        JSON response; ``status`` is always ``"ok"`` while the process answers.
    """
    governor = service.governor
    return JSONResponse(
        {
            "status": "ok",
            "timestamp": _now(),
            "memory": governor.snapshot(),
            "requestCount": governor.request_count,
            "isShuttingDown": governor.is_shutting_down,
            "state": governor.state.value,
            "queue": {
                "pending": service.scheduler.pending,
                "running": service.scheduler.running,
            },
        }
    )


@router.get("/status")
async def service_status(service: ServiceDep) -> JSONResponse:
    governor = service.governor
    return JSONResponse(
        {
            "status": "shutting_down" if governor.is_shutting_down else "ok",
            "requestCount": governor.request_count,
            "memoryMB": governor.usage("status").rss_mb,
            "memoryLimitMB": governor.limit_mb,
            "timestamp": _now(),
        }
    )
