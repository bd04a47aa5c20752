"""FastAPI application factory and entry point.

``create_app()`` wires the request-context middleware, translates the
``ScrapingServiceError`` family into JSON error bodies, mounts the scraping
and health routers and, at startup, builds the single ``ScrapingService``
that owns the browser queue and the memory governor.

Usage::

    # Development server (from project root)
    uvicorn eol_scraper.api.main:app --reload

    # Production: one process per container; the browser queue is per process
    eol-scraper
"""

from __future__ import annotations

import re
import time
import uuid
from typing import Any, Callable

import httpx
import structlog
import uvicorn
from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from eol_scraper import __version__
from eol_scraper.config.settings import Settings, get_settings
from eol_scraper.core.exceptions import (
    CallbackDeliveryFailure,
    MemoryExhaustion,
    UpstreamFetchError,
    ValidationError,
)
from eol_scraper.core.logging_config import configure_logging, request_id_var
from eol_scraper.scraper.service import ScrapingService

# Import-time default so records from app construction are formatted; the
# configured level is applied in create_app().
configure_logging("INFO")

logger = structlog.get_logger(__name__)

#: Inbound ``X-Request-ID`` values reused as-is; anything else is replaced.
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,64}$")

#: Polled by the job orchestrator; completions are logged at DEBUG only.
_QUIET_PATHS = frozenset({"/health", "/status"})


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def _error(status_code: int, body: dict[str, Any]) -> JSONResponse:
    return JSONResponse(body, status_code=status_code)


async def _handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    # Dependencies raise with a dict detail that is the response body itself.
    body = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
    return JSONResponse(body, status_code=exc.status_code, headers=exc.headers)


async def _handle_validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    name = exc.field or "URL"
    return _error(
        status.HTTP_400_BAD_REQUEST,
        {"error": f"Invalid or unsafe {name}", "reason": exc.reason},
    )


async def _handle_memory_exhaustion(request: Request, exc: MemoryExhaustion) -> JSONResponse:
    return _error(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        {
            "success": False,
            "error": "Service restarting due to high memory",
            "memoryMB": exc.rss_mb,
            "retryAfter": exc.retry_after,
        },
    )


async def _handle_upstream_error(request: Request, exc: UpstreamFetchError) -> JSONResponse:
    return _error(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        {"success": False, "error": str(exc), "url": exc.url},
    )


async def _handle_callback_failure(
    request: Request, exc: CallbackDeliveryFailure
) -> JSONResponse:
    return _error(
        status.HTTP_502_BAD_GATEWAY,
        {
            "success": False,
            "error": str(exc),
            "attempts": exc.attempts,
            "lastStatus": exc.last_status,
        },
    )


_EXCEPTION_HANDLERS: tuple[tuple[type[Exception], Callable], ...] = (
    (HTTPException, _handle_http_exception),
    (ValidationError, _handle_validation_error),
    (MemoryExhaustion, _handle_memory_exhaustion),
    (UpstreamFetchError, _handle_upstream_error),
    (CallbackDeliveryFailure, _handle_callback_failure),
)


def _request_id_from(request: Request) -> str:
    inbound = request.headers.get("x-request-id", "")
    if _REQUEST_ID_PATTERN.match(inbound):
        return inbound
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(settings: Settings | None = None) -> FastAPI:
    """Assemble the scraping API.

    The startup hook creates the ``ScrapingService`` unless one is already
    on ``app.state.service``; tests driving the app through
    ``httpx.ASGITransport`` (which never fires startup) install their own.

    Args:
        settings: Explicit settings; ``get_settings()`` when omitted.

    Returns:
        The configured ``FastAPI`` instance.
    """
    explicit = settings
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    application = FastAPI(
        title=settings.app_name,
        description=(
            "Content extraction for end-of-life part checks: fast HTTP fetch, "
            "PDF and text files, and a single-flight headless browser."
        ),
        version=__version__,
        debug=settings.debug,
        redirect_slashes=False,
    )
    if explicit is not None:
        application.dependency_overrides[get_settings] = lambda: explicit

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origin_list,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @application.middleware("http")
    async def request_context_middleware(
        request: Request, call_next: Callable
    ) -> Response:
        """Bind a request ID for every log line and echo it as ``X-Request-ID``.

        The orchestrator's own ID is reused when it sends a well-formed one,
        so its job logs and ours can be joined.
        """
        request_id = _request_id_from(request)
        request_id_var.set(request_id)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response: Response | None = None
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error("unhandled_exception", exc_info=exc)
            raise
        finally:
            status_code = response.status_code if response is not None else 500
            if status_code >= 400:
                log_fn = logger.warning
            elif request.url.path in _QUIET_PATHS:
                log_fn = logger.debug
            else:
                log_fn = logger.info
            log_fn(
                "request_complete",
                status_code=status_code,
                elapsed_ms=round((time.perf_counter() - started) * 1000, 2),
            )

        response.headers["X-Request-ID"] = request_id
        return response

    for exc_class, handler in _EXCEPTION_HANDLERS:
        application.add_exception_handler(exc_class, handler)

    from eol_scraper.api.routes import health as health_routes  # noqa: PLC0415
    from eol_scraper.api.routes import scrape as scrape_routes  # noqa: PLC0415

    application.include_router(health_routes.router)
    application.include_router(scrape_routes.router)

    @application.on_event("startup")
    async def on_startup() -> None:
        if getattr(application.state, "service", None) is None:
            application.state.service = ScrapingService(settings, httpx.AsyncClient())
        await application.state.service.start()
        if not settings.scraping_api_key:
            logger.error("scraping_api_key_missing")
        logger.info(
            "service_started",
            version=__version__,
            memory_limit_mb=settings.memory_limit_mb,
            memory_warning_mb=settings.memory_warning_mb,
            allowed_origins=settings.allowed_origin_list,
        )

    @application.on_event("shutdown")
    async def on_shutdown() -> None:
        service: ScrapingService | None = getattr(application.state, "service", None)
        if service is not None:
            await service.close()
            await service.client.aclose()
        logger.info("service_stopped")

    return application


app = create_app()
"""ASGI application served by Uvicorn."""


def run() -> None:
    """Console-script entry point: serve ``app`` on the configured host/port."""
    settings = get_settings()
    uvicorn.run(
        "eol_scraper.api.main:app",
        host=settings.host,
        port=settings.port,
        log_config=None,
    )
