"""Scraping route handlers.

``POST /scrape``
    Fast path answered inline (HTTP 200 with the result, callback already
    delivered); browser-bound pages are queued and answered with HTTP 202.

``POST /scrape-batch``
    Synchronous list of per-URL results for small exploratory batches.

``POST /scrape-keyence``
    Synchronous KEYENCE homepage search; the callback is optional.

``POST /scrape-omron-dual`` / ``POST /scrape-idec-dual``
    Queued manufacturer searches answered with HTTP 202; the result arrives
    via callback.

Every route requires the ``X-API-Key`` header and is refused with HTTP 503
while the service is restarting.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from eol_scraper.api.dependencies import ServiceDep, ensure_accepting, require_api_key
from eol_scraper.core.exceptions import MemoryExhaustion, ScrapingServiceError
from eol_scraper.core.schemas.scraping import (
    AcceptedResponse,
    BatchScrapeRequest,
    IdecDualScrapeRequest,
    KeyenceScrapeRequest,
    OmronDualScrapeRequest,
    ScrapeRequest,
)
from eol_scraper.scraper.models import ExtractionRequest, ExtractionResult
from eol_scraper.scraper.site_strategies import KEYENCE_HOME_URL

logger = structlog.get_logger(__name__)

router = APIRouter(
    tags=["scraping"],
    dependencies=[Depends(require_api_key), Depends(ensure_accepting)],
)


def _accepted(message: str) -> JSONResponse:
    return JSONResponse(
        AcceptedResponse(message=message).model_dump(),
        status_code=status.HTTP_202_ACCEPTED,
    )


# ---------------------------------------------------------------------------
# POST /scrape
# ---------------------------------------------------------------------------


@router.post("/scrape")
async def scrape(body: ScrapeRequest, service: ServiceDep) -> JSONResponse:
    """Extract one page, PDF or text file and deliver it to ``callbackUrl``.

    Returns:
        HTTP 200 with the result when the fast path answered, otherwise
        HTTP 202 while the browser task is queued.
    """
    await service.validate_urls(targets={"URL": body.url}, callback_url=body.callback_url)

    request = ExtractionRequest(
        url=body.url,
        callback_url=body.callback_url,
        job_id=body.job_id,
        url_index=body.url_index,
        title=body.title,
        snippet=body.snippet,
    )
    logger.info("scrape_requested", url=body.url, job_id=body.job_id, url_index=body.url_index)

    try:
        outcome = await service.scrape(request)
    except ScrapingServiceError:
        raise
    except Exception as exc:
        await service.report_error(request, exc)
        return JSONResponse(
            {"success": False, "error": str(exc), "url": body.url},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    if isinstance(outcome, ExtractionResult):
        return JSONResponse(outcome.to_dict())
    return _accepted("Scraping started, results will be sent via callback")


# ---------------------------------------------------------------------------
# POST /scrape-batch
# ---------------------------------------------------------------------------


@router.post("/scrape-batch")
async def scrape_batch(body: BatchScrapeRequest, service: ServiceDep) -> JSONResponse:
    """Scrape every URL in order and return all results in one response."""
    for index, url in enumerate(body.urls):
        check = await service.check_target(url)
        if not check.valid:
            logger.warning("batch_url_blocked", index=index, reason=check.reason)
            return JSONResponse(
                {
                    "error": f"Invalid or unsafe URL at index {index}",
                    "url": url,
                    "reason": check.reason,
                },
                status_code=status.HTTP_400_BAD_REQUEST,
            )

    results = await service.scrape_batch(body.urls)
    return JSONResponse(
        {
            "success": True,
            "results": results,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    )


# ---------------------------------------------------------------------------
# POST /scrape-keyence
# ---------------------------------------------------------------------------


@router.post("/scrape-keyence")
async def scrape_keyence(body: KeyenceScrapeRequest, service: ServiceDep) -> JSONResponse:
    """Search KEYENCE for ``model`` and wait for the result.

    A failed search still sends the error callback (when one was given) and
    schedules a restart; the response is HTTP 500.  A search skipped for
    high memory is HTTP 503.
    """
    await service.validate_urls(callback_url=body.callback_url)

    request = ExtractionRequest(
        url=KEYENCE_HOME_URL,
        callback_url=body.callback_url,
        job_id=body.job_id,
        url_index=body.url_index,
        site="keyence",
        params={"model": body.model},
    )
    logger.info("keyence_search_requested", model=body.model)

    try:
        result = await service.submit_browser_task(request)
    except MemoryExhaustion:
        raise
    except Exception as exc:
        return JSONResponse(
            {"success": False, "error": str(exc), "model": body.model},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    payload = result.to_dict()
    payload["originalSearch"] = body.model
    return JSONResponse(payload)


# ---------------------------------------------------------------------------
# POST /scrape-omron-dual
# ---------------------------------------------------------------------------


@router.post("/scrape-omron-dual")
async def scrape_omron_dual(body: OmronDualScrapeRequest, service: ServiceDep) -> JSONResponse:
    """Queue an Omron lookup: primary product URL, then the fallback search URL."""
    await service.validate_urls(
        targets={"primaryUrl": body.primary_url, "fallbackUrl": body.fallback_url},
        proxies={"jpProxy": body.jp_proxy_url},
        callback_url=body.callback_url,
    )

    request = ExtractionRequest(
        url=body.primary_url,
        callback_url=body.callback_url,
        job_id=body.job_id,
        url_index=body.url_index,
        title=body.title,
        snippet=body.snippet,
        site="omron",
        params={"fallback_url": body.fallback_url, "jp_proxy_url": body.jp_proxy_url},
    )
    service.submit_browser_task(request)
    return _accepted("Omron dual-page scraping started, results will be sent via callback")


# ---------------------------------------------------------------------------
# POST /scrape-idec-dual
# ---------------------------------------------------------------------------


@router.post("/scrape-idec-dual")
async def scrape_idec_dual(body: IdecDualScrapeRequest, service: ServiceDep) -> JSONResponse:
    """Queue an IDEC lookup on the JP site, then the US site."""
    await service.validate_urls(
        targets={"jpUrl": body.jp_url, "usUrl": body.us_url},
        proxies={"jpProxy": body.jp_proxy_url, "usProxy": body.us_proxy_url},
        callback_url=body.callback_url,
    )

    request = ExtractionRequest(
        url=body.jp_url,
        callback_url=body.callback_url,
        job_id=body.job_id,
        url_index=body.url_index,
        site="idec",
        params={
            "model": body.model,
            "jp_url": body.jp_url,
            "us_url": body.us_url,
            "jp_proxy_url": body.jp_proxy_url,
            "us_proxy_url": body.us_proxy_url,
        },
    )
    service.submit_browser_task(request)
    return _accepted("IDEC dual-site search started, results will be sent via callback")
