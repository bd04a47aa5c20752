"""Request orchestration: fast path, browser queue, callbacks and memory checks.

One :class:`ScrapingService` instance lives on ``app.state`` for the whole
process.  It owns every piece of mutable state (request counter, scheduler,
memory governor, callback dispatcher, browser engine and the shared
``httpx.AsyncClient``) so tests can build isolated instances.

Terminal outcome per accepted request: either a callback is delivered (with
real content or a bracketed placeholder) or the HTTP layer returns an error.
Browser-bound work is submitted to the scheduler and its future is never
awaited by the HTTP handler; the worker delivers the callback itself.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack
from datetime import datetime, timezone
from typing import Any

import httpx

from eol_scraper.config.settings import Settings
from eol_scraper.core.exceptions import (
    CallbackDeliveryFailure,
    MemoryExhaustion,
    UpstreamFetchError,
    ValidationError,
)
from eol_scraper.scraper.callback import (
    CallbackDispatcher,
    build_payload,
    payload_from_result,
)
from eol_scraper.scraper.content_extractor import (
    fast_fetch_short_placeholder,
    validate_content,
)
from eol_scraper.scraper.config import MIN_CONTENT_LENGTH
from eol_scraper.scraper.http_fetcher import FetchResult, fetch_url
from eol_scraper.scraper.memory import MemoryGovernor
from eol_scraper.scraper.models import ExtractionMethod, ExtractionRequest, ExtractionResult
from eol_scraper.scraper.playwright_fetcher import (
    BlockingPolicy,
    BrowserEngine,
    BrowserSession,
    RenderOptions,
    is_bot_challenge_host,
)
from eol_scraper.scraper.scheduler import BrowserTaskScheduler
from eol_scraper.scraper.site_strategies import get_strategy
from eol_scraper.scraper.url_validator import (
    ValidationResult,
    check_public_url,
    is_valid_callback_url,
    is_valid_proxy_url,
)

logger = logging.getLogger(__name__)

FILE_FETCH_FAILED = "[PDF or text file could not be fetched]"


def _batch_render_options(url: str) -> RenderOptions:
    if is_bot_challenge_host(url):
        return RenderOptions(navigation_timeout=120, settle=20, blocking=None)
    return RenderOptions(
        navigation_timeout=120,
        settle=5,
        blocking=BlockingPolicy(stylesheets=True, tracking=False),
    )


class ScrapingService:
    """Process-wide scraping context.

    Args:
        settings: Loaded :class:`~eol_scraper.config.settings.Settings`.
        client: Shared HTTP client for fast fetches and callbacks.
        engine: Browser engine; a default :class:`BrowserEngine` if omitted.
        scheduler: Single-flight scheduler; a new one if omitted.
        governor: Memory governor; built from ``settings`` if omitted.
        dispatcher: Callback dispatcher; built from ``settings`` if omitted.
    """

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient,
        *,
        engine: BrowserEngine | None = None,
        scheduler: BrowserTaskScheduler | None = None,
        governor: MemoryGovernor | None = None,
        dispatcher: CallbackDispatcher | None = None,
    ) -> None:
        self.settings = settings
        self.client = client
        self.engine = engine or BrowserEngine()
        self.scheduler = scheduler or BrowserTaskScheduler()
        self.governor = governor or MemoryGovernor.from_settings(
            settings, drain=self.scheduler.drain
        )
        self.dispatcher = dispatcher or CallbackDispatcher.from_settings(
            client, settings, is_restarting=lambda: self.governor.is_shutting_down
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self.scheduler.start()

    async def close(self) -> None:
        await self.scheduler.stop()

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    async def check_target(self, url: str) -> ValidationResult:
        return await check_public_url(url, resolve=self.settings.resolve_hostnames)

    def check_callback(self, callback_url: str | None) -> ValidationResult:
        return is_valid_callback_url(callback_url, self.settings.allowed_origin_list)

    async def validate_urls(
        self,
        *,
        targets: dict[str, str] | None = None,
        proxies: dict[str, str] | None = None,
        callback_url: str | None = None,
    ) -> None:
        """Validate named target, proxy and callback URLs.

        Raises:
            ValidationError: On the first unsafe value; ``field`` names it.
        """
        checks: list[tuple[str, ValidationResult]] = []
        for name, url in (targets or {}).items():
            checks.append((name, await self.check_target(url)))
        for name, url in (proxies or {}).items():
            checks.append((name, is_valid_proxy_url(url)))
        checks.append(("callback", self.check_callback(callback_url)))
        for name, result in checks:
            if not result.valid:
                logger.warning("service: SSRF protection blocked %s: %s", name, result.reason)
                raise ValidationError(result.reason or "invalid URL", field=name)

    # ------------------------------------------------------------------
    # Memory bookkeeping
    # ------------------------------------------------------------------

    def begin_request(self, kind: str = "request") -> int:
        count = self.governor.increment_request_count()
        sample = self.governor.sample(f"{kind}_start_{count}")
        logger.info("service: %s #%d - memory %dMB RSS", kind, count, sample.rss_mb)
        return count

    def after_task(self, count: int, label: str, kind: str = "request") -> None:
        self.governor.force_gc()
        self.governor.sample(f"{kind}_complete_{count}_{label}")
        self.governor.schedule_restart_if_needed()

    async def _precheck_memory(self, request: ExtractionRequest, stage: str = "precheck") -> None:
        """Refuse work when over the hard limit or already restarting.

        Runs when a request is accepted and again when a queued browser task
        is about to start, since memory may have grown while it waited.

        Raises:
            MemoryExhaustion: After the skip callback was attempted.
        """
        current = self.governor.usage(stage)
        if not self.governor.is_over_limit(current) and self.governor.accepting_requests:
            return
        logger.error(
            "service: memory too high (%dMB, %s), skipping %s",
            current.rss_mb,
            self.governor.state.value,
            request.url,
        )
        await self._deliver_quietly(
            request,
            build_payload(
                request,
                "[Scraping skipped - service restarting due to high memory usage "
                f"({current.rss_mb}MB)]",
            ),
        )
        self.governor.begin_restart("memory limit reached before task")
        raise MemoryExhaustion(current.rss_mb, retry_after=self.settings.retry_after_seconds)

    # ------------------------------------------------------------------
    # Callback helpers
    # ------------------------------------------------------------------

    async def _deliver(self, request: ExtractionRequest, payload: dict[str, Any]) -> None:
        await self.dispatcher.send(request.callback_url, payload)

    async def _deliver_quietly(self, request: ExtractionRequest, payload: dict[str, Any]) -> None:
        """Deliver a failure callback; delivery errors are logged, not raised."""
        try:
            await self.dispatcher.send(request.callback_url, payload)
        except (CallbackDeliveryFailure, ValidationError) as exc:
            logger.error(
                "service: failure callback for job %s/%s lost: %s",
                request.job_id,
                request.url_index,
                exc,
            )

    # ------------------------------------------------------------------
    # /scrape
    # ------------------------------------------------------------------

    async def scrape(self, request: ExtractionRequest) -> ExtractionResult | asyncio.Future:
        """Handle one plain page request.

        Returns:
            An :class:`ExtractionResult` when the fast path produced the
            answer (its callback is already delivered), otherwise the
            scheduler future of the queued browser task.

        Raises:
            MemoryExhaustion: If the process is over its memory limit.
            UpstreamFetchError: If a PDF or text file could not be fetched.
            CallbackDeliveryFailure: If the fast-path callback could not be delivered.
        """
        count = self.begin_request()
        await self._precheck_memory(request)

        logger.info("service: attempting fast fetch for %s", request.url)
        fetched = await fetch_url(
            request.url, client=self.client, resolve=self.settings.resolve_hostnames
        )
        if fetched.text is not None:
            result = self._fast_result(request, fetched)
            try:
                await self._deliver(request, payload_from_result(request, result))
            finally:
                self.after_task(count, ExtractionMethod.FAST_FETCH.value)
            return result

        if not fetched.needs_browser:
            logger.info("service: file fetch failed for %s, not attempting browser", request.url)
            await self._deliver_quietly(request, build_payload(request, FILE_FETCH_FAILED))
            self.governor.schedule_restart_if_needed()
            raise UpstreamFetchError(
                "PDF or text file could not be fetched",
                url=request.url,
                status_code=fetched.status_code,
            )

        logger.info(
            "service: fast fetch gave no result for %s (%s), queueing browser task",
            request.url,
            fetched.error,
        )
        return self.submit_browser_task(request, count)

    async def report_error(self, request: ExtractionRequest, exc: BaseException) -> None:
        """Send the ``[Scraping error: ...]`` callback for an unexpected failure."""
        logger.error("service: scraping error for %s: %s", request.url, exc)
        await self._deliver_quietly(request, build_payload(request, f"[Scraping error: {exc}]"))
        self.governor.schedule_restart_if_needed()

    def _fast_result(self, request: ExtractionRequest, fetched: FetchResult) -> ExtractionResult:
        text = fetched.text or ""
        if len(text) < MIN_CONTENT_LENGTH:
            logger.warning(
                "service: fast fetch content too short (%d chars), adding explanation", len(text)
            )
            text = fast_fetch_short_placeholder(len(text))
        return ExtractionResult(
            success=True,
            url=request.url,
            text=text,
            method=ExtractionMethod.FAST_FETCH,
            title=fetched.title,
            snippet=request.snippet,
        )

    # ------------------------------------------------------------------
    # Browser tasks (all site variants)
    # ------------------------------------------------------------------

    def submit_browser_task(
        self, request: ExtractionRequest, count: int | None = None
    ) -> asyncio.Future:
        """Queue ``request`` for the browser engine and return the task future."""
        if count is None:
            count = self.begin_request(request.site)
        label = f"{request.site} job={request.job_id} index={request.url_index}"
        return self.scheduler.enqueue(
            lambda: self._run_browser_task(request, count), label=label
        )

    async def _run_browser_task(self, request: ExtractionRequest, count: int) -> ExtractionResult:
        strategy = get_strategy(request.site)
        kind = "request" if request.site == "generic" else request.site
        await self._precheck_memory(request, f"{kind}_task_start_{count}")
        try:
            result = await strategy.run(self.engine, request)
        except Exception as exc:  # noqa: BLE001 - every failure must still reach the caller
            logger.error("service: %s browser task failed for %s: %s", strategy.name, request.url, exc)
            await self._deliver_quietly(
                request,
                build_payload(
                    request, strategy.error_text(exc), title=None, url=request.url
                ),
            )
            if strategy.restart_on_error:
                self.governor.begin_restart(f"{strategy.name} task failed")
            self.after_task(count, "error", kind)
            raise

        logger.info(
            "service: %s extracted %d chars for %s", strategy.name, result.content_length, result.url
        )
        try:
            await self._deliver(request, payload_from_result(request, result))
        finally:
            self.after_task(count, result.method.value, kind)
        return result

    # ------------------------------------------------------------------
    # /scrape-batch
    # ------------------------------------------------------------------

    async def scrape_batch(self, urls: list[str]) -> list[dict[str, Any]]:
        """Scrape ``urls`` sequentially and return one result dict per URL.

        The whole batch runs as a single scheduler task sharing one browser
        session, launched only if some URL needs it.
        """
        count = self.begin_request("batch")
        future = self.scheduler.enqueue(
            lambda: self._run_batch(urls), label=f"batch of {len(urls)}"
        )
        try:
            return await future
        finally:
            self.after_task(count, "batch", "batch")

    async def _run_batch(self, urls: list[str]) -> list[dict[str, Any]]:
        logger.info("service: batch scraping %d URLs", len(urls))
        results: list[dict[str, Any]] = []
        async with AsyncExitStack() as stack:
            session: BrowserSession | None = None
            for url in urls:
                try:
                    fetched = await fetch_url(
                        url, client=self.client, resolve=self.settings.resolve_hostnames
                    )
                    if fetched.text is not None:
                        results.append(
                            _batch_entry(url, fetched.text, fetched.title, ExtractionMethod.FAST_FETCH)
                        )
                        continue
                    if not fetched.needs_browser:
                        results.append({
                            "success": False,
                            "url": url,
                            "error": "PDF or text file could not be fetched",
                            "method": "fast_fetch_failed",
                        })
                        continue
                    if session is None:
                        session = await stack.enter_async_context(self.engine.session())
                    content = await session.render(url, _batch_render_options(url))
                    text, _ = validate_content(content.text)
                    results.append(
                        _batch_entry(url, text, content.title, ExtractionMethod.BROWSER)
                    )
                except Exception as exc:  # noqa: BLE001 - one bad URL must not sink the batch
                    logger.error("service: batch error for %s: %s", url, exc)
                    results.append({"success": False, "url": url, "error": str(exc)})
        return results


def _batch_entry(
    url: str, text: str, title: str | None, method: ExtractionMethod
) -> dict[str, Any]:
    return {
        "success": True,
        "url": url,
        "title": title,
        "content": text,
        "contentLength": len(text),
        "method": method.value,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
