"""Headless Chromium rendering via Playwright for JavaScript-heavy pages.

The engine is used only after the fast path in
:mod:`eol_scraper.scraper.http_fetcher` produced no result, and always from
inside the :class:`~eol_scraper.scraper.scheduler.BrowserTaskScheduler`, so at
most one Chromium process is alive at a time.

Install the browser binary once per image::

    playwright install --with-deps chromium

A render is:

1. launch Chromium (bounded startup timeout, optional proxy),
2. open a context with a fixed desktop fingerprint and route every request
   through the SSRF check plus the optional :class:`BlockingPolicy`,
3. navigate; a navigation *timeout* is soft and logs pending-request
   diagnostics, any other navigation error fails the render,
4. settle for a site-dependent period,
5. extract ``document.body.innerText`` with tables rewritten as
   pipe-delimited rows, under a separate extraction timeout,
6. close the browser on every exit path.
"""

from __future__ import annotations

import asyncio
import logging
import time
import urllib.parse
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, Request, Route
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from eol_scraper.core.exceptions import (
    AutomationLaunchError,
    ExtractionTimeout,
    UpstreamFetchError,
    ValidationError,
)
from eol_scraper.scraper.config import (
    BOT_CHALLENGE_HOSTS,
    BROWSER_ARGS,
    BROWSER_LAUNCH_TIMEOUT,
    BROWSER_USER_AGENT,
    DIAGNOSTIC_TOP_N,
    EXTRACTION_TIMEOUT,
    NAVIGATION_TIMEOUT,
    SETTLE_AFTER_TIMEOUT,
    SETTLE_BOT_CHALLENGE,
    SETTLE_NORMAL,
    TRACKING_DOMAINS,
    VIEWPORT,
)
from eol_scraper.scraper.url_validator import ProxyConfig, is_safe_public_url

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]

# Hides the most common automation fingerprints before any page script runs.
STEALTH_INIT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
window.chrome = window.chrome || { runtime: {} };
Object.defineProperty(navigator, 'languages', { get: () => ['ja-JP', 'ja', 'en-US', 'en'] });
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
"""

# Runs in the page.  Drops script/style/noscript nodes, replaces each
# <table> with a <pre> holding "| a | b |" rows between TABLE START/END
# markers, then returns the visible body text.
EXTRACT_TEXT_SCRIPT = r"""
() => {
    function cellText(cell) {
        let text = cell.innerText || cell.textContent || '';
        text = text.replace(/\s+/g, ' ').trim();
        return text.replace(/\\/g, '\\\\').replace(/\|/g, '\\|');
    }
    function rowText(row) {
        const cells = row.querySelectorAll(':scope > th, :scope > td');
        if (cells.length === 0) return null;
        return '| ' + Array.from(cells).map(cellText).join(' | ') + ' |';
    }
    function tableText(table) {
        const rows = table.querySelectorAll(
            ':scope > tr, :scope > tbody > tr, :scope > thead > tr, :scope > tfoot > tr'
        );
        const lines = Array.from(rows).map(rowText).filter(line => line !== null);
        if (lines.length === 0) return null;
        return '=== TABLE START ===\n' + lines.join('\n') + '\n=== TABLE END ===';
    }
    document.querySelectorAll('script, style, noscript').forEach(el => el.remove());
    document.querySelectorAll('table').forEach(table => {
        const text = tableText(table);
        if (text && table.parentNode) {
            const pre = document.createElement('pre');
            pre.textContent = text;
            pre.style.whiteSpace = 'pre-wrap';
            table.parentNode.replaceChild(pre, table);
        }
    });
    return document.body ? document.body.innerText : '';
}
"""


# ---------------------------------------------------------------------------
# Policies and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BlockingPolicy:
    """Which requests a page aborts.

    Stylesheets are allowed by default because several manufacturer sites
    need them to finish rendering their product tables.
    """

    images: bool = True
    stylesheets: bool = False
    fonts: bool = True
    media: bool = True
    tracking: bool = True
    custom_blocked_domains: tuple[str, ...] = ()

    @property
    def blocked_types(self) -> frozenset[str]:
        flags = {
            "image": self.images,
            "stylesheet": self.stylesheets,
            "font": self.fonts,
            "media": self.media,
        }
        return frozenset(kind for kind, on in flags.items() if on)

    @property
    def blocked_domains(self) -> tuple[str, ...]:
        base = TRACKING_DOMAINS if self.tracking else ()
        return base + tuple(self.custom_blocked_domains)

    def should_block(self, url: str, resource_type: str) -> bool:
        if any(domain in url for domain in self.blocked_domains):
            return True
        return resource_type in self.blocked_types

    def describe(self) -> str:
        parts = sorted(self.blocked_types)
        if self.tracking:
            parts.append("tracking")
        return ", ".join(parts) or "nothing"


@dataclass
class RenderOptions:
    """Per-render navigation parameters.

    ``blocking=None`` turns off resource blocking; the SSRF check on every
    request stays in place.  ``settle=None`` picks the period with
    :func:`settle_seconds`.
    """

    wait_until: str = "networkidle"
    navigation_timeout: float = NAVIGATION_TIMEOUT
    extraction_timeout: float = EXTRACTION_TIMEOUT
    settle: float | None = None
    blocking: BlockingPolicy | None = field(default_factory=BlockingPolicy)


@dataclass
class PageContent:
    text: str
    title: str | None
    url: str
    timed_out: bool = False


def is_bot_challenge_host(url: str) -> bool:
    """``True`` for hosts known to serve a JavaScript bot challenge."""
    host = (urllib.parse.urlsplit(url).hostname or "").lower()
    return any(host == h or host.endswith("." + h) for h in BOT_CHALLENGE_HOSTS)


def settle_seconds(url: str, timed_out: bool) -> float:
    if is_bot_challenge_host(url):
        return SETTLE_BOT_CHALLENGE
    if timed_out:
        return SETTLE_AFTER_TIMEOUT
    return SETTLE_NORMAL


def default_render_options(url: str) -> RenderOptions:
    """Render options for a plain page; bot-challenge hosts get no blocking."""
    if is_bot_challenge_host(url):
        logger.info("scraper: resource blocking disabled for bot-challenge host %s", url)
        return RenderOptions(blocking=None)
    return RenderOptions()


# ---------------------------------------------------------------------------
# Network diagnostics
# ---------------------------------------------------------------------------


class NetworkMonitor:
    """Tracks in-flight requests of one page for timeout diagnostics."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self.pending: dict[str, tuple[float, str]] = {}

    def attach(self, page: Page) -> None:
        page.on("request", self._on_request)
        page.on("requestfinished", self._on_done)
        page.on("requestfailed", self._on_done)

    def _on_request(self, request: Request) -> None:
        self.pending[request.url] = (self._clock(), request.resource_type)

    def _on_done(self, request: Request) -> None:
        self.pending.pop(request.url, None)

    def summary(self, top_n: int = DIAGNOSTIC_TOP_N) -> dict[str, Any]:
        """Pending requests grouped by resource type, plus the slowest ones."""
        now = self._clock()
        by_type = Counter(kind for _, kind in self.pending.values())
        slowest = sorted(
            (
                {
                    "url": url[:100] + ("..." if len(url) > 100 else ""),
                    "type": kind,
                    "seconds": round(now - started, 1),
                }
                for url, (started, kind) in self.pending.items()
            ),
            key=lambda item: item["seconds"],
            reverse=True,
        )[:top_n]
        return {"total": len(self.pending), "by_type": dict(by_type), "slowest": slowest}

    def log_diagnostics(self) -> None:
        report = self.summary()
        logger.info(
            "scraper: network timeout diagnostics: %d pending requests %s",
            report["total"],
            report["by_type"],
        )
        for rank, item in enumerate(report["slowest"], start=1):
            logger.info(
                "scraper:   %d. [%s] %.1fs - %s",
                rank,
                item["type"],
                item["seconds"],
                item["url"],
            )


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


async def route_requests(page: Page, policy: BlockingPolicy | None = None) -> None:
    """Route every request of ``page`` through the SSRF check and ``policy``.

    Requests to non-public addresses (a redirect or script on a public page
    pointing at the metadata service, say) are always aborted.  ``policy``
    additionally aborts blocked resource types and tracking hosts.
    """

    async def _handle(route: Route) -> None:
        request = route.request
        check = is_safe_public_url(request.url)
        if not check.valid:
            logger.warning(
                "scraper: SSRF protection aborted %s request to %s: %s",
                request.resource_type,
                request.url,
                check.reason,
            )
            await route.abort("blockedbyclient")
        elif policy is not None and policy.should_block(request.url, request.resource_type):
            await route.abort()
        else:
            await route.continue_()

    await page.route("**/*", _handle)
    if policy is not None:
        logger.info("scraper: resource blocking enabled: %s", policy.describe())


class BrowserSession:
    """One live Chromium process.  Obtain via :meth:`BrowserEngine.session`."""

    def __init__(self, browser: Any, *, sleep: Sleep = asyncio.sleep) -> None:
        self._browser = browser
        self._sleep = sleep

    async def open_page(
        self, blocking: BlockingPolicy | None = None
    ) -> tuple[Page, NetworkMonitor]:
        context = await self._browser.new_context(
            user_agent=BROWSER_USER_AGENT,
            viewport=VIEWPORT,
        )
        await context.add_init_script(STEALTH_INIT_SCRIPT)
        page = await context.new_page()
        await route_requests(page, blocking)
        monitor = NetworkMonitor()
        monitor.attach(page)
        return page, monitor

    async def goto(
        self,
        page: Page,
        url: str,
        *,
        wait_until: str = "networkidle",
        timeout: float = NAVIGATION_TIMEOUT,
        monitor: NetworkMonitor | None = None,
    ) -> bool:
        """Navigate ``page`` to ``url``; return ``True`` if navigation timed out.

        Raises:
            ValidationError: If ``url`` fails the SSRF check.
            UpstreamFetchError: On any navigation error other than a timeout.
        """
        check = is_safe_public_url(url)
        if not check.valid:
            logger.error("scraper: SSRF protection blocked navigation to %s: %s", url, check.reason)
            raise ValidationError(f"Invalid URL for scraping: {check.reason}")

        try:
            await page.goto(url, wait_until=wait_until, timeout=timeout * 1000)
        except PlaywrightTimeoutError:
            logger.info(
                "scraper: navigation timed out after %.0fs for %s, continuing with extraction",
                timeout,
                url,
            )
            if monitor is not None:
                monitor.log_diagnostics()
            return True
        except PlaywrightError as exc:
            raise UpstreamFetchError(str(exc), url=url) from exc
        logger.info("scraper: navigation completed with %s for %s", wait_until, url)
        return False

    async def close_page(self, page: Page) -> None:
        """Close ``page`` together with its browser context."""
        await _close_quietly(page.context, "page context")

    async def settle(self, seconds: float) -> None:
        if seconds > 0:
            await self._sleep(seconds)

    async def extract(
        self, page: Page, *, timeout: float = EXTRACTION_TIMEOUT, timed_out: bool = False
    ) -> PageContent:
        """Extract visible text and title within ``timeout`` seconds.

        Raises:
            ExtractionTimeout: If the in-page script does not finish in time.
        """

        async def _extract() -> tuple[str, str]:
            text = await page.evaluate(EXTRACT_TEXT_SCRIPT)
            title = await page.title()
            return text or "", title

        try:
            text, title = await asyncio.wait_for(_extract(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise ExtractionTimeout(url=page.url, timeout=timeout) from exc

        logger.info(
            "scraper: extracted %d chars from %s%s",
            len(text),
            page.url,
            " (partial, after navigation timeout)" if timed_out else "",
        )
        return PageContent(text=text, title=title or None, url=page.url, timed_out=timed_out)

    async def render(self, url: str, options: RenderOptions | None = None) -> PageContent:
        """Open a page, navigate, settle and extract.  The page is always closed."""
        options = options or default_render_options(url)
        page, monitor = await self.open_page(options.blocking)
        try:
            timed_out = await self.goto(
                page,
                url,
                wait_until=options.wait_until,
                timeout=options.navigation_timeout,
                monitor=monitor,
            )
            settle = options.settle if options.settle is not None else settle_seconds(url, timed_out)
            await self.settle(settle)
            return await self.extract(
                page, timeout=options.extraction_timeout, timed_out=timed_out
            )
        finally:
            await self.close_page(page)


async def _close_quietly(closable: Any, what: str) -> None:
    try:
        await closable.close()
    except PlaywrightError as exc:
        logger.error("scraper: failed to close %s: %s", what, exc)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class BrowserEngine:
    """Launches Chromium sessions and counts how many are open.

    Args:
        launch_timeout: Seconds allowed for Chromium to start.
        playwright_factory: Callable returning a Playwright context manager;
            defaults to :func:`playwright.async_api.async_playwright`.
        sleep: Awaitable sleep used for settle periods.
    """

    def __init__(
        self,
        *,
        launch_timeout: float = BROWSER_LAUNCH_TIMEOUT,
        playwright_factory: Callable[[], Any] = async_playwright,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._launch_timeout = launch_timeout
        self._playwright_factory = playwright_factory
        self._sleep = sleep
        self.open_sessions = 0
        self.peak_sessions = 0

    @asynccontextmanager
    async def session(self, proxy: ProxyConfig | None = None) -> AsyncIterator[BrowserSession]:
        """Yield a :class:`BrowserSession`; the browser is closed on exit.

        Raises:
            AutomationLaunchError: If Chromium cannot be started.
        """
        launch_kwargs: dict[str, Any] = {
            "headless": True,
            "args": list(BROWSER_ARGS),
            "timeout": self._launch_timeout * 1000,
        }
        if proxy is not None:
            launch_kwargs["proxy"] = proxy.to_playwright()
            logger.info(
                "scraper: launching browser with proxy %s (auth=%s)",
                proxy.server,
                bool(proxy.username and proxy.password),
            )

        async with self._playwright_factory() as playwright:
            try:
                browser = await playwright.chromium.launch(**launch_kwargs)
            except PlaywrightError as exc:
                raise AutomationLaunchError(f"Browser launch failed: {exc}") from exc

            self.open_sessions += 1
            self.peak_sessions = max(self.peak_sessions, self.open_sessions)
            try:
                yield BrowserSession(browser, sleep=self._sleep)
            finally:
                self.open_sessions -= 1
                await _close_quietly(browser, "browser")
                logger.info("scraper: browser closed, memory freed")
