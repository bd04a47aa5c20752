"""Per-manufacturer rendering strategies and their registry.

Every browser-bound request runs through one :class:`SiteStrategy`.  A
strategy is a parameterisation of the same engine loop::

    for target in prepare(request):          # ordered URLs (+ proxy) to try
        visit(session, target)               # navigate, interact, extract
        detect_failure(content, target)      # known "not found" markers
    build_result(...) / no_result(...)

Strategies register themselves on import using the ``@register`` decorator
and are looked up by name::

    from eol_scraper.scraper.site_strategies import get_strategy

    strategy = get_strategy("omron")
    result = await strategy.run(engine, request)

Registered strategies:

- ``generic``: plain navigate and extract.
- ``keyence``: submit the model number through the homepage search box.
- ``omron``: primary URL, then a fallback URL when the primary shows the
  Japanese "page not found" marker; both through a Japanese proxy.
- ``idec``: JP then US search site through regional proxies; follow the
  exact ``/p/<model>`` product link and render the product page.
"""

from __future__ import annotations

import logging
import urllib.parse
from dataclasses import dataclass, field
from typing import Any, ClassVar

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from eol_scraper.core.exceptions import ScrapingServiceError, UpstreamFetchError
from eol_scraper.scraper.config import (
    EXTRACTION_TIMEOUT,
    MIN_CONTENT_LENGTH,
    SETTLE_AFTER_TIMEOUT,
    SETTLE_NORMAL,
)
from eol_scraper.scraper.content_extractor import validate_content
from eol_scraper.scraper.models import ExtractionMethod, ExtractionRequest, ExtractionResult
from eol_scraper.scraper.playwright_fetcher import (
    BlockingPolicy,
    BrowserEngine,
    BrowserSession,
    PageContent,
    default_render_options,
)
from eol_scraper.scraper.url_validator import ProxyConfig, is_safe_public_url, parse_proxy_url

logger = logging.getLogger(__name__)

_REGISTRY: dict[str, type[SiteStrategy]] = {}


def register(cls: type[SiteStrategy]) -> type[SiteStrategy]:
    """Class decorator adding ``cls`` to the registry under ``cls.name``."""
    if not cls.name:
        raise ValueError(f"{cls.__name__} has no strategy name")
    if cls.name in _REGISTRY and _REGISTRY[cls.name] is not cls:
        logger.warning("strategies: %r re-registered by %s", cls.name, cls.__name__)
    _REGISTRY[cls.name] = cls
    return cls


def get_strategy(name: str) -> SiteStrategy:
    """Return a new instance of the strategy registered as ``name``.

    Raises:
        KeyError: If no strategy is registered under ``name``.
    """
    try:
        cls = _REGISTRY[name]
    except KeyError:
        raise KeyError(
            f"No site strategy registered as {name!r}. Available: {list_strategies()}"
        ) from None
    return cls()


def list_strategies() -> list[str]:
    return sorted(_REGISTRY)


@dataclass(frozen=True)
class SiteTarget:
    """One URL a strategy will try, with the proxy to reach it through."""

    url: str
    label: str = "primary"
    proxy: ProxyConfig | None = None
    extra: dict[str, Any] = field(default_factory=dict)


class TargetMiss(Exception):
    """Raised inside :meth:`SiteStrategy.visit` when a target has no usable page."""


# ---------------------------------------------------------------------------
# Base strategy
# ---------------------------------------------------------------------------


class SiteStrategy:
    """Navigate, interact, detect failure markers and extract.

    Subclasses override the hooks they need.  ``continue_on_error`` makes a
    failing target (navigation error, launch error) fall through to the next
    one instead of failing the whole request.  ``restart_on_error`` asks the
    memory governor to recycle the process after a failed run.
    """

    name: ClassVar[str] = ""
    method: ClassVar[ExtractionMethod] = ExtractionMethod.BROWSER
    continue_on_error: ClassVar[bool] = False
    restart_on_error: ClassVar[bool] = False

    def prepare(self, request: ExtractionRequest) -> list[SiteTarget]:
        return [SiteTarget(url=request.url)]

    async def visit(
        self, session: BrowserSession, target: SiteTarget, request: ExtractionRequest
    ) -> PageContent:
        return await session.render(target.url, default_render_options(target.url))

    def detect_failure(self, content: PageContent, target: SiteTarget) -> str | None:
        return None

    def build_result(
        self, request: ExtractionRequest, target: SiteTarget, content: PageContent
    ) -> ExtractionResult:
        text, usable = validate_content(content.text)
        return ExtractionResult(
            success=usable,
            url=content.url or target.url,
            text=text,
            method=self.method,
            title=content.title,
            snippet=request.snippet,
        )

    def no_result(self, request: ExtractionRequest, failures: list[str]) -> ExtractionResult:
        return ExtractionResult(
            success=False,
            url=request.url,
            text=f"[No usable content found: {'; '.join(failures)}]",
            method=self.method,
            title=request.title,
            snippet=request.snippet,
        )

    def error_text(self, exc: BaseException) -> str:
        """Placeholder content sent when the strategy raised."""
        return f"[Scraping failed: {exc}]"

    async def run(self, engine: BrowserEngine, request: ExtractionRequest) -> ExtractionResult:
        """Try each prepared target in order and return the first usable result.

        The browser session of a target is closed before its result is built,
        so no Chromium process outlives the visit.
        """
        failures: list[str] = []
        for target in self.prepare(request):
            logger.info("strategies: %s trying %s target %s", self.name, target.label, target.url)
            try:
                async with engine.session(target.proxy) as session:
                    content = await self.visit(session, target, request)
            except TargetMiss as miss:
                logger.info("strategies: %s %s target missed: %s", self.name, target.label, miss)
                failures.append(f"{target.label}: {miss}")
                continue
            except (ScrapingServiceError, PlaywrightError) as exc:
                if not self.continue_on_error:
                    raise
                logger.error("strategies: %s %s target failed: %s", self.name, target.label, exc)
                failures.append(f"{target.label}: {exc}")
                continue

            reason = self.detect_failure(content, target)
            if reason is None:
                return self.build_result(request, target, content)
            logger.info("strategies: %s %s target rejected: %s", self.name, target.label, reason)
            failures.append(f"{target.label}: {reason}")

        return self.no_result(request, failures)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


@register
class GenericStrategy(SiteStrategy):
    name = "generic"


KEYENCE_HOME_URL = "https://www.keyence.co.jp/"
KEYENCE_INPUT = ".m-form-search__input"
KEYENCE_BUTTON = ".m-form-search__button"

_SET_INPUT_SCRIPT = """
([selector, value]) => {
    const input = document.querySelector(selector);
    if (!input) return false;
    input.value = value;
    input.dispatchEvent(new Event('input', { bubbles: true }));
    input.dispatchEvent(new Event('change', { bubbles: true }));
    return true;
}
"""


@register
class KeyenceStrategy(SiteStrategy):
    """Search the KEYENCE homepage for ``params["model"]``."""

    name = "keyence"
    method = ExtractionMethod.KEYENCE_SEARCH
    restart_on_error = True
    blocking = BlockingPolicy()

    def prepare(self, request: ExtractionRequest) -> list[SiteTarget]:
        return [SiteTarget(url=KEYENCE_HOME_URL, extra={"model": request.params["model"]})]

    async def visit(
        self, session: BrowserSession, target: SiteTarget, request: ExtractionRequest
    ) -> PageContent:
        model = target.extra["model"]
        page, monitor = await session.open_page(self.blocking)
        try:
            await session.goto(
                page, target.url, wait_until="domcontentloaded", timeout=30, monitor=monitor
            )
            await session.settle(SETTLE_AFTER_TIMEOUT)

            has_form = await page.evaluate(
                "([i, b]) => !!(document.querySelector(i) && document.querySelector(b))",
                [KEYENCE_INPUT, KEYENCE_BUTTON],
            )
            if not has_form:
                raise UpstreamFetchError(
                    "Search input or button not found on KEYENCE homepage", url=target.url
                )

            logger.info("strategies: keyence searching for %r", model)
            await page.evaluate(_SET_INPUT_SCRIPT, [KEYENCE_INPUT, model])
            await page.click(KEYENCE_INPUT)
            try:
                async with page.expect_navigation(wait_until="domcontentloaded", timeout=20_000):
                    await page.keyboard.press("Enter")
            except PlaywrightTimeoutError:
                logger.info("strategies: keyence result navigation timed out, checking page")
                await session.settle(SETTLE_AFTER_TIMEOUT)

            return await session.extract(page, timeout=EXTRACTION_TIMEOUT)
        finally:
            await session.close_page(page)

    def build_result(
        self, request: ExtractionRequest, target: SiteTarget, content: PageContent
    ) -> ExtractionResult:
        text = content.text
        if len(text) < MIN_CONTENT_LENGTH:
            logger.warning("strategies: keyence content too short (%d chars)", len(text))
            text = (
                f"[KEYENCE search extracted only {len(text)} characters. The search may "
                "have returned no results, the page may be unavailable, or the site may "
                "be blocking automated access.]"
            )
        return ExtractionResult(
            success=len(content.text) >= MIN_CONTENT_LENGTH,
            url=content.url,
            text=text,
            method=self.method,
            title=content.title,
            snippet=f"KEYENCE search result for {target.extra['model']}",
        )

    def error_text(self, exc: BaseException) -> str:
        return f"[KEYENCE search failed: {exc}]"


OMRON_NOT_FOUND_MARKER = "大変申し訳ございませんお探しのページが見つかりませんでした"
OMRON_MIN_FALLBACK_LENGTH = 500
OMRON_NO_RESULTS = "[Omron: No results found on both primary and fallback URLs]"


@register
class OmronStrategy(SiteStrategy):
    """Primary product URL, falling back to the closed-products search URL."""

    name = "omron"
    method = ExtractionMethod.OMRON_DUAL
    continue_on_error = True
    blocking = BlockingPolicy(stylesheets=True, tracking=False)

    def prepare(self, request: ExtractionRequest) -> list[SiteTarget]:
        proxy = parse_proxy_url(request.params["jp_proxy_url"])
        return [
            SiteTarget(url=request.url, label="primary", proxy=proxy),
            SiteTarget(url=request.params["fallback_url"], label="fallback", proxy=proxy),
        ]

    async def visit(
        self, session: BrowserSession, target: SiteTarget, request: ExtractionRequest
    ) -> PageContent:
        page, monitor = await session.open_page(self.blocking)
        try:
            timed_out = await session.goto(page, target.url, timeout=60, monitor=monitor)
            await session.settle(SETTLE_NORMAL)
            return await session.extract(page, timed_out=timed_out)
        finally:
            await session.close_page(page)

    def detect_failure(self, content: PageContent, target: SiteTarget) -> str | None:
        if OMRON_NOT_FOUND_MARKER in content.text:
            return "page not found marker"
        if target.label == "fallback" and len(content.text) < OMRON_MIN_FALLBACK_LENGTH:
            return "no meaningful content"
        return None

    def build_result(
        self, request: ExtractionRequest, target: SiteTarget, content: PageContent
    ) -> ExtractionResult:
        result = super().build_result(request, target, content)
        if not request.snippet:
            result.snippet = (
                "Omron product page" if target.label == "primary" else "Omron closed products search"
            )
        return result

    def no_result(self, request: ExtractionRequest, failures: list[str]) -> ExtractionResult:
        fallback_url = request.params["fallback_url"]
        if failures and failures[-1].endswith("no meaningful content"):
            return ExtractionResult(
                success=False,
                url=fallback_url,
                text=OMRON_NO_RESULTS,
                method=self.method,
                title="Omron - No Results",
                snippet=request.snippet or "",
            )
        return ExtractionResult(
            success=False,
            url=fallback_url,
            text=f"[Omron: Both primary and fallback URLs failed ({'; '.join(failures)})]",
            method=self.method,
            title=request.title,
            snippet=request.snippet or "",
        )

    def error_text(self, exc: BaseException) -> str:
        return f"[Omron dual-page scraping failed: {exc}]"


IDEC_LISTING = ".listing__elements"
IDEC_NO_RESULTS = (
    "[No results found for this product on the manufacturer website "
    "(searched both JP and US sites)]"
)

# Returns the href of the first result whose image link ends in /p/<model>.
_IDEC_FIND_PRODUCT_SCRIPT = """
(model) => {
    const suffix = '/p/' + model;
    const listing = document.querySelector('.listing__elements');
    if (!listing) return null;
    for (const box of listing.querySelectorAll('.item-box.row.no-gutters.bumper')) {
        const link = box.querySelector('.item-box__image a');
        const href = link && link.getAttribute('href');
        if (href && href.endsWith(suffix)) return href;
    }
    return null;
}
"""


@register
class IdecStrategy(SiteStrategy):
    """Search the JP site, then the US site, for an exact product link."""

    name = "idec"
    method = ExtractionMethod.IDEC_DUAL
    continue_on_error = True
    blocking = BlockingPolicy(stylesheets=True, tracking=False)

    def prepare(self, request: ExtractionRequest) -> list[SiteTarget]:
        params = request.params
        return [
            SiteTarget(
                url=params["jp_url"],
                label="JP",
                proxy=parse_proxy_url(params["jp_proxy_url"]),
                extra={"base": "https://jp.idec.com", "model": params["model"]},
            ),
            SiteTarget(
                url=params["us_url"],
                label="US",
                proxy=parse_proxy_url(params["us_proxy_url"]),
                extra={"base": "https://us.idec.com", "model": params["model"]},
            ),
        ]

    async def find_product_url(
        self, session: BrowserSession, target: SiteTarget
    ) -> str:
        page, monitor = await session.open_page(self.blocking)
        try:
            await session.goto(page, target.url, timeout=60, monitor=monitor)
            try:
                await page.wait_for_selector(IDEC_LISTING, timeout=5_000, state="visible")
            except PlaywrightTimeoutError:
                raise TargetMiss(f"No match on {target.label} site") from None
            href = await page.evaluate(_IDEC_FIND_PRODUCT_SCRIPT, target.extra["model"])
        finally:
            await session.close_page(page)
        if not href:
            raise TargetMiss(f"No match on {target.label} site")
        return urllib.parse.urljoin(target.extra["base"], href)

    async def visit(
        self, session: BrowserSession, target: SiteTarget, request: ExtractionRequest
    ) -> PageContent:
        product_url = await self.find_product_url(session, target)
        check = is_safe_public_url(product_url)
        if not check.valid:
            raise TargetMiss(f"unsafe product URL {product_url}: {check.reason}")
        logger.info("strategies: idec exact match on %s site: %s", target.label, product_url)

        page, monitor = await session.open_page(self.blocking)
        try:
            timed_out = await session.goto(page, product_url, timeout=45, monitor=monitor)
            await session.settle(SETTLE_NORMAL)
            return await session.extract(page, timed_out=timed_out)
        finally:
            await session.close_page(page)

    def build_result(
        self, request: ExtractionRequest, target: SiteTarget, content: PageContent
    ) -> ExtractionResult:
        result = super().build_result(request, target, content)
        result.snippet = f"IDEC product page ({target.label} site)"
        return result

    def no_result(self, request: ExtractionRequest, failures: list[str]) -> ExtractionResult:
        return ExtractionResult(
            success=False,
            url=request.params["jp_url"],
            text=IDEC_NO_RESULTS,
            method=self.method,
            title=None,
            snippet="IDEC search - no results",
        )

    def error_text(self, exc: BaseException) -> str:
        return f"[IDEC dual-site search failed: {exc}]"
