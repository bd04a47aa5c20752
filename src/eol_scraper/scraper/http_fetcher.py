"""Render-free HTTP retrieval: the cheap path tried before any browser session.

Uses ``httpx`` for all requests.  Redirects are followed manually so every
hop is re-checked by :func:`~eol_scraper.scraper.url_validator.check_public_url`;
a public page cannot bounce the fetcher onto a private-network address.

Outcome contract (see :class:`FetchResult`):

- ``text`` set   : usable content or a terminal PDF placeholder; no browser.
- ``text`` ``None``: no result; the caller may fall back to the browser.

PDFs never fall back to the browser: a headless browser cannot render a
binary download any better than the PDF extractors can read it.
"""

from __future__ import annotations

import logging
import urllib.parse
from dataclasses import dataclass
from enum import Enum

import httpx

from eol_scraper.scraper.config import (
    FAST_FETCH_TIMEOUT,
    FAST_FETCH_USER_AGENT,
    MAX_PDF_BYTES,
    PDF_FETCH_TIMEOUT,
    TEXT_FILE_EXTENSIONS,
)
from eol_scraper.scraper.content_extractor import (
    extract_html_text,
    extract_html_title,
    is_error_page,
)
from eol_scraper.scraper.encoding import decode_with_proper_encoding
from eol_scraper.scraper.pdf_extractor import (
    extract_pdf_text,
    pdf_fetch_failed_placeholder,
    pdf_too_large_placeholder,
)
from eol_scraper.scraper.url_validator import check_public_url

logger = logging.getLogger(__name__)

#: Upper bound on HTML/text bodies read by the fast path.
MAX_BODY_BYTES: int = 10 * 1024 * 1024

#: Redirect hops followed before giving up.
MAX_REDIRECTS: int = 5


class ContentKind(str, Enum):
    """Format class used to pick timeout and extraction strategy."""

    PDF = "pdf"
    TEXT = "text"
    HTML = "html"


@dataclass
class FetchResult:
    """Result of a single fast-fetch attempt.

    Attributes:
        text: Extracted text, a terminal PDF placeholder, or ``None`` when the
            browser should be tried instead.
        kind: Format the response was handled as.
        status_code: HTTP status code, or ``None`` on network error.
        final_url: URL after redirects.
        error: Human-readable error description, or ``None`` on success.
        title: Document title for HTML pages, if present.
    """

    text: str | None
    kind: ContentKind
    status_code: int | None = None
    final_url: str | None = None
    error: str | None = None
    title: str | None = None

    @property
    def needs_browser(self) -> bool:
        """``True`` when an HTML page produced no text and a render may help.

        PDFs and text files never go to the browser.
        """
        return self.text is None and self.kind is ContentKind.HTML


class _BodyTooLarge(Exception):
    def __init__(self, size: int) -> None:
        super().__init__(f"body exceeds {size} bytes")
        self.size = size


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def classify_url(url: str) -> ContentKind:
    """Guess the format of ``url`` from its path and query.

    ``.pdf`` paths, ``/pdf/`` path segments and ``pdf`` query hints are
    classified as PDF; ``.txt``/``.log``/``.md``/``.csv`` as text; everything
    else as HTML.
    """
    parsed = urllib.parse.urlsplit(url.lower())
    path = parsed.path
    if path.endswith(".pdf") or "/pdf/" in path or "pdf" in parsed.query:
        return ContentKind.PDF
    if path.endswith(TEXT_FILE_EXTENSIONS):
        return ContentKind.TEXT
    return ContentKind.HTML


def _content_kind(guess: ContentKind, content_type: str) -> ContentKind:
    """Reconcile the URL-based guess with the response ``Content-Type``."""
    ct = content_type.lower().split(";")[0].strip()
    if ct == "application/pdf":
        return ContentKind.PDF
    if guess is ContentKind.PDF and ct in ("text/html", "application/xhtml+xml"):
        return ContentKind.HTML
    if ct == "text/plain":
        return ContentKind.TEXT
    return guess


# ---------------------------------------------------------------------------
# Body helpers
# ---------------------------------------------------------------------------


async def _read_limited(response: httpx.Response, limit: int) -> bytes:
    """Read a streamed body, aborting as soon as it grows past ``limit``."""
    chunks: list[bytes] = []
    received = 0
    async for chunk in response.aiter_bytes():
        received += len(chunk)
        if received > limit:
            raise _BodyTooLarge(received)
        chunks.append(chunk)
    return b"".join(chunks)


async def _handle_pdf(response: httpx.Response, url: str) -> str:
    content_length = response.headers.get("content-length")
    if content_length and content_length.isdigit():
        size = int(content_length)
        if size > MAX_PDF_BYTES:
            logger.warning(
                "scraper: PDF too large (%.2f MB > 20 MB), skipping %s",
                size / 1024 / 1024,
                url,
            )
            return pdf_too_large_placeholder(size)
        logger.info("scraper: PDF size %.2f MB for %s", size / 1024 / 1024, url)
    else:
        logger.warning("scraper: no Content-Length for PDF %s, streaming with limit", url)

    try:
        data = await _read_limited(response, MAX_PDF_BYTES)
    except _BodyTooLarge as exc:
        logger.warning("scraper: PDF download exceeded 20 MB for %s", url)
        return pdf_too_large_placeholder(exc.size)
    return extract_pdf_text(data, url)


async def _handle_response(
    response: httpx.Response,
    url: str,
    guess: ContentKind,
) -> FetchResult:
    final_url = str(response.url)
    status = response.status_code

    if not response.is_success:
        logger.info("scraper: fast fetch HTTP %d for %s", status, url)
        if guess is ContentKind.PDF:
            return FetchResult(
                text=pdf_fetch_failed_placeholder(status),
                kind=guess,
                status_code=status,
                final_url=final_url,
                error=f"HTTP {status}",
            )
        return FetchResult(
            text=None, kind=guess, status_code=status, final_url=final_url,
            error=f"HTTP {status}",
        )

    content_type = response.headers.get("content-type", "")
    kind = _content_kind(guess, content_type)

    if kind is ContentKind.PDF:
        logger.info("scraper: extracting PDF (content-type %r) from %s", content_type, url)
        text = await _handle_pdf(response, url)
        return FetchResult(text=text, kind=kind, status_code=status, final_url=final_url)

    try:
        raw = await _read_limited(response, MAX_BODY_BYTES)
    except _BodyTooLarge:
        logger.warning("scraper: body over %d bytes for %s", MAX_BODY_BYTES, url)
        return FetchResult(
            text=None, kind=kind, status_code=status, final_url=final_url,
            error="body too large",
        )
    decoded = decode_with_proper_encoding(raw, content_type)

    if kind is ContentKind.TEXT:
        logger.info("scraper: fetched text file %s (%d chars)", url, len(decoded))
        return FetchResult(
            text=decoded or None, kind=kind, status_code=status, final_url=final_url,
            error=None if decoded else "empty body",
        )

    text = extract_html_text(decoded)
    if is_error_page(text):
        logger.info("scraper: error page detected for %s (%d chars)", url, len(text))
        return FetchResult(
            text=None, kind=kind, status_code=status, final_url=final_url,
            error="error page",
        )
    return FetchResult(
        text=text,
        kind=kind,
        status_code=status,
        final_url=final_url,
        title=extract_html_title(decoded),
    )


# ---------------------------------------------------------------------------
# Public fetch functions
# ---------------------------------------------------------------------------


async def fetch_url(
    url: str,
    *,
    client: httpx.AsyncClient,
    timeout: float | None = None,
    resolve: bool = False,
) -> FetchResult:
    """Fetch ``url`` without a browser and extract its text.

    Performs, in order:

    1. **Classification**: PDF, text or HTML from the URL; PDFs get the
       longer timeout.
    2. **SSRF check**: before the first request and before every redirect hop.
    3. **HTTP GET**: streamed, with the fast-fetch user agent.
    4. **Extraction**: PDF text (20 MB ceiling), decoded plain text, or the
       HTML text pipeline with error-page classification.

    Args:
        url: Target URL.
        client: Shared :class:`httpx.AsyncClient`.
        timeout: Override for the per-request timeout in seconds.
        resolve: Resolve hostnames via DNS during the SSRF check.

    Returns:
        A :class:`FetchResult`.  Never raises for network or parse errors.
    """
    guess = classify_url(url)
    fetch_timeout = timeout or (
        PDF_FETCH_TIMEOUT if guess is ContentKind.PDF else FAST_FETCH_TIMEOUT
    )
    current = url

    try:
        for _ in range(MAX_REDIRECTS + 1):
            check = await check_public_url(current, resolve=resolve)
            if not check.valid:
                logger.error(
                    "scraper: SSRF protection blocked %s in fast fetch: %s",
                    current,
                    check.reason,
                )
                return FetchResult(
                    text=None, kind=guess, final_url=current,
                    error=f"blocked: {check.reason}",
                )

            async with client.stream(
                "GET",
                current,
                timeout=fetch_timeout,
                follow_redirects=False,
                headers={"User-Agent": FAST_FETCH_USER_AGENT},
            ) as response:
                location = response.headers.get("location")
                if response.is_redirect and location:
                    current = str(response.url.join(location))
                    logger.debug("scraper: redirect %s -> %s", url, current)
                    continue
                return await _handle_response(response, url, guess)

        logger.warning("scraper: too many redirects for %s", url)
        return _failure(guess, url, "too many redirects")

    except httpx.TimeoutException:
        logger.warning("scraper: fast fetch timeout for %s", url)
        return _failure(guess, url, "timeout")
    except httpx.HTTPError as exc:
        logger.warning("scraper: fast fetch error for %s: %s", url, exc)
        return _failure(guess, url, f"request error: {exc}")


def _failure(kind: ContentKind, url: str, error: str) -> FetchResult:
    text = f"[PDF fetch failed: {error}]" if kind is ContentKind.PDF else None
    return FetchResult(text=text, kind=kind, final_url=url, error=error)
