"""Readable-text extraction from raw HTML.

The conversion is an ordered list of :class:`TextTransform` steps rather than
a parser so that each rule (boilerplate removal, table preservation, entity
decoding, whitespace collapse) can be tested on its own.  Tables come out in
the same pipe-delimited form the browser engine produces::

    === TABLE START ===
    | Model | Status |
    | XY-100 | Discontinued |
    === TABLE END ===

The module also owns the error-page classifier and the placeholder strings
substituted for unusable content, so both extraction paths report failures
identically.
"""

from __future__ import annotations

import functools
import html as html_module
import logging
import re
from dataclasses import dataclass
from typing import Callable, Iterable

from eol_scraper.scraper.config import ERROR_PAGE_INDICATORS, MIN_CONTENT_LENGTH

logger = logging.getLogger(__name__)

TABLE_START = "=== TABLE START ==="
TABLE_END = "=== TABLE END ==="

# ---------------------------------------------------------------------------
# Transformation pipeline
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextTransform:
    """One step of the HTML-to-text pipeline.

    Attributes:
        name: Identifier used in tests and debug logs.
        func: ``str -> str`` applied to the whole text.
    """

    name: str
    func: Callable[[str], str]

    @classmethod
    def sub(cls, name: str, pattern: re.Pattern[str], replacement: str) -> TextTransform:
        """Build a step replacing every match of ``pattern`` with ``replacement``."""
        return cls(name, functools.partial(pattern.sub, replacement))

    def apply(self, text: str) -> str:
        return self.func(text)


def _element(tag: str) -> re.Pattern[str]:
    return re.compile(rf"<{tag}\b[^>]*>[\s\S]*?</{tag}\s*>", re.IGNORECASE)


def _tag(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


REMOVE_BOILERPLATE: tuple[TextTransform, ...] = (
    TextTransform.sub("comment", re.compile(r"<!--[\s\S]*?-->"), ""),
    TextTransform.sub("script", _element("script"), ""),
    TextTransform.sub("style", _element("style"), ""),
    TextTransform.sub("noscript", _element("noscript"), ""),
    TextTransform.sub("nav", _element("nav"), ""),
    TextTransform.sub("footer", _element("footer"), ""),
    TextTransform.sub("header", _element("header"), ""),
)

MARK_TABLES: tuple[TextTransform, ...] = (
    TextTransform.sub("table_open", _tag(r"<table\b[^>]*>"), " [TABLE] "),
    TextTransform.sub("table_close", _tag(r"</table\s*>"), " [/TABLE] "),
    TextTransform.sub("row_open", _tag(r"<tr\b[^>]*>"), " [ROW] "),
    TextTransform.sub("row_close", _tag(r"</tr\s*>"), " [/ROW] "),
    TextTransform.sub("cell_open", _tag(r"<t[dh]\b[^>]*>"), " [CELL] "),
    TextTransform.sub("cell_close", _tag(r"</t[dh]\s*>"), " [/CELL] "),
)

STRIP_MARKUP: tuple[TextTransform, ...] = (
    TextTransform.sub("tags", re.compile(r"<[^>]+>"), " "),
    TextTransform("entities", html_module.unescape),
    TextTransform.sub("whitespace", re.compile(r"\s+"), " "),
)

RENDER_TABLES: tuple[TextTransform, ...] = (
    TextTransform.sub("cell_close_marker", re.compile(r"\s*\[/CELL\]\s*"), " "),
    TextTransform.sub("cell_marker", re.compile(r"\[CELL\]\s*"), "| "),
    TextTransform.sub("row_close_marker", re.compile(r"\s*\[/ROW\]\s*"), " |\n"),
    TextTransform.sub("row_marker", re.compile(r"\s*\[ROW\]\s*"), "\n"),
    TextTransform.sub("table_marker", re.compile(r"\s*\[TABLE\]\s*"), f"\n{TABLE_START}\n"),
    TextTransform.sub("table_close_marker", re.compile(r"\s*\[/TABLE\]\s*"), f"\n{TABLE_END}\n"),
    TextTransform.sub("empty_rows", re.compile(r"^\s*\|\s*$", re.MULTILINE), ""),
    TextTransform.sub("line_edges", re.compile(r"[ \t]*\n[ \t]*"), "\n"),
    TextTransform.sub("blank_lines", re.compile(r"\n{2,}"), "\n"),
    TextTransform("trim", str.strip),
)

HTML_TEXT_PIPELINE: tuple[TextTransform, ...] = (
    REMOVE_BOILERPLATE + MARK_TABLES + STRIP_MARKUP + RENDER_TABLES
)
"""Full HTML-to-text pipeline, applied in order by :func:`extract_html_text`."""


def run_pipeline(text: str, steps: Iterable[TextTransform]) -> str:
    """Apply ``steps`` to ``text`` in order."""
    for step in steps:
        text = step.apply(text)
    return text


def extract_html_text(html: str) -> str:
    """Convert raw HTML into readable text with tables preserved.

    Removes comments, scripts, styles, navigation, headers and footers;
    converts tables to pipe-delimited rows; decodes HTML entities; and
    collapses whitespace.
    """
    if not html:
        return ""
    return run_pipeline(html.replace("\x00", ""), HTML_TEXT_PIPELINE)


_TITLE_RE = re.compile(r"<title\b[^>]*>([\s\S]*?)</title\s*>", re.IGNORECASE)


def extract_html_title(html: str) -> str | None:
    """Return the document ``<title>``, unescaped and whitespace-collapsed."""
    match = _TITLE_RE.search(html or "")
    if not match:
        return None
    title = re.sub(r"\s+", " ", html_module.unescape(match.group(1))).strip()
    return title or None


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def matched_error_indicator(text: str) -> str | None:
    """Return the first known error-page phrase found in ``text``."""
    for indicator in ERROR_PAGE_INDICATORS:
        if indicator in text:
            return indicator
    return None


def is_error_page(text: str | None) -> bool:
    """Return ``True`` if ``text`` is too short or reads like an error page.

    Recognises English and Japanese "not found" / "access denied" /
    server-error phrasing.
    """
    if not text or len(text) < MIN_CONTENT_LENGTH:
        return True
    return matched_error_indicator(text) is not None


# ---------------------------------------------------------------------------
# Placeholders
# ---------------------------------------------------------------------------


def insufficient_content_placeholder(length: int) -> str:
    """Placeholder for rendered pages that yielded too little text."""
    return (
        f"[The website could not be scraped - extracted only {length} characters. "
        "The site may require authentication, use anti-bot protection, "
        "or be temporarily unavailable.]"
    )


def error_page_placeholder(length: int, indicator: str) -> str:
    """Placeholder for rendered pages classified as error pages."""
    return (
        f"[The website could not be scraped - the page appears to be an error page "
        f"(\"{indicator}\", {length} characters extracted). The product page may have "
        "moved or been removed.]"
    )


def fast_fetch_short_placeholder(length: int) -> str:
    """Placeholder for fast-fetch responses that yielded too little text."""
    return (
        f"[The website could not be scraped - received only {length} characters. "
        "The site may be blocking automated access or the page may be empty.]"
    )


def validate_content(text: str | None) -> tuple[str, bool]:
    """Return ``(final_text, usable)`` for browser-extracted ``text``.

    Short or error-page content is replaced by a placeholder naming the
    observed character count; ``usable`` is ``False`` in that case.
    """
    text = text or ""
    length = len(text)
    if length < MIN_CONTENT_LENGTH:
        logger.warning(
            "scraper: empty or invalid content (%d chars), adding explanation", length
        )
        return insufficient_content_placeholder(length), False
    indicator = matched_error_indicator(text)
    if indicator is not None:
        logger.warning("scraper: error page detected (%r, %d chars)", indicator, length)
        return error_page_placeholder(length, indicator), False
    return text, True
