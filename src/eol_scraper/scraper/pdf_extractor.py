"""Text extraction from downloaded PDF bytes.

Primary extractor: ``pypdf`` (fast, pure Python).
Fallback: ``pdfplumber`` (pdfminer.six layout analysis), which recovers text
from CID-keyed CJK fonts that ``pypdf`` often returns as nothing.

The public function never returns an empty string: PDFs without extractable
text, encrypted PDFs and malformed files all produce a bracketed placeholder.
"""

from __future__ import annotations

import io
import logging
import re

import pdfplumber
from pypdf import PdfReader
from pypdf.errors import FileNotDecryptedError, PyPdfError

from eol_scraper.scraper.config import PDF_MAX_PAGES

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")

NO_TEXT_PLACEHOLDER = (
    "[PDF contains no extractable text - may be encrypted, password-protected, "
    "or image-based. Please review this product manually.]"
)
ENCRYPTED_PLACEHOLDER = (
    "[PDF is encrypted or password-protected and cannot be read. "
    "Please review this product manually.]"
)
EMPTY_PLACEHOLDER = "[PDF is empty or could not be downloaded]"
NOT_A_PDF_PLACEHOLDER = "[File is not a valid PDF - may be HTML or error page]"


def pdf_too_large_placeholder(size_bytes: int) -> str:
    size_mb = size_bytes / 1024 / 1024
    return (
        f"[PDF file is too large ({size_mb:.2f} MB). Files over 20 MB cannot be "
        "processed due to memory constraints. Please review this product manually.]"
    )


def pdf_fetch_failed_placeholder(status_code: int) -> str:
    return f"[Could not fetch PDF: HTTP {status_code}]"


def _normalize(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def extract_with_pypdf(data: bytes, max_pages: int = PDF_MAX_PAGES) -> str:
    """Extract text from the first ``max_pages`` pages using ``pypdf``.

    Raises:
        FileNotDecryptedError: If the PDF is encrypted with a non-empty password.
        PyPdfError: If the file cannot be parsed.
    """
    reader = PdfReader(io.BytesIO(data))
    if reader.is_encrypted:
        # Many "encrypted" PDFs only carry an owner password.
        reader.decrypt("")
    parts = []
    for page in reader.pages[:max_pages]:
        parts.append(page.extract_text() or "")
    return _normalize(" ".join(parts))


def extract_with_pdfplumber(data: bytes, max_pages: int = PDF_MAX_PAGES) -> str:
    """Extract text from the first ``max_pages`` pages using ``pdfplumber``."""
    parts = []
    with pdfplumber.open(io.BytesIO(data)) as pdf:
        for page in pdf.pages[:max_pages]:
            parts.append(page.extract_text() or "")
            # Release the page's cached layout objects immediately.
            page.close()
    return _normalize(" ".join(parts))


def _looks_encrypted(exc: Exception) -> bool:
    if isinstance(exc, FileNotDecryptedError):
        return True
    message = str(exc).lower()
    return any(word in message for word in ("crypt", "password"))


def extract_pdf_text(data: bytes, url: str = "") -> str:
    """Return the text of a PDF, or a placeholder explaining why there is none.

    Args:
        data: Raw PDF bytes.
        url: Source URL, used only for logging.

    Returns:
        Whitespace-normalised text of the first pages, or a bracketed
        placeholder mentioning the likely cause (empty, not a PDF,
        encrypted, image-based).
    """
    if not data:
        logger.error("pdf: empty buffer for %s", url)
        return EMPTY_PLACEHOLDER

    if not data[:5].startswith(b"%PDF"):
        logger.error("pdf: invalid header for %s: %r", url, data[:5])
        return NOT_A_PDF_PLACEHOLDER

    logger.info("pdf: parsing %s (%d bytes)", url, len(data))

    primary_error: Exception | None = None
    try:
        text = extract_with_pypdf(data)
    except (PyPdfError, ValueError, KeyError, TypeError, NotImplementedError) as exc:
        logger.warning("pdf: pypdf failed for %s: %s", url, exc)
        primary_error = exc
        text = ""

    if text:
        logger.info("pdf: extracted %d chars from %s with pypdf", len(text), url)
        return text

    logger.info("pdf: pypdf yielded 0 characters for %s, trying pdfplumber", url)
    try:
        text = extract_with_pdfplumber(data)
    except Exception as exc:  # noqa: BLE001 - pdfminer raises many unrelated types
        logger.warning("pdf: pdfplumber failed for %s: %s", url, exc)
        if _looks_encrypted(exc) or (primary_error and _looks_encrypted(primary_error)):
            return ENCRYPTED_PLACEHOLDER
        return NO_TEXT_PLACEHOLDER

    if text:
        logger.info("pdf: extracted %d chars from %s with pdfplumber", len(text), url)
        return text

    if primary_error is not None and _looks_encrypted(primary_error):
        return ENCRYPTED_PLACEHOLDER
    logger.warning("pdf: no extractable text in %s", url)
    return NO_TEXT_PLACEHOLDER
