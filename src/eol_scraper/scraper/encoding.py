"""Character-encoding detection for fetched bytes.

Many Japanese manufacturer sites still serve Shift_JIS or EUC-JP without a
correct header, and decoding them as UTF-8 produces mojibake that the
language model cannot read.  :func:`decode_with_proper_encoding` resolves the
encoding through a four-stage cascade:

1. ``charset=`` parameter of the HTTP ``Content-Type`` header.
2. ``<meta charset>`` / ``<meta http-equiv="Content-Type">`` in the first 2 KB.
3. Statistical detection with ``chardet`` (confidence > 0.7).
4. UTF-8 with replacement characters.
"""

from __future__ import annotations

import codecs
import logging
import re

import chardet

from eol_scraper.scraper.config import (
    ENCODING_ALIASES,
    ENCODING_CONFIDENCE_THRESHOLD,
    META_CHARSET_SCAN_BYTES,
)

logger = logging.getLogger(__name__)

_HEADER_CHARSET_RE = re.compile(r"charset=[\"']?([^\s;\"']+)", re.IGNORECASE)
_META_CHARSET_RE = re.compile(r"<meta[^>]+charset=[\"']?([^\"'\s/>]+)", re.IGNORECASE)
_META_HTTP_EQUIV_RE = re.compile(
    r"<meta[^>]+http-equiv=[\"']?content-type[\"']?[^>]+"
    r"content=[\"']?[^\"'>]*charset=([^\"'\s;>]+)",
    re.IGNORECASE,
)


def normalize_encoding(label: str) -> str:
    """Lower-case ``label`` and map common aliases (``sjis`` -> ``shift_jis``)."""
    label = label.strip().strip("\"'").lower()
    return ENCODING_ALIASES.get(label, label)


def _encoding_exists(label: str) -> bool:
    try:
        codecs.lookup(label)
    except LookupError:
        return False
    return True


def encoding_from_header(content_type: str | None) -> str | None:
    """Return the charset declared in a ``Content-Type`` header, if any."""
    if not content_type:
        return None
    match = _HEADER_CHARSET_RE.search(content_type)
    return normalize_encoding(match.group(1)) if match else None


def encoding_from_meta(data: bytes) -> str | None:
    """Return the charset declared in an HTML ``<meta>`` tag near the top of ``data``."""
    preview = data[:META_CHARSET_SCAN_BYTES].decode("latin-1")
    match = _META_CHARSET_RE.search(preview) or _META_HTTP_EQUIV_RE.search(preview)
    return normalize_encoding(match.group(1)) if match else None


def encoding_from_detection(data: bytes) -> str | None:
    """Return chardet's guess if its confidence exceeds the threshold."""
    detected = chardet.detect(data)
    encoding = detected.get("encoding")
    confidence = detected.get("confidence") or 0.0
    if encoding and confidence > ENCODING_CONFIDENCE_THRESHOLD:
        logger.debug(
            "encoding: auto-detected %s (confidence %.1f%%)", encoding, confidence * 100
        )
        return normalize_encoding(encoding)
    return None


def detect_encoding(data: bytes, content_type: str | None = None) -> str:
    """Run the header → meta → chardet → UTF-8 cascade and return a codec name."""
    stages = (
        ("header", lambda: encoding_from_header(content_type)),
        ("meta", lambda: encoding_from_meta(data)),
        ("detected", lambda: encoding_from_detection(data)),
    )
    for stage, probe in stages:
        candidate = probe()
        if not candidate:
            continue
        if _encoding_exists(candidate):
            logger.debug("encoding: using %s from %s", candidate, stage)
            return candidate
        logger.warning("encoding: unsupported %s from %s, continuing", candidate, stage)
    return "utf-8"


def decode_with_proper_encoding(data: bytes, content_type: str | None = None) -> str:
    """Decode ``data`` using the encoding resolved by :func:`detect_encoding`.

    Undecodable byte sequences are replaced rather than raising.
    """
    encoding = detect_encoding(data, content_type)
    try:
        return data.decode(encoding, errors="replace")
    except LookupError:
        return data.decode("utf-8", errors="replace")
