"""Data carriers shared by the fetcher, browser engine, scheduler and dispatcher."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping


class ExtractionMethod(str, Enum):
    """How the text of an :class:`ExtractionResult` was obtained."""

    FAST_FETCH = "fast_fetch"
    BROWSER = "browser"
    KEYENCE_SEARCH = "keyence_interactive_search"
    OMRON_DUAL = "omron_dual_page"
    IDEC_DUAL = "idec_dual_site"


@dataclass(frozen=True)
class ExtractionRequest:
    """One accepted unit of work.  Immutable once accepted.

    Attributes:
        url: Target URL (for interactive variants, the URL reported back in
            the callback when nothing better is found).
        callback_url: Where the result is POSTed.  ``None`` for synchronous
            variants that answer in the HTTP response.
        job_id: Caller's job identifier, echoed in the callback.
        url_index: Caller's per-URL index, echoed in the callback.
        title: Optional display title from the search step.
        snippet: Optional display snippet from the search step.
        site: Site-strategy registry key (``"generic"`` for plain pages).
        params: Site-specific parameters (search term, fallback URL, proxies).
    """

    url: str
    callback_url: str | None
    job_id: str | int | None = None
    url_index: int | None = None
    title: str | None = None
    snippet: str | None = None
    site: str = "generic"
    params: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))


@dataclass
class ExtractionResult:
    """Outcome of extracting one page.

    ``text`` is never ``None`` or empty: failures are represented by a
    bracketed placeholder string explaining the cause.
    """

    success: bool
    url: str
    text: str
    method: ExtractionMethod
    title: str | None = None
    snippet: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def content_length(self) -> int:
        return len(self.text)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON shape used in synchronous HTTP responses."""
        return {
            "success": self.success,
            "url": self.url,
            "title": self.title,
            "content": self.text,
            "contentLength": self.content_length,
            "method": self.method.value,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class MemorySample:
    """One process-memory observation, in megabytes."""

    timestamp: datetime
    stage: str
    rss_mb: int
    heap_used_mb: int
    heap_total_mb: int
    request_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "stage": self.stage,
            "rss": self.rss_mb,
            "heapUsed": self.heap_used_mb,
            "heapTotal": self.heap_total_mb,
            "requestCount": self.request_count,
        }
