"""Service-wide exception hierarchy.

All custom exceptions subclass ``ScrapingServiceError`` so callers can catch
the whole family with a single ``except`` clause.

Hierarchy::

    ScrapingServiceError
    ├── ValidationError          (reason)              -> HTTP 400, never retried
    ├── UpstreamFetchError       (url, status_code)    -> browser fallback / retry
    ├── ExtractionTimeout        (url, timeout)        -> partial content or placeholder
    ├── AutomationLaunchError                          -> error callback, restart pressure
    ├── MemoryExhaustion         (rss_mb, retry_after) -> HTTP 503
    └── CallbackDeliveryFailure  (callback_url, attempts, last_status)
"""

from __future__ import annotations


class ScrapingServiceError(Exception):
    """Base class for all scraping-service exceptions."""


class ValidationError(ScrapingServiceError):
    """Raised when a target, callback or proxy URL is unsafe or malformed.

    Args:
        reason: Human-readable explanation returned to the caller.
        field: Name of the offending request field, if known.
    """

    def __init__(self, reason: str, field: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.field = field


class UpstreamFetchError(ScrapingServiceError):
    """Raised when a target page cannot be retrieved.

    Args:
        message: Description of the failure.
        url: The URL that was being fetched.
        status_code: HTTP status code, or ``None`` on network error.
    """

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class ExtractionTimeout(ScrapingServiceError):
    """Raised when in-page text extraction exceeds its time budget."""

    def __init__(self, url: str | None = None, timeout: float | None = None) -> None:
        msg = "Content extraction timeout"
        if timeout is not None:
            msg += f" ({timeout:g}s)"
        super().__init__(msg)
        self.url = url
        self.timeout = timeout


class AutomationLaunchError(ScrapingServiceError):
    """Raised when the headless browser cannot be started."""


class MemoryExhaustion(ScrapingServiceError):
    """Raised when work is refused because the process is over its memory ceiling.

    Args:
        rss_mb: Resident set size observed when the request was refused.
        retry_after: Seconds the caller should wait before retrying.
    """

    def __init__(self, rss_mb: int, retry_after: int = 30) -> None:
        super().__init__(
            f"Service restarting due to high memory usage ({rss_mb}MB)"
        )
        self.rss_mb = rss_mb
        self.retry_after = retry_after


class CallbackDeliveryFailure(ScrapingServiceError):
    """Raised after every callback attempt has failed.

    Args:
        message: Description of the final failure.
        callback_url: Destination that could not be reached.
        attempts: Number of attempts made.
        last_status: HTTP status of the final attempt, or ``None`` on network error.
    """

    def __init__(
        self,
        message: str,
        callback_url: str | None = None,
        attempts: int = 0,
        last_status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.callback_url = callback_url
        self.attempts = attempts
        self.last_status = last_status
