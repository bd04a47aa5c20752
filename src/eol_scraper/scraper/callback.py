"""Result delivery to the caller-supplied callback URL.

Each attempt re-validates the callback URL against the trusted origins,
then POSTs the JSON payload.  Non-2xx responses and transport errors are
retried with exponential backoff: the delay after attempt *n* (1-based) is
``base_delay * 2**n`` seconds (2 s, 4 s, ... for the default base), plus a
fixed extra delay while the service is restarting.  When every attempt has
failed, :class:`~eol_scraper.core.exceptions.CallbackDeliveryFailure` is
raised so the caller can react.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable

import httpx

from eol_scraper.core.exceptions import CallbackDeliveryFailure, ValidationError
from eol_scraper.core.schemas.scraping import CallbackPayload
from eol_scraper.scraper.models import ExtractionRequest, ExtractionResult
from eol_scraper.scraper.url_validator import is_valid_callback_url

if TYPE_CHECKING:
    from eol_scraper.config.settings import Settings

logger = logging.getLogger(__name__)


def build_payload(
    request: ExtractionRequest,
    content: str,
    *,
    title: str | None = None,
    snippet: str | None = None,
    url: str | None = None,
) -> dict[str, Any]:
    """Return the outbound callback body ``{jobId, urlIndex, content, title, snippet, url}``."""
    return CallbackPayload(
        job_id=request.job_id,
        url_index=request.url_index,
        content=content,
        title=title,
        snippet=snippet if snippet is not None else (request.snippet or ""),
        url=url or request.url,
    ).model_dump(by_alias=True)


def payload_from_result(request: ExtractionRequest, result: ExtractionResult) -> dict[str, Any]:
    return build_payload(
        request,
        result.text,
        title=result.title,
        snippet=result.snippet,
        url=result.url,
    )


class CallbackDispatcher:
    """POSTs results to callback URLs with bounded retries.

    Args:
        client: Shared :class:`httpx.AsyncClient`.
        allowed_origins: Trusted callback origins.
        max_retries: Total number of attempts.
        base_delay: Base of the exponential backoff, in seconds.
        restart_extra_delay: Added to every backoff while restarting.
        timeout: Per-attempt request timeout, in seconds.
        is_restarting: Returns ``True`` while the service is shutting down.
        sleep: Awaitable sleep, replaceable in tests.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        allowed_origins: Iterable[str],
        max_retries: int = 3,
        base_delay: float = 1.0,
        restart_extra_delay: float = 3.0,
        timeout: float = 30.0,
        is_restarting: Callable[[], bool] = lambda: False,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._allowed_origins = list(allowed_origins)
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.restart_extra_delay = restart_extra_delay
        self.timeout = timeout
        self._is_restarting = is_restarting
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        client: httpx.AsyncClient,
        settings: Settings,
        **overrides: Any,
    ) -> CallbackDispatcher:
        kwargs: dict[str, Any] = {
            "allowed_origins": settings.allowed_origin_list,
            "max_retries": settings.callback_max_retries,
            "base_delay": settings.callback_base_delay_seconds,
            "restart_extra_delay": settings.callback_restart_extra_delay_seconds,
            "timeout": settings.callback_timeout_seconds,
        }
        kwargs.update(overrides)
        return cls(client, **kwargs)

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        delay = self.base_delay * 2**attempt
        if self._is_restarting():
            delay += self.restart_extra_delay
        return delay

    async def send(self, callback_url: str | None, payload: dict[str, Any]) -> httpx.Response | None:
        """Deliver ``payload`` to ``callback_url``.

        Returns:
            The successful response, or ``None`` when no callback URL was given.

        Raises:
            ValidationError: If the callback URL is not a trusted origin.
            CallbackDeliveryFailure: If every attempt failed.
        """
        if not callback_url:
            return None

        last_status: int | None = None
        last_error = "no attempt made"
        for attempt in range(1, self.max_retries + 1):
            check = is_valid_callback_url(callback_url, self._allowed_origins)
            if not check.valid:
                logger.error(
                    "callback: SSRF protection blocked callback %s: %s",
                    callback_url,
                    check.reason,
                )
                raise ValidationError(f"Invalid callback URL: {check.reason}", field="callbackUrl")

            logger.info(
                "callback: sending (attempt %d/%d) to %s", attempt, self.max_retries, callback_url
            )
            try:
                response = await self._client.post(
                    callback_url, json=payload, timeout=self.timeout
                )
            except httpx.HTTPError as exc:
                last_status = None
                last_error = str(exc) or exc.__class__.__name__
                logger.error("callback: attempt %d failed: %s", attempt, last_error)
            else:
                if response.is_success:
                    logger.info("callback: delivered (HTTP %d)", response.status_code)
                    return response
                last_status = response.status_code
                last_error = f"HTTP {response.status_code}: {response.text[:200]}"
                logger.error(
                    "callback: returned HTTP %d on attempt %d/%d",
                    response.status_code,
                    attempt,
                    self.max_retries,
                )

            if attempt < self.max_retries:
                delay = self.backoff_delay(attempt)
                logger.info(
                    "callback: retrying in %.1fs%s",
                    delay,
                    " (restart pending)" if self._is_restarting() else "",
                )
                await self._sleep(delay)

        logger.error("callback: all %d attempts failed, callback lost", self.max_retries)
        raise CallbackDeliveryFailure(
            f"Callback failed after {self.max_retries} attempts: {last_error}",
            callback_url=callback_url,
            attempts=self.max_retries,
            last_status=last_status,
        )
