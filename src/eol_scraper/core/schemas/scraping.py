"""Pydantic request/response schemas for the scraping endpoints.

Field names are snake_case in Python and camelCase on the wire
(``callbackUrl``, ``jobId``, ``urlIndex``); both spellings are accepted on
input.  Missing required fields are rejected by FastAPI with HTTP 422;
URL *safety* is checked separately by the route handlers (HTTP 400).
"""

from __future__ import annotations

from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

JobId = Union[str, int]


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ScrapeRequest(_CamelModel):
    """Payload for ``POST /scrape``.

    Attributes:
        url: Page, PDF or text file to extract.
        callback_url: Where the result is POSTed.
        job_id: Caller's job identifier, echoed in the callback.
        url_index: Caller's per-URL index, echoed in the callback.
        title: Optional display title from the search step.
        snippet: Optional display snippet from the search step.
    """

    url: str = Field(min_length=1)
    callback_url: str = Field(alias="callbackUrl", min_length=1)
    job_id: JobId = Field(alias="jobId")
    url_index: int = Field(alias="urlIndex")
    title: Optional[str] = None
    snippet: Optional[str] = None


class BatchScrapeRequest(_CamelModel):
    """Payload for ``POST /scrape-batch``."""

    urls: List[str]


class KeyenceScrapeRequest(_CamelModel):
    """Payload for ``POST /scrape-keyence``.  The callback is optional."""

    model: str = Field(min_length=1)
    callback_url: Optional[str] = Field(default=None, alias="callbackUrl")
    job_id: Optional[JobId] = Field(default=None, alias="jobId")
    url_index: Optional[int] = Field(default=None, alias="urlIndex")


class OmronDualScrapeRequest(_CamelModel):
    """Payload for ``POST /scrape-omron-dual``."""

    primary_url: str = Field(alias="primaryUrl", min_length=1)
    fallback_url: str = Field(alias="fallbackUrl", min_length=1)
    jp_proxy_url: str = Field(alias="jpProxyUrl", min_length=1)
    callback_url: str = Field(alias="callbackUrl", min_length=1)
    job_id: JobId = Field(alias="jobId")
    url_index: int = Field(alias="urlIndex")
    title: Optional[str] = None
    snippet: Optional[str] = None


class IdecDualScrapeRequest(_CamelModel):
    """Payload for ``POST /scrape-idec-dual``."""

    model: str = Field(min_length=1)
    jp_url: str = Field(alias="jpUrl", min_length=1)
    us_url: str = Field(alias="usUrl", min_length=1)
    jp_proxy_url: str = Field(alias="jpProxyUrl", min_length=1)
    us_proxy_url: str = Field(alias="usProxyUrl", min_length=1)
    callback_url: str = Field(alias="callbackUrl", min_length=1)
    job_id: JobId = Field(alias="jobId")
    url_index: int = Field(alias="urlIndex")


class CallbackPayload(_CamelModel):
    """Outbound callback body, as received by the job store."""

    job_id: Optional[JobId] = Field(default=None, alias="jobId")
    url_index: Optional[int] = Field(default=None, alias="urlIndex")
    content: str
    title: Optional[str] = None
    snippet: Optional[str] = ""
    url: str


class AcceptedResponse(BaseModel):
    """HTTP 202 envelope for work that completes via callback."""

    success: bool = True
    status: str = "processing"
    message: str
