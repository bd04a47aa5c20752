"""Pydantic schemas for request/response validation.

Sub-modules:
    scraping: ScrapeRequest, BatchScrapeRequest, site-variant requests,
               CallbackPayload, AcceptedResponse
"""

from __future__ import annotations
