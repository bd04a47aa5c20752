"""Content-extraction service for end-of-life part checks.

Pulls readable text out of manufacturer pages under a hard memory ceiling,
with at most one headless browser alive at a time, and reports results to a
caller-supplied callback URL.

Sub-modules:
- ``config``            : constants and tuning parameters
- ``models``            : request/result/memory-sample dataclasses
- ``url_validator``     : SSRF checks for target, callback and proxy URLs
- ``encoding``          : header/meta/chardet charset cascade
- ``content_extractor`` : HTML-to-text pipeline, error-page classifier, placeholders
- ``pdf_extractor``     : pypdf with pdfplumber fallback
- ``http_fetcher``      : render-free fast path (HTML, PDF, plain text)
- ``playwright_fetcher``: headless Chromium engine with resource blocking
- ``site_strategies``   : per-manufacturer strategies and their registry
- ``scheduler``         : single-flight queue for browser work
- ``memory``            : psutil-based memory governor and self-restart
- ``callback``          : callback delivery with exponential backoff
- ``service``           : ``ScrapingService`` tying the above together
"""
