"""Unit tests for the HTTP fetcher module.

Tests URL classification, the PDF size ceiling, HTTP error handling, text
files, redirect re-validation and successful fetches using mocked httpx
responses.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import pytest
import respx

from eol_scraper.scraper.http_fetcher import (
    ContentKind,
    classify_url,
    fetch_url,
)

_ARTICLE = (
    "<html><head><title>XY-100 Sensor</title></head><body>"
    + "<p>The XY-100 photoelectric sensor is available for order. </p>" * 5
    + "</body></html>"
)


# ---------------------------------------------------------------------------
# Unit tests for helper functions
# ---------------------------------------------------------------------------


class TestClassifyUrl:
    def test_pdf_extension(self) -> None:
        assert classify_url("https://example.com/docs/Manual.PDF") is ContentKind.PDF

    def test_pdf_path_segment(self) -> None:
        assert classify_url("https://example.com/pdf/12345") is ContentKind.PDF

    def test_pdf_query_hint(self) -> None:
        assert classify_url("https://example.com/download?type=pdf&id=9") is ContentKind.PDF

    def test_text_extensions(self) -> None:
        for ext in ("txt", "log", "md", "csv"):
            assert classify_url(f"https://example.com/notes.{ext}") is ContentKind.TEXT

    def test_html_default(self) -> None:
        assert classify_url("https://example.com/products/xy-100") is ContentKind.HTML


# ---------------------------------------------------------------------------
# Integration tests using respx (mock httpx)
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestFetchUrl:
    async def test_successful_html_fetch(self) -> None:
        with respx.mock(base_url="https://example.com") as mock:
            mock.get("/xy-100").mock(
                return_value=httpx.Response(
                    200,
                    text=_ARTICLE,
                    headers={"content-type": "text/html; charset=utf-8"},
                )
            )
            async with httpx.AsyncClient() as client:
                result = await fetch_url("https://example.com/xy-100", client=client)

        assert result.error is None
        assert result.kind is ContentKind.HTML
        assert result.status_code == 200
        assert result.title == "XY-100 Sensor"
        assert "photoelectric sensor" in (result.text or "")
        assert result.needs_browser is False

    async def test_html_404_returns_none(self) -> None:
        with respx.mock(base_url="https://example.com") as mock:
            mock.get("/404").mock(return_value=httpx.Response(404, text="Not Found"))
            async with httpx.AsyncClient() as client:
                result = await fetch_url("https://example.com/404", client=client)

        assert result.text is None
        assert result.status_code == 404
        assert "404" in (result.error or "")
        assert result.needs_browser is True

    async def test_html_error_page_returns_none(self) -> None:
        body = "<html><body><h1>Page Not Found</h1>" + "<p>Sorry. </p>" * 20 + "</body></html>"
        with respx.mock(base_url="https://example.com") as mock:
            mock.get("/moved").mock(
                return_value=httpx.Response(200, text=body, headers={"content-type": "text/html"})
            )
            async with httpx.AsyncClient() as client:
                result = await fetch_url("https://example.com/moved", client=client)

        assert result.text is None
        assert result.error == "error page"

    async def test_pdf_404_returns_placeholder(self) -> None:
        with respx.mock(base_url="https://example.com") as mock:
            mock.get("/datasheet.pdf").mock(return_value=httpx.Response(404))
            async with httpx.AsyncClient() as client:
                result = await fetch_url("https://example.com/datasheet.pdf", client=client)

        assert result.text == "[Could not fetch PDF: HTTP 404]"
        assert result.needs_browser is False

    async def test_oversized_pdf_rejected_before_download(self) -> None:
        size = 25 * 1024 * 1024
        with respx.mock(base_url="https://example.com") as mock:
            mock.get("/huge.pdf").mock(
                return_value=httpx.Response(
                    200,
                    content=b"%PDF-1.4",
                    headers={"content-type": "application/pdf", "content-length": str(size)},
                )
            )
            with patch("eol_scraper.scraper.http_fetcher.extract_pdf_text") as extract:
                async with httpx.AsyncClient() as client:
                    result = await fetch_url("https://example.com/huge.pdf", client=client)

        extract.assert_not_called()
        assert result.kind is ContentKind.PDF
        assert (result.text or "").startswith("[PDF file is too large (25.00 MB)")
        assert result.needs_browser is False

    async def test_pdf_without_length_stops_streaming_at_limit(self) -> None:
        with respx.mock(base_url="https://example.com") as mock:
            mock.get("/stream.pdf").mock(
                return_value=httpx.Response(
                    200,
                    headers={"content-type": "application/pdf"},
                    stream=httpx.ByteStream(b"%PDF-" + b"x" * 200),
                )
            )
            with patch("eol_scraper.scraper.http_fetcher.MAX_PDF_BYTES", 100):
                async with httpx.AsyncClient() as client:
                    result = await fetch_url("https://example.com/stream.pdf", client=client)

        assert (result.text or "").startswith("[PDF file is too large")

    async def test_pdf_content_extracted(self) -> None:
        with respx.mock(base_url="https://example.com") as mock:
            mock.get("/notice").mock(
                return_value=httpx.Response(
                    200, content=b"%PDF-1.4 data", headers={"content-type": "application/pdf"}
                )
            )
            with patch(
                "eol_scraper.scraper.http_fetcher.extract_pdf_text",
                return_value="End of life notice for XY-100",
            ) as extract:
                async with httpx.AsyncClient() as client:
                    result = await fetch_url("https://example.com/notice", client=client)

        extract.assert_called_once()
        assert result.kind is ContentKind.PDF
        assert result.text == "End of life notice for XY-100"

    async def test_text_file_returned_verbatim(self) -> None:
        body = "model,status\nXY-100,discontinued\n"
        with respx.mock(base_url="https://example.com") as mock:
            mock.get("/eol.csv").mock(
                return_value=httpx.Response(
                    200, text=body, headers={"content-type": "text/csv; charset=utf-8"}
                )
            )
            async with httpx.AsyncClient() as client:
                result = await fetch_url("https://example.com/eol.csv", client=client)

        assert result.kind is ContentKind.TEXT
        assert result.text == body

    async def test_failed_text_file_does_not_need_browser(self) -> None:
        with respx.mock(base_url="https://example.com") as mock:
            mock.get("/changes.txt").mock(return_value=httpx.Response(404))
            async with httpx.AsyncClient() as client:
                result = await fetch_url("https://example.com/changes.txt", client=client)

        assert result.text is None
        assert result.kind is ContentKind.TEXT
        assert result.needs_browser is False

    async def test_redirect_to_private_address_blocked(self) -> None:
        with respx.mock(base_url="https://example.com") as mock:
            mock.get("/go").mock(
                return_value=httpx.Response(
                    302, headers={"location": "http://169.254.169.254/latest/meta-data/"}
                )
            )
            async with httpx.AsyncClient() as client:
                result = await fetch_url("https://example.com/go", client=client)

        assert result.text is None
        assert (result.error or "").startswith("blocked")

    async def test_redirect_hop_resolved_before_request(self) -> None:
        resolver = AsyncMock(side_effect=[{"93.184.216.34"}, {"10.0.0.8"}])
        with respx.mock(assert_all_called=False) as mock:
            mock.get("https://example.com/go").mock(
                return_value=httpx.Response(
                    302, headers={"location": "https://intranet.example.net/"}
                )
            )
            internal = mock.get("https://intranet.example.net/")
            with patch("eol_scraper.scraper.url_validator._resolve", new=resolver):
                async with httpx.AsyncClient() as client:
                    result = await fetch_url(
                        "https://example.com/go", client=client, resolve=True
                    )

        assert resolver.await_count == 2
        assert internal.call_count == 0
        assert (result.error or "").startswith("blocked")

    async def test_public_redirect_followed(self) -> None:
        with respx.mock(base_url="https://example.com") as mock:
            mock.get("/old").mock(
                return_value=httpx.Response(301, headers={"location": "/new"})
            )
            mock.get("/new").mock(
                return_value=httpx.Response(200, text=_ARTICLE, headers={"content-type": "text/html"})
            )
            async with httpx.AsyncClient() as client:
                result = await fetch_url("https://example.com/old", client=client)

        assert result.final_url == "https://example.com/new"
        assert result.text is not None

    async def test_private_target_never_requested(self) -> None:
        async with httpx.AsyncClient() as client:
            result = await fetch_url("http://10.0.0.5/admin", client=client)
        assert result.text is None
        assert result.status_code is None

    async def test_timeout_returns_none_for_html(self) -> None:
        with respx.mock(base_url="https://example.com") as mock:
            mock.get("/slow").mock(side_effect=httpx.ConnectTimeout("timed out"))
            async with httpx.AsyncClient() as client:
                result = await fetch_url("https://example.com/slow", client=client)
        assert result.text is None
        assert result.needs_browser is True

    async def test_timeout_returns_placeholder_for_pdf(self) -> None:
        with respx.mock(base_url="https://example.com") as mock:
            mock.get("/slow.pdf").mock(side_effect=httpx.ReadTimeout("timed out"))
            async with httpx.AsyncClient() as client:
                result = await fetch_url("https://example.com/slow.pdf", client=client)
        assert result.text == "[PDF fetch failed: timeout]"
