"""Constants and tuning parameters for the extraction pipeline."""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Fast fetch
# ---------------------------------------------------------------------------

#: Timeout (seconds) for a plain HTTP GET of an HTML or text page.
FAST_FETCH_TIMEOUT: float = 5.0

#: Timeout (seconds) for a PDF download.
PDF_FETCH_TIMEOUT: float = 20.0

#: User-agent sent by the fast fetcher.
FAST_FETCH_USER_AGENT: str = "Mozilla/5.0 (compatible; EOLChecker/1.0)"

#: File extensions served verbatim as plain text.
TEXT_FILE_EXTENSIONS: tuple[str, ...] = (".txt", ".log", ".md", ".csv")

# ---------------------------------------------------------------------------
# PDF
# ---------------------------------------------------------------------------

#: PDFs larger than this are refused before (or during) download.
MAX_PDF_BYTES: int = 20 * 1024 * 1024  # 20 MB

#: Only the first N pages of a PDF are parsed.
PDF_MAX_PAGES: int = 5

# ---------------------------------------------------------------------------
# Encoding detection
# ---------------------------------------------------------------------------

#: Minimum chardet confidence for an auto-detected encoding to be used.
ENCODING_CONFIDENCE_THRESHOLD: float = 0.7

#: Bytes inspected when looking for an HTML ``<meta>`` charset.
META_CHARSET_SCAN_BYTES: int = 2048

#: Alias normalisation applied to every detected encoding label.
ENCODING_ALIASES: dict[str, str] = {
    "shift-jis": "shift_jis",
    "sjis": "shift_jis",
    "x-sjis": "shift_jis",
    "eucjp": "euc-jp",
    "x-euc-jp": "euc-jp",
    "utf8": "utf-8",
}

# ---------------------------------------------------------------------------
# Content validation
# ---------------------------------------------------------------------------

#: Extracted text shorter than this is replaced by an explanatory placeholder.
MIN_CONTENT_LENGTH: int = 50

#: Phrases that mark a rendered or fetched page as an error page.
ERROR_PAGE_INDICATORS: tuple[str, ...] = (
    "500 Internal Server Error",
    "404 Not Found",
    "403 Forbidden",
    "Internal Server Error",
    "Page Not Found",
    "Access Denied",
    "PAGE NOT FOUND",
    "Error404",
    "ページが見つかりませんでした",
    "申し訳ございませんが、ご指定のページが見つかりませんでした",
)

# ---------------------------------------------------------------------------
# Browser engine
# ---------------------------------------------------------------------------

#: Startup timeout (seconds) for launching Chromium.
BROWSER_LAUNCH_TIMEOUT: float = 120.0

#: Default navigation timeout (seconds).
NAVIGATION_TIMEOUT: float = 45.0

#: In-page extraction timeout (seconds).  Shorter than navigation.
EXTRACTION_TIMEOUT: float = 10.0

#: Settle periods (seconds) after navigation.
SETTLE_NORMAL: float = 3.0
SETTLE_AFTER_TIMEOUT: float = 1.0
SETTLE_BOT_CHALLENGE: float = 20.0

#: Hosts that serve a JavaScript bot challenge.  Resource blocking is
#: disabled for them and the settle period is extended.
BOT_CHALLENGE_HOSTS: tuple[str, ...] = ("orientalmotor.co.jp",)

#: Desktop user agent and viewport used for every rendering session.
BROWSER_USER_AGENT: str = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)
VIEWPORT: dict[str, int] = {"width": 1280, "height": 720}

#: Chromium flags tuned for a 512 MB container.
BROWSER_ARGS: tuple[str, ...] = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
    "--disable-software-rasterizer",
    "--disable-background-networking",
    "--disable-default-apps",
    "--disable-sync",
    "--disable-extensions",
    "--disable-blink-features=AutomationControlled",
    "--disable-features=site-per-process,IsolateOrigins",
    "--js-flags=--max-old-space-size=256",
    "--disable-site-isolation-trials",
)

#: Analytics / advertising hosts aborted when tracking blocking is enabled.
TRACKING_DOMAINS: tuple[str, ...] = (
    "google-analytics.com",
    "googletagmanager.com",
    "doubleclick.net",
    "googleadservices.com",
    "googlesyndication.com",
    "facebook.net",
    "facebook.com/tr",
    "connect.facebook.net",
    "adsrvr.org",
    "adnxs.com",
    "taboola.com",
    "outbrain.com",
    "clarity.ms",
    "hotjar.com",
    "mouseflow.com",
    "im-apps.net",
    "nakanohito.jp",
    "yahoo.co.jp/rt",
    "creativecdn.com",
    "slim02.jp",
    "cameleer",
    "recommend-jp.misumi-ec.com",
)

#: Number of slowest pending requests listed in timeout diagnostics.
DIAGNOSTIC_TOP_N: int = 10
