"""Constants and tuning parameters for the scrape worker."""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Content size guards
# ---------------------------------------------------------------------------

#: Maximum extracted text size (bytes).  PostgreSQL's tsvector limit is ~1 MB;
#: keeping below 900 KB leaves headroom for encoding overhead.
MAX_CONTENT_BYTES: int = 900 * 1024  # 900 KB

#: Extracted text shorter than this (characters) is not a full article.
MIN_ARTICLE_CHARS: int = 300

#: Length of the leading text sample scanned for paywall and listing markers.
QUALITY_SAMPLE_CHARS: int = 2_000

#: Paywall phrases; a page matching at least this many is flagged ``paywall``.
PAYWALL_MIN_MATCHES: int = 2

#: Pages shorter than this can be flagged ``cookie_wall``.
COOKIE_WALL_MAX_CHARS: int = 2_000

#: Cookie-notice phrases per 500 characters above which a page is a cookie wall.
COOKIE_WALL_DENSITY: float = 0.8

#: Longest ``processing_error`` stored on a queue row.
MAX_ERROR_CHARS: int = 2_000

# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

#: Status codes treated as transient upstream failures in addition to 5xx.
TRANSIENT_STATUS_CODES: frozenset[int] = frozenset({408, 425, 429})

#: Content-Type prefixes that indicate binary/non-text resources that should
#: be skipped without attempting extraction.
BINARY_CONTENT_TYPES: frozenset[str] = frozenset(
    {
        "application/pdf",
        "application/zip",
        "application/octet-stream",
        "application/x-executable",
        "application/vnd.",
        "image/",
        "video/",
        "audio/",
        "font/",
    }
)

# ---------------------------------------------------------------------------
# Content cache
# ---------------------------------------------------------------------------

#: Redis key prefix for cached page content; a SHA-256 of the URL is appended.
CONTENT_CACHE_KEY_PREFIX: str = "scrape:content"
