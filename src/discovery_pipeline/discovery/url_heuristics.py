"""URL heuristics shared by the discovery methods.

Pure functions, no I/O:

- :func:`canonicalize_url` -- the dedup key stored in ``queue_entries.url``.
- :func:`is_article_url` -- filters site listings down to article pages.
- :func:`date_from_url` -- infers a publication date from the URL path when a
  listing carries no explicit date.
- :func:`title_from_url` -- derives a readable title from the URL slug.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

# ---------------------------------------------------------------------------
# Canonicalisation
# ---------------------------------------------------------------------------

_STRIP_PARAMS: frozenset[str] = frozenset(
    {
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_content",
        "utm_term",
        "fbclid",
        "gclid",
        "mc_cid",
        "mc_eid",
        "_ga",
    }
)


def canonicalize_url(url: str) -> str:
    """Return the canonical form of *url* used as the queue dedup key.

    Lower-cases the scheme and host, drops the fragment and tracking query
    parameters, and sorts the remaining parameters.  The path keeps its case
    because many sites route case-sensitively.  Strings without a host are
    returned stripped but otherwise unchanged.
    """
    stripped = url.strip()
    parsed = urlparse(stripped)
    if not parsed.netloc:
        return stripped

    pairs = [
        (k, v)
        for k, v in parse_qsl(parsed.query, keep_blank_values=True)
        if k.lower() not in _STRIP_PARAMS
    ]
    pairs.sort()
    return urlunparse(
        (
            parsed.scheme.lower(),
            parsed.netloc.lower(),
            parsed.path or "/",
            parsed.params,
            urlencode(pairs),
            "",
        )
    )


def origin_of(url: str) -> str:
    """Return ``scheme://host`` for *url*."""
    parsed = urlparse(url)
    return f"{parsed.scheme or 'https'}://{parsed.netloc}"


# ---------------------------------------------------------------------------
# Article detection
# ---------------------------------------------------------------------------

#: Path fragments that mark non-article pages.
_EXCLUDE_PATTERNS: tuple[str, ...] = (
    "/category/",
    "/categories/",
    "/tag/",
    "/tags/",
    "/topic/",
    "/author/",
    "/authors/",
    "/page/",
    "/search",
    "/puzzle",
    "/crossword",
    "/games/",
    "/video/",
    "/videos/",
    "/podcasts/",
    "/audio/",
    "/newsletter",
    "/subscription",
    "/subscribe",
    "/login",
    "/signin",
    "/register",
    "/about/",
    "/contact/",
    "/advertise/",
    "/terms",
    "/privacy",
    "/help/",
    "/faq/",
    "/sitemap",
    "/rss",
    "/feed",
)

_EXCLUDE_EXTENSIONS: tuple[str, ...] = (".pdf", ".xml", ".jpg", ".jpeg", ".png", ".gif", ".mp4", ".zip")

_ARTICLE_PATH_MARKERS: tuple[str, ...] = ("/article", "/story/", "/stories/", "/post/")

_YEAR_MONTH_PATH_RE = re.compile(r"/(20\d{2})/(\d{1,2})(?:/(\d{1,2}))?(?:/|$)")
_ISO_DATE_RE = re.compile(r"(?<!\d)(20\d{2})-(\d{2})-(\d{2})(?!\d)")
_SLUG_WORD_RE = re.compile(r"[a-z0-9]+")


def _last_segment(path: str) -> str:
    segments = [s for s in path.split("/") if s]
    return segments[-1] if segments else ""


def is_article_url(url: str) -> bool:
    """Return ``True`` if *url* looks like an individual article page.

    Rejects navigation, media, account and listing paths and binary file
    extensions, then accepts URLs that carry an article path marker, a
    ``/YYYY/MM/`` or ``YYYY-MM-DD`` date, or a descriptive slug of four or
    more hyphen-separated words.
    """
    parsed = urlparse(url)
    path = parsed.path.lower()
    if not parsed.netloc or path in ("", "/"):
        return False

    if any(pattern in path for pattern in _EXCLUDE_PATTERNS):
        return False
    if path.endswith(_EXCLUDE_EXTENSIONS):
        return False

    if any(marker in path for marker in _ARTICLE_PATH_MARKERS):
        return True
    if _YEAR_MONTH_PATH_RE.search(path) or _ISO_DATE_RE.search(path):
        return True

    slug = _last_segment(path)
    return slug.count("-") >= 3 and len(_SLUG_WORD_RE.findall(slug)) >= 4


# ---------------------------------------------------------------------------
# Date inference
# ---------------------------------------------------------------------------


def _safe_date(year: int, month: int, day: int) -> datetime | None:
    if not 2000 <= year <= 2030:
        return None
    try:
        return datetime(year, month, day, tzinfo=timezone.utc)
    except ValueError:
        return None


def date_from_url(url: str) -> datetime | None:
    """Infer a publication date from *url*'s path.

    Recognises ``/YYYY/MM/DD/``, ``/YYYY/MM/`` (first of the month) and
    ``YYYY-MM-DD`` anywhere in the path.  Years outside 2000–2030 and invalid
    calendar dates are ignored.

    Returns:
        A timezone-aware UTC midnight datetime, or ``None``.
    """
    path = urlparse(url).path

    match = _YEAR_MONTH_PATH_RE.search(path)
    if match:
        year, month, day = match.group(1), match.group(2), match.group(3)
        found = _safe_date(int(year), int(month), int(day) if day else 1)
        if found is not None:
            return found

    match = _ISO_DATE_RE.search(path)
    if match:
        return _safe_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))

    return None


def title_from_url(url: str) -> str | None:
    """Derive a human-readable title from the last path segment.

    ``/2025/03/acme-raises-series-b-funding.html`` becomes
    ``"Acme Raises Series B Funding"``.  Trailing hex ids and dates are
    dropped.  Returns ``None`` when the slug holds no words.
    """
    slug = _last_segment(urlparse(url).path)
    slug = re.sub(r"\.[a-z0-9]{2,5}$", "", slug, flags=re.IGNORECASE)
    slug = _ISO_DATE_RE.sub("", slug)
    words = [w for w in re.split(r"[-_]+", slug) if w]
    if words and re.fullmatch(r"[0-9a-f]{6,}", words[-1], flags=re.IGNORECASE):
        words = words[:-1]
    words = [w for w in words if not w.isdigit()]
    if not words:
        return None
    return " ".join(w.capitalize() for w in words)
