"""Unit tests for the content extractor module.

Tests extraction on synthetic HTML fixtures and edge cases (empty body, NUL
bytes, oversized content, metadata dates).
"""

from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from discovery_pipeline.scraper.config import MAX_CONTENT_BYTES
from discovery_pipeline.scraper.content_extractor import (
    ExtractedContent,
    extract_from_html,
    parse_metadata_date,
)

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

_ARTICLE_HTML = """
<!DOCTYPE html>
<html lang="en">
<head><title>Acme Robotics raises $40M | Example News</title></head>
<body>
  <nav>Home | World | Business</nav>
  <article>
    <h1>Acme Robotics raises $40M</h1>
    <p>Acme Robotics, a Boston startup building warehouse automation, said on
    Tuesday it has raised $40 million in a Series B round led by Example
    Ventures.</p>
    <p>The company plans to use the money to expand its engineering team and
    open a second factory in Ohio next year.</p>
  </article>
  <script>var tracking = true;</script>
</body>
</html>
"""

_NUL_BYTES_HTML = "<html><body><p>Text with\x00NUL\x00bytes</p></body></html>"


class TestExtractFromHtml:
    def test_extracts_article_text(self) -> None:
        result = extract_from_html(_ARTICLE_HTML, "https://news.example.com/acme")
        assert isinstance(result, ExtractedContent)
        assert result.text is not None
        assert "Series B" in result.text

    def test_empty_html_returns_none_text(self) -> None:
        result = extract_from_html("", "https://example.com")
        assert result.text is None

    def test_nul_bytes_stripped(self) -> None:
        result = extract_from_html(_NUL_BYTES_HTML, "https://example.com/nul")
        assert result.text is not None
        assert "\x00" not in result.text

    def test_oversized_content_truncated(self) -> None:
        large_html = f"<html><body><article>{'A' * (MAX_CONTENT_BYTES + 10_000)}</article></body></html>"
        result = extract_from_html(large_html, "https://example.com/large")
        assert result.text is not None
        assert len(result.text.encode("utf-8")) <= MAX_CONTENT_BYTES

    def test_script_tags_not_in_fallback_output(self) -> None:
        html = "<html><body><script>alert('x')</script><p>Hello there</p></body></html>"
        with patch("trafilatura.extract", return_value=None), patch(
            "trafilatura.extract_metadata", return_value=None
        ):
            result = extract_from_html(html, "https://example.com")
        assert result.text == "Hello there"

    def test_metadata_is_mapped(self) -> None:
        meta = SimpleNamespace(title="Acme raises", language="en", date="2026-03-09")
        with patch("trafilatura.extract", return_value="extracted text") as mock_extract, patch(
            "trafilatura.extract_metadata", return_value=meta
        ):
            result = extract_from_html(_ARTICLE_HTML, "https://news.example.com/acme")

        assert result.text == "extracted text"
        assert result.title == "Acme raises"
        assert result.language == "en"
        assert result.published_at == datetime(2026, 3, 9, tzinfo=timezone.utc)
        assert mock_extract.call_args[1]["url"] == "https://news.example.com/acme"

    def test_trafilatura_crash_falls_back_to_tag_stripping(self) -> None:
        with patch("trafilatura.extract", side_effect=RuntimeError("lxml exploded")):
            result = extract_from_html("<p>Plain words</p>", "https://example.com")
        assert result.text == "Plain words"


class TestParseMetadataDate:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("2026-03-09", datetime(2026, 3, 9, tzinfo=timezone.utc)),
            ("2026-03-09T10:00:00Z", datetime(2026, 3, 9, 10, tzinfo=timezone.utc)),
            ("2026-03-09T12:00:00+02:00", datetime(2026, 3, 9, 10, tzinfo=timezone.utc)),
            (None, None),
            ("last tuesday", None),
        ],
    )
    def test_parse(self, value, expected) -> None:
        assert parse_metadata_date(value) == expected
