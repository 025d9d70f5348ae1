"""Unit tests for scraped-content acceptance checks."""

from __future__ import annotations

import pytest

from discovery_pipeline.core.exceptions import PermanentContentError
from discovery_pipeline.scraper.quality import validate_content

_ARTICLE = (
    "Acme Robotics, a Boston startup building warehouse automation, said on Tuesday "
    "it has raised $40 million in a Series B round led by Example Ventures. "
) * 5


def _reason(text, title=None, url="https://news.example.com/2026/03/acme") -> str:
    with pytest.raises(PermanentContentError) as exc_info:
        validate_content(text, title, url)
    return exc_info.value.reason


class TestValidateContent:
    def test_real_article_passes_without_flags(self) -> None:
        flags = validate_content(
            _ARTICLE, "Acme Robotics raises $40M", "https://news.example.com/acme"
        )
        assert flags == {}

    def test_short_content_is_rejected(self) -> None:
        assert _reason("Only a teaser.") == "too_short"

    def test_none_content_is_rejected(self) -> None:
        assert _reason(None) == "too_short"

    @pytest.mark.parametrize(
        "url", ["https://example.com/feed.xml", "https://example.com/report.PDF?dl=1"]
    )
    def test_non_article_urls_are_rejected(self, url: str) -> None:
        assert _reason(_ARTICLE, url=url) == "non_article"

    @pytest.mark.parametrize("title", ["Latest News", "Press Releases", "Acme | Press Release"])
    def test_listing_titles_are_rejected(self, title: str) -> None:
        assert _reason(_ARTICLE, title=title) == "listing_page"

    def test_listing_body_is_rejected(self) -> None:
        body = "Home > News\n" + "".join(
            f"\n- [Story {i}](https://example.com/{i}) 3 Mar" for i in range(12)
        ) + "\nLoad more"
        assert _reason(body + _ARTICLE) == "listing_page"

    def test_paywall_needs_two_markers_and_is_flagged_not_rejected(self) -> None:
        one_marker = "Subscribe to continue reading. " + _ARTICLE
        assert validate_content(one_marker, None, "https://news.example.com/acme") == {}

        two_markers = (
            "Subscribe to continue reading. You have reached your free article limit. " + _ARTICLE
        )
        assert validate_content(two_markers, None, "https://news.example.com/acme") == {
            "paywall": True,
            "limited_content": True,
        }

    def test_cookie_wall_is_flagged(self) -> None:
        notice = (
            "We use cookies to improve your experience. Read our cookie policy and "
            "privacy policy, then choose Accept all cookies to continue to the story "
            "about Acme Robotics and its new warehouse robots in Boston this week."
        ) * 2
        assert validate_content(notice, None, "https://news.example.com/acme") == {
            "cookie_wall": True,
            "limited_content": True,
        }

    def test_long_article_mentioning_cookies_is_not_a_cookie_wall(self) -> None:
        text = "We use cookies. " + _ARTICLE * 3
        assert validate_content(text, None, "https://news.example.com/acme") == {}
