"""Unit tests for the rule-based metadata extractor.

extract() is pure, so these tests build plain dicts and pass a fixed ``now``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from discovery_pipeline.enrichment.metadata_extractor import extract

_NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)

_FUNDING_ITEM = {
    "title": "Acme Robotics raises $40M Series B led by Example Ventures",
    "description": "The warehouse robot maker closed a new round.",
    "full_content": (
        "Acme Robotics said on Tuesday it raised $40 million in a Series B funding round "
        "led by Example Ventures. Jane Doe, chief executive of Acme Robotics, said the "
        "startup will build a new factory. The software platform uses machine learning "
        "to plan pallet moves."
    ),
    "published_at": _NOW - timedelta(hours=1),
    "raw_metadata": {"method": "feed", "industries": ["robotics"]},
}


class TestFundingExample:
    def test_full_result(self) -> None:
        result = extract(_FUNDING_ITEM, now=_NOW)

        assert result["type"] == "funding"
        assert result["confidence"] == "high"
        assert result["entities"][:3] == ["Acme Robotics", "Example Ventures", "Jane Doe"]
        assert "artificial_intelligence" in result["topics"]
        assert {"technology", "manufacturing"} <= set(result["industries"])
        assert result["industries"][-1] == "robotics"
        assert result["temporal"] == {"age_hours": 1.0, "is_breaking": True, "within_24h": True}


class TestConfidence:
    @pytest.mark.parametrize(
        "item,expected",
        [
            ({"full_content": "Body", "description": "Desc", "title": "Title"}, "high"),
            ({"full_content": "   ", "description": "Desc", "title": "Title"}, "medium"),
            ({"description": None, "title": "Title"}, "low"),
            ({}, "none"),
        ],
    )
    def test_richest_field_sets_confidence(self, item: dict, expected: str) -> None:
        assert extract(item, now=_NOW)["confidence"] == expected

    def test_empty_item_has_empty_result(self) -> None:
        result = extract({}, now=_NOW)
        assert result["entities"] == []
        assert result["type"] == "general"
        assert result["topics"] == []
        assert result["industries"] == []


class TestClassification:
    @pytest.mark.parametrize(
        "title,expected",
        [
            ("Globex acquires Initech in $2B takeover", "acquisition"),
            ("Umbrella Corp unveils new product line and launches app", "product_launch"),
            ("Regulator opens antitrust investigation into Hooli", "regulatory"),
            ("Weather is mild this weekend", "general"),
        ],
    )
    def test_type_from_title(self, title: str, expected: str) -> None:
        assert extract({"title": title}, now=_NOW)["type"] == expected


class TestTemporal:
    def test_naive_iso_string_is_treated_as_utc(self) -> None:
        result = extract({"title": "x", "published_at": "2026-03-10T06:00:00"}, now=_NOW)
        assert result["temporal"] == {"age_hours": 6.0, "is_breaking": False, "within_24h": True}

    def test_z_suffix_is_accepted(self) -> None:
        result = extract({"title": "x", "published_at": "2026-03-08T12:00:00Z"}, now=_NOW)
        assert result["temporal"]["age_hours"] == 48.0
        assert result["temporal"]["within_24h"] is False

    def test_missing_or_unparseable_date(self) -> None:
        for value in (None, "sometime last week", 12345):
            temporal = extract({"title": "x", "published_at": value}, now=_NOW)["temporal"]
            assert temporal == {"age_hours": None, "is_breaking": False, "within_24h": False}

    def test_future_date_clamps_to_zero(self) -> None:
        result = extract({"title": "x", "published_at": _NOW + timedelta(hours=3)}, now=_NOW)
        assert result["temporal"]["age_hours"] == 0.0
        assert result["temporal"]["is_breaking"] is True
