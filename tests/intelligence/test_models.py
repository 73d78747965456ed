"""Tests for the pipeline data models and payload schemas."""

from datetime import date, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from src.intelligence.base import (
    ContextChange,
    CrawlSummary,
    CrawlType,
    Guideline,
    KnowledgeSource,
    KnowledgeType,
    SearchResult,
    SourceType,
    UniversalKnowledge,
    parse_timestamp,
)
from src.intelligence.schemas import ExtractionPayload


class TestParseTimestamp:
    """Tests for parse_timestamp."""

    def test_iso_with_z(self):
        assert parse_timestamp("2025-01-15T10:00:00Z") == datetime(2025, 1, 15, 10, tzinfo=timezone.utc)

    def test_offset_without_colon(self):
        assert parse_timestamp("2025-01-15T10:00:00+0000") == datetime(2025, 1, 15, 10, tzinfo=timezone.utc)

    def test_naive_becomes_utc(self):
        assert parse_timestamp(datetime(2025, 1, 15)).tzinfo == timezone.utc

    @pytest.mark.parametrize("value", [None, "", "not a date"])
    def test_unparseable(self, value):
        assert parse_timestamp(value) is None


class TestKnowledgeSource:
    """Tests for KnowledgeSource.from_row."""

    def test_feed_row(self):
        source = KnowledgeSource.from_row({
            "source_id": "later_blog",
            "source_type": "web_rss",
            "name": "Later Blog",
            "feed_url": "https://later.com/blog/feed/",
            "default_category": "instagram",
            "is_enabled": True,
            "last_crawled_at": None,
        })

        assert source.source_type == SourceType.FEED
        assert source.feed_url == "https://later.com/blog/feed/"
        assert source.last_crawled_at is None
        assert source.display_name == "Later Blog"

    def test_defaults(self):
        source = KnowledgeSource.from_row({"source_id": "manual_notes", "source_type": "manual"})

        assert source.source_type == SourceType.MANUAL
        assert source.default_category == "marketing"
        assert source.enabled is True
        assert source.display_name == "manual_notes"

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            KnowledgeSource.from_row({"source_id": "x", "source_type": "fax"})


class TestUniversalKnowledge:
    """Tests for UniversalKnowledge.to_row."""

    def knowledge(self, knowledge_type: KnowledgeType) -> UniversalKnowledge:
        return UniversalKnowledge(
            knowledge_id="LATER-BLOG-202501-reels",
            knowledge_type=knowledge_type,
            category="instagram",
            title="Reels",
            valid_from=datetime(2025, 1, 15, 9, 30, tzinfo=timezone.utc),
            concept="Short video wins reach.",
            guidelines=[Guideline(if_="a", then="b", reason="c")],
            context=[ContextChange(before_period="2020", old_practice="photos", new_practice="reels")],
            source_urls=["https://later.com/blog/reels"],
            metadata={"author": "Jane"},
        )

    def test_trend_row(self):
        row = self.knowledge(KnowledgeType.TREND).to_row("markdown", [])

        assert row["knowledge_type"] == "trend"
        assert row["valid_from"] == "2025-01-15"
        assert row["embedding"] is None
        assert row["metadata"] == {"author": "Jane"}
        assert row["is_active"] is True

    def test_core_row_flagged(self):
        knowledge = self.knowledge(KnowledgeType.CORE)
        row = knowledge.to_row("markdown", [0.1])

        assert row["metadata"]["neverOverride"] is True
        assert "neverOverride" not in knowledge.metadata

    def test_payload_dicts(self):
        assert Guideline(if_="a", then="b", reason="c").to_dict() == {"if": "a", "then": "b", "reason": "c"}
        assert ContextChange("2020", "photos", "reels").to_dict() == {
            "beforePeriod": "2020",
            "oldPractice": "photos",
            "newPractice": "reels",
        }


class TestSearchResult:
    """Tests for SearchResult.from_row."""

    def test_from_rpc_row(self):
        result = SearchResult.from_row({
            "knowledge_id": "CORE-1",
            "knowledge_type": "core",
            "valid_from": "2024-01-01T00:00:00+00:00",
            "similarity": "0.75",
        })

        assert result.knowledge_type == KnowledgeType.CORE
        assert result.valid_from == date(2024, 1, 1)
        assert result.similarity == 0.75
        assert result.priority_score == 0.0
        assert result.title == ""


class TestCrawlSummary:
    """Tests for CrawlSummary."""

    def test_duration_and_dict(self):
        started = datetime(2025, 1, 15, 9, tzinfo=timezone.utc)
        summary = CrawlSummary(
            batch_id="b1",
            crawl_type=CrawlType.REGULAR,
            started_at=started,
            completed_at=started + timedelta(seconds=42),
            sources_processed=2,
            errors=["x: boom"],
        )

        assert summary.duration_seconds == 42
        data = summary.to_dict()
        assert data["crawl_type"] == "regular"
        assert data["completed_at"] == "2025-01-15T09:00:42+00:00"
        assert data["errors"] == ["x: boom"]

    def test_unfinished(self):
        summary = CrawlSummary(batch_id="b1", crawl_type=CrawlType.MANUAL)

        assert summary.to_dict()["completed_at"] is None
        assert summary.duration_seconds >= 0


class TestExtractionPayload:
    """Tests for the distillation payload schema."""

    def payload(self, **overrides) -> dict:
        data = {
            "title": " Reels reach ",
            "concept": "Short video wins reach.",
            "guidelines": [{"if": "a", "then": "b", "reason": "c"}],
            "toneAndPhrasing": ["Keep it short"],
            "context": [{"beforePeriod": "2020", "oldPractice": "photos", "newPractice": "reels"}],
            "suggestedCategory": "instagram",
            "suggestedKeyword": "reels-reach",
        }
        data.update(overrides)
        return data

    def test_aliases(self):
        payload = ExtractionPayload.model_validate(self.payload())

        assert payload.title == "Reels reach"
        assert payload.guidelines[0].if_ == "a"
        assert payload.context[0].new_practice == "reels"
        assert payload.tone_and_phrasing == ["Keep it short"]
        assert payload.suggested_keyword == "reels-reach"

    def test_blank_concept_rejected(self):
        with pytest.raises(ValidationError):
            ExtractionPayload.model_validate(self.payload(concept="   "))

    def test_missing_guideline_field_rejected(self):
        with pytest.raises(ValidationError):
            ExtractionPayload.model_validate(self.payload(guidelines=[{"if": "a", "then": "b"}]))
