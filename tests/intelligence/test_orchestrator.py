"""Tests for the crawler orchestrator."""

import json
import re
from datetime import date, datetime, timedelta, timezone
from email.utils import format_datetime

import httpx
import pytest
from unittest.mock import patch, AsyncMock, MagicMock

from src.intelligence.base import (
    CrawlStatus,
    CrawlType,
    KnowledgeSource,
    SourceType,
    utcnow,
)
from src.intelligence.config import (
    CrawlerConfig,
    DistillerConfig,
    EmbeddingConfig,
    OrchestratorConfig,
    SocialCredentials,
)
from src.intelligence.crawlers import RetryingFetcher
from src.intelligence.distiller import KnowledgeDistiller, slugify
from src.intelligence.embedding import EmbeddingClient
from src.intelligence.errors import StorageError
from src.intelligence.orchestrator import (
    CrawlerOrchestrator,
    build_highlights,
    importance_for,
    next_month,
    parse_year_month,
)
from src.intelligence.testing import InMemoryKnowledgeStore


FEED_URL = "https://blog.example.com/feed.xml"
DOWN_URL = "https://down.example.com/feed.xml"


def rss(items: list[tuple[str, str, datetime]]) -> str:
    body = "".join(
        f"<item><title>{title}</title><link>{link}</link>"
        f"<pubDate>{format_datetime(published)}</pubDate>"
        f"<description>About {title}</description></item>"
        for title, link, published in items
    )
    return f'<?xml version="1.0"?><rss version="2.0"><channel><title>t</title>{body}</channel></rss>'


def feed_source(source_id: str = "later_blog", feed_url: str = FEED_URL, **overrides) -> KnowledgeSource:
    values = dict(
        source_id=source_id,
        source_type=SourceType.FEED,
        default_category="instagram",
        feed_url=feed_url,
    )
    values.update(overrides)
    return KnowledgeSource(**values)


async def fake_complete(prompt: str) -> str:
    """Answer with a valid payload keyed on the article title in the prompt."""
    title = re.search(r"^Title: (.+)$", prompt, re.MULTILINE).group(1)
    return json.dumps({
        "title": title,
        "concept": f"What {title} means",
        "guidelines": [{"if": "a", "then": "b", "reason": "c"}],
        "toneAndPhrasing": [],
        "context": [],
        "suggestedCategory": "instagram",
        "suggestedKeyword": slugify(title),
    })


class Harness:
    """Wires an orchestrator to an in-memory store and a mock HTTP transport."""

    def __init__(self, sources, routes, embedder=None, config=None, complete=fake_complete):
        self.store = InMemoryKnowledgeStore(sources=sources)
        self.requests = []

        def handler(request):
            url = str(request.url)
            self.requests.append(url)
            if url in routes:
                route = routes[url]
                return httpx.Response(route.status_code, headers=route.headers, content=route.content)
            return httpx.Response(500)

        crawler_config = CrawlerConfig(retry_delay=0.0)
        fetcher = RetryingFetcher(
            crawler_config,
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        llm = MagicMock()
        llm.complete = AsyncMock(side_effect=complete)
        self.llm = llm

        if embedder is None:
            embedder = MagicMock()
            embedder.embed = AsyncMock(return_value=[0.5, 0.5])

        self.orchestrator = CrawlerOrchestrator(
            store=self.store,
            distiller=KnowledgeDistiller(llm, DistillerConfig(window_pause=0.0)),
            embedder=embedder,
            config=config or OrchestratorConfig(source_pause=0.0),
            crawler_config=crawler_config,
            fetcher=fetcher,
        )


def recent_items(count: int = 2) -> list[tuple[str, str, datetime]]:
    now = utcnow()
    return [
        (f"Reels Tip {i}", f"https://blog.example.com/blog/reels-tip-{i}", now - timedelta(days=i + 1))
        for i in range(count)
    ]


class TestRunFullCrawl:
    """Tests for run_full_crawl."""

    @pytest.mark.asyncio
    async def test_happy_path(self):
        harness = Harness(
            [feed_source()],
            {FEED_URL: httpx.Response(200, text=rss(recent_items(2)))},
        )

        summary = await harness.orchestrator.run_full_crawl(CrawlType.MANUAL)

        assert summary.crawl_type == CrawlType.MANUAL
        assert summary.sources_processed == 1
        assert summary.sources_succeeded == 1
        assert summary.articles_found == 2
        assert summary.articles_distilled == 2
        assert summary.knowledge_added == 2
        assert summary.errors == []
        assert summary.completed_at is not None
        assert summary.duration_seconds >= 0

        stored = harness.store.knowledge
        assert len(stored) == 2
        for knowledge_id, row in stored.items():
            assert knowledge_id.startswith("LATER-BLOG-")
            assert row["embedding"] == [0.5, 0.5]
            assert row["content"].startswith(f"# ID: {knowledge_id}")

        log = harness.store.crawl_logs[0]
        assert log.status == CrawlStatus.SUCCESS
        assert log.articles_fetched == 2
        assert log.crawl_type == CrawlType.MANUAL
        assert log.batch_id == summary.batch_id
        assert log.completed_at is not None

        assert harness.store.sources["later_blog"].last_crawled_at == summary.started_at

    @pytest.mark.asyncio
    async def test_second_run_finds_nothing_new(self):
        harness = Harness(
            [feed_source()],
            {FEED_URL: httpx.Response(200, text=rss(recent_items(3)))},
        )

        first = await harness.orchestrator.run_full_crawl()
        second = await harness.orchestrator.run_full_crawl()

        assert first.articles_found == 3
        assert first.knowledge_added == 3
        assert second.articles_found == 0
        assert second.articles_distilled == 0
        assert second.knowledge_added == 0
        assert harness.llm.complete.await_count == 3

    @pytest.mark.asyncio
    async def test_runs_without_embedding_credentials(self):
        with patch.dict("os.environ", {"GOOGLE_API_KEY": ""}):
            embedder = EmbeddingClient(EmbeddingConfig())
            harness = Harness(
                [feed_source()],
                {FEED_URL: httpx.Response(200, text=rss(recent_items(2)))},
                embedder=embedder,
            )

            summary = await harness.orchestrator.run_full_crawl()

        assert summary.knowledge_added == 2
        assert all(row["embedding"] is None for row in harness.store.knowledge.values())

    @pytest.mark.asyncio
    async def test_failing_source_does_not_block_others(self):
        harness = Harness(
            [feed_source("down_blog", DOWN_URL), feed_source()],
            {FEED_URL: httpx.Response(200, text=rss(recent_items(1)))},
        )

        summary = await harness.orchestrator.run_full_crawl()

        assert summary.sources_processed == 2
        assert summary.sources_failed == 1
        assert summary.sources_succeeded == 1
        assert summary.knowledge_added == 1
        assert len(summary.errors) == 1
        assert summary.errors[0].startswith("down_blog:")
        # exactly the configured attempts against the failing origin
        assert harness.requests.count(DOWN_URL) == 3

        statuses = {log.source_id: log.status for log in harness.store.crawl_logs}
        assert statuses == {"down_blog": CrawlStatus.FAILED, "later_blog": CrawlStatus.SUCCESS}

        assert harness.store.sources["down_blog"].last_crawled_at is None
        assert harness.store.sources["later_blog"].last_crawled_at is not None

    @pytest.mark.asyncio
    async def test_watermark_advances_on_failure_when_configured(self):
        harness = Harness(
            [feed_source("down_blog", DOWN_URL)],
            {},
            config=OrchestratorConfig(source_pause=0.0, advance_watermark_on_failure=True),
        )

        await harness.orchestrator.run_full_crawl()

        assert harness.store.sources["down_blog"].last_crawled_at is not None

    @pytest.mark.asyncio
    async def test_manual_source_counted_as_failed(self):
        harness = Harness([feed_source("handbook", None, source_type=SourceType.MANUAL)], {})

        summary = await harness.orchestrator.run_full_crawl()

        assert summary.sources_failed == 1
        assert "Unsupported source type: manual" in summary.errors[0]
        assert harness.requests == []

    @pytest.mark.asyncio
    async def test_disabled_sources_skipped(self):
        harness = Harness(
            [feed_source(enabled=False)],
            {FEED_URL: httpx.Response(200, text=rss(recent_items(1)))},
        )

        summary = await harness.orchestrator.run_full_crawl()

        assert summary.sources_processed == 0
        assert harness.requests == []

    @pytest.mark.asyncio
    async def test_distillation_failures_recorded(self):
        async def sometimes_prose(prompt):
            if "Reels Tip 0" in prompt:
                return "Sorry, no JSON today."
            return await fake_complete(prompt)

        harness = Harness(
            [feed_source()],
            {FEED_URL: httpx.Response(200, text=rss(recent_items(2)))},
            complete=sometimes_prose,
        )

        summary = await harness.orchestrator.run_full_crawl()

        assert summary.articles_found == 2
        assert summary.articles_distilled == 1
        assert summary.knowledge_added == 1
        assert any("No JSON found in response" in e for e in summary.errors)

    @pytest.mark.asyncio
    async def test_storage_failure_recorded(self):
        harness = Harness(
            [feed_source()],
            {FEED_URL: httpx.Response(200, text=rss(recent_items(1)))},
        )
        harness.store.write_knowledge = AsyncMock(side_effect=StorageError("disk full"))

        summary = await harness.orchestrator.run_full_crawl()

        assert summary.articles_distilled == 1
        assert summary.knowledge_added == 0
        assert "disk full" in summary.errors

    @pytest.mark.asyncio
    async def test_source_load_failure(self):
        harness = Harness([], {})
        harness.store.get_enabled_sources = AsyncMock(side_effect=StorageError("registry offline"))

        summary = await harness.orchestrator.run_full_crawl()

        assert summary.errors == ["registry offline"]
        assert summary.sources_processed == 0
        assert summary.completed_at is not None

    @pytest.mark.asyncio
    async def test_social_source_without_credentials_is_skipped_not_failed(self):
        source = KnowledgeSource(
            source_id="instagram_meta",
            source_type=SourceType.SOCIAL_DISCOVERY,
            default_category="instagram",
            account_handle="creators",
        )
        harness = Harness([source], {})
        harness.orchestrator.social_credentials = SocialCredentials(access_token="", business_account_id="")

        summary = await harness.orchestrator.run_full_crawl()

        assert summary.sources_succeeded == 1
        assert summary.sources_failed == 0
        assert summary.articles_found == 0
        assert summary.errors == []
        assert harness.requests == []
        assert harness.store.crawl_logs[0].status == CrawlStatus.SUCCESS
        assert harness.store.sources["instagram_meta"].last_crawled_at == summary.started_at

    @pytest.mark.asyncio
    async def test_unreadable_stored_record_isolated(self):
        harness = Harness(
            [feed_source()],
            {FEED_URL: httpx.Response(200, text=rss(recent_items(2)))},
        )
        legacy_row = {"knowledge_id": "x", "knowledge_type": "trends", "valid_from": "2025-01-01"}
        harness.store.get_knowledge = AsyncMock(return_value=legacy_row)

        summary = await harness.orchestrator.run_full_crawl()

        assert summary.articles_distilled == 2
        assert summary.knowledge_added == 0
        assert len(summary.errors) == 2
        assert all("Cannot interpret stored record" in e for e in summary.errors)
        assert summary.completed_at is not None
        assert harness.store.sources["later_blog"].last_crawled_at == summary.started_at

    @pytest.mark.asyncio
    async def test_unexpected_save_error_isolated(self):
        harness = Harness(
            [feed_source()],
            {FEED_URL: httpx.Response(200, text=rss(recent_items(2)))},
        )
        harness.store.write_knowledge = AsyncMock(side_effect=[RuntimeError("driver bug"), None])

        summary = await harness.orchestrator.run_full_crawl()

        assert summary.knowledge_added == 1
        assert len(summary.errors) == 1
        assert "driver bug" in summary.errors[0]


class TestMonthlyHelpers:
    """Tests for report helpers."""

    def test_next_month(self):
        assert next_month("2025-01") == "2025-02"
        assert next_month("2025-12") == "2026-01"

    def test_parse_year_month(self):
        assert parse_year_month("2025-03") == date(2025, 3, 1)

    @pytest.mark.parametrize("value", ["2025-13", "2025-1", "March", ""])
    def test_invalid_month(self, value):
        with pytest.raises(ValueError):
            parse_year_month(value)

    def test_importance(self):
        assert importance_for(5) == "high"
        assert importance_for(2) == "medium"
        assert importance_for(1) == "low"

    def test_highlights_group_by_category(self):
        rows = [{"knowledge_id": f"I-{i}", "title": f"T{i}", "category": "instagram"} for i in range(5)]
        rows += [{"knowledge_id": "S-1", "title": "S1", "category": "seo"},
                 {"knowledge_id": "S-2", "title": "S2", "category": "seo"}]
        rows += [{"knowledge_id": "X-1", "title": "X1", "category": None}]

        highlights = {h.category: h for h in build_highlights(rows)}

        assert highlights["instagram"].importance == "high"
        assert highlights["instagram"].title == "instagram: 5 new items"
        assert highlights["seo"].importance == "medium"
        assert highlights["seo"].summary == "S1, S2"
        assert highlights["other"].importance == "low"


class TestGenerateMonthlyReport:
    """Tests for generate_monthly_report."""

    @pytest.mark.asyncio
    async def test_report_for_month(self):
        harness = Harness([], {})
        store = harness.store
        january = datetime(2025, 1, 10, tzinfo=timezone.utc)
        for i in range(2):
            store.add_row(
                {"knowledge_id": f"A-{i}", "knowledge_type": "trend", "title": f"Reels {i}", "category": "instagram"},
                created_at=january,
            )
        store.add_row(
            {"knowledge_id": "B-1", "knowledge_type": "trend", "title": "Feb item", "category": "seo"},
            created_at=datetime(2025, 2, 1, tzinfo=timezone.utc),
        )

        report = await harness.orchestrator.generate_monthly_report("2025-01")

        assert report["report_month"] == "2025-01"
        assert report["is_published"] is False
        assert sorted(report["new_knowledge_ids"]) == ["A-0", "A-1"]
        assert report["highlights"] == [
            {
                "category": "instagram",
                "title": "instagram: 2 new items",
                "summary": "Reels 0, Reels 1",
                "importance": "medium",
            }
        ]
        assert "- [instagram] Reels 0" in report["content"]
        assert store.reports["2025-01"] == report

    @pytest.mark.asyncio
    async def test_report_is_upserted(self):
        harness = Harness([], {})

        await harness.orchestrator.generate_monthly_report("2025-01")
        await harness.orchestrator.generate_monthly_report("2025-01")

        assert list(harness.store.reports) == ["2025-01"]

    @pytest.mark.asyncio
    async def test_invalid_month(self):
        harness = Harness([], {})
        with pytest.raises(ValueError):
            await harness.orchestrator.generate_monthly_report("January")
