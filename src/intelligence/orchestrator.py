"""
Crawler orchestrator.

Drives a batch run: sources -> crawlers -> distiller -> embeddings ->
store, one crawl log per source, and a summary as the run's only
outward signal. Failures are isolated per source, per article and per
record; a run never raises for them.
"""

import logging
import re
from datetime import date
from typing import Optional
from uuid import uuid4

from src.intelligence.base import (
    CrawlLog,
    CrawlResult,
    CrawlStatus,
    CrawlSummary,
    CrawlType,
    KnowledgeSource,
    TrendHighlight,
    UniversalKnowledge,
    utcnow,
)
from src.intelligence.config import CrawlerConfig, OrchestratorConfig, SocialCredentials
from src.intelligence.crawlers import RetryingFetcher, create_crawler
from src.intelligence.distiller import KnowledgeDistiller, knowledge_to_markdown
from src.intelligence.embedding import EmbeddingClient
from src.intelligence.errors import IntelligenceError, StorageError
from src.intelligence.pacing import BatchPacer
from src.intelligence.store import KnowledgeStore

logger = logging.getLogger(__name__)

_YEAR_MONTH = re.compile(r"^(\d{4})-(\d{2})$")


def parse_year_month(year_month: str) -> date:
    """`2025-01` -> date(2025, 1, 1)."""
    match = _YEAR_MONTH.match(year_month)
    if not match or not 1 <= int(match.group(2)) <= 12:
        raise ValueError(f"Invalid month '{year_month}', expected YYYY-MM")
    return date(int(match.group(1)), int(match.group(2)), 1)


def next_month(year_month: str) -> str:
    """`2025-12` -> `2026-01`."""
    start = parse_year_month(year_month)
    if start.month == 12:
        return f"{start.year + 1}-01"
    return f"{start.year}-{start.month + 1:02d}"


def importance_for(count: int) -> str:
    if count >= 5:
        return "high"
    if count >= 2:
        return "medium"
    return "low"


def build_highlights(rows: list[dict]) -> list[TrendHighlight]:
    """One highlight per category; rows without a category group under `other`."""
    groups: dict[str, list[dict]] = {}
    for row in rows:
        groups.setdefault(row.get("category") or "other", []).append(row)

    return [
        TrendHighlight(
            category=category,
            title=f"{category}: {len(items)} new items",
            summary=", ".join(item.get("title") or "" for item in items),
            importance=importance_for(len(items)),
        )
        for category, items in groups.items()
    ]


def format_report_content(highlights: list[TrendHighlight], rows: list[dict]) -> str:
    """Markdown body of a monthly report."""
    markers = {"high": "[HIGH]", "medium": "[MEDIUM]", "low": "[LOW]"}
    lines = ["# Highlights", ""]
    for h in highlights:
        lines.append(f"{markers[h.importance]} **{h.title}**")
        lines.append(h.summary)
        lines.append("")

    lines.append("# New Knowledge")
    lines.append("")
    for row in rows:
        lines.append(f"- [{row.get('category') or 'other'}] {row.get('title')}")

    return "\n".join(lines)


class CrawlerOrchestrator:
    """
    Coordinates a full crawl and monthly reporting.

    Usage:
        orchestrator = CrawlerOrchestrator(
            store=SupabaseKnowledgeStore(),
            distiller=KnowledgeDistiller(LLMClient()),
            embedder=EmbeddingClient(),
        )
        summary = await orchestrator.run_full_crawl(CrawlType.REGULAR)
    """

    def __init__(
        self,
        store: KnowledgeStore,
        distiller: KnowledgeDistiller,
        embedder: EmbeddingClient,
        config: Optional[OrchestratorConfig] = None,
        crawler_config: Optional[CrawlerConfig] = None,
        fetcher: Optional[RetryingFetcher] = None,
        social_credentials: Optional[SocialCredentials] = None,
    ):
        self.store = store
        self.distiller = distiller
        self.embedder = embedder
        self.config = config or OrchestratorConfig()
        self.crawler_config = crawler_config or CrawlerConfig()
        self.fetcher = fetcher or RetryingFetcher(self.crawler_config)
        self.social_credentials = social_credentials

    async def run_full_crawl(self, crawl_type: CrawlType = CrawlType.REGULAR) -> CrawlSummary:
        """
        Crawl every enabled source, distill new articles and store the results.

        Returns:
            CrawlSummary with counts and human-readable errors
        """
        summary = CrawlSummary(batch_id=str(uuid4()), crawl_type=crawl_type)
        logger.info(f"[ORCHESTRATOR] Starting {crawl_type.value} crawl {summary.batch_id}")

        try:
            sources = await self.store.get_enabled_sources()
        except StorageError as e:
            logger.error(f"[ORCHESTRATOR] Cannot load sources: {e}")
            summary.errors.append(str(e))
            summary.completed_at = utcnow()
            return summary

        logger.info(f"[ORCHESTRATOR] {len(sources)} enabled sources")

        # Crawl
        crawl_pacer = BatchPacer(
            window=self.config.crawl_concurrency,
            pause=self.config.source_pause,
            name="sources",
        )
        results = await crawl_pacer.map(
            lambda source: self.crawl_source(source, summary.batch_id, crawl_type),
            sources,
        )

        articles = []
        for source, result in zip(sources, results):
            summary.sources_processed += 1
            if result.success:
                summary.sources_succeeded += 1
            else:
                summary.sources_failed += 1
                summary.errors.append(f"{source.source_id}: {result.error}")
            articles.extend(result.articles)
        summary.articles_found = len(articles)

        # Distill
        distilled: list[UniversalKnowledge] = []
        if articles:
            for outcome in await self.distiller.distill_batch(articles):
                if outcome.success and outcome.knowledge:
                    distilled.append(outcome.knowledge)
                else:
                    summary.errors.append(
                        f"Distillation failed for {outcome.source_article.url}: {outcome.error}"
                    )
        summary.articles_distilled = len(distilled)

        # Embed and store
        store_pacer = BatchPacer(
            window=self.config.embed_concurrency,
            pause=self.config.embed_pause,
            name="store",
        )
        for written, error in await store_pacer.map(self._save_for_summary, distilled):
            if written:
                summary.knowledge_added += 1
            if error:
                summary.errors.append(error)

        # Watermarks
        for source, result in zip(sources, results):
            if not result.success and not self.config.advance_watermark_on_failure:
                continue
            try:
                await self.store.update_last_crawled(source.source_id, summary.started_at)
            except StorageError as e:
                logger.error(f"[ORCHESTRATOR] {e}")
                summary.errors.append(str(e))

        summary.completed_at = utcnow()
        logger.info(
            f"[ORCHESTRATOR] Crawl {summary.batch_id} finished in {summary.duration_seconds:.1f}s: "
            f"{summary.sources_succeeded}/{summary.sources_processed} sources, "
            f"{summary.articles_found} articles, {summary.articles_distilled} distilled, "
            f"{summary.knowledge_added} added, {len(summary.errors)} errors"
        )
        return summary

    async def crawl_source(
        self,
        source: KnowledgeSource,
        batch_id: str,
        crawl_type: CrawlType,
    ) -> CrawlResult:
        """Crawl one source under its own crawl log. Never raises."""
        log = CrawlLog(batch_id=batch_id, source_id=source.source_id, crawl_type=crawl_type)
        try:
            log = await self.store.create_crawl_log(log)
        except StorageError as e:
            logger.warning(f"[ORCHESTRATOR] Crawl log not recorded for {source.source_id}: {e}")

        crawler = create_crawler(
            source,
            config=self.crawler_config,
            fetcher=self.fetcher,
            social_credentials=self.social_credentials,
        )
        if crawler is None:
            logger.warning(
                f"[ORCHESTRATOR] Unsupported source type {source.source_type.value} "
                f"for {source.source_id}"
            )
            result = CrawlResult(
                source_id=source.source_id,
                success=False,
                error=f"Unsupported source type: {source.source_type.value}",
            )
        else:
            result = await crawler.crawl()

        log.status = CrawlStatus.SUCCESS if result.success else CrawlStatus.FAILED
        log.articles_fetched = len(result.articles)
        log.error_message = result.error
        log.completed_at = utcnow()
        try:
            await self.store.finalize_crawl_log(log)
        except StorageError as e:
            logger.warning(f"[ORCHESTRATOR] Crawl log not finalized for {source.source_id}: {e}")

        return result

    async def save_knowledge(self, knowledge: UniversalKnowledge) -> bool:
        """
        Render, embed and upsert one record.

        An embedding failure stores the record without a vector.

        Returns:
            True if the store accepted the record

        Raises:
            StorageError: If the upsert fails
        """
        content = knowledge_to_markdown(knowledge)
        embedding = await self.embedder.embed(content)
        if not embedding:
            logger.warning(
                f"[ORCHESTRATOR] Storing {knowledge.knowledge_id} without embedding"
            )
        return await self.store.upsert_knowledge(knowledge, content, embedding or None)

    async def _save_for_summary(self, knowledge: UniversalKnowledge) -> tuple[bool, Optional[str]]:
        try:
            return await self.save_knowledge(knowledge), None
        except IntelligenceError as e:
            logger.error(f"[ORCHESTRATOR] {e}")
            return False, str(e)
        except Exception as e:
            logger.exception(f"[ORCHESTRATOR] Unexpected error saving {knowledge.knowledge_id}: {e}")
            return False, f"{knowledge.knowledge_id}: {e}"

    async def generate_monthly_report(self, year_month: str) -> dict:
        """
        Aggregate knowledge created in `year_month` (YYYY-MM) into a digest.

        Returns:
            The saved report row

        Raises:
            ValueError: If `year_month` is malformed
            StorageError: If reading knowledge or saving the report fails
        """
        logger.info(f"[ORCHESTRATOR] Generating report for {year_month}")
        start = parse_year_month(year_month)
        end = parse_year_month(next_month(year_month))

        rows = await self.store.list_knowledge_created_between(start, end)
        highlights = build_highlights(rows)

        report = {
            "report_month": year_month,
            "title": f"{year_month} Marketing Trend Report",
            "content": format_report_content(highlights, rows),
            "highlights": [h.to_dict() for h in highlights],
            "new_knowledge_ids": [row["knowledge_id"] for row in rows],
            "is_published": False,
        }
        await self.store.save_trend_report(report)

        logger.info(
            f"[ORCHESTRATOR] Report for {year_month}: {len(rows)} items, "
            f"{len(highlights)} categories"
        )
        return report
