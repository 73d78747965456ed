"""In-memory test doubles for the intelligence pipeline.

Provides an isolated store so orchestration and retrieval tests run
without a Supabase project.

Usage:
    from src.intelligence.testing import InMemoryKnowledgeStore

    store = InMemoryKnowledgeStore(sources=[source])
    orchestrator = CrawlerOrchestrator(store=store, ...)
    summary = await orchestrator.run_full_crawl()
    assert store.knowledge["INSTAGRAM-META-202501-reels-algorithm"]
"""

from __future__ import annotations

import math
from dataclasses import replace
from datetime import date, datetime
from typing import Any
from uuid import uuid4

from src.intelligence.base import (
    CrawlLog,
    KnowledgeSource,
    KnowledgeType,
    SearchResult,
    utcnow,
)
from src.intelligence.store import KnowledgeStore

CORE_PRIORITY_BOOST = 0.2


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity of two equal-length vectors (0.0 if either is zero)."""
    if len(a) != len(b):
        raise ValueError("vectors must have the same length")
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class InMemoryKnowledgeStore(KnowledgeStore):
    """Dict-backed KnowledgeStore.

    Applies the same conflict policy as the Supabase store (it lives in
    the base class). Search ranks by cosine similarity plus a fixed boost
    for core records, mirroring the priority search RPC.

    Attributes:
        sources: Registered sources by id
        knowledge: Stored knowledge rows by knowledge id
        crawl_logs: Every crawl log, in creation order
        reports: Saved monthly reports by month
    """

    def __init__(self, sources: list[KnowledgeSource] | None = None) -> None:
        self.sources: dict[str, KnowledgeSource] = {s.source_id: s for s in sources or []}
        self.knowledge: dict[str, dict[str, Any]] = {}
        self.crawl_logs: list[CrawlLog] = []
        self.reports: dict[str, dict[str, Any]] = {}
        self.write_count = 0

    def add_row(self, row: dict[str, Any], created_at: datetime | None = None) -> None:
        """Seed a knowledge row directly, bypassing the conflict policy."""
        stored = dict(row)
        stored.setdefault("created_at", (created_at or utcnow()).isoformat())
        self.knowledge[stored["knowledge_id"]] = stored

    async def get_enabled_sources(self) -> list[KnowledgeSource]:
        return [replace(s) for s in self.sources.values() if s.enabled]

    async def update_last_crawled(self, source_id: str, crawled_at: datetime) -> None:
        if source_id in self.sources:
            self.sources[source_id].last_crawled_at = crawled_at

    async def create_crawl_log(self, log: CrawlLog) -> CrawlLog:
        log.id = str(uuid4())
        self.crawl_logs.append(log)
        return log

    async def finalize_crawl_log(self, log: CrawlLog) -> None:
        log.completed_at = log.completed_at or utcnow()

    async def get_knowledge(self, knowledge_id: str) -> dict[str, Any] | None:
        return self.knowledge.get(knowledge_id)

    async def write_knowledge(self, row: dict[str, Any]) -> None:
        previous = self.knowledge.get(row["knowledge_id"])
        stored = dict(row)
        stored["created_at"] = previous["created_at"] if previous else utcnow().isoformat()
        self.knowledge[row["knowledge_id"]] = stored
        self.write_count += 1

    async def search(
        self,
        query_embedding: list[float],
        match_count: int,
        category: str | None = None,
    ) -> list[SearchResult]:
        scored = []
        for row in self.knowledge.values():
            if not row.get("embedding") or not row.get("is_active", True):
                continue
            if category and row.get("category") != category:
                continue
            similarity = cosine_similarity(query_embedding, row["embedding"])
            boost = CORE_PRIORITY_BOOST if row["knowledge_type"] == KnowledgeType.CORE.value else 0.0
            scored.append(
                SearchResult.from_row(
                    {**row, "similarity": similarity, "priority_score": similarity + boost}
                )
            )

        scored.sort(key=lambda r: r.priority_score, reverse=True)
        return scored[:match_count]

    async def list_knowledge_created_between(self, start: date, end: date) -> list[dict[str, Any]]:
        rows = []
        for row in self.knowledge.values():
            created = date.fromisoformat(row["created_at"][:10])
            if start <= created < end:
                rows.append(
                    {
                        "knowledge_id": row["knowledge_id"],
                        "title": row.get("title"),
                        "category": row.get("category"),
                    }
                )
        return rows

    async def save_trend_report(self, report: dict[str, Any]) -> None:
        self.reports[report["report_month"]] = dict(report)

    async def get_stats(self) -> dict[str, Any]:
        rows = list(self.knowledge.values())
        return {
            "knowledge_total": len(rows),
            "knowledge_core": sum(1 for r in rows if r["knowledge_type"] == KnowledgeType.CORE.value),
            "knowledge_trend": sum(1 for r in rows if r["knowledge_type"] == KnowledgeType.TREND.value),
            "knowledge_without_embedding": sum(1 for r in rows if not r.get("embedding")),
            "sources_total": len(self.sources),
            "sources_enabled": sum(1 for s in self.sources.values() if s.enabled),
        }
