"""
Knowledge store: source registry, crawl logs, knowledge vectors, reports.

`resolve_conflict` is the write policy every store applies before an
upsert, so core immutability does not depend on the storage engine.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional

from supabase import Client, create_client

from src.intelligence.base import (
    CrawlLog,
    KnowledgeSource,
    KnowledgeType,
    SearchResult,
    UniversalKnowledge,
    utcnow,
)
from src.intelligence.config import StoreConfig
from src.intelligence.errors import ConfigError, StorageError

logger = logging.getLogger(__name__)

CORE_PREFIX = "CORE-"


@dataclass
class ConflictDecision:
    """Whether an incoming record may be written over the stored one."""

    write: bool
    reason: str = ""


def _row_date(value: Any) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def resolve_conflict(existing: Optional[dict], incoming: dict) -> ConflictDecision:
    """
    Decide whether `incoming` may replace `existing` (both knowledge rows).

    Rules:
    - a trend record may never use the CORE- id prefix
    - a trend record never overwrites a core record
    - a core record always replaces what is stored
    - between trend records the newer (or equal) valid_from wins
    """
    incoming_type = KnowledgeType(incoming["knowledge_type"])
    knowledge_id = incoming["knowledge_id"]

    if incoming_type == KnowledgeType.TREND and knowledge_id.startswith(CORE_PREFIX):
        return ConflictDecision(False, f"trend record cannot use the {CORE_PREFIX} prefix")

    if existing is None:
        return ConflictDecision(True, "new record")

    existing_type = KnowledgeType(existing["knowledge_type"])
    if existing_type == KnowledgeType.CORE and incoming_type == KnowledgeType.TREND:
        return ConflictDecision(False, "core record is immutable to trend ingestion")

    if incoming_type == KnowledgeType.CORE:
        return ConflictDecision(True, "core record replaces stored record")

    existing_from = _row_date(existing.get("valid_from"))
    incoming_from = _row_date(incoming.get("valid_from"))
    if existing_from and incoming_from and incoming_from < existing_from:
        return ConflictDecision(False, f"stored record is newer ({existing_from})")

    return ConflictDecision(True, "newer trend record")


class KnowledgeStore(ABC):
    """
    Storage contract used by the orchestrator and the retrieval engine.

    Subclasses must implement every method; failures surface as
    StorageError.
    """

    @abstractmethod
    async def get_enabled_sources(self) -> list[KnowledgeSource]:
        """Sources with `is_enabled = true`."""
        pass

    @abstractmethod
    async def update_last_crawled(self, source_id: str, crawled_at: datetime) -> None:
        """Advance a source watermark."""
        pass

    @abstractmethod
    async def create_crawl_log(self, log: CrawlLog) -> CrawlLog:
        """Insert a `running` crawl log and return it with its id."""
        pass

    @abstractmethod
    async def finalize_crawl_log(self, log: CrawlLog) -> None:
        """Write the final status, count, error and completion time."""
        pass

    @abstractmethod
    async def get_knowledge(self, knowledge_id: str) -> Optional[dict]:
        """Return the stored row for `knowledge_id`, if any."""
        pass

    @abstractmethod
    async def write_knowledge(self, row: dict) -> None:
        """Upsert a row keyed by `knowledge_id`. No policy applied."""
        pass

    @abstractmethod
    async def search(
        self,
        query_embedding: list[float],
        match_count: int,
        category: Optional[str] = None,
    ) -> list[SearchResult]:
        """Similarity + priority search, best first."""
        pass

    @abstractmethod
    async def list_knowledge_created_between(self, start: date, end: date) -> list[dict]:
        """Rows (knowledge_id, title, category) created in [start, end)."""
        pass

    @abstractmethod
    async def save_trend_report(self, report: dict) -> None:
        """Upsert a monthly report keyed by `report_month`."""
        pass

    @abstractmethod
    async def get_stats(self) -> dict[str, Any]:
        """Record counts for operators."""
        pass

    async def upsert_knowledge(
        self,
        knowledge: UniversalKnowledge,
        content: str,
        embedding: Optional[list[float]],
    ) -> bool:
        """
        Write `knowledge` if the conflict policy allows it.

        Returns:
            True if written, False if the policy kept the stored record

        Raises:
            StorageError: If the read or write fails, or the stored record is unreadable
        """
        row = knowledge.to_row(content, embedding)
        existing = await self.get_knowledge(knowledge.knowledge_id)
        try:
            decision = resolve_conflict(existing, row)
        except (KeyError, ValueError) as e:
            raise StorageError(
                f"Cannot interpret stored record {knowledge.knowledge_id}: {e}"
            ) from e

        if not decision.write:
            logger.warning(f"[STORE] Skipped {knowledge.knowledge_id}: {decision.reason}")
            return False

        await self.write_knowledge(row)
        logger.info(f"[STORE] Saved {knowledge.knowledge_id} ({decision.reason})")
        return True


class SupabaseKnowledgeStore(KnowledgeStore):
    """
    Supabase-backed store.

    Usage:
        store = SupabaseKnowledgeStore()
        sources = await store.get_enabled_sources()
    """

    def __init__(self, config: Optional[StoreConfig] = None, client: Optional[Client] = None):
        self.config = config or StoreConfig()
        self._supabase = client

    @property
    def supabase(self) -> Client:
        """Lazy initialization of Supabase client."""
        if self._supabase is None:
            if not self.config.supabase_url or not self.config.supabase_key:
                raise ConfigError("SUPABASE_URL and SUPABASE_SERVICE_KEY required")
            self._supabase = create_client(
                self.config.supabase_url,
                self.config.supabase_key,
            )
        return self._supabase

    def _table(self, name: str):
        return self.supabase.table(name)

    async def get_enabled_sources(self) -> list[KnowledgeSource]:
        try:
            response = self._table(self.config.sources_table) \
                .select("*") \
                .eq("is_enabled", True) \
                .execute()
        except Exception as e:
            raise StorageError(f"Failed to load sources: {e}") from e

        sources = []
        for row in response.data or []:
            try:
                sources.append(KnowledgeSource.from_row(row))
            except (KeyError, ValueError) as e:
                logger.warning(f"[STORE] Ignoring invalid source row {row.get('source_id')}: {e}")
        return sources

    async def update_last_crawled(self, source_id: str, crawled_at: datetime) -> None:
        try:
            self._table(self.config.sources_table) \
                .update({"last_crawled_at": crawled_at.isoformat()}) \
                .eq("source_id", source_id) \
                .execute()
        except Exception as e:
            raise StorageError(f"Failed to update watermark for {source_id}: {e}") from e

    async def create_crawl_log(self, log: CrawlLog) -> CrawlLog:
        data = {
            "crawl_batch_id": log.batch_id,
            "source_id": log.source_id,
            "crawl_type": log.crawl_type.value,
            "status": log.status.value,
            "started_at": log.started_at.isoformat(),
        }
        try:
            response = self._table(self.config.crawl_logs_table).insert(data).execute()
        except Exception as e:
            raise StorageError(f"Failed to create crawl log for {log.source_id}: {e}") from e

        if response.data:
            log.id = response.data[0].get("id")
        return log

    async def finalize_crawl_log(self, log: CrawlLog) -> None:
        if log.id is None:
            logger.warning(f"[STORE] Crawl log for {log.source_id} has no id, not finalized")
            return

        data = {
            "status": log.status.value,
            "articles_fetched": log.articles_fetched,
            "error_message": log.error_message,
            "completed_at": (log.completed_at or utcnow()).isoformat(),
        }
        try:
            self._table(self.config.crawl_logs_table) \
                .update(data) \
                .eq("id", log.id) \
                .execute()
        except Exception as e:
            raise StorageError(f"Failed to finalize crawl log {log.id}: {e}") from e

    async def get_knowledge(self, knowledge_id: str) -> Optional[dict]:
        try:
            response = self._table(self.config.knowledge_table) \
                .select("knowledge_id, knowledge_type, valid_from") \
                .eq("knowledge_id", knowledge_id) \
                .limit(1) \
                .execute()
        except Exception as e:
            raise StorageError(f"Failed to read {knowledge_id}: {e}") from e

        return response.data[0] if response.data else None

    async def write_knowledge(self, row: dict) -> None:
        try:
            self._table(self.config.knowledge_table) \
                .upsert(row, on_conflict="knowledge_id") \
                .execute()
        except Exception as e:
            raise StorageError(f"Failed to upsert {row['knowledge_id']}: {e}") from e

    async def search(
        self,
        query_embedding: list[float],
        match_count: int,
        category: Optional[str] = None,
    ) -> list[SearchResult]:
        try:
            response = self.supabase.rpc(
                self.config.search_rpc,
                {
                    "query_embedding": query_embedding,
                    "match_count": match_count,
                    "filter_category": category,
                },
            ).execute()
            return [SearchResult.from_row(row) for row in response.data or []]
        except Exception as e:
            raise StorageError(f"Search failed: {e}") from e

    async def list_knowledge_created_between(self, start: date, end: date) -> list[dict]:
        try:
            response = self._table(self.config.knowledge_table) \
                .select("knowledge_id, title, category") \
                .gte("created_at", start.isoformat()) \
                .lt("created_at", end.isoformat()) \
                .execute()
        except Exception as e:
            raise StorageError(f"Failed to list knowledge for {start}: {e}") from e

        return response.data or []

    async def save_trend_report(self, report: dict) -> None:
        try:
            self._table(self.config.reports_table) \
                .upsert(report, on_conflict="report_month") \
                .execute()
        except Exception as e:
            raise StorageError(f"Failed to save report {report.get('report_month')}: {e}") from e

    def _count(self, table: str, column: str, **filters) -> int:
        query = self._table(table).select(column, count="exact")
        for key, value in filters.items():
            if value is None:
                query = query.is_(key, "null")
            else:
                query = query.eq(key, value)
        response = query.limit(1).execute()
        return response.count or 0

    async def get_stats(self) -> dict[str, Any]:
        knowledge = self.config.knowledge_table
        sources = self.config.sources_table
        try:
            return {
                "knowledge_total": self._count(knowledge, "knowledge_id"),
                "knowledge_core": self._count(
                    knowledge, "knowledge_id", knowledge_type=KnowledgeType.CORE.value
                ),
                "knowledge_trend": self._count(
                    knowledge, "knowledge_id", knowledge_type=KnowledgeType.TREND.value
                ),
                "knowledge_without_embedding": self._count(knowledge, "knowledge_id", embedding=None),
                "sources_total": self._count(sources, "source_id"),
                "sources_enabled": self._count(sources, "source_id", is_enabled=True),
            }
        except Exception as e:
            raise StorageError(f"Failed to load stats: {e}") from e
