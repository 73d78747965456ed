"""
Base classes for the Marketing Intelligence pipeline.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional


class SourceType(str, Enum):
    """Kinds of knowledge sources."""

    SOCIAL_DISCOVERY = "instagram_api"
    FEED = "web_rss"
    SITEMAP = "web_sitemap"
    MANUAL = "manual"  # Hand-entered, never crawled


class KnowledgeType(str, Enum):
    """Knowledge classes used for retrieval precedence."""

    CORE = "core"  # Hand-curated principles, immutable
    TREND = "trend"  # Distilled from crawled articles


class CrawlType(str, Enum):
    """Why a batch run was started."""

    REGULAR = "regular"
    EMERGENCY = "emergency"
    MANUAL = "manual"


class CrawlStatus(str, Enum):
    """Lifecycle of a single (batch, source) crawl log."""

    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"


def utcnow() -> datetime:
    """Timezone-aware 'now' used for watermarks and defaults."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or datetime) into an aware UTC datetime."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip().replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            try:
                # Graph API style offsets without a colon: +0000
                parsed = datetime.strptime(text, "%Y-%m-%dT%H:%M:%S%z")
            except ValueError:
                return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class KnowledgeSource:
    """
    A configured source of articles, as stored in the source registry.

    Only `last_crawled_at` is ever written back by the pipeline.
    """

    source_id: str
    source_type: SourceType
    default_category: str
    name: str = ""
    feed_url: Optional[str] = None
    account_handle: Optional[str] = None
    source_group: str = "A"
    enabled: bool = True
    last_crawled_at: Optional[datetime] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.name or self.source_id

    @classmethod
    def from_row(cls, row: dict) -> "KnowledgeSource":
        """Build a source from a `knowledge_sources` table row."""
        return cls(
            source_id=row["source_id"],
            source_type=SourceType(row["source_type"]),
            default_category=row.get("default_category") or "marketing",
            name=row.get("name") or "",
            feed_url=row.get("feed_url"),
            account_handle=row.get("instagram_username") or row.get("account_handle"),
            source_group=row.get("source_group") or "A",
            enabled=bool(row.get("is_enabled", True)),
            last_crawled_at=parse_timestamp(row.get("last_crawled_at")),
            metadata=row.get("metadata") or {},
        )


@dataclass
class CrawledArticle:
    """An article fetched by a crawler. Never persisted."""

    url: str
    title: str
    content: str
    published_at: datetime
    source_id: str
    category: str
    author: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class Guideline:
    """One if/then/reason decision rule."""

    if_: str
    then: str
    reason: str

    def to_dict(self) -> dict:
        return {"if": self.if_, "then": self.then, "reason": self.reason}


@dataclass
class ContextChange:
    """An old-practice -> new-practice shift."""

    before_period: str
    old_practice: str
    new_practice: str

    def to_dict(self) -> dict:
        return {
            "beforePeriod": self.before_period,
            "oldPractice": self.old_practice,
            "newPractice": self.new_practice,
        }


@dataclass
class UniversalKnowledge:
    """
    The canonical distilled unit of knowledge.

    `knowledge_id` is `{SOURCE-PREFIX}-{YYYYMM}-{keyword}` for trend records
    and `CORE-...` for core records, so re-distilling an article upserts.
    """

    knowledge_id: str
    knowledge_type: KnowledgeType
    category: str
    title: str
    valid_from: datetime
    concept: str
    guidelines: list[Guideline] = field(default_factory=list)
    tone_and_phrasing: list[str] = field(default_factory=list)
    context: list[ContextChange] = field(default_factory=list)
    source_urls: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_core(self) -> bool:
        return self.knowledge_type == KnowledgeType.CORE

    def to_row(self, content: str, embedding: Optional[list[float]]) -> dict:
        """Convert to a `knowledge_vectors` row."""
        metadata = dict(self.metadata)
        if self.is_core:
            metadata["neverOverride"] = True
        return {
            "knowledge_id": self.knowledge_id,
            "knowledge_type": self.knowledge_type.value,
            "category": self.category,
            "title": self.title,
            "content": content,
            "embedding": embedding or None,
            "source_urls": list(self.source_urls),
            "valid_from": self.valid_from.date().isoformat(),
            "is_active": True,
            "metadata": metadata,
        }


@dataclass
class CrawlResult:
    """Outcome of crawling one source."""

    source_id: str
    success: bool
    articles: list[CrawledArticle] = field(default_factory=list)
    error: Optional[str] = None
    crawled_at: datetime = field(default_factory=utcnow)


@dataclass
class DistillationResult:
    """Outcome of distilling one article."""

    success: bool
    source_article: CrawledArticle
    knowledge: Optional[UniversalKnowledge] = None
    error: Optional[str] = None


@dataclass
class CrawlLog:
    """Audit record, one per (batch, source)."""

    batch_id: str
    source_id: str
    crawl_type: CrawlType
    status: CrawlStatus = CrawlStatus.RUNNING
    articles_fetched: int = 0
    error_message: Optional[str] = None
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    id: Optional[str] = None


@dataclass
class SearchResult:
    """A scored, typed view of one stored knowledge record."""

    knowledge_id: str
    knowledge_type: KnowledgeType
    category: str
    title: str
    content: str
    valid_from: date
    similarity: float
    priority_score: float = 0.0
    id: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "SearchResult":
        """Build from a similarity-search RPC row."""
        valid_from = row.get("valid_from")
        if isinstance(valid_from, str):
            valid_from = date.fromisoformat(valid_from[:10])
        elif isinstance(valid_from, datetime):
            valid_from = valid_from.date()
        return cls(
            id=row.get("id"),
            knowledge_id=row["knowledge_id"],
            knowledge_type=KnowledgeType(row["knowledge_type"]),
            category=row.get("category") or "",
            title=row.get("title") or "",
            content=row.get("content") or "",
            valid_from=valid_from or utcnow().date(),
            similarity=float(row.get("similarity") or 0.0),
            priority_score=float(row.get("priority_score") or 0.0),
        )


@dataclass
class RAGContext:
    """Query-time projection handed to the chat layer."""

    query: str
    retrieved_knowledge: list[SearchResult] = field(default_factory=list)
    core_knowledge: list[SearchResult] = field(default_factory=list)
    trends_knowledge: list[SearchResult] = field(default_factory=list)
    formatted_context: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.retrieved_knowledge


@dataclass
class TrendHighlight:
    """One category line of a monthly digest."""

    category: str
    title: str
    summary: str
    importance: str  # high | medium | low

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "title": self.title,
            "summary": self.summary,
            "importance": self.importance,
        }


@dataclass
class CrawlSummary:
    """The externally visible outcome of a batch run."""

    batch_id: str
    crawl_type: CrawlType
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    sources_processed: int = 0
    sources_succeeded: int = 0
    sources_failed: int = 0
    articles_found: int = 0
    articles_distilled: int = 0
    knowledge_added: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        end = self.completed_at or utcnow()
        return (end - self.started_at).total_seconds()

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "crawl_type": self.crawl_type.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "sources_processed": self.sources_processed,
            "sources_succeeded": self.sources_succeeded,
            "sources_failed": self.sources_failed,
            "articles_found": self.articles_found,
            "articles_distilled": self.articles_distilled,
            "knowledge_added": self.knowledge_added,
            "errors": list(self.errors),
        }
