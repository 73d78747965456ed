"""
Marketing Intelligence - Knowledge Pipeline
===========================================

Crawls marketing sources, distills articles into structured knowledge,
stores it with embeddings and retrieves it to ground the consultant persona.

Sources supported:
- RSS / Atom feeds
- Sitemaps (article pages)
- Instagram business discovery

Usage:
    from src.intelligence import (
        CrawlerOrchestrator,
        EmbeddingClient,
        KnowledgeDistiller,
        LLMClient,
        RAGEngine,
        SupabaseKnowledgeStore,
    )

    store = SupabaseKnowledgeStore()
    embedder = EmbeddingClient()

    # Batch run
    orchestrator = CrawlerOrchestrator(
        store=store,
        distiller=KnowledgeDistiller(LLMClient()),
        embedder=embedder,
    )
    summary = await orchestrator.run_full_crawl()

    # Query time
    engine = RAGEngine(store=store, embedder=embedder)
    context = await engine.retrieve("How should I use Reels?", category="instagram")
"""

from src.intelligence.base import (
    CrawledArticle,
    CrawlSummary,
    CrawlType,
    KnowledgeSource,
    KnowledgeType,
    RAGContext,
    SearchResult,
    SourceType,
    UniversalKnowledge,
)
from src.intelligence.core_knowledge import (
    CORE_KNOWLEDGE,
    add_custom_core_knowledge,
    ingest_core_knowledge,
)
from src.intelligence.distiller import KnowledgeDistiller, knowledge_to_markdown
from src.intelligence.embedding import EmbeddingClient
from src.intelligence.llm import LLMClient
from src.intelligence.orchestrator import CrawlerOrchestrator
from src.intelligence.persona import (
    build_default_system_prompt,
    build_system_prompt,
    expand_query,
    generate_system_prompt_with_rag,
    infer_category,
    should_use_rag,
)
from src.intelligence.retrieval import RAGEngine
from src.intelligence.store import KnowledgeStore, SupabaseKnowledgeStore, resolve_conflict

__all__ = [
    "CrawledArticle",
    "CrawlSummary",
    "CrawlType",
    "KnowledgeSource",
    "KnowledgeType",
    "RAGContext",
    "SearchResult",
    "SourceType",
    "UniversalKnowledge",
    "CORE_KNOWLEDGE",
    "add_custom_core_knowledge",
    "ingest_core_knowledge",
    "KnowledgeDistiller",
    "knowledge_to_markdown",
    "EmbeddingClient",
    "LLMClient",
    "CrawlerOrchestrator",
    "build_default_system_prompt",
    "build_system_prompt",
    "expand_query",
    "generate_system_prompt_with_rag",
    "infer_category",
    "should_use_rag",
    "RAGEngine",
    "KnowledgeStore",
    "SupabaseKnowledgeStore",
    "resolve_conflict",
]
