"""
Retrieval engine.

Embeds a query, searches the store and formats the hits into one
prompt-ready block. Core knowledge is always rendered before trend
knowledge, whatever the similarity order.
"""

import logging
from typing import Optional

from src.intelligence.base import KnowledgeType, RAGContext, SearchResult
from src.intelligence.config import RAGConfig
from src.intelligence.embedding import EmbeddingClient
from src.intelligence.errors import StorageError
from src.intelligence.store import KnowledgeStore

logger = logging.getLogger(__name__)

CORE_HEADER = "[THE CORE: your principles]"
CORE_PREAMBLE = (
    "These principles are your foundation. Whatever the current trends say, "
    "they take precedence."
)
TRENDS_HEADER = "[THE TRENDS: recent knowledge]"
TRENDS_PREAMBLE = (
    "These are recent marketing developments. Where they contradict the Core, "
    "follow the Core."
)


def format_context(core: list[SearchResult], trends: list[SearchResult]) -> str:
    """Render core records first, then trend records annotated with their date."""
    lines: list[str] = []

    if core:
        lines.append(CORE_HEADER)
        lines.append(CORE_PREAMBLE)
        lines.append("")
        for knowledge in core:
            lines.append(f"### {knowledge.title}")
            lines.append(knowledge.content)
            lines.append("")

    if trends:
        lines.append(TRENDS_HEADER)
        lines.append(TRENDS_PREAMBLE)
        lines.append("")
        for knowledge in trends:
            lines.append(f"### {knowledge.title} (as of {knowledge.valid_from.isoformat()})")
            lines.append(knowledge.content)
            lines.append("")

    return "\n".join(lines)


class RAGEngine:
    """
    Query-time knowledge retrieval.

    Example:
        engine = RAGEngine(store=SupabaseKnowledgeStore(), embedder=EmbeddingClient())
        context = await engine.retrieve("How do I grow reels reach?", category="instagram")
        if context.is_empty:
            ...  # fall back to the default persona
    """

    def __init__(
        self,
        store: KnowledgeStore,
        embedder: EmbeddingClient,
        config: Optional[RAGConfig] = None,
    ):
        self.store = store
        self.embedder = embedder
        self.config = config or RAGConfig()

    async def retrieve(self, query: str, category: Optional[str] = None) -> RAGContext:
        """
        Find knowledge relevant to `query`. Never raises.

        Returns:
            RAGContext; empty when nothing matches or retrieval fails
        """
        logger.info(f"[RAG] Retrieving knowledge for query: {query[:50]!r}")

        query_embedding = await self.embedder.embed(query)
        if not query_embedding:
            logger.warning("[RAG] No query embedding, returning empty context")
            return RAGContext(query=query)

        try:
            results = await self.store.search(
                query_embedding,
                match_count=self.config.max_results,
                category=category,
            )
        except StorageError as e:
            logger.error(f"[RAG] Search failed: {e}")
            return RAGContext(query=query)

        results = [r for r in results if self._passes_threshold(r)]
        core = [r for r in results if r.knowledge_type == KnowledgeType.CORE]
        trends = [r for r in results if r.knowledge_type == KnowledgeType.TREND]

        logger.info(f"[RAG] Found {len(core)} core, {len(trends)} trend knowledge")

        return RAGContext(
            query=query,
            retrieved_knowledge=results,
            core_knowledge=core,
            trends_knowledge=trends,
            formatted_context=format_context(core, trends),
        )

    def _passes_threshold(self, result: SearchResult) -> bool:
        if self.config.similarity_threshold <= 0:
            return True
        if result.knowledge_type == KnowledgeType.CORE and self.config.always_include_core:
            return True
        return result.similarity >= self.config.similarity_threshold
