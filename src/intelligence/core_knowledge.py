"""
Core knowledge: the hand-curated principles retrieval always ranks first.

Core records are written only through this module. They carry the
`CORE-` id prefix and a `neverOverride` flag, and trend ingestion can
never replace them (see `store.resolve_conflict`).
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Optional

from src.intelligence.base import (
    ContextChange,
    Guideline,
    KnowledgeType,
    UniversalKnowledge,
)
from src.intelligence.distiller import knowledge_to_markdown
from src.intelligence.embedding import EmbeddingClient
from src.intelligence.errors import StorageError
from src.intelligence.pacing import BatchPacer
from src.intelligence.store import CORE_PREFIX, KnowledgeStore

logger = logging.getLogger(__name__)

SEED_VALID_FROM = datetime(2024, 1, 1, tzinfo=timezone.utc)

CORE_KNOWLEDGE: list[UniversalKnowledge] = [
    UniversalKnowledge(
        knowledge_id="CORE-FANBASE-001-fans-over-followers",
        knowledge_type=KnowledgeType.CORE,
        category="marketing",
        title="Fans over followers",
        valid_from=SEED_VALID_FROM,
        concept=(
            "A small group of devoted fans drives more sustainable revenue and "
            "word of mouth than a large audience of passive followers."
        ),
        guidelines=[
            Guideline(
                if_="the user wants to grow follower count quickly",
                then="steer them toward deepening relationships with existing fans first",
                reason="core fans account for most revenue and recommend the brand to others",
            ),
            Guideline(
                if_="the user is considering buying followers or running follow campaigns",
                then="advise against it and suggest engaging current followers instead",
                reason="inflated audiences lower engagement rate and attract no buyers",
            ),
        ],
        tone_and_phrasing=[
            "100 devoted fans beat 1,000 passive followers",
            "Grow depth before reach",
        ],
        context=[
            ContextChange(
                before_period="Early social media era",
                old_practice="follower count was the headline success metric",
                new_practice="engagement and repeat customers define success",
            ),
        ],
        metadata={"theme": "fanbase"},
    ),
    UniversalKnowledge(
        knowledge_id="CORE-FANBASE-002-existing-customers-first",
        knowledge_type=KnowledgeType.CORE,
        category="marketing",
        title="Existing customers first",
        valid_from=SEED_VALID_FROM,
        concept=(
            "Retention comes before acquisition: new customers poured into a "
            "business that cannot keep them are lost spend."
        ),
        guidelines=[
            Guideline(
                if_="the user's budget goes mostly to acquiring new customers",
                then="recommend shifting part of it to retention and repeat purchase",
                reason="keeping a customer costs far less than winning a new one",
            ),
            Guideline(
                if_="churn or low repeat rate is visible",
                then="fix the experience for existing customers before scaling ads",
                reason="scaling a leaky funnel multiplies the leak",
            ),
        ],
        tone_and_phrasing=[
            "Pouring water into a leaking bucket achieves nothing",
        ],
        context=[],
        metadata={"theme": "fanbase"},
    ),
    UniversalKnowledge(
        knowledge_id="CORE-FANBASE-003-trust-and-empathy",
        knowledge_type=KnowledgeType.CORE,
        category="marketing",
        title="Trust and empathy over selling",
        valid_from=SEED_VALID_FROM,
        concept=(
            "Customers trust other customers more than advertisers. Build "
            "mechanisms for fans to speak for the brand."
        ),
        guidelines=[
            Guideline(
                if_="the user's posts are mostly promotional",
                then="suggest sharing customer voices, reviews and behind-the-scenes stories",
                reason="people engage with stories they relate to, not sales pitches",
            ),
            Guideline(
                if_="the user asks how to make content go viral",
                then="refocus on content that earns trust from the people who already care",
                reason="shares from trusted fans convert better than reach from strangers",
            ),
        ],
        tone_and_phrasing=[
            "Ads say what you want to say; word of mouth says what people want to hear",
        ],
        context=[],
        metadata={"theme": "fanbase"},
    ),
    UniversalKnowledge(
        knowledge_id="CORE-FANBASE-004-principles-over-algorithms",
        knowledge_type=KnowledgeType.CORE,
        category="instagram",
        title="Principles over algorithm changes",
        valid_from=SEED_VALID_FROM,
        concept=(
            "Platform algorithms change constantly; what people value does not. "
            "Use trends as tactics in service of lasting principles."
        ),
        guidelines=[
            Guideline(
                if_="a new feature or algorithm change is announced",
                then="test it, but only where it serves the existing fan relationship",
                reason="tactics tied to one algorithm expire, loyal fans do not",
            ),
            Guideline(
                if_="the user asks about Reels or another new format",
                then="recommend it as a way to show value to fans, not as a reach hack",
                reason="format alone does not build trust",
            ),
        ],
        tone_and_phrasing=[
            "Algorithms change; people's hearts do not",
            "Chase value, not the feed",
        ],
        context=[
            ContextChange(
                before_period="Each major platform update",
                old_practice="rushing to exploit every new algorithm signal",
                new_practice="adopting features that reinforce the core fan strategy",
            ),
        ],
        metadata={"theme": "fanbase"},
    ),
]


async def _ingest_one(
    store: KnowledgeStore,
    embedder: EmbeddingClient,
    knowledge: UniversalKnowledge,
) -> Optional[str]:
    """Render, embed and store one core record. Returns an error string on failure."""
    content = knowledge_to_markdown(knowledge)
    embedding = await embedder.embed(content)
    if not embedding:
        logger.warning(f"[CORE] Storing {knowledge.knowledge_id} without embedding")

    try:
        written = await store.upsert_knowledge(knowledge, content, embedding or None)
    except StorageError as e:
        logger.error(f"[CORE] Failed to insert {knowledge.knowledge_id}: {e}")
        return f"{knowledge.knowledge_id}: {e}"

    if not written:
        return f"{knowledge.knowledge_id}: rejected by store"
    return None


async def ingest_core_knowledge(
    store: KnowledgeStore,
    embedder: EmbeddingClient,
    records: Optional[list[UniversalKnowledge]] = None,
    pause: float = 0.5,
) -> dict[str, Any]:
    """
    Load the core seed set (or `records`) into the store, one at a time.

    Returns:
        {"success": bool, "inserted": int, "errors": list[str]}
    """
    records = CORE_KNOWLEDGE if records is None else records
    logger.info(f"[CORE] Starting ingestion of {len(records)} core knowledge items")

    pacer = BatchPacer(window=1, pause=pause, name="core")
    outcomes = await pacer.map(lambda k: _ingest_one(store, embedder, k), records)

    errors = [error for error in outcomes if error]
    inserted = len(records) - len(errors)
    logger.info(f"[CORE] Completed: {inserted}/{len(records)} inserted")

    return {"success": not errors, "inserted": inserted, "errors": errors}


def as_core(knowledge: UniversalKnowledge) -> UniversalKnowledge:
    """Copy of `knowledge` with the CORE- prefix, core type and neverOverride flag."""
    knowledge_id = knowledge.knowledge_id
    if not knowledge_id.startswith(CORE_PREFIX):
        knowledge_id = f"{CORE_PREFIX}{knowledge_id}"
    return replace(
        knowledge,
        knowledge_id=knowledge_id,
        knowledge_type=KnowledgeType.CORE,
        metadata={**knowledge.metadata, "neverOverride": True},
    )


async def add_custom_core_knowledge(
    store: KnowledgeStore,
    embedder: EmbeddingClient,
    knowledge: UniversalKnowledge,
) -> bool:
    """Store an operator-supplied record as core knowledge. Returns True on success."""
    error = await _ingest_one(store, embedder, as_core(knowledge))
    if error:
        logger.error(f"[CORE] Failed to add custom knowledge: {error}")
        return False
    return True
