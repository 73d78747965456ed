"""Tests for persona prompts and chat integration helpers."""

from datetime import date

import pytest
from unittest.mock import AsyncMock, MagicMock

from src.intelligence.base import KnowledgeType, RAGContext, SearchResult
from src.intelligence.config import RAGConfig
from src.intelligence.persona import (
    PERSONA,
    RULE,
    build_default_system_prompt,
    build_system_prompt,
    expand_query,
    extract_tool_section,
    generate_system_prompt_with_rag,
    infer_category,
    should_use_rag,
)
from src.intelligence.retrieval import RAGEngine
from src.intelligence.testing import InMemoryKnowledgeStore


EXISTING_PROMPT = "You are a helpful assistant.\n\n## Tools\n- create_post: drafts a post"


class TestShouldUseRag:
    """Tests for the retrieval gate."""

    @pytest.mark.parametrize("message", [
        "インスタのリール投稿のコツ",
        "集客の方法を教えて",
        "How do I grow my Instagram?",
        "What is a good posting schedule?",
        "フォロワーを増やすにはどうすればいいですか",
        "SEO strategy for a bakery",
    ])
    def test_marketing_or_question(self, message):
        assert should_use_rag(message) is True

    @pytest.mark.parametrize("message", ["ありがとう", "hello", "Thanks, that helps."])
    def test_small_talk(self, message):
        assert should_use_rag(message) is False


class TestInferCategory:
    """Tests for category inference."""

    def test_instagram(self):
        assert infer_category("インスタのリール投稿のコツ") == "instagram"
        assert infer_category("Instagram stories") == "instagram"

    def test_seo(self):
        assert infer_category("SEO対策について") == "seo"
        assert infer_category("検索順位を上げたい") == "seo"

    def test_social(self):
        assert infer_category("Twitterで伸ばすには") == "social"
        assert infer_category("Should I post on X more?") == "social"

    def test_no_false_social_match_on_letter_x(self):
        assert infer_category("next steps for my business") is None

    def test_unknown(self):
        assert infer_category("売上を伸ばしたい") is None


class TestExpandQuery:
    """Tests for query expansion."""

    def test_adds_instagram_hint(self):
        assert expand_query("投稿の頻度は？") == "投稿の頻度は？ (related: Instagram)"

    def test_no_hint_when_platform_named(self):
        assert expand_query("インスタの投稿の頻度は？") == "インスタの投稿の頻度は？"

    def test_unrelated_query_unchanged(self):
        assert expand_query("SEO basics") == "SEO basics"


class TestPrompts:
    """Tests for system prompt builders."""

    def test_with_context(self):
        prompt = build_system_prompt(RAGContext(query="q", formatted_context="CORE STUFF"))

        assert prompt.startswith(PERSONA)
        assert f"{RULE}\n[Retrieved Knowledge]\n{RULE}\n\nCORE STUFF" in prompt

    def test_without_context(self):
        prompt = build_system_prompt(RAGContext(query="q"))

        assert f"{RULE}\n[Retrieved Knowledge]\n{RULE}" not in prompt
        assert "No knowledge directly related" in prompt

    def test_default_prompt(self):
        prompt = build_default_system_prompt()

        assert prompt.startswith(PERSONA)
        assert "Fan-base strategy first" in prompt

    def test_extract_tool_section(self):
        assert extract_tool_section(EXISTING_PROMPT).startswith("## Tools")
        assert extract_tool_section("no markers here") == "no markers here"


def hit() -> SearchResult:
    return SearchResult(
        knowledge_id="CORE-1",
        knowledge_type=KnowledgeType.CORE,
        category="marketing",
        title="Fans over followers",
        content="Deepen existing fans.",
        valid_from=date(2024, 1, 1),
        similarity=0.9,
    )


def make_engine(context: RAGContext = None, configured: bool = True, error: Exception = None) -> RAGEngine:
    embedder = MagicMock()
    embedder.configured = configured
    embedder.embed = AsyncMock(return_value=[1.0, 0.0])
    engine = RAGEngine(InMemoryKnowledgeStore(), embedder, RAGConfig())
    engine.retrieve = AsyncMock(return_value=context, side_effect=error)
    return engine


class TestGenerateSystemPromptWithRag:
    """Tests for the chat integration entry point."""

    @pytest.mark.asyncio
    async def test_disabled(self):
        engine = make_engine()

        result = await generate_system_prompt_with_rag(engine, "hi?", EXISTING_PROMPT, enabled=False)

        assert result.system_prompt == EXISTING_PROMPT
        assert result.rag_used is False
        engine.retrieve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_embedding_credentials(self):
        engine = make_engine(configured=False)

        result = await generate_system_prompt_with_rag(engine, "リールのコツ", EXISTING_PROMPT)

        assert result.rag_used is False
        assert result.system_prompt.startswith(build_default_system_prompt())
        assert result.system_prompt.endswith(EXISTING_PROMPT)
        engine.retrieve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_grounded_prompt(self):
        context = RAGContext(
            query="q",
            retrieved_knowledge=[hit()],
            core_knowledge=[hit()],
            formatted_context="### Fans over followers",
        )
        engine = make_engine(context)

        result = await generate_system_prompt_with_rag(
            engine, "投稿のコツは？", EXISTING_PROMPT, category="instagram"
        )

        assert result.rag_used is True
        assert result.rag_context is context
        assert "### Fans over followers" in result.system_prompt
        assert result.system_prompt.endswith("## Tools\n- create_post: drafts a post")
        assert "You are a helpful assistant." not in result.system_prompt
        engine.retrieve.assert_awaited_once_with("投稿のコツは？ (related: Instagram)", "instagram")

    @pytest.mark.asyncio
    async def test_no_hits_falls_back_to_default_persona(self):
        engine = make_engine(RAGContext(query="q"))

        result = await generate_system_prompt_with_rag(engine, "SEOのコツ", EXISTING_PROMPT)

        assert result.rag_used is False
        assert result.rag_context is None
        assert result.system_prompt.startswith(build_default_system_prompt())

    @pytest.mark.asyncio
    async def test_error_keeps_existing_prompt(self):
        engine = make_engine(error=RuntimeError("boom"))

        result = await generate_system_prompt_with_rag(engine, "SEOのコツ", EXISTING_PROMPT)

        assert result.system_prompt == EXISTING_PROMPT
        assert result.rag_used is False

    @pytest.mark.asyncio
    async def test_max_results_override_leaves_engine_untouched(self):
        store = InMemoryKnowledgeStore()
        embedder = MagicMock()
        embedder.configured = True
        embedder.embed = AsyncMock(return_value=[1.0, 0.0])
        engine = RAGEngine(store, embedder, RAGConfig(max_results=5))

        result = await generate_system_prompt_with_rag(engine, "SEOのコツ", EXISTING_PROMPT, max_results=2)

        assert result.rag_used is False
        assert engine.config.max_results == 5
