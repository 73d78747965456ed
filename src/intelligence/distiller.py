"""
Knowledge distillation using LLMs.

Turns a crawled article into a UniversalKnowledge record: a concept,
if/then/reason guidelines, phrasing and a before/after context, keyed by
a deterministic knowledge id so re-distilling the same article upserts.
"""

import json
import logging
import re
from datetime import datetime
from time import perf_counter
from typing import Optional

from pydantic import ValidationError

from src.intelligence.base import (
    ContextChange,
    CrawledArticle,
    DistillationResult,
    Guideline,
    KnowledgeType,
    UniversalKnowledge,
)
from src.intelligence.config import DistillerConfig
from src.intelligence.errors import DistillationError
from src.intelligence.llm import LLMClient
from src.intelligence.pacing import BatchPacer
from src.intelligence.schemas import ExtractionPayload

logger = logging.getLogger(__name__)

CATEGORIES = ["instagram", "seo", "marketing", "design", "social", "meta"]

DISTILLATION_PROMPT = """You are an expert at organising marketing knowledge.
Convert the article below into a "Universal Knowledge Template" JSON object.

RULES:
1. Do not summarise. Restructure the article into knowledge a marketer can act on.
2. Guidelines MUST be If-Then rules describing a concrete situation and response, with a reason.
3. Context describes how practice changed: what used to be true and what is true now.
4. Tone & phrasing lists memorable phrases for explaining this knowledge.
5. If the article lacks information for a field, leave that list empty. Do not guess.
6. Write values in the same language as the article, except suggestedKeyword.

Return JSON:
{{
    "title": "Knowledge title (short)",
    "concept": "The core idea in 1-2 sentences",
    "guidelines": [
        {{
            "if": "When the user ...",
            "then": "Suggest ...",
            "reason": "Because ..."
        }}
    ],
    "toneAndPhrasing": ["Phrase 1", "Phrase 2"],
    "context": [
        {{
            "beforePeriod": "Before 2024",
            "oldPractice": "What used to be common practice",
            "newPractice": "What is common practice now"
        }}
    ],
    "suggestedCategory": "{categories}",
    "suggestedKeyword": "English slug for the knowledge id (e.g. reels-algorithm)"
}}

ARTICLE:
Title: {title}
URL: {url}
Published: {published_at}
Author: {author}
Source: {source_id}

---
{content}
---

Return only the JSON object, no other text."""

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")
_NON_WORD = re.compile(r"[\W_]+")
_NON_SLUG = re.compile(r"[^a-z0-9]+")


def _base36(number: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if number <= 0:
        return "0"
    out = []
    while number:
        number, remainder = divmod(number, 36)
        out.append(digits[remainder])
    return "".join(reversed(out))


def slugify(text: str) -> str:
    """Lowercase ASCII slug: `Reels Algorithm!` -> `reels-algorithm`."""
    return _NON_SLUG.sub("-", text.lower()).strip("-")


def generate_keyword(title: str, now: Optional[datetime] = None) -> str:
    """
    Slug of the first three title tokens.

    Titles in a non-Latin script (e.g. Japanese) have no usable slug and
    get a time-based `topic-<base36>` token instead. `now` pins the token;
    the distiller passes the article's publish time so the id stays stable.
    """
    tokens = _NON_WORD.sub(" ", title.lower()).split()[:3]
    if tokens and all(token.isascii() for token in tokens):
        return "-".join(tokens)

    moment = now or datetime.now()
    return f"topic-{_base36(int(moment.timestamp()))}"


def generate_knowledge_id(article: CrawledArticle, keyword: str) -> str:
    """`{SOURCE-PREFIX}-{YYYYMM}-{keyword}`, e.g. `INSTAGRAM-META-202501-reels-algorithm`."""
    source_prefix = article.source_id.upper().replace("_", "-")
    year_month = article.published_at.strftime("%Y%m")
    return f"{source_prefix}-{year_month}-{keyword}"


def _repair_json(json_str: str) -> str:
    """Drop trailing commas, which models emit often enough to matter."""
    json_str = re.sub(r",\s*}", "}", json_str)
    json_str = re.sub(r",\s*]", "]", json_str)
    return json_str


def extract_json(response: str) -> dict:
    """
    Pull the JSON object out of a model response.

    Raises:
        DistillationError: If no `{...}` block is present or it is not valid JSON
    """
    match = _JSON_BLOCK.search(response)
    if not match:
        raise DistillationError("No JSON found in response")

    json_str = match.group(0)
    try:
        data = json.loads(json_str)
    except json.JSONDecodeError:
        try:
            data = json.loads(_repair_json(json_str))
        except json.JSONDecodeError as e:
            raise DistillationError(f"Invalid JSON in response: {e}") from e

    if not isinstance(data, dict):
        raise DistillationError("Response JSON is not an object")
    return data


def parse_distillation(response: str, article: CrawledArticle) -> UniversalKnowledge:
    """
    Validate a model response and build the trend record for `article`.

    Raises:
        DistillationError: If the response is missing JSON or any required field
    """
    data = extract_json(response)
    try:
        payload = ExtractionPayload.model_validate(data)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise DistillationError(f"Missing or invalid fields: {fields}") from e

    keyword = slugify(payload.suggested_keyword) or generate_keyword(
        payload.title, now=article.published_at
    )

    category = payload.suggested_category.strip().lower()
    if category not in CATEGORIES:
        category = article.category

    return UniversalKnowledge(
        knowledge_id=generate_knowledge_id(article, keyword),
        knowledge_type=KnowledgeType.TREND,
        category=category,
        title=payload.title,
        valid_from=article.published_at,
        concept=payload.concept,
        guidelines=[Guideline(if_=g.if_, then=g.then, reason=g.reason) for g in payload.guidelines],
        tone_and_phrasing=[p for p in payload.tone_and_phrasing if p.strip()],
        context=[
            ContextChange(
                before_period=c.before_period,
                old_practice=c.old_practice,
                new_practice=c.new_practice,
            )
            for c in payload.context
        ],
        source_urls=[article.url],
        metadata={
            "author": article.author,
            "originalTitle": article.title,
            **article.metadata,
        },
    )


def knowledge_to_markdown(knowledge: UniversalKnowledge) -> str:
    """
    Canonical text rendering of a record.

    Used both for review and as the embedding input, so the stored
    content and its vector always come from the same text.
    """
    lines = [
        f"# ID: {knowledge.knowledge_id}",
        f"# Title: {knowledge.title}",
        f"# Valid From: {knowledge.valid_from.date().isoformat()}",
        "",
        "## Concept",
        knowledge.concept,
        "",
        "## Guidelines (If-Then)",
    ]
    for g in knowledge.guidelines:
        lines.append(f"- IF: {g.if_}")
        lines.append(f"- THEN: {g.then}. Reason: {g.reason}")
        lines.append("")

    lines.append("## Tone & Phrasing")
    for phrase in knowledge.tone_and_phrasing:
        lines.append(f"- {phrase}")
    lines.append("")

    lines.append("## Context")
    for c in knowledge.context:
        lines.append(
            f"- Before ({c.before_period}): {c.old_practice}. Now: {c.new_practice}."
        )

    return "\n".join(lines)


class KnowledgeDistiller:
    """
    Distills crawled articles into UniversalKnowledge via an LLM.

    Example:
        distiller = KnowledgeDistiller(LLMClient())
        results = await distiller.distill_batch(articles)
    """

    def __init__(self, llm: LLMClient, config: Optional[DistillerConfig] = None):
        self.llm = llm
        self.config = config or DistillerConfig()

    def build_prompt(self, article: CrawledArticle) -> str:
        return DISTILLATION_PROMPT.format(
            categories=" | ".join(CATEGORIES),
            title=article.title,
            url=article.url,
            published_at=article.published_at.date().isoformat(),
            author=article.author or "Unknown",
            source_id=article.source_id,
            content=article.content[: self.config.max_content_chars],
        )

    async def distill(self, article: CrawledArticle) -> DistillationResult:
        """
        Distill one article. Never raises.

        Returns:
            DistillationResult with `knowledge` on success, `error` otherwise
        """
        start_time = perf_counter()
        logger.info(f"[DISTILLER] Processing: {article.title}")

        try:
            response = await self.llm.complete(self.build_prompt(article))
            knowledge = parse_distillation(response, article)

            logger.info(
                f"[DISTILLER] Distilled {knowledge.knowledge_id} "
                f"in {int((perf_counter() - start_time) * 1000)}ms"
            )
            return DistillationResult(success=True, source_article=article, knowledge=knowledge)

        except DistillationError as e:
            logger.warning(f"[DISTILLER] Failed to distill {article.url}: {e}")
            return DistillationResult(success=False, source_article=article, error=str(e))

        except Exception as e:
            logger.exception(f"[DISTILLER] Model call failed for {article.url}: {e}")
            return DistillationResult(success=False, source_article=article, error=str(e))

    async def distill_batch(self, articles: list[CrawledArticle]) -> list[DistillationResult]:
        """Distill articles in windows of `config.concurrency` model calls."""
        pacer = BatchPacer(
            window=self.config.concurrency,
            pause=self.config.window_pause,
            name="distiller",
        )
        results = await pacer.map(self.distill, articles)

        succeeded = sum(1 for r in results if r.success)
        logger.info(f"[DISTILLER] Batch complete: {succeeded}/{len(results)} distilled")
        return results
