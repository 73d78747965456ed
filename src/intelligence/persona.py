"""
Consultant persona and chat integration helpers.

The chat layer calls `should_use_rag` / `infer_category` to decide
whether and where to search, then `generate_system_prompt_with_rag` to
get a system prompt that is grounded when knowledge is found and falls
back to the default persona when it is not.
"""

import logging
import re
from dataclasses import dataclass, replace
from typing import Optional

from src.intelligence.base import RAGContext
from src.intelligence.retrieval import RAGEngine

logger = logging.getLogger(__name__)

RULE = "=" * 50

PERSONA = """You are "Marty", an AI marketing consultant.

CHARACTER:
- Act as a veteran consultant with more than ten years of hands-on marketing experience
- Warm, but you name the real problem directly
- You do not chase fads and never lose sight of what actually matters
- You genuinely want the user's business to succeed

STYLE:
- Polite by default, with the occasional casual turn of phrase
- Speak from your own experience ("in my experience", "from what I have seen")
- Go beyond theory and propose concrete actions
- Acknowledge strengths, and be candid about what to improve
- Reply in the language the user writes in"""

RAG_INSTRUCTION = """IMPORTANT INSTRUCTIONS:

Treat the [Retrieved Knowledge] below not as quotes from articles or books,
but as YOUR OWN long experience and memory.

1. Do not quote
   - Never say "according to an article" or "a book says"
   - Say "in my experience" or "I have told many clients"

2. Contextualize
   - Explain how practice changed: "X used to be standard, now it is Y"
   - Apply the knowledge to the user's situation

3. Core first
   - When [The Core] and [The Trends] conflict, always follow [The Core]
     and explain: "the current trend is this, but by the principle I hold..."

4. Practical advice
   - Propose a concrete first step the user can take today

5. Honest feedback
   - If the user's idea is wrong, say so, and always show how to improve it"""

CORE_PRINCIPLES = """YOUR PRINCIPLES:

1. Fan-base strategy first
   - "100 devoted fans beat 1,000 passive followers"
   - Deepen existing fans before chasing new reach

2. Look after existing customers
   - "Pouring water into a leaking bucket achieves nothing"
   - Prioritise retention and repeat rate

3. Trust and empathy
   - "Ads say what you want to say; word of mouth says what people want to hear"
   - Build ways for customers to speak for you instead of selling at them

4. Do not be swept along by trends
   - "Algorithms change; people's hearts do not"
   - Never forget to deliver real value"""

TOOLS_HEADER = "The following are the tools and business rules available to you"

TOOL_SECTION_MARKERS = [
    "## Autonomous",
    "## Tools",
    "### Business Rules",
]

MARKETING_KEYWORDS = [
    # Strategy
    "strategy", "戦略",
    "marketing", "マーケティング",
    "集客",
    "brand", "ブランド",
    "fan", "ファン",
    "customer", "顧客",
    "リピート",
    # Social
    "instagram", "インスタ",
    "sns",
    "follower", "フォロワー",
    "engagement", "エンゲージメント",
    "投稿",
    "reel", "リール",
    # Asking for help
    "how do i", "how can i",
    "どうすれば", "どうしたら",
    "教えて",
    "advice", "アドバイス",
    "相談",
    "tips", "コツ",
    "方法",
    # SEO and ads
    "seo",
    "広告",
    "アクセス",
    "conversion", "コンバージョン",
    # Business
    "sales", "売上",
    "revenue", "収益",
    "growth", "成長",
]

QUESTION_ENDINGS = ("か", "ですか", "ますか")

INSTAGRAM_HINT_TERMS = ["投稿", "フォロワー", "リール", "post", "follower", "reel"]

_SOCIAL_X = re.compile(r"\bx\b")


def should_use_rag(message: str) -> bool:
    """True for marketing consultations or anything phrased as a question."""
    lowered = message.lower().strip()
    has_keyword = any(keyword in lowered for keyword in MARKETING_KEYWORDS)
    is_question = "?" in message or "？" in message or lowered.endswith(QUESTION_ENDINGS)
    return has_keyword or is_question


def infer_category(message: str) -> Optional[str]:
    """Guess a knowledge category from the message; None searches all categories."""
    lowered = message.lower()

    if "instagram" in lowered or "インスタ" in lowered or "リール" in lowered:
        return "instagram"
    if "seo" in lowered or "検索" in lowered:
        return "seo"
    if "twitter" in lowered or "ツイート" in lowered or _SOCIAL_X.search(lowered):
        return "social"
    return None


def expand_query(query: str) -> str:
    """Add an Instagram hint to post/follower/reel questions that do not name the platform."""
    lowered = query.lower()
    if "instagram" in lowered or "インスタ" in lowered:
        return query
    if any(term in lowered for term in INSTAGRAM_HINT_TERMS):
        return f"{query} (related: Instagram)"
    return query


def build_system_prompt(rag_context: RAGContext) -> str:
    """Persona + knowledge instructions + the retrieved context."""
    parts = [PERSONA, "", RAG_INSTRUCTION, ""]

    if rag_context.formatted_context:
        parts.extend([RULE, "[Retrieved Knowledge]", RULE, "", rag_context.formatted_context])
    else:
        parts.append("[Note] No knowledge directly related to this question was found.")
        parts.append("Answer from your general experience and knowledge.")
        parts.append(
            "Always keep the Core principles in mind: fan base, existing customers, "
            "trust and empathy."
        )

    parts.extend(["", RULE, 'Using the knowledge above, answer the user as "Marty".', RULE])
    return "\n".join(parts)


def build_default_system_prompt() -> str:
    """Persona plus fixed principles, used when nothing was retrieved."""
    return "\n".join([PERSONA, "", CORE_PRINCIPLES])


def extract_tool_section(prompt: str) -> str:
    """The part of an existing prompt from its first tool/rules heading on."""
    for marker in TOOL_SECTION_MARKERS:
        index = prompt.find(marker)
        if index != -1:
            return prompt[index:]
    return prompt


def _with_tools(persona_prompt: str, tool_prompt: str) -> str:
    return f"{persona_prompt}\n\n{RULE}\n{TOOLS_HEADER}\n{RULE}\n\n{tool_prompt}"


@dataclass
class SystemPromptResult:
    """System prompt for one chat turn."""

    system_prompt: str
    rag_used: bool
    rag_context: Optional[RAGContext] = None


async def generate_system_prompt_with_rag(
    engine: RAGEngine,
    message: str,
    existing_prompt: str,
    enabled: bool = True,
    category: Optional[str] = None,
    max_results: Optional[int] = None,
) -> SystemPromptResult:
    """
    Build the system prompt for `message`, grounded when knowledge is found.

    - disabled: the existing prompt unchanged
    - no embedding credentials or no hits: default persona + existing prompt
    - hits: grounded persona + the tool section of the existing prompt
    - retrieval error: the existing prompt unchanged
    """
    if not enabled:
        return SystemPromptResult(system_prompt=existing_prompt, rag_used=False)

    if not engine.embedder.configured:
        logger.warning("[RAG] Embedding credentials not set, skipping retrieval")
        return SystemPromptResult(
            system_prompt=_with_tools(build_default_system_prompt(), existing_prompt),
            rag_used=False,
        )

    if max_results is not None:
        engine = RAGEngine(
            engine.store,
            engine.embedder,
            replace(engine.config, max_results=max_results),
        )

    try:
        rag_context = await engine.retrieve(expand_query(message), category)
    except Exception as e:
        logger.exception(f"[RAG] Retrieval failed: {e}")
        return SystemPromptResult(system_prompt=existing_prompt, rag_used=False)

    if rag_context.is_empty:
        logger.info("[RAG] No relevant knowledge found, using default persona")
        return SystemPromptResult(
            system_prompt=_with_tools(build_default_system_prompt(), existing_prompt),
            rag_used=False,
        )

    logger.info(f"[RAG] Retrieved {len(rag_context.retrieved_knowledge)} knowledge items")
    return SystemPromptResult(
        system_prompt=_with_tools(
            build_system_prompt(rag_context),
            extract_tool_section(existing_prompt),
        ),
        rag_used=True,
        rag_context=rag_context,
    )
