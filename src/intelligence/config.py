"""
Configuration dataclasses for the intelligence pipeline.

Each subsystem receives its own config object. Credentials left empty
are read from environment variables in `__post_init__`.

Environment Variables:
    OPENROUTER_API_KEY: Language-model distillation
    GOOGLE_API_KEY: Gemini text embeddings
    SUPABASE_URL / SUPABASE_SERVICE_KEY: Vector store and source registry
    INSTAGRAM_ACCESS_TOKEN / INSTAGRAM_BUSINESS_ACCOUNT_ID: Social discovery
"""

import os
from dataclasses import dataclass


@dataclass
class CrawlerConfig:
    """Shared fetch and filter settings for every crawler."""

    retry_count: int = 3
    retry_delay: float = 1.0  # seconds, multiplied by attempt number
    timeout: float = 30.0  # hard per-request deadline
    user_agent: str = "MarketingIntelligenceBot/1.0 (+https://example.com/bot)"
    first_run_lookback_days: int = 30

    sitemap_max_articles: int = 20
    sitemap_fetch_delay: float = 0.5

    social_min_caption_length: int = 50
    social_media_limit: int = 25
    graph_api_base_url: str = "https://graph.facebook.com"
    graph_api_version: str = "v18.0"


@dataclass
class SocialCredentials:
    """
    Credentials for the business-discovery endpoint.

    Example:
        # From environment
        creds = SocialCredentials()

        # Explicit values
        creds = SocialCredentials(access_token="tok", business_account_id="123")
    """

    access_token: str | None = None
    business_account_id: str | None = None

    def __post_init__(self):
        if self.access_token is None:
            self.access_token = os.getenv("INSTAGRAM_ACCESS_TOKEN", "")
        if self.business_account_id is None:
            self.business_account_id = os.getenv("INSTAGRAM_BUSINESS_ACCOUNT_ID", "")

    @property
    def configured(self) -> bool:
        return bool(self.access_token and self.business_account_id)


@dataclass
class LLMConfig:
    """Language model used for distillation (OpenRouter chat completions)."""

    api_key: str = ""
    base_url: str = "https://openrouter.ai/api/v1"
    model: str = "google/gemini-flash-1.5"
    temperature: float = 0.3
    max_tokens: int = 4096
    timeout: float = 60.0  # hard per-attempt deadline
    max_retries: int = 3
    retry_delay: float = 2.0  # seconds, multiplied by attempt number

    def __post_init__(self):
        if not self.api_key:
            self.api_key = os.getenv("OPENROUTER_API_KEY", "")


@dataclass
class DistillerConfig:
    """Batch distillation pacing and prompt limits."""

    concurrency: int = 2  # model calls in flight per window
    window_pause: float = 1.0  # seconds between windows
    max_content_chars: int = 3000


@dataclass
class EmbeddingConfig:
    """Gemini embedding settings. Ingestion and retrieval must share these."""

    api_key: str = ""
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    model: str = "text-embedding-004"
    max_input_chars: int = 8000
    timeout: float = 30.0

    def __post_init__(self):
        if not self.api_key:
            self.api_key = os.getenv("GOOGLE_API_KEY", "")


@dataclass
class StoreConfig:
    """Supabase tables and RPC backing the knowledge store."""

    supabase_url: str = ""
    supabase_key: str = ""
    sources_table: str = "knowledge_sources"
    knowledge_table: str = "knowledge_vectors"
    crawl_logs_table: str = "crawl_logs"
    reports_table: str = "trend_reports"
    search_rpc: str = "search_knowledge_with_priority"

    def __post_init__(self):
        if not self.supabase_url:
            self.supabase_url = os.getenv("SUPABASE_URL", "")
        if not self.supabase_key:
            self.supabase_key = os.getenv("SUPABASE_SERVICE_KEY", "")


@dataclass
class RAGConfig:
    """Retrieval settings."""

    max_results: int = 5
    similarity_threshold: float = 0.0  # opt-in floor; 0.0 keeps the top-N as ranked
    always_include_core: bool = True


@dataclass
class OrchestratorConfig:
    """Batch run pacing."""

    crawl_concurrency: int = 1  # 1 keeps cross-source crawling sequential
    source_pause: float = 0.5
    embed_concurrency: int = 2
    embed_pause: float = 0.0
    advance_watermark_on_failure: bool = False
