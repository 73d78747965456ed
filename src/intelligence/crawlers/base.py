"""
Base crawler: the template every source kind plugs into.

Subclasses implement `fetch_articles()`. `crawl()` applies the shared
new-article filter and turns any failure into a CrawlResult so one
broken source never aborts its siblings.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from email.utils import parsedate_to_datetime
from time import perf_counter
from typing import Optional

from bs4 import BeautifulSoup

from src.intelligence.base import (
    CrawledArticle,
    CrawlResult,
    KnowledgeSource,
    parse_timestamp,
    utcnow,
)
from src.intelligence.config import CrawlerConfig
from src.intelligence.crawlers.http import RetryingFetcher
from src.intelligence.errors import ConfigError

logger = logging.getLogger(__name__)


def filter_new_articles(
    articles: list[CrawledArticle],
    last_crawled_at: Optional[datetime],
    lookback_days: int = 30,
    now: Optional[datetime] = None,
) -> list[CrawledArticle]:
    """
    Keep only articles newer than the source watermark.

    On a first run (no watermark) only the trailing `lookback_days` are
    kept, so enabling a source never ingests its whole history.
    """
    if last_crawled_at is None:
        cutoff = (now or utcnow()) - timedelta(days=lookback_days)
        return [a for a in articles if a.published_at >= cutoff]

    return [a for a in articles if a.published_at > last_crawled_at]


def extract_text_from_html(html: str) -> str:
    """Strip scripts, styles and tags, collapsing whitespace."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    return " ".join(soup.get_text(separator=" ").split())


def parse_date(value: Optional[str]) -> Optional[datetime]:
    """Parse ISO-8601 or RFC-822 dates. Returns None when unparsable."""
    if not value:
        return None
    parsed = parse_timestamp(value)
    if parsed is not None:
        return parsed
    try:
        return parse_timestamp(parsedate_to_datetime(value.strip()))
    except (TypeError, ValueError):
        return None


class BaseCrawler(ABC):
    """
    Abstract base class for all crawlers.

    Subclasses must implement:
    - fetch_articles: Return every article currently visible at the source
    """

    def __init__(
        self,
        source: KnowledgeSource,
        config: Optional[CrawlerConfig] = None,
        fetcher: Optional[RetryingFetcher] = None,
    ):
        self.source = source
        self.config = config or CrawlerConfig()
        self.fetcher = fetcher or RetryingFetcher(self.config)

    async def crawl(self) -> CrawlResult:
        """Fetch, filter to new articles and report the outcome."""
        start_time = perf_counter()
        name = self.source.display_name
        logger.info(f"[CRAWLER] Starting crawl for {name}")

        try:
            articles = await self.fetch_articles()
            new_articles = filter_new_articles(
                articles,
                self.source.last_crawled_at,
                lookback_days=self.config.first_run_lookback_days,
            )
            logger.info(
                f"[CRAWLER] {name}: found {len(articles)} articles, "
                f"{len(new_articles)} new since last crawl"
            )
            return CrawlResult(
                source_id=self.source.source_id,
                success=True,
                articles=new_articles,
            )

        except ConfigError as e:
            # Degraded mode: nothing to crawl, not a failed source
            logger.warning(f"[CRAWLER] {name} skipped: {e}")
            return CrawlResult(source_id=self.source.source_id, success=True)

        except Exception as e:
            logger.error(f"[CRAWLER] {name} failed: {e}")
            return CrawlResult(
                source_id=self.source.source_id,
                success=False,
                error=str(e),
            )

        finally:
            elapsed_ms = int((perf_counter() - start_time) * 1000)
            logger.info(f"[CRAWLER] {name} completed in {elapsed_ms}ms")

    @abstractmethod
    async def fetch_articles(self) -> list[CrawledArticle]:
        """
        Fetch all articles the source currently exposes.

        Raises:
            ConfigError: If the source is missing required settings
            SourceFetchError: If the origin cannot be reached
            ParseError: If the origin response is malformed
        """
        pass

    def _article(
        self,
        url: str,
        title: str,
        content: str,
        published_at: Optional[datetime],
        author: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> CrawledArticle:
        return CrawledArticle(
            url=url,
            title=title,
            content=content,
            published_at=published_at or utcnow(),
            author=author,
            source_id=self.source.source_id,
            category=self.source.default_category,
            metadata=metadata or {},
        )
