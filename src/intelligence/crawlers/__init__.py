"""
Crawlers: one implementation per source kind.

Usage:
    from src.intelligence.crawlers import create_crawler

    crawler = create_crawler(source, fetcher=fetcher)
    result = await crawler.crawl()
"""

from typing import Optional

from src.intelligence.base import KnowledgeSource, SourceType
from src.intelligence.config import CrawlerConfig, SocialCredentials
from src.intelligence.crawlers.base import BaseCrawler, filter_new_articles
from src.intelligence.crawlers.feed import FeedCrawler
from src.intelligence.crawlers.http import RetryingFetcher
from src.intelligence.crawlers.sitemap import SitemapCrawler, is_article_url
from src.intelligence.crawlers.social import (
    SocialDiscoveryCrawler,
    is_informative_post,
    validate_social_credentials,
)


def create_crawler(
    source: KnowledgeSource,
    config: Optional[CrawlerConfig] = None,
    fetcher: Optional[RetryingFetcher] = None,
    social_credentials: Optional[SocialCredentials] = None,
) -> Optional[BaseCrawler]:
    """Pick the crawler for a source. Returns None for uncrawlable types."""
    if source.source_type == SourceType.FEED:
        return FeedCrawler(source, config=config, fetcher=fetcher)
    if source.source_type == SourceType.SITEMAP:
        return SitemapCrawler(source, config=config, fetcher=fetcher)
    if source.source_type == SourceType.SOCIAL_DISCOVERY:
        return SocialDiscoveryCrawler(
            source,
            config=config,
            fetcher=fetcher,
            credentials=social_credentials,
        )
    return None


__all__ = [
    "BaseCrawler",
    "FeedCrawler",
    "SitemapCrawler",
    "SocialDiscoveryCrawler",
    "RetryingFetcher",
    "create_crawler",
    "filter_new_articles",
    "is_article_url",
    "is_informative_post",
    "validate_social_credentials",
]
