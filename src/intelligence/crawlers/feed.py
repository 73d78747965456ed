"""Feed crawler for RSS 2.0 and Atom sources."""

import logging
from calendar import timegm
from datetime import datetime, timezone
from typing import Any, Optional

import feedparser

from src.intelligence.base import CrawledArticle
from src.intelligence.crawlers.base import BaseCrawler, extract_text_from_html, parse_date
from src.intelligence.errors import ConfigError, ParseError

logger = logging.getLogger(__name__)


def _entry_datetime(entry: Any) -> Optional[datetime]:
    for key in ("published_parsed", "updated_parsed"):
        struct = entry.get(key)
        if struct:
            return datetime.fromtimestamp(timegm(struct), tz=timezone.utc)
    return parse_date(entry.get("published") or entry.get("updated"))


def _entry_content(entry: Any) -> str:
    # Full content (content:encoded / atom:content) wins over the summary
    for block in entry.get("content") or []:
        value = block.get("value") if isinstance(block, dict) else getattr(block, "value", None)
        if value:
            return value
    return entry.get("summary") or entry.get("description") or ""


class FeedCrawler(BaseCrawler):
    """
    Reads a syndication feed.

    feedparser normalises RSS `<item>` and Atom `<entry>` shapes into the
    same entry list, so a source may publish either.
    """

    async def fetch_articles(self) -> list[CrawledArticle]:
        if not self.source.feed_url:
            raise ConfigError(f"Feed URL is not configured for {self.source.source_id}")

        response = await self.fetcher.get(self.source.feed_url)
        return self.parse_feed(response.text)

    def parse_feed(self, xml: str) -> list[CrawledArticle]:
        """Parse feed XML into articles. Entries without title or link are skipped."""
        parsed = feedparser.parse(xml)

        if parsed.bozo and not parsed.entries:
            raise ParseError(f"Malformed feed: {parsed.get('bozo_exception')}")

        articles = []
        for entry in parsed.entries:
            title = (entry.get("title") or "").strip()
            link = (entry.get("link") or "").strip()
            if not title or not link:
                continue

            content = _entry_content(entry)
            articles.append(
                self._article(
                    url=link,
                    title=title,
                    content=extract_text_from_html(content) if content else "",
                    published_at=_entry_datetime(entry),
                    author=entry.get("author") or None,
                )
            )

        logger.debug(f"[FEED] {self.source.source_id}: parsed {len(articles)} entries")
        return articles
