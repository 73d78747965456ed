"""
Sitemap crawler.

Reads a sitemap, keeps article-like URLs, and fetches the newest pages
one at a time to extract title, body, date and author.
"""

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from bs4 import BeautifulSoup

from src.intelligence.base import CrawledArticle
from src.intelligence.crawlers.base import BaseCrawler, extract_text_from_html, parse_date
from src.intelligence.errors import ConfigError, IntelligenceError, ParseError
from src.intelligence.pacing import BatchPacer

logger = logging.getLogger(__name__)

ARTICLE_PATTERNS = [
    re.compile(r"/blog/"),
    re.compile(r"/article"),
    re.compile(r"/post/"),
    re.compile(r"/news/"),
    re.compile(r"/\d{4}/\d{2}/"),
    re.compile(r"\d{4}-\d{2}-\d{2}"),
]

EXCLUDE_PATTERNS = [
    re.compile(r"/tag/"),
    re.compile(r"/category/"),
    re.compile(r"/author/"),
    re.compile(r"/page/\d+"),
    re.compile(r"\?"),
    re.compile(r"#"),
]

FALLBACK_CONTENT_CHARS = 5000


def is_article_url(url: str) -> bool:
    """True for date/blog/article paths that are not listing or query pages."""
    is_article = any(p.search(url) for p in ARTICLE_PATTERNS)
    is_excluded = any(p.search(url) for p in EXCLUDE_PATTERNS)
    return is_article and not is_excluded


@dataclass
class SitemapEntry:
    url: str
    lastmod: Optional[datetime] = None


def parse_sitemap(xml: str) -> list[SitemapEntry]:
    """
    Extract article-like `<url>` entries, newest `lastmod` first.

    Entries without `lastmod` sort after dated ones. Nested sitemap
    indexes are reported but not followed.
    """
    soup = BeautifulSoup(xml, "html.parser")
    if soup.find("urlset") is None and soup.find("sitemapindex") is None:
        raise ParseError("Document is not a sitemap (no <urlset> or <sitemapindex>)")

    nested = [loc.get_text(strip=True) for loc in soup.select("sitemap > loc")]
    if nested:
        logger.info(f"[SITEMAP] Sitemap index lists {len(nested)} child sitemaps (not followed)")

    entries = []
    for node in soup.find_all("url"):
        loc = node.find("loc")
        if loc is None:
            continue
        url = loc.get_text(strip=True)
        if not url or not is_article_url(url):
            continue
        lastmod = node.find("lastmod")
        entries.append(
            SitemapEntry(
                url=url,
                lastmod=parse_date(lastmod.get_text(strip=True)) if lastmod else None,
            )
        )

    dated = sorted((e for e in entries if e.lastmod), key=lambda e: e.lastmod, reverse=True)
    undated = [e for e in entries if not e.lastmod]
    return dated + undated


def _json_ld_blocks(soup: BeautifulSoup) -> list[dict[str, Any]]:
    blocks: list[dict[str, Any]] = []
    for script in soup.find_all("script", type="application/ld+json"):
        try:
            data = json.loads(script.string or "")
        except (json.JSONDecodeError, TypeError):
            continue
        items = data if isinstance(data, list) else [data]
        for item in items:
            if not isinstance(item, dict):
                continue
            blocks.append(item)
            graph = item.get("@graph")
            if isinstance(graph, list):
                blocks.extend(g for g in graph if isinstance(g, dict))
    return blocks


def _meta(soup: BeautifulSoup, **attrs: str) -> Optional[str]:
    tag = soup.find("meta", attrs=attrs)
    if tag and tag.get("content"):
        return tag["content"].strip()
    return None


def extract_page(html: str) -> dict[str, Any]:
    """
    Pull title, body text, published date and author out of an article page.

    Heuristics, in order:
    - title: <title>, then <h1>
    - body: <article>, <main>, a div whose class contains "content", else page text
    - date: article:published_time meta, <time datetime>, JSON-LD datePublished
    - author: author meta, JSON-LD author.name
    """
    soup = BeautifulSoup(html, "html.parser")
    ld_blocks = _json_ld_blocks(soup)

    title = None
    if soup.title and soup.title.get_text(strip=True):
        title = soup.title.get_text(strip=True)
    elif soup.h1 and soup.h1.get_text(strip=True):
        title = soup.h1.get_text(strip=True)

    body = (
        soup.find("article")
        or soup.find("main")
        or soup.find("div", class_=lambda c: bool(c) and "content" in c)
    )
    if body is not None:
        content = extract_text_from_html(str(body))
    else:
        content = extract_text_from_html(html)[:FALLBACK_CONTENT_CHARS]

    published_raw = _meta(soup, property="article:published_time")
    if not published_raw:
        time_tag = soup.find("time", attrs={"datetime": True})
        published_raw = time_tag["datetime"] if time_tag else None
    if not published_raw:
        published_raw = next(
            (b["datePublished"] for b in ld_blocks if isinstance(b.get("datePublished"), str)),
            None,
        )

    author = _meta(soup, name="author")
    if not author:
        for block in ld_blocks:
            ld_author = block.get("author")
            if isinstance(ld_author, list) and ld_author:
                ld_author = ld_author[0]
            if isinstance(ld_author, dict) and ld_author.get("name"):
                author = str(ld_author["name"]).strip()
                break

    return {
        "title": title,
        "content": content,
        "published_at": parse_date(published_raw),
        "author": author,
    }


class SitemapCrawler(BaseCrawler):
    """Crawls the newest article pages listed in a sitemap."""

    async def fetch_articles(self) -> list[CrawledArticle]:
        if not self.source.feed_url:
            raise ConfigError(f"Sitemap URL is not configured for {self.source.source_id}")

        response = await self.fetcher.get(self.source.feed_url)
        entries = parse_sitemap(response.text)
        recent = entries[: self.config.sitemap_max_articles]

        logger.info(
            f"[SITEMAP] {self.source.source_id}: {len(entries)} article URLs, "
            f"fetching {len(recent)}"
        )

        pacer = BatchPacer(
            window=1,
            pause=self.config.sitemap_fetch_delay,
            name=f"sitemap:{self.source.source_id}",
        )
        pages = await pacer.map(self.fetch_article_content, recent)
        return [page for page in pages if page is not None]

    async def fetch_article_content(self, entry: SitemapEntry) -> Optional[CrawledArticle]:
        """Fetch one page. A failed page is logged and skipped."""
        try:
            response = await self.fetcher.get(entry.url)
            page = extract_page(response.text)
        except IntelligenceError as e:
            logger.warning(f"[SITEMAP] Failed to fetch article {entry.url}: {e}")
            return None
        except Exception as e:
            logger.warning(f"[SITEMAP] Failed to parse article {entry.url}: {e}")
            return None

        return self._article(
            url=entry.url,
            title=page["title"] or "Untitled",
            content=page["content"],
            published_at=page["published_at"] or entry.lastmod,
            author=page["author"],
        )
