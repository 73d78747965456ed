"""
Social discovery crawler.

Uses the Graph API business-discovery field to read recent captions of a
public business account. Only long, keyword-bearing captions are kept:
skipping a useful post is acceptable, admitting noise is not.

Required env vars:
- INSTAGRAM_ACCESS_TOKEN
- INSTAGRAM_BUSINESS_ACCOUNT_ID
"""

import logging
from typing import Any, Optional

import httpx

from src.intelligence.base import CrawledArticle, KnowledgeSource, parse_timestamp
from src.intelligence.config import CrawlerConfig, SocialCredentials
from src.intelligence.crawlers.base import BaseCrawler
from src.intelligence.crawlers.http import RetryingFetcher
from src.intelligence.errors import ConfigError

logger = logging.getLogger(__name__)

MEDIA_FIELDS = [
    "id",
    "caption",
    "media_type",
    "permalink",
    "timestamp",
    "like_count",
    "comments_count",
]

INFORMATIVE_KEYWORDS = [
    # Algorithm / features
    "algorithm", "アルゴリズム",
    "update", "アップデート",
    "new feature", "新機能",
    "tip", "ヒント",
    "advice", "アドバイス",
    # Engagement
    "engagement", "エンゲージメント",
    "reach", "リーチ",
    "followers", "フォロワー",
    # Formats
    "reels", "リール",
    "stories", "ストーリー",
    "carousel", "カルーセル",
    "content", "コンテンツ",
    # Business
    "creator", "クリエイター",
    "business", "ビジネス",
    "brand", "ブランド",
    "monetize", "収益化",
    # Announcements
    "announcement", "発表",
    "change", "変更",
    "launch", "ローンチ",
    "rolling out", "展開",
]

TITLE_MAX_CHARS = 100


def is_informative_post(caption: str) -> bool:
    """True when the caption mentions at least one informative keyword."""
    lowered = caption.lower()
    return any(keyword.lower() in lowered for keyword in INFORMATIVE_KEYWORDS)


def extract_title(caption: str) -> str:
    """First caption line, truncated to 100 characters."""
    first_line = caption.split("\n", 1)[0].strip()
    if len(first_line) <= TITLE_MAX_CHARS:
        return first_line
    return first_line[: TITLE_MAX_CHARS - 3] + "..."


class SocialDiscoveryCrawler(BaseCrawler):
    """Reads captions for `source.account_handle` via business discovery."""

    def __init__(
        self,
        source: KnowledgeSource,
        config: Optional[CrawlerConfig] = None,
        fetcher: Optional[RetryingFetcher] = None,
        credentials: Optional[SocialCredentials] = None,
    ):
        super().__init__(source, config=config, fetcher=fetcher)
        self.credentials = credentials or SocialCredentials()

    @property
    def endpoint(self) -> str:
        return (
            f"{self.config.graph_api_base_url}/{self.config.graph_api_version}/"
            f"{self.credentials.business_account_id}"
        )

    async def fetch_articles(self) -> list[CrawledArticle]:
        if not self.credentials.configured:
            raise ConfigError(
                "INSTAGRAM_ACCESS_TOKEN or INSTAGRAM_BUSINESS_ACCOUNT_ID not configured"
            )
        if not self.source.account_handle:
            raise ConfigError(f"Account handle is not configured for {self.source.source_id}")

        handle = self.source.account_handle.lstrip("@")
        fields = ",".join(MEDIA_FIELDS)
        response = await self.fetcher.get(
            self.endpoint,
            params={
                "fields": (
                    f"business_discovery.username({handle})"
                    f"{{media.limit({self.config.social_media_limit}){{{fields}}}}}"
                ),
                "access_token": self.credentials.access_token,
            },
        )
        data = response.json()

        media = ((data.get("business_discovery") or {}).get("media") or {}).get("data")
        if not media:
            logger.warning(f"[SOCIAL] No media found for @{handle}")
            return []

        articles = [a for a in (self._media_to_article(m, handle) for m in media) if a]
        logger.info(f"[SOCIAL] @{handle}: {len(articles)} informative posts of {len(media)}")
        return articles

    def _media_to_article(self, media: dict[str, Any], handle: str) -> Optional[CrawledArticle]:
        caption = media.get("caption") or ""
        if len(caption) < self.config.social_min_caption_length:
            return None
        if not is_informative_post(caption):
            return None
        if not media.get("permalink"):
            return None

        return self._article(
            url=media["permalink"],
            title=extract_title(caption),
            content=caption,
            published_at=parse_timestamp(media.get("timestamp")),
            author=f"@{handle}",
            metadata={
                "mediaType": media.get("media_type"),
                "likeCount": media.get("like_count"),
                "commentsCount": media.get("comments_count"),
                "mediaId": media.get("id"),
            },
        )


async def validate_social_credentials(
    access_token: str,
    business_account_id: str,
    config: Optional[CrawlerConfig] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> dict[str, Any]:
    """
    Check a token/account pair against the Graph API.

    Returns:
        {"valid": bool, "error": Optional[str]}
    """
    config = config or CrawlerConfig()
    url = f"{config.graph_api_base_url}/{config.graph_api_version}/{business_account_id}"
    params = {"fields": "id,name", "access_token": access_token}

    try:
        if client is not None:
            response = await client.get(url, params=params, timeout=config.timeout)
        else:
            async with httpx.AsyncClient(timeout=config.timeout) as own_client:
                response = await own_client.get(url, params=params)
        data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        return {"valid": False, "error": str(e)}

    if isinstance(data, dict) and data.get("error"):
        return {"valid": False, "error": data["error"].get("message", "Unknown error")}

    return {"valid": True, "error": None}
