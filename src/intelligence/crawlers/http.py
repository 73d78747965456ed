"""HTTP fetching with bounded retry and a hard per-request deadline."""

import asyncio
import logging
from typing import Any, Optional

import httpx

from src.intelligence.config import CrawlerConfig
from src.intelligence.errors import SourceFetchError

logger = logging.getLogger(__name__)


class RetryingFetcher:
    """
    Shared GET helper composed into every crawler.

    - `retry_count` attempts in total
    - linear backoff: `retry_delay * attempt` between attempts
    - each attempt is cancelled after `timeout` seconds and counts as a
      retryable failure
    - non-2xx responses are retryable failures

    When every attempt fails a single SourceFetchError is raised.

    Example:
        async with httpx.AsyncClient() as client:
            fetcher = RetryingFetcher(CrawlerConfig(), client=client)
            response = await fetcher.get("https://example.com/feed.xml")
    """

    def __init__(
        self,
        config: Optional[CrawlerConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or CrawlerConfig()
        self.client = client

    async def get(
        self,
        url: str,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        """
        GET a URL with retry.

        Raises:
            SourceFetchError: If all attempts fail
        """
        request_headers = {"User-Agent": self.config.user_agent}
        if headers:
            request_headers.update(headers)

        attempts = max(1, self.config.retry_count)
        last_error = "All retry attempts failed"

        for attempt in range(attempts):
            try:
                response = await asyncio.wait_for(
                    self._send(url, params, request_headers),
                    timeout=self.config.timeout,
                )
                response.raise_for_status()
                return response

            except asyncio.TimeoutError:
                last_error = f"Timed out after {self.config.timeout}s"
            except httpx.HTTPStatusError as e:
                last_error = f"HTTP {e.response.status_code}: {e.response.reason_phrase}"
            except httpx.HTTPError as e:
                last_error = f"{type(e).__name__}: {e}"

            logger.warning(
                f"[FETCH] Attempt {attempt + 1}/{attempts} failed for {url}: {last_error}"
            )

            if attempt < attempts - 1:
                await asyncio.sleep(self.config.retry_delay * (attempt + 1))

        raise SourceFetchError(url=url, attempts=attempts, reason=last_error)

    async def _send(
        self,
        url: str,
        params: Optional[dict[str, Any]],
        headers: dict[str, str],
    ) -> httpx.Response:
        if self.client is not None:
            return await self.client.get(url, params=params, headers=headers)

        async with httpx.AsyncClient(follow_redirects=True) as client:
            return await client.get(url, params=params, headers=headers)
