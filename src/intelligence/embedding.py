"""Text embeddings via the Gemini REST API."""

import asyncio
import logging
from typing import Optional

import httpx

from src.intelligence.config import EmbeddingConfig
from src.intelligence.errors import ConfigError, EmbeddingError

logger = logging.getLogger(__name__)


class EmbeddingClient:
    """
    Converts text into a fixed-length vector.

    Ingestion and retrieval must use the same client settings so their
    vectors share one space.

    Example:
        embedder = EmbeddingClient()
        vector = await embedder.embed(knowledge_to_markdown(knowledge))
        if not vector:
            ...  # degraded: store without an embedding
    """

    def __init__(
        self,
        config: Optional[EmbeddingConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or EmbeddingConfig()
        self.client = client

    @property
    def configured(self) -> bool:
        return bool(self.config.api_key)

    @property
    def endpoint(self) -> str:
        return f"{self.config.base_url}/models/{self.config.model}:embedContent"

    async def embed(self, text: str) -> list[float]:
        """
        Embed `text`, truncated to `max_input_chars`.

        Returns:
            The vector, or an empty list if credentials are missing or the
            provider fails
        """
        try:
            return await self.embed_or_raise(text)
        except ConfigError as e:
            logger.warning(f"[EMBED] Skipped: {e}")
            return []
        except EmbeddingError as e:
            logger.error(f"[EMBED] Embedding generation failed: {e}")
            return []

    async def embed_or_raise(self, text: str) -> list[float]:
        """
        Embed `text`, raising on failure.

        Raises:
            ConfigError: If GOOGLE_API_KEY is not configured
            EmbeddingError: If the provider call fails or returns no vector
        """
        if not self.configured:
            raise ConfigError("GOOGLE_API_KEY not configured")

        payload = {
            "model": f"models/{self.config.model}",
            "content": {"parts": [{"text": text[: self.config.max_input_chars]}]},
        }
        params = {"key": self.config.api_key}

        try:
            response = await asyncio.wait_for(
                self._post(payload, params),
                timeout=self.config.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except asyncio.TimeoutError as e:
            raise EmbeddingError(f"Gemini API timed out after {self.config.timeout}s") from e
        except httpx.HTTPStatusError as e:
            raise EmbeddingError(
                f"Gemini API error: {e.response.status_code} - {e.response.text[:200]}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise EmbeddingError(f"Gemini API request failed: {e}") from e

        values = (data.get("embedding") or {}).get("values")
        if not values:
            raise EmbeddingError("Gemini API returned no embedding values")
        return [float(v) for v in values]

    async def _post(self, payload: dict, params: dict) -> httpx.Response:
        if self.client is not None:
            return await self.client.post(
                self.endpoint, json=payload, params=params, timeout=self.config.timeout
            )

        async with httpx.AsyncClient(timeout=self.config.timeout) as client:
            return await client.post(self.endpoint, json=payload, params=params)
