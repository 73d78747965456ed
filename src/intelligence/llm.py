"""Language model client (OpenRouter chat completions)."""

import asyncio
import logging
from typing import Optional

import httpx

from src.intelligence.config import LLMConfig
from src.intelligence.errors import ConfigError

logger = logging.getLogger(__name__)


class LLMClient:
    """
    Thin chat-completions client used by the distiller.

    Construct once per process and pass it to whoever needs it; an
    optional shared httpx.AsyncClient can be injected.

    Example:
        llm = LLMClient()
        text = await llm.complete("Summarise ...")
    """

    def __init__(
        self,
        config: Optional[LLMConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or LLMConfig()
        self.client = client

    async def complete(self, prompt: str) -> str:
        """
        Send a single user prompt and return the model's text.

        Rate limits (429), expired deadlines and transport errors are
        retried with linear backoff; other HTTP errors propagate.

        Raises:
            ConfigError: If OPENROUTER_API_KEY is not configured
            httpx.HTTPStatusError: If the API answers with an error status
            RuntimeError: If every attempt timed out or failed to connect
        """
        if not self.config.api_key:
            raise ConfigError("OPENROUTER_API_KEY not configured")

        payload = {
            "model": self.config.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }
        url = f"{self.config.base_url}/chat/completions"

        attempts = max(1, self.config.max_retries)
        last_error = "Max retries exceeded for language model API"

        for attempt in range(attempts):
            try:
                response = await asyncio.wait_for(
                    self._post(url, payload, headers),
                    timeout=self.config.timeout,
                )
            except asyncio.TimeoutError:
                last_error = f"Timed out after {self.config.timeout}s"
            except httpx.TransportError as e:
                last_error = f"{type(e).__name__}: {e}"
            else:
                if response.status_code == 429 and attempt < attempts - 1:
                    wait_time = (attempt + 1) * 5  # 5s, 10s, ...
                    logger.warning(
                        f"[LLM] Rate limited, waiting {wait_time}s "
                        f"(attempt {attempt + 1}/{attempts})"
                    )
                    await asyncio.sleep(wait_time)
                    continue

                response.raise_for_status()
                data = response.json()
                return data["choices"][0]["message"]["content"]

            logger.warning(f"[LLM] Attempt {attempt + 1}/{attempts} failed: {last_error}")
            if attempt < attempts - 1:
                await asyncio.sleep(self.config.retry_delay * (attempt + 1))

        raise RuntimeError(f"Language model API failed after {attempts} attempts: {last_error}")

    async def _post(self, url: str, payload: dict, headers: dict) -> httpx.Response:
        if self.client is not None:
            return await self.client.post(url, json=payload, headers=headers)

        async with httpx.AsyncClient() as client:
            return await client.post(url, json=payload, headers=headers)
