"""Cohere v2 chat client.

Replies are untrusted free text; callers parse and validate them. Calls are
rate limited client-side and bounded by a hard timeout per call.
"""
from __future__ import annotations

import asyncio
import json

import aiohttp
import structlog
from aiolimiter import AsyncLimiter

from src.core.data.errors import LanguageModelError
from src.core.data.providers.base import LanguageModel

COHERE_BASE = "https://api.cohere.com/v2"
DEFAULT_MODEL = "command-a-03-2025"

logger = structlog.get_logger()


class CohereClient(LanguageModel):

    def __init__(
        self,
        session: aiohttp.ClientSession,
        api_key: str = "",
        model: str = DEFAULT_MODEL,
        base_url: str = COHERE_BASE,
        requests_per_minute: int = 20,
    ):
        self._session = session
        self._api_key = api_key
        self._model = model
        self._base = base_url.rstrip("/")
        self._limiter = AsyncLimiter(requests_per_minute, 60)

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def chat(
        self,
        messages: list[dict[str, str]],
        temperature: float = 0.3,
        max_tokens: int = 1500,
        timeout: float = 8.0,
    ) -> str:
        if not self._api_key:
            raise LanguageModelError("Cohere API key not configured", code="not-configured")

        body = {
            "model": self._model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        try:
            return await asyncio.wait_for(self._post(body), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.warning("cohere.timeout", timeout=timeout)
            raise LanguageModelError(f"Cohere call exceeded {timeout}s", code="timeout") from e
        except aiohttp.ClientError as e:
            logger.warning("cohere.network_error", error=str(e))
            raise LanguageModelError(f"Cohere network error: {e}", code="cohere-network-error") from e
        except UnicodeDecodeError as e:
            raise LanguageModelError(f"Undecodable Cohere response: {e}", code="cohere-bad-response") from e

    async def _post(self, body: dict) -> str:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        async with self._limiter:
            async with self._session.post(f"{self._base}/chat", json=body, headers=headers) as resp:
                text = await resp.text()
                status = resp.status

        if status >= 400:
            logger.warning("cohere.api_error", status=status, body=text[:200])
            raise LanguageModelError(f"Cohere Chat API error: {status}", code="cohere-api-error")
        try:
            data = json.loads(text)
            return data["message"]["content"][0]["text"] or ""
        except (json.JSONDecodeError, KeyError, IndexError, TypeError) as e:
            raise LanguageModelError(f"Unexpected Cohere response shape: {e}", code="cohere-bad-response") from e
