# context_window_manager/backends/openrouter.py
"""Secondary cloud summarization through the OpenRouter chat completions API."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

import httpx

from context_window_manager.config import (
    DEFAULT_BACKEND_TIMEOUT_SECONDS,
    DEFAULT_OPENROUTER_BASE_URL,
    DEFAULT_OPENROUTER_MODEL_ID,
)
from context_window_manager.exceptions import BackendResponseError, QuotaExceededError
from context_window_manager.health import CredentialHealthTracker
from context_window_manager.prompts import (
    SUMMARIZATION_SYSTEM_PROMPT,
    build_router_prompt,
    target_length,
)

logger = logging.getLogger(__name__)

# Rough router-side estimate: 1 token ~ 3 chars
ROUTER_CHARS_PER_TOKEN = 3
MAX_SUMMARY_TOKENS = 4000
MIN_SUMMARY_CHARS = 10


class OpenRouterSummarizer:
    """Summarizes with any OpenRouter-hosted model."""

    def __init__(
        self,
        api_keys: Sequence[str],
        model_id: str = DEFAULT_OPENROUTER_MODEL_ID,
        health: CredentialHealthTracker | None = None,
        base_url: str = DEFAULT_OPENROUTER_BASE_URL,
        timeout: float = DEFAULT_BACKEND_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_keys = [key for key in api_keys if key and key.strip()]
        self.model_id = model_id
        self.health = health if health is not None else CredentialHealthTracker()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def name(self) -> str:
        return f"openrouter/{self.model_id}"

    @property
    def max_attempts(self) -> int:
        return max(1, len(self.api_keys))

    async def summarize(self, text: str, retention_ratio: float) -> str:
        if not self.api_keys:
            raise BackendResponseError("OpenRouter API key not configured", backend=self.name)

        target_chars = target_length(text, retention_ratio)
        body = {
            "model": self.model_id,
            "messages": [
                {"role": "system", "content": SUMMARIZATION_SYSTEM_PROMPT},
                {"role": "user", "content": build_router_prompt(text, retention_ratio)},
            ],
            "temperature": 0.3,
            "max_tokens": min(math.ceil(target_chars / ROUTER_CHARS_PER_TOKEN), MAX_SUMMARY_TOKENS),
            "top_p": 0.9,
        }
        logger.info(
            "Summarizing %d chars to ~%d chars (%d%%) using %s",
            len(text),
            target_chars,
            round(retention_ratio * 100),
            self.model_id,
        )

        async def call(api_key: str) -> str:
            return await self._complete(api_key, body)

        return await self.health.dispatch(self.api_keys, call, timeout=self.timeout)

    async def _complete(self, api_key: str, body: dict) -> str:
        async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout), transport=self._transport) as client:
            response = await client.post(
                f"{self.base_url}/chat/completions",
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "X-Title": "Context Summarization",
                },
                json=body,
            )
        if response.status_code == 429:
            raise QuotaExceededError("OpenRouter rate limit (429)", backend=self.name)
        response.raise_for_status()

        data = response.json()
        if data.get("error"):
            raise BackendResponseError(f"OpenRouter API error: {data['error'].get('message')}", backend=self.name)
        choices = data.get("choices") or []
        if not choices:
            raise BackendResponseError("OpenRouter returned no choices", backend=self.name)

        summary = (choices[0].get("message", {}).get("content") or "").strip()
        if len(summary) < MIN_SUMMARY_CHARS:
            raise BackendResponseError("OpenRouter returned empty or too short summary", backend=self.name)
        return summary
