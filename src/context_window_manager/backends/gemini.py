# context_window_manager/backends/gemini.py
"""
Gemini backends: primary cloud summarizer and provider token counter.

Both talk to the Generative Language REST API with httpx. The summarizer
rotates across an API-key pool through the CredentialHealthTracker, so a
key that hits its quota sits out its penalty while the others carry on.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import httpx

from context_window_manager.config import (
    DEFAULT_BACKEND_TIMEOUT_SECONDS,
    DEFAULT_GEMINI_BASE_URL,
    DEFAULT_GEMINI_SUMMARIZER_MODEL,
)
from context_window_manager.exceptions import BackendResponseError, QuotaExceededError
from context_window_manager.health import CredentialHealthTracker
from context_window_manager.prompts import SUMMARIZATION_SYSTEM_PROMPT, build_chunk_prompt

logger = logging.getLogger(__name__)

BACKEND_NAME = "gemini"


def _raise_for_status(response: httpx.Response) -> None:
    if response.status_code == 429:
        raise QuotaExceededError(f"Gemini quota exceeded (429): {response.text[:200]}", backend=BACKEND_NAME)
    response.raise_for_status()


def _extract_text(payload: dict[str, Any]) -> str:
    candidates = payload.get("candidates") or []
    if not candidates:
        raise BackendResponseError("Gemini returned no candidates", backend=BACKEND_NAME)
    candidate = candidates[0]
    if candidate.get("finishReason") in ("SAFETY", "BLOCKLIST"):
        raise BackendResponseError("Gemini blocked the summary (safety)", backend=BACKEND_NAME)
    parts = (candidate.get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts).strip()


class GeminiSummarizer:
    """Summarizes with a Gemini model, rotating over API keys."""

    def __init__(
        self,
        api_keys: Sequence[str],
        model: str = DEFAULT_GEMINI_SUMMARIZER_MODEL,
        health: CredentialHealthTracker | None = None,
        base_url: str = DEFAULT_GEMINI_BASE_URL,
        timeout: float = DEFAULT_BACKEND_TIMEOUT_SECONDS,
        temperature: float = 0.2,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_keys = list(api_keys)
        self.model = model
        self.health = health if health is not None else CredentialHealthTracker()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.temperature = temperature
        self._transport = transport

    @property
    def name(self) -> str:
        return f"{BACKEND_NAME}/{self.model}"

    @property
    def max_attempts(self) -> int:
        return max(1, len(self.api_keys))

    async def summarize(self, text: str, retention_ratio: float) -> str:
        prompt = build_chunk_prompt(text, retention_ratio)

        async def call(api_key: str) -> str:
            return await self._generate(api_key, prompt)

        return await self.health.dispatch(self.api_keys, call, timeout=self.timeout)

    async def _generate(self, api_key: str, prompt: str) -> str:
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "systemInstruction": {"parts": [{"text": SUMMARIZATION_SYSTEM_PROMPT}]},
            "generationConfig": {
                "temperature": self.temperature,
                "thinkingConfig": {"thinkingBudget": 0},
            },
        }
        async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout), transport=self._transport) as client:
            response = await client.post(
                f"{self.base_url}/models/{self.model}:generateContent",
                headers={"x-goog-api-key": api_key},
                json=body,
            )
        _raise_for_status(response)
        summary = _extract_text(response.json())
        if not summary:
            raise BackendResponseError("Gemini did not return a valid summary", backend=BACKEND_NAME)
        return summary


class GeminiTokenCounter:
    """Provider token counting: ``await counter(text, model_id, api_key)``."""

    def __init__(
        self,
        base_url: str = DEFAULT_GEMINI_BASE_URL,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def __call__(self, text: str, model_id: str, credential: str) -> int:
        body = {"contents": [{"role": "user", "parts": [{"text": text}]}]}
        async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout), transport=self._transport) as client:
            response = await client.post(
                f"{self.base_url}/models/{model_id}:countTokens",
                headers={"x-goog-api-key": credential},
                json=body,
            )
        _raise_for_status(response)
        total = response.json().get("totalTokens")
        if total is None:
            raise BackendResponseError("countTokens response had no totalTokens", backend=BACKEND_NAME)
        return int(total)
