# context_window_manager/backends/koboldcpp.py
"""Local self-hosted summarization through a KoboldCpp server."""

from __future__ import annotations

import logging

import httpx

from context_window_manager.config import DEFAULT_BACKEND_TIMEOUT_SECONDS, DEFAULT_KOBOLDCPP_URL
from context_window_manager.exceptions import BackendResponseError
from context_window_manager.prompts import build_instruct_prompt

logger = logging.getLogger(__name__)


class KoboldCppSummarizer:
    """Calls ``/api/v1/generate`` on a KoboldCpp instance. No credentials."""

    def __init__(
        self,
        url: str = DEFAULT_KOBOLDCPP_URL,
        timeout: float = DEFAULT_BACKEND_TIMEOUT_SECONDS,
        max_context_length: int = 4096,
        max_length: int = 512,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.timeout = timeout
        self.max_context_length = max_context_length
        self.max_length = max_length
        self._transport = transport

    @property
    def name(self) -> str:
        return "koboldcpp"

    @property
    def max_attempts(self) -> int:
        return 1

    async def summarize(self, text: str, retention_ratio: float) -> str:
        body = {
            "prompt": build_instruct_prompt(text, retention_ratio),
            "max_context_length": self.max_context_length,
            "max_length": self.max_length,
            "rep_pen": 1.1,
            "temperature": 0.7,
            "top_p": 0.9,
            "top_k": 40,
            "stop_sequence": ["[INST]"],
        }
        async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout), transport=self._transport) as client:
            response = await client.post(f"{self.url}/api/v1/generate", json=body)
        response.raise_for_status()

        results = response.json().get("results") or []
        if not results:
            raise BackendResponseError("KoboldCpp returned no results", backend=self.name)
        return (results[0].get("text") or "").strip()

    async def check_connection(self) -> bool:
        """True when the server answers ``/api/v1/model``."""
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(5.0), transport=self._transport) as client:
                response = await client.get(f"{self.url}/api/v1/model")
            if response.status_code != 200:
                return False
            return "result" in response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.debug("KoboldCpp connection check failed: %s", e)
            return False
