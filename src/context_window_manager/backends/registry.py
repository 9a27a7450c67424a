# context_window_manager/backends/registry.py
"""
Registry mapping SummarizerBackend -> backend instance, plus failover.

Usage::

    registry = SummarizerRegistry.default(health=services.health)
    backend = registry.resolve(settings)  # primary, or a FailoverSummarizer
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from context_window_manager.config import GEMINI_API_KEYS, OPENROUTER_API_KEY
from context_window_manager.exceptions import BackendError
from context_window_manager.health import CredentialHealthTracker
from context_window_manager.models import ContextManagementSettings, SummarizerBackend

from .base import SummarizationBackend
from .gemini import GeminiSummarizer
from .koboldcpp import KoboldCppSummarizer
from .openrouter import OpenRouterSummarizer

logger = logging.getLogger(__name__)


class FailoverSummarizer:
    """
    Tries several backends in order through the health tracker.

    A backend that fails with a quota error sits out its penalty; other
    failures just move on to the next backend.
    """

    def __init__(
        self,
        backends: Sequence[SummarizationBackend],
        health: CredentialHealthTracker | None = None,
    ) -> None:
        if not backends:
            raise ValueError("FailoverSummarizer needs at least one backend")
        self._backends = {backend.name: backend for backend in backends}
        self.health = health if health is not None else CredentialHealthTracker()

    @property
    def name(self) -> str:
        return "failover(" + ",".join(self._backends) + ")"

    @property
    def max_attempts(self) -> int:
        return sum(backend.max_attempts for backend in self._backends.values())

    async def summarize(self, text: str, retention_ratio: float) -> str:
        async def call(name: str) -> str:
            return await self._backends[name].summarize(text, retention_ratio)

        return await self.health.dispatch(list(self._backends), call)


class SummarizerRegistry:
    """Registry of interchangeable summarization backends."""

    def __init__(
        self,
        backends: dict[SummarizerBackend, SummarizationBackend] | None = None,
        health: CredentialHealthTracker | None = None,
    ) -> None:
        self._backends: dict[SummarizerBackend, SummarizationBackend] = backends if backends is not None else {}
        self.health = health if health is not None else CredentialHealthTracker()

    def register(self, kind: SummarizerBackend, backend: SummarizationBackend) -> None:
        self._backends[kind] = backend

    def get(self, kind: SummarizerBackend) -> SummarizationBackend:
        backend = self._backends.get(kind)
        if backend is None:
            raise BackendError(f"No summarization backend registered for {kind.value}", backend=kind.value)
        return backend

    def __contains__(self, kind: object) -> bool:
        return kind in self._backends

    def resolve(self, settings: ContextManagementSettings) -> SummarizationBackend:
        """The configured primary backend, wrapped in failover when others are listed."""
        chain = [kind for kind in settings.backend_chain if kind in self._backends]
        if not chain:
            raise BackendError(
                f"No summarization backend registered for {settings.summarizer_backend.value}",
                backend=settings.summarizer_backend.value,
            )
        if len(chain) == 1:
            return self._backends[chain[0]]
        logger.debug("Using failover chain: %s", [kind.value for kind in chain])
        return FailoverSummarizer([self._backends[kind] for kind in chain], health=self.health)

    @classmethod
    def default(
        cls,
        settings: ContextManagementSettings | None = None,
        health: CredentialHealthTracker | None = None,
        gemini_api_keys: Sequence[str] | None = None,
        openrouter_api_keys: Sequence[str] | None = None,
    ) -> SummarizerRegistry:
        """Registry with all three built-in backends, configured from settings and env."""
        settings = settings if settings is not None else ContextManagementSettings()
        health = health if health is not None else CredentialHealthTracker()
        gemini_keys = list(GEMINI_API_KEYS if gemini_api_keys is None else gemini_api_keys)
        router_keys = list([OPENROUTER_API_KEY] if openrouter_api_keys is None else openrouter_api_keys)
        timeout = settings.backend_timeout_seconds
        return cls(
            backends={
                SummarizerBackend.GEMINI: GeminiSummarizer(gemini_keys, health=health, timeout=timeout),
                SummarizerBackend.KOBOLDCPP: KoboldCppSummarizer(settings.koboldcpp_url, timeout=timeout),
                SummarizerBackend.OPENROUTER: OpenRouterSummarizer(
                    router_keys,
                    model_id=settings.openrouter_model_id,
                    health=health,
                    timeout=timeout,
                ),
            },
            health=health,
        )
