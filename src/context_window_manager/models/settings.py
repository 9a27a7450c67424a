# context_window_manager/models/settings.py
"""Typed settings for context management and model descriptors."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from context_window_manager.config import (
    DEFAULT_BACKEND_TIMEOUT_SECONDS,
    DEFAULT_KOBOLDCPP_URL,
    DEFAULT_MODEL_ID,
    DEFAULT_OPENROUTER_MODEL_ID,
    DEFAULT_RECENT_ZONE_TOKENS,
)
from context_window_manager.models.enums import (
    ContextStrategy,
    ModelProvider,
    SummarizerBackend,
    TokenCountingMode,
)


def _check_ratio(value: float) -> float:
    if not 0.0 < value <= 1.0:
        raise ValueError(f"retention ratio must be in (0, 1], got {value}")
    return value


class CompressionLevels(BaseModel):
    """Target retention ratio per tier (fraction of original characters kept)."""

    archive: float = Field(default=0.2, description="Oldest tier, heavy compression")
    mid_term: float = Field(default=0.4, description="Newer tier, medium compression")
    flat: float = Field(default=0.3, description="Single-pass summary for the summarize strategy")

    @field_validator("archive", "mid_term", "flat")
    @classmethod
    def _validate_ratio(cls, value: float) -> float:
        return _check_ratio(value)


class ModelDescriptor(BaseModel):
    """The chat model the history is being budgeted for."""

    id: str = DEFAULT_MODEL_ID
    provider: ModelProvider = ModelProvider.GOOGLE
    context_length_tokens: int | None = Field(default=None, description="Model default context window")


class ContextManagementSettings(BaseModel):
    """User-facing context management settings."""

    strategy: ContextStrategy = ContextStrategy.TRIM
    max_context_tokens: int | None = Field(default=None, description="Overrides the model's context length")

    # Summarization backend
    summarizer_backend: SummarizerBackend = SummarizerBackend.GEMINI
    failover_backends: list[SummarizerBackend] = Field(
        default_factory=list,
        description="Backends tried, in order, after the primary one fails",
    )
    openrouter_model_id: str = DEFAULT_OPENROUTER_MODEL_ID
    koboldcpp_url: str = DEFAULT_KOBOLDCPP_URL
    backend_timeout_seconds: float = Field(default=DEFAULT_BACKEND_TIMEOUT_SECONDS, gt=0)

    # Token counting
    token_counting_mode: TokenCountingMode = TokenCountingMode.FAST
    auto_calibrate: bool = False

    # Smart summarization
    recent_zone_tokens: int = Field(default=DEFAULT_RECENT_ZONE_TOKENS, ge=0)
    compression_levels: CompressionLevels = Field(default_factory=CompressionLevels)
    archive_fraction: float = Field(default=0.6, description="Share of old messages that go to the archive tier")
    archive_chunk_size: int = Field(default=50, ge=1)
    mid_term_chunk_size: int = Field(default=40, ge=1)

    # Telemetry
    debug_mode: bool = False

    @field_validator("archive_fraction")
    @classmethod
    def _validate_fraction(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"archive_fraction must be in [0, 1], got {value}")
        return value

    @property
    def backend_chain(self) -> list[SummarizerBackend]:
        """Primary backend followed by distinct failover backends."""
        chain = [self.summarizer_backend]
        for backend in self.failover_backends:
            if backend not in chain:
                chain.append(backend)
        return chain
