# context_window_manager/models/stats.py
"""Statistics models for caches, the health tracker and telemetry."""

from pydantic import BaseModel, Field


class ChunkCacheStats(BaseModel):
    """Statistics for the chunk summary cache."""

    hits: int = Field(default=0)
    misses: int = Field(default=0)
    evictions: int = Field(default=0, description="Entries dropped by the LRU bound")
    expirations: int = Field(default=0, description="Entries dropped by the age bound")
    invalidations: int = Field(default=0)
    size: int = Field(default=0)
    max_size: int = Field(default=0)

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total


class CredentialHealthStats(BaseModel):
    """Snapshot of the penalty box."""

    penalized: int = Field(default=0, description="Identifiers currently penalized")
    total_penalties: int = Field(default=0, description="Penalties issued since start")
    penalty_seconds: float = Field(default=60.0)


class SummarizationSessionStats(BaseModel):
    """Aggregated telemetry for one conversation."""

    conversation_id: str
    total_summarizations: int = 0
    success_count: int = 0
    fallback_count: int = 0
    error_count: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    average_duration_ms: float = 0.0
    last_summarization: float | None = None

    @property
    def success_rate(self) -> float:
        if self.total_summarizations == 0:
            return 0.0
        return self.success_count / self.total_summarizations

    @property
    def compression_ratio(self) -> float:
        if self.total_input_tokens == 0:
            return 0.0
        return self.total_output_tokens / self.total_input_tokens
