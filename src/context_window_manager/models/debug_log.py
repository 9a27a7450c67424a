# context_window_manager/models/debug_log.py
"""Immutable telemetry record for one chunk summarization attempt."""

from __future__ import annotations

import time
import uuid

from pydantic import BaseModel, ConfigDict, Field

from context_window_manager.models.enums import ChunkStatus, FallbackReason, SummarizationZone


class DebugLogEntry(BaseModel):
    """What happened to one chunk: sizes, backend, outcome and timing."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: float = Field(default_factory=time.time, description="Epoch seconds")
    conversation_id: str
    zone: SummarizationZone
    chunk_index: int | None = None
    total_chunks: int | None = None

    input_tokens: int = 0
    output_tokens: int = 0
    target_ratio: float = Field(default=1.0, description="Retention ratio requested")
    model: str = Field(default="", description="Backend that produced the text")
    status: ChunkStatus = ChunkStatus.SUCCESS
    duration_ms: float = 0.0

    error_message: str | None = None
    fallback_reason: FallbackReason | None = None
    input_preview: str | None = None
    output_summary: str | None = None

    @property
    def retention_rate(self) -> float:
        """Achieved retention (output tokens / input tokens)."""
        if self.input_tokens <= 0:
            return 0.0
        return self.output_tokens / self.input_tokens
