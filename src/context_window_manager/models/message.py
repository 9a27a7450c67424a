# context_window_manager/models/message.py
"""Conversation message and managed-history models."""

from __future__ import annotations

import time
import uuid

from pydantic import ConfigDict, Field

from context_window_manager.base_models import DictCompatModel
from context_window_manager.models.enums import (
    SUMMARY_CONTENT_MARKERS,
    ContextStrategy,
    MessageRole,
)


def _now_ms() -> int:
    return int(time.time() * 1000)


class ImageAttachment(DictCompatModel):
    """An image attached to a message. Dimensions are optional."""

    model_config = ConfigDict(populate_by_name=True)

    mime_type: str = Field(default="image/png", alias="mimeType")
    data_url: str | None = Field(default=None, alias="dataUrl")
    width: int | None = Field(default=None, ge=0)
    height: int | None = Field(default=None, ge=0)


class Message(DictCompatModel):
    """
    One entry of a conversation history.

    ``id`` is assigned once and never changes, even when ``summary`` is
    filled in later. Accepts the camelCase keys used by persisted
    conversation state (``isSummary``, ``attachedImage``).
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: MessageRole
    content: str = ""
    summary: str | None = Field(default=None, description="Condensed replacement for content")
    is_summary: bool = Field(default=False, alias="isSummary")
    timestamp: int = Field(default_factory=_now_ms, description="Epoch milliseconds")
    attached_image: ImageAttachment | None = Field(default=None, alias="attachedImage")

    @property
    def effective_text(self) -> str:
        """The text actually sent to the model."""
        return self.summary or self.content

    def looks_like_summary(self) -> bool:
        """True for flagged summaries and for legacy unflagged ones."""
        if self.is_summary:
            return True
        content = self.content or ""
        return any(marker in content for marker in SUMMARY_CONTENT_MARKERS)

    def as_transcript_line(self) -> str:
        return f"{self.role.value}: {self.effective_text}"

    @classmethod
    def coerce(cls, value: Message | dict) -> Message:
        if isinstance(value, Message):
            return value
        return cls.model_validate(value)


class ManagedContext(DictCompatModel):
    """Result of one budget pass over a conversation history."""

    managed_history: list[Message] = Field(default_factory=list)
    was_managed: bool = False
    strategy: ContextStrategy | None = None

    # False when the output is known to exceed the limit (best effort only)
    fits_budget: bool = True

    total_tokens: int = Field(default=0, description="System prompt + managed history estimate")
    system_prompt_tokens: int = 0
    max_tokens: int = 0
    degraded_reason: str | None = Field(
        default=None,
        description="Set when a summarization path fell back to trimming",
    )
