# context_window_manager/zones.py
"""
Zone partitioning for smart summarization.

History is split, newest to oldest, into:
- recent: the token-bounded suffix that is always kept verbatim
- mid-term: the newer part of what is left, compressed moderately
- archive: the oldest part, compressed heavily

The mid-term/archive split is positional (a fixed fraction of the old
messages), not content-aware.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Sequence

from pydantic import BaseModel, Field

from .models import Message

logger = logging.getLogger(__name__)

Sizer = Callable[[Message], int]


class ZonePlan(BaseModel):
    """Result of partitioning a history."""

    recent: list[Message] = Field(default_factory=list)
    recent_tokens: int = 0
    archive: list[Message] = Field(default_factory=list)
    mid_term: list[Message] = Field(default_factory=list)

    @property
    def old_messages(self) -> list[Message]:
        return self.archive + self.mid_term


def chunk_messages(messages: Sequence[Message], chunk_size: int) -> list[list[Message]]:
    """Split into consecutive batches of at most ``chunk_size`` messages."""
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
    return [list(messages[i : i + chunk_size]) for i in range(0, len(messages), chunk_size)]


class ZonePartitioner:
    """
    Splits a history into recent / mid-term / archive zones.

    Args:
        recent_zone_tokens: Token budget of the protected recent zone.
        archive_fraction: Share of the older messages assigned to the archive.
    """

    def __init__(self, recent_zone_tokens: int, archive_fraction: float = 0.6) -> None:
        self.recent_zone_tokens = recent_zone_tokens
        self.archive_fraction = archive_fraction

    def recent_zone(self, history: Sequence[Message], sizer: Sizer) -> tuple[list[Message], int]:
        """Longest newest-first run of messages that fits the recent budget."""
        recent: list[Message] = []
        used = 0
        for message in reversed(history):
            tokens = sizer(message)
            if used + tokens > self.recent_zone_tokens:
                break
            recent.append(message)
            used += tokens
        recent.reverse()
        return recent, used

    def partition(self, history: Sequence[Message], sizer: Sizer) -> ZonePlan:
        recent, recent_tokens = self.recent_zone(history, sizer)
        old = list(history[: len(history) - len(recent)])

        mid_point = math.floor(len(old) * self.archive_fraction)
        plan = ZonePlan(
            recent=recent,
            recent_tokens=recent_tokens,
            archive=old[:mid_point],
            mid_term=old[mid_point:],
        )
        logger.info(
            "Zones: recent=%d msgs (%d tokens), mid-term=%d msgs, archive=%d msgs",
            len(plan.recent),
            plan.recent_tokens,
            len(plan.mid_term),
            len(plan.archive),
        )
        return plan
