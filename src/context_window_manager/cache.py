# context_window_manager/cache.py
"""
Chunk Summary Cache - memoizes the summary produced for one batch of messages.

Summarizing a chunk is the expensive step of smart summarization: one
backend round trip per 40-50 messages. Between turns most chunks are
unchanged, so the text produced for them can be reused as long as:
- The conversation is the same
- The tier (archive / mid-term) is the same
- The batch holds the same message ids, in the same order

Cache is keyed by: (conversation_id, zone, "id1|id2|...")

Any edit, insertion or reordering changes the id signature, so stale
entries are simply never hit again. The LRU bound (and optional age bound)
keeps a long-running process from growing without limit.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable, Sequence

from pydantic import BaseModel, Field

from .models import ChunkCacheStats, ChunkStatus, FallbackReason, Message, SummarizationZone

logger = logging.getLogger(__name__)


class CachedChunk(BaseModel):
    """Internal cache entry with LRU tracking."""

    summary: str
    conversation_id: str
    zone: SummarizationZone
    status: ChunkStatus = ChunkStatus.SUCCESS
    fallback_reason: FallbackReason | None = None
    message_count: int = 0
    created_at: float = Field(default=0.0)
    last_accessed: float = Field(default=0.0)
    access_count: int = Field(default=0)


class ChunkSummaryCache:
    """
    Memoizes chunk summaries across turns and conversations.

    Shared process-wide through ContextServices; entries are namespaced by
    conversation id so conversations never see each other's summaries.
    """

    def __init__(
        self,
        max_entries: int = 256,
        max_age_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")
        self.max_entries = max_entries
        self.max_age_seconds = max_age_seconds
        self._clock = clock
        self._cache: OrderedDict[str, CachedChunk] = OrderedDict()
        self._stats = {
            "hits": 0,
            "misses": 0,
            "evictions": 0,
            "expirations": 0,
            "invalidations": 0,
        }

    @staticmethod
    def make_key(
        conversation_id: str | None,
        zone: SummarizationZone | None,
        messages: Sequence[Message],
    ) -> str | None:
        """
        Build the cache key for a chunk.

        Returns None (do not cache) without a conversation id, without a
        zone, or for an empty chunk.
        """
        if not conversation_id or zone is None or not messages:
            return None
        signature = "|".join(m.id for m in messages)
        return f"{conversation_id}:{zone.value}:{signature}"

    def _expired(self, entry: CachedChunk) -> bool:
        if self.max_age_seconds is None:
            return False
        return self._clock() - entry.created_at > self.max_age_seconds

    def lookup(self, key: str | None) -> CachedChunk | None:
        """O(1) lookup of the full entry. Returns None if missing or expired."""
        if key is None:
            return None

        entry = self._cache.get(key)
        if entry is None:
            self._stats["misses"] += 1
            return None

        if self._expired(entry):
            del self._cache[key]
            self._stats["expirations"] += 1
            self._stats["misses"] += 1
            return None

        # Move to end (most recently used)
        self._cache.move_to_end(key)
        entry.last_accessed = self._clock()
        entry.access_count += 1

        self._stats["hits"] += 1
        return entry

    def get(self, key: str | None) -> str | None:
        """Cached summary text, or None."""
        entry = self.lookup(key)
        return entry.summary if entry is not None else None

    def put(
        self,
        key: str | None,
        summary: str,
        conversation_id: str,
        zone: SummarizationZone,
        message_count: int = 0,
        status: ChunkStatus = ChunkStatus.SUCCESS,
        fallback_reason: FallbackReason | None = None,
    ) -> None:
        """
        Store a chunk result, evicting the least recently used entry if full.

        Truncation fallbacks are stored too, with their status.
        """
        if key is None:
            return

        if key in self._cache:
            del self._cache[key]

        while len(self._cache) >= self.max_entries:
            evicted_key, _ = self._cache.popitem(last=False)
            self._stats["evictions"] += 1
            logger.debug("Evicted chunk summary %s", evicted_key[:48])

        now = self._clock()
        self._cache[key] = CachedChunk(
            summary=summary,
            conversation_id=conversation_id,
            zone=zone,
            status=status,
            fallback_reason=fallback_reason,
            message_count=message_count,
            created_at=now,
            last_accessed=now,
        )

    def invalidate_conversation(self, conversation_id: str) -> int:
        """Drop every entry for a conversation. Returns the number removed."""
        keys_to_remove = [key for key, entry in self._cache.items() if entry.conversation_id == conversation_id]

        for key in keys_to_remove:
            del self._cache[key]
            self._stats["invalidations"] += 1

        return len(keys_to_remove)

    def clear(self) -> None:
        """Clear the entire cache."""
        count = len(self._cache)
        self._cache.clear()
        self._stats["invalidations"] += count

    def __contains__(self, key: object) -> bool:
        return key in self._cache

    @property
    def size(self) -> int:
        return len(self._cache)

    @property
    def hit_rate(self) -> float:
        total = self._stats["hits"] + self._stats["misses"]
        if total == 0:
            return 0.0
        return self._stats["hits"] / total

    def get_stats(self) -> ChunkCacheStats:
        return ChunkCacheStats(
            hits=self._stats["hits"],
            misses=self._stats["misses"],
            evictions=self._stats["evictions"],
            expirations=self._stats["expirations"],
            invalidations=self._stats["invalidations"],
            size=len(self._cache),
            max_size=self.max_entries,
        )
