# context_window_manager/telemetry.py
"""
Summarization debug log.

Append-only record of chunk summarization attempts for:
- Debugging: "why did this chunk fall back to truncation?"
- Tuning: success/fallback rates, durations, achieved compression
- Observability surfaces: listeners are notified on every append

Recording is fire-and-forget: the budget pipeline never waits on, or
fails because of, a consumer of this log.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from collections.abc import Callable

from pydantic import BaseModel, Field, PrivateAttr

from .models import ChunkStatus, DebugLogEntry, SummarizationSessionStats

logger = logging.getLogger(__name__)

LogListener = Callable[[list[DebugLogEntry]], None]

SEVEN_DAYS_SECONDS = 7 * 24 * 60 * 60


class SummarizationDebugLog(BaseModel):
    """
    Bounded, per-conversation log of DebugLogEntry records.

    Keeps the newest ``max_logs`` entries and drops entries older than
    ``max_age_seconds`` on append.
    """

    max_logs: int = Field(default=100, ge=1)
    max_age_seconds: float = Field(default=SEVEN_DAYS_SECONDS, gt=0)

    # Append-only entry list
    _entries: list[DebugLogEntry] = PrivateAttr(default_factory=list)

    # Observability subscribers
    _listeners: list[LogListener] = PrivateAttr(default_factory=list)

    def append(self, entry: DebugLogEntry) -> None:
        """Append an entry and notify listeners."""
        self._entries.append(entry)
        self._prune()
        self._notify()

    def record(self, **fields) -> DebugLogEntry:
        """Create and append an entry."""
        entry = DebugLogEntry(**fields)
        self.append(entry)
        return entry

    def _prune(self) -> None:
        cutoff = time.time() - self.max_age_seconds
        if self._entries and self._entries[0].timestamp < cutoff:
            before = len(self._entries)
            self._entries = [e for e in self._entries if e.timestamp >= cutoff]
            logger.debug("Dropped %d expired summarization log entries", before - len(self._entries))
        if len(self._entries) > self.max_logs:
            self._entries = self._entries[-self.max_logs :]

    def _notify(self) -> None:
        snapshot = self.get_logs()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.warning("Summarization log listener failed: %s", e)

    def subscribe(self, listener: LogListener) -> Callable[[], None]:
        """Register a listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def get_logs(self) -> list[DebugLogEntry]:
        """All entries in chronological order."""
        return list(self._entries)

    def get_conversation_logs(self, conversation_id: str) -> list[DebugLogEntry]:
        return [e for e in self._entries if e.conversation_id == conversation_id]

    def get_conversation_stats(self, conversation_id: str) -> SummarizationSessionStats:
        entries = self.get_conversation_logs(conversation_id)
        by_status: dict[ChunkStatus, int] = defaultdict(int)
        for e in entries:
            by_status[e.status] += 1

        return SummarizationSessionStats(
            conversation_id=conversation_id,
            total_summarizations=len(entries),
            success_count=by_status.get(ChunkStatus.SUCCESS, 0),
            fallback_count=by_status.get(ChunkStatus.FALLBACK, 0),
            error_count=by_status.get(ChunkStatus.ERROR, 0),
            total_input_tokens=sum(e.input_tokens for e in entries),
            total_output_tokens=sum(e.output_tokens for e in entries),
            average_duration_ms=(sum(e.duration_ms for e in entries) / len(entries)) if entries else 0.0,
            last_summarization=max((e.timestamp for e in entries), default=None),
        )

    def get_insights(self, conversation_id: str) -> list[str]:
        """Human-readable observations about a conversation's summarization runs."""
        stats = self.get_conversation_stats(conversation_id)
        if stats.total_summarizations == 0:
            return ["No summarization runs yet"]

        insights: list[str] = []

        success_rate = stats.success_rate * 100
        if success_rate < 80:
            insights.append(f"Low success rate ({success_rate:.1f}%). Check API keys or content quality.")
        elif stats.success_count == stats.total_summarizations:
            insights.append("Perfect success rate (100%).")

        fallback_rate = stats.fallback_count / stats.total_summarizations * 100
        if fallback_rate > 20:
            insights.append(f"High fallback rate ({fallback_rate:.1f}%). Safety filters might be triggering.")

        if stats.average_duration_ms > 15000:
            insights.append(
                f"Average duration is high ({stats.average_duration_ms / 1000:.1f}s). Reduce chunk sizes."
            )
        elif stats.average_duration_ms < 3000:
            insights.append(f"Average duration {stats.average_duration_ms / 1000:.1f}s.")

        compression = stats.compression_ratio * 100
        if compression > 60:
            insights.append(f"Output keeps {compression:.1f}% of input tokens. Consider lower retention ratios.")
        elif 0 < compression < 25:
            insights.append(f"Output keeps only {compression:.1f}% of input tokens. Details might be lost.")

        return insights

    def clear(self) -> None:
        self._entries.clear()
        self._notify()

    def clear_conversation(self, conversation_id: str) -> int:
        """Remove one conversation's entries. Returns the number removed."""
        before = len(self._entries)
        self._entries = [e for e in self._entries if e.conversation_id != conversation_id]
        self._notify()
        return before - len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
