# context_window_manager/summarizer.py
"""
Chunk summarization and hierarchical (smart) summarization.

ChunkSummarizer runs one batch of messages through a backend:

    pending -> success                  backend text passed validation
    pending -> fallback(reason)         backend text was empty, a refusal, or too short
    pending -> error(api_error)         backend raised or timed out

Every non-success state yields a deterministic truncation of the chunk
text, so a chunk always produces something usable.

HierarchicalSummarizer keeps a token-bounded recent zone verbatim and
replaces the older messages with at most two summary messages: a heavily
compressed archive and a moderately compressed mid-term summary.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence

from pydantic import BaseModel

from .backends.base import SummarizationBackend
from .cache import ChunkSummaryCache
from .config import DEFAULT_BACKEND_TIMEOUT_SECONDS, DEFAULT_RETRY_DELAY_SECONDS
from .exceptions import ContextManagementCancelled
from .models import (
    ARCHIVE_SUMMARY_PREFIX,
    MID_TERM_SUMMARY_PREFIX,
    TRUNCATION_MARKER,
    ChunkStatus,
    ContextManagementSettings,
    ContextStrategy,
    FallbackReason,
    ManagedContext,
    Message,
    MessageRole,
    SummarizationZone,
)
from .prompts import target_length
from .telemetry import SummarizationDebugLog
from .tokens import MessageSizer
from .validation import SummaryValidator
from .zones import ZonePartitioner, chunk_messages

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 500


class ChunkOutcome(BaseModel):
    """Result of summarizing one chunk."""

    text: str
    status: ChunkStatus
    fallback_reason: FallbackReason | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    duration_ms: float = 0.0
    cached: bool = False

    @property
    def used_fallback(self) -> bool:
        return self.status in (ChunkStatus.FALLBACK, ChunkStatus.ERROR)


def build_chunk_text(messages: Sequence[Message]) -> str:
    """``role: text`` blocks separated by blank lines."""
    return "\n\n".join(m.as_transcript_line() for m in messages)


def truncation_fallback(text: str, target: int) -> str:
    return text[:target] + TRUNCATION_MARKER


def build_summary_message(prefix: str, zone_messages: Sequence[Message], summary: str) -> Message:
    """Assistant message that stands in for ``zone_messages``."""
    return Message(
        role=MessageRole.ASSISTANT,
        content=f"{prefix} - {len(zone_messages)} messages compressed]:\n{summary}",
        summary=summary,
        is_summary=True,
        timestamp=zone_messages[-1].timestamp,
    )


def raise_if_aborted(abort_event: asyncio.Event | None) -> None:
    if abort_event is not None and abort_event.is_set():
        raise ContextManagementCancelled("Context management aborted")


# =============================================================================
# Chunk summarizer
# =============================================================================


class ChunkSummarizer:
    """
    Summarizes message chunks with validation, truncation fallback and caching.

    Args:
        backend: Summarization backend.
        cache: Shared chunk summary cache. Fallback truncations are stored too.
        telemetry: Debug log, written when ``debug_mode`` is on.
        validator: Summary validator (default rules when omitted).
        count_tokens: Text -> tokens, used for telemetry sizes.
        timeout: Seconds allowed per backend attempt.
        retry_delay: Pause the backend takes between attempts.
        debug_mode: Record a DebugLogEntry per chunk.
    """

    def __init__(
        self,
        backend: SummarizationBackend,
        cache: ChunkSummaryCache | None = None,
        telemetry: SummarizationDebugLog | None = None,
        validator: SummaryValidator | None = None,
        count_tokens: Callable[[str], int] | None = None,
        timeout: float = DEFAULT_BACKEND_TIMEOUT_SECONDS,
        retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
        debug_mode: bool = False,
    ) -> None:
        self.backend = backend
        self.cache = cache
        self.telemetry = telemetry
        self.validator = validator if validator is not None else SummaryValidator()
        self.count_tokens = count_tokens or (lambda text: len(text) // 4)
        self.timeout = timeout
        self.retry_delay = retry_delay
        self.debug_mode = debug_mode

    @property
    def call_timeout(self) -> float:
        """Upper bound for one backend call, across all its internal attempts."""
        attempts = max(1, getattr(self.backend, "max_attempts", 1))
        return attempts * (self.timeout + self.retry_delay)

    async def summarize_chunk(
        self,
        messages: Sequence[Message],
        ratio: float,
        zone: SummarizationZone,
        conversation_id: str | None = None,
        chunk_index: int | None = None,
        total_chunks: int | None = None,
    ) -> ChunkOutcome:
        """Summarize one chunk. Never raises except on cancellation."""
        text = build_chunk_text(messages)
        target = target_length(text, ratio)
        input_tokens = self.count_tokens(text)

        key = self.cache.make_key(conversation_id, zone, messages) if self.cache is not None else None
        if key is not None:
            hit = self.cache.lookup(key)
            if hit is not None:
                logger.debug("Chunk cache hit for %s chunk %s", zone.value, chunk_index)
                return ChunkOutcome(
                    text=hit.summary,
                    status=hit.status,
                    fallback_reason=hit.fallback_reason,
                    input_tokens=input_tokens,
                    output_tokens=self.count_tokens(hit.summary),
                    cached=True,
                )

        start = time.perf_counter()
        error_message: str | None = None
        reason: FallbackReason | None = None
        try:
            summary = await asyncio.wait_for(self.backend.summarize(text, ratio), timeout=self.call_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            status = ChunkStatus.ERROR
            reason = FallbackReason.API_ERROR
            error_message = str(e) or type(e).__name__
            result = truncation_fallback(text, target)
            logger.warning("Chunk summarization failed (%s), using truncation: %s", zone.value, error_message)
        else:
            reason = self.validator.validate(summary, target)
            if reason is None:
                status = ChunkStatus.SUCCESS
                result = summary.strip()
            else:
                status = ChunkStatus.FALLBACK
                result = truncation_fallback(text, target)
                logger.warning("Rejected %s chunk summary (%s), using truncation", zone.value, reason.value)

        duration_ms = (time.perf_counter() - start) * 1000
        outcome = ChunkOutcome(
            text=result,
            status=status,
            fallback_reason=reason,
            input_tokens=input_tokens,
            output_tokens=self.count_tokens(result),
            duration_ms=duration_ms,
        )

        if key is not None and conversation_id:
            try:
                self.cache.put(
                    key,
                    result,
                    conversation_id,
                    zone,
                    message_count=len(messages),
                    status=status,
                    fallback_reason=reason,
                )
            except Exception as e:
                logger.warning("Could not cache %s chunk summary: %s", zone.value, e)

        if self.debug_mode and conversation_id and self.telemetry is not None:
            try:
                self.telemetry.record(
                    conversation_id=conversation_id,
                    zone=zone,
                    chunk_index=chunk_index,
                    total_chunks=total_chunks,
                    input_tokens=outcome.input_tokens,
                    output_tokens=outcome.output_tokens,
                    target_ratio=ratio,
                    model=self.backend.name,
                    status=status,
                    duration_ms=duration_ms,
                    error_message=error_message,
                    fallback_reason=reason,
                    input_preview=text[:PREVIEW_CHARS],
                    output_summary=result,
                )
            except Exception as e:
                logger.warning("Could not record summarization log entry: %s", e)
        return outcome

    async def summarize_chunks(
        self,
        chunks: Sequence[Sequence[Message]],
        ratio: float,
        zone: SummarizationZone,
        conversation_id: str | None = None,
        abort_event: asyncio.Event | None = None,
    ) -> list[ChunkOutcome]:
        """
        Summarize chunks one after another.

        Raises:
            ContextManagementCancelled: ``abort_event`` was set before a chunk.
        """
        outcomes: list[ChunkOutcome] = []
        total = len(chunks)
        for index, chunk in enumerate(chunks):
            raise_if_aborted(abort_event)
            logger.info("Summarizing %s chunk %d/%d (%d messages)", zone.value, index + 1, total, len(chunk))
            outcomes.append(
                await self.summarize_chunk(
                    chunk,
                    ratio,
                    zone,
                    conversation_id=conversation_id,
                    chunk_index=index,
                    total_chunks=total,
                )
            )
        return outcomes


# =============================================================================
# Hierarchical summarizer
# =============================================================================


class HierarchicalSummarizer:
    """Recent zone verbatim, older history as archive + mid-term summaries."""

    def __init__(self, chunk_summarizer: ChunkSummarizer, settings: ContextManagementSettings) -> None:
        self.chunk_summarizer = chunk_summarizer
        self.settings = settings
        self.partitioner = ZonePartitioner(settings.recent_zone_tokens, settings.archive_fraction)

    async def summarize(
        self,
        history: Sequence[Message],
        max_tokens: int,
        system_prompt_tokens: int,
        sizer: MessageSizer,
        conversation_id: str | None = None,
        abort_event: asyncio.Event | None = None,
    ) -> ManagedContext:
        if any(m.looks_like_summary() for m in history):
            return self._reuse_summaries(history, max_tokens, system_prompt_tokens, sizer, conversation_id)

        plan = self.partitioner.partition(history, sizer)
        remaining = max_tokens - system_prompt_tokens - plan.recent_tokens
        if remaining <= 0:
            logger.warning("Recent zone alone exceeds the context limit (%d tokens)", plan.recent_tokens)
            total = system_prompt_tokens + plan.recent_tokens
            return self._result(plan.recent, total, system_prompt_tokens, max_tokens, was_managed=True)

        if not plan.old_messages:
            total = system_prompt_tokens + plan.recent_tokens
            return self._result(list(history), total, system_prompt_tokens, max_tokens, was_managed=False)

        levels = self.settings.compression_levels
        summaries: list[Message] = []
        for prefix, zone, zone_messages, chunk_size, ratio in (
            (
                ARCHIVE_SUMMARY_PREFIX,
                SummarizationZone.ARCHIVE,
                plan.archive,
                self.settings.archive_chunk_size,
                levels.archive,
            ),
            (
                MID_TERM_SUMMARY_PREFIX,
                SummarizationZone.MID_TERM,
                plan.mid_term,
                self.settings.mid_term_chunk_size,
                levels.mid_term,
            ),
        ):
            if not zone_messages:
                continue
            outcomes = await self.chunk_summarizer.summarize_chunks(
                chunk_messages(zone_messages, chunk_size),
                ratio,
                zone,
                conversation_id=conversation_id,
                abort_event=abort_event,
            )
            joined = "\n\n".join(o.text for o in outcomes)
            summaries.append(build_summary_message(prefix, zone_messages, joined))

        managed = summaries + plan.recent
        total = system_prompt_tokens + sizer.total(summaries) + plan.recent_tokens
        logger.info(
            "Smart summarization complete: %d messages -> %d (%d tokens)",
            len(history),
            len(managed),
            total,
        )
        return self._result(managed, total, system_prompt_tokens, max_tokens, was_managed=True)

    def _reuse_summaries(
        self,
        history: Sequence[Message],
        max_tokens: int,
        system_prompt_tokens: int,
        sizer: MessageSizer,
        conversation_id: str | None,
    ) -> ManagedContext:
        """Keep existing summaries as a fixed prefix; re-admit the newest others that fit."""
        summaries = [m for m in history if m.looks_like_summary()]
        others = [m for m in history if not m.looks_like_summary()]

        summary_tokens = sizer.total(summaries)
        total = system_prompt_tokens + summary_tokens
        recent: list[Message] = []
        recent_tokens = 0
        for message in reversed(others):
            tokens = sizer(message)
            if total + tokens > max_tokens:
                break
            recent.append(message)
            total += tokens
            recent_tokens += tokens
        recent.reverse()

        logger.info(
            "Reusing %d existing summaries + %d recent messages (%d tokens)",
            len(summaries),
            len(recent),
            total,
        )
        telemetry = self.chunk_summarizer.telemetry
        if self.settings.debug_mode and conversation_id and telemetry is not None:
            telemetry.record(
                conversation_id=conversation_id,
                zone=SummarizationZone.RECENT,
                input_tokens=summary_tokens + recent_tokens,
                output_tokens=summary_tokens + recent_tokens,
                target_ratio=1.0,
                model=self.chunk_summarizer.backend.name,
                status=ChunkStatus.SUCCESS,
                output_summary="Reused existing archive/mid-term summaries without re-summarizing.",
            )
        return self._result(summaries + recent, total, system_prompt_tokens, max_tokens, was_managed=True)

    @staticmethod
    def _result(
        messages: list[Message],
        total: int,
        system_prompt_tokens: int,
        max_tokens: int,
        was_managed: bool,
    ) -> ManagedContext:
        return ManagedContext(
            managed_history=messages,
            was_managed=was_managed,
            strategy=ContextStrategy.SMART_SUMMARIZE if was_managed else None,
            fits_budget=total <= max_tokens,
            total_tokens=total,
            system_prompt_tokens=system_prompt_tokens,
            max_tokens=max_tokens,
        )
