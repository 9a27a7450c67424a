# context_window_manager/manager.py
"""
Budget enforcement: fit a conversation history into a model's context window.

Called once per chat turn, before the request is sent::

    manager = ContextBudgetManager()
    result = await manager.manage_context(history, model, settings, system_prompt)
    send(result.managed_history)

Strategies (ContextStrategy):
- TRIM: drop the oldest messages that do not fit.
- SUMMARIZE: replace the dropped prefix with one summary message.
- SMART_SUMMARIZE: keep a recent zone verbatim, compress older history
  into archive and mid-term summaries (HierarchicalSummarizer).

Whatever goes wrong in a summarization path, the result degrades to
trimming. Only cancellation propagates.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from .backends import SummarizationBackend, SummarizerRegistry
from .cache import ChunkSummaryCache
from .config import DEFAULT_CONTEXT_TOKENS
from .exceptions import ContextManagementCancelled
from .health import CredentialHealthTracker
from .models import (
    CONTEXT_SUMMARY_PREFIX,
    ChunkStatus,
    ContextManagementSettings,
    ContextStrategy,
    ManagedContext,
    Message,
    ModelDescriptor,
    SummarizationZone,
    TokenCountingMode,
)
from .summarizer import ChunkSummarizer, HierarchicalSummarizer, build_summary_message, raise_if_aborted
from .telemetry import SummarizationDebugLog
from .tokens import (
    CalibrationCache,
    MessageSizer,
    TokenCountFn,
    TokenEstimator,
    attachment_tokens,
    build_calibration_sample,
)
from .validation import SummaryValidationRules, SummaryValidator
from .zones import ZonePartitioner

logger = logging.getLogger(__name__)


# =============================================================================
# Shared services
# =============================================================================


class ContextServices:
    """
    Process-wide state shared by every budget pass.

    Holds the calibration cache, chunk summary cache, health tracker and
    debug log. Tests build their own; production code uses
    ``get_default_services()``.
    """

    def __init__(
        self,
        calibration: CalibrationCache | None = None,
        chunk_cache: ChunkSummaryCache | None = None,
        health: CredentialHealthTracker | None = None,
        telemetry: SummarizationDebugLog | None = None,
    ) -> None:
        self.calibration = calibration if calibration is not None else CalibrationCache()
        self.chunk_cache = chunk_cache if chunk_cache is not None else ChunkSummaryCache()
        self.health = health if health is not None else CredentialHealthTracker()
        self.telemetry = telemetry if telemetry is not None else SummarizationDebugLog()

    def forget_conversation(self, conversation_id: str) -> None:
        """Drop everything cached for a deleted conversation."""
        self.calibration.forget(conversation_id)
        removed = self.chunk_cache.invalidate_conversation(conversation_id)
        self.telemetry.clear_conversation(conversation_id)
        logger.debug("Forgot conversation %s (%d cached chunks)", conversation_id, removed)


_default_services: ContextServices | None = None


def get_default_services() -> ContextServices:
    global _default_services
    if _default_services is None:
        _default_services = ContextServices()
    return _default_services


def reset_default_services() -> None:
    global _default_services
    _default_services = None


# =============================================================================
# Budget manager
# =============================================================================


def resolve_context_limit(model: ModelDescriptor, settings: ContextManagementSettings) -> int:
    """Settings override, then the model's context length, then the hard default."""
    if settings.max_context_tokens is not None:
        return settings.max_context_tokens
    if model.context_length_tokens is not None:
        return model.context_length_tokens
    return DEFAULT_CONTEXT_TOKENS


class ContextBudgetManager:
    """
    Keeps system prompt + history within the context limit.

    Args:
        services: Shared caches and trackers (process-wide default when omitted).
        registry: Summarization backends. Built from settings and env when omitted.
        token_counter: Provider token counter for accurate mode and calibration.
        counter_credentials: API keys for ``token_counter``.
        validation_rules: Summary validation rule table.
    """

    def __init__(
        self,
        services: ContextServices | None = None,
        registry: SummarizerRegistry | None = None,
        token_counter: TokenCountFn | None = None,
        counter_credentials: Sequence[str] | None = None,
        validation_rules: SummaryValidationRules | None = None,
    ) -> None:
        self.services = services if services is not None else get_default_services()
        self.registry = registry
        self.counter_credentials = list(counter_credentials or [])
        self.validator = SummaryValidator(validation_rules)
        self.estimator = TokenEstimator(
            calibration=self.services.calibration,
            counter=token_counter,
            health=self.services.health,
        )

    @property
    def can_count_remotely(self) -> bool:
        return self.estimator.counter is not None and bool(self.counter_credentials)

    def resolve_backend(self, settings: ContextManagementSettings) -> SummarizationBackend:
        registry = self.registry
        if registry is None:
            registry = SummarizerRegistry.default(settings, health=self.services.health)
        return registry.resolve(settings)

    async def manage_context(
        self,
        history: Sequence[Message | dict],
        model: ModelDescriptor | None = None,
        settings: ContextManagementSettings | None = None,
        system_prompt: str = "",
        conversation_id: str | None = None,
        abort_event: asyncio.Event | None = None,
    ) -> ManagedContext:
        """
        Fit ``history`` into the model's context window.

        Returns the input unchanged (``was_managed=False``) when everything
        fits or the limit is not positive.

        Raises:
            ContextManagementCancelled: ``abort_event`` was set between chunks.
        """
        messages = [Message.coerce(m) for m in history]
        model = model if model is not None else ModelDescriptor()
        settings = settings if settings is not None else ContextManagementSettings()

        limit = resolve_context_limit(model, settings)
        if limit <= 0:
            return ManagedContext(managed_history=messages, was_managed=False, max_tokens=limit)

        sizer, system_tokens = await self._prepare_sizing(messages, model, settings, system_prompt, conversation_id)

        # Newest to oldest: index of the oldest message that still fits
        total = system_tokens
        split = len(messages)
        for i in range(len(messages) - 1, -1, -1):
            tokens = sizer(messages[i])
            if total + tokens > limit:
                break
            total += tokens
            split = i

        if split == 0:
            return ManagedContext(
                managed_history=messages,
                was_managed=False,
                fits_budget=total <= limit,
                total_tokens=total,
                system_prompt_tokens=system_tokens,
                max_tokens=limit,
            )

        kept = messages[split:]
        dropped = messages[:split]
        logger.info(
            "Context over budget (limit %d): keeping %d, managing %d messages with %s",
            limit,
            len(kept),
            len(dropped),
            settings.strategy.value,
        )

        if settings.strategy == ContextStrategy.SMART_SUMMARIZE:
            return await self._smart_summarize(
                messages, limit, system_tokens, sizer, settings, conversation_id, abort_event
            )
        if settings.strategy == ContextStrategy.SUMMARIZE:
            return await self._flat_summarize(
                dropped, kept, total, limit, system_tokens, sizer, settings, conversation_id, abort_event
            )
        return self._trimmed(kept, total, system_tokens, limit, ContextStrategy.TRIM)

    # ------------------------------------------------------------------ #
    # Sizing
    # ------------------------------------------------------------------ #

    async def _prepare_sizing(
        self,
        messages: list[Message],
        model: ModelDescriptor,
        settings: ContextManagementSettings,
        system_prompt: str,
        conversation_id: str | None,
    ) -> tuple[MessageSizer, int]:
        if settings.token_counting_mode == TokenCountingMode.ACCURATE and self.can_count_remotely:
            texts = [system_prompt] + [m.effective_text for m in messages]
            counts = await self.estimator.batch_count_accurate(texts, model, self.counter_credentials)
            precomputed = {
                m.id: count + attachment_tokens(m.attached_image) for m, count in zip(messages, counts[1:])
            }
            sizer = MessageSizer(self.estimator, model, conversation_id, precomputed=precomputed)
            return sizer, counts[0]

        if (
            settings.auto_calibrate
            and conversation_id
            and conversation_id not in self.services.calibration
            and self.can_count_remotely
        ):
            sample = build_calibration_sample(messages)
            await self.estimator.calibrate(sample, model, self.counter_credentials, conversation_id)

        sizer = MessageSizer(self.estimator, model, conversation_id)
        return sizer, sizer.text(system_prompt)

    def _chunk_summarizer(
        self,
        settings: ContextManagementSettings,
        sizer: MessageSizer,
    ) -> ChunkSummarizer:
        return ChunkSummarizer(
            self.resolve_backend(settings),
            cache=self.services.chunk_cache,
            telemetry=self.services.telemetry,
            validator=self.validator,
            count_tokens=sizer.text,
            timeout=settings.backend_timeout_seconds,
            retry_delay=self.services.health.retry_delay,
            debug_mode=settings.debug_mode,
        )

    # ------------------------------------------------------------------ #
    # Strategies
    # ------------------------------------------------------------------ #

    @staticmethod
    def _trimmed(
        kept: list[Message],
        total: int,
        system_tokens: int,
        limit: int,
        strategy: ContextStrategy,
        degraded_reason: str | None = None,
    ) -> ManagedContext:
        return ManagedContext(
            managed_history=kept,
            was_managed=True,
            strategy=strategy,
            fits_budget=total <= limit,
            total_tokens=total,
            system_prompt_tokens=system_tokens,
            max_tokens=limit,
            degraded_reason=degraded_reason,
        )

    async def _flat_summarize(
        self,
        dropped: list[Message],
        kept: list[Message],
        kept_total: int,
        limit: int,
        system_tokens: int,
        sizer: MessageSizer,
        settings: ContextManagementSettings,
        conversation_id: str | None,
        abort_event: asyncio.Event | None,
    ) -> ManagedContext:
        raise_if_aborted(abort_event)
        strategy = ContextStrategy.SUMMARIZE
        try:
            summarizer = self._chunk_summarizer(settings, sizer)
        except Exception as e:
            logger.warning("No summarization backend, falling back to trimming: %s", e)
            return self._trimmed(kept, kept_total, system_tokens, limit, strategy, degraded_reason=str(e))

        outcome = await summarizer.summarize_chunk(
            dropped,
            settings.compression_levels.flat,
            SummarizationZone.FLAT,
            conversation_id=conversation_id,
        )
        if outcome.status != ChunkStatus.SUCCESS:
            reason = outcome.fallback_reason.value if outcome.fallback_reason else outcome.status.value
            logger.warning("Failed to summarize context (%s), falling back to trimming", reason)
            return self._trimmed(kept, kept_total, system_tokens, limit, strategy, degraded_reason=reason)

        summary_message = build_summary_message(CONTEXT_SUMMARY_PREFIX, dropped, outcome.text)
        remaining = list(kept)
        total = kept_total + sizer(summary_message)
        while total > limit and remaining:
            total -= sizer(remaining.pop(0))

        if total > limit:
            logger.warning("Context summary alone exceeds the budget, falling back to trimming")
            return self._trimmed(
                kept, kept_total, system_tokens, limit, strategy, degraded_reason="summary_over_budget"
            )

        return ManagedContext(
            managed_history=[summary_message, *remaining],
            was_managed=True,
            strategy=strategy,
            fits_budget=True,
            total_tokens=total,
            system_prompt_tokens=system_tokens,
            max_tokens=limit,
        )

    async def _smart_summarize(
        self,
        messages: list[Message],
        limit: int,
        system_tokens: int,
        sizer: MessageSizer,
        settings: ContextManagementSettings,
        conversation_id: str | None,
        abort_event: asyncio.Event | None,
    ) -> ManagedContext:
        try:
            summarizer = HierarchicalSummarizer(self._chunk_summarizer(settings, sizer), settings)
            return await summarizer.summarize(
                messages,
                limit,
                system_tokens,
                sizer,
                conversation_id=conversation_id,
                abort_event=abort_event,
            )
        except ContextManagementCancelled:
            raise
        except Exception as e:
            logger.error("Smart summarization failed, falling back to the recent zone: %s", e, exc_info=True)
            partitioner = ZonePartitioner(settings.recent_zone_tokens, settings.archive_fraction)
            recent, recent_tokens = partitioner.recent_zone(messages, sizer)
            return self._trimmed(
                recent,
                system_tokens + recent_tokens,
                system_tokens,
                limit,
                ContextStrategy.SMART_SUMMARIZE,
                degraded_reason=str(e) or type(e).__name__,
            )


async def manage_context(
    history: Sequence[Message | dict],
    model: ModelDescriptor | None = None,
    settings: ContextManagementSettings | None = None,
    system_prompt: str = "",
    conversation_id: str | None = None,
    abort_event: asyncio.Event | None = None,
) -> ManagedContext:
    """One budget pass with the process-wide services and env-configured backends."""
    return await ContextBudgetManager().manage_context(
        history,
        model=model,
        settings=settings,
        system_prompt=system_prompt,
        conversation_id=conversation_id,
        abort_event=abort_event,
    )
