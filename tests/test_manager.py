# tests/test_manager.py
"""
Tests for ContextBudgetManager.manage_context.

Covers:
- Limit resolution and the no-op paths
- TRIM: suffix kept, fit within the limit
- SUMMARIZE: flat summary message, trim fallback on any failure
- SMART_SUMMARIZE: zones, chunk cache across turns, summary reuse,
  degradation and cancellation
- Accurate batch counting and auto-calibration
- Backend failover through the registry
"""

import asyncio
import math
from unittest.mock import AsyncMock, MagicMock

import pytest

from context_window_manager.backends import CallableSummarizer, SummarizerRegistry
from context_window_manager.cache import ChunkSummaryCache
from context_window_manager.exceptions import ContextManagementCancelled, QuotaExceededError
from context_window_manager.manager import (
    ContextBudgetManager,
    ContextServices,
    get_default_services,
    reset_default_services,
    resolve_context_limit,
)
from context_window_manager.models import (
    ContextManagementSettings,
    ContextStrategy,
    Message,
    MessageRole,
    ModelDescriptor,
    ModelProvider,
    SummarizerBackend,
    TokenCountingMode,
)
from context_window_manager.telemetry import SummarizationDebugLog
from context_window_manager.tokens import CalibrationCache

MODEL = ModelDescriptor(id="gemini-2.5-flash", provider=ModelProvider.GOOGLE)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _history(n: int, start: int = 0) -> list[Message]:
    """n messages of 10 estimated tokens each."""
    return [
        Message(
            id=f"m{i}",
            role=MessageRole.USER if i % 2 == 0 else MessageRole.ASSISTANT,
            content="a" * 38,
            timestamp=1_000 + i,
        )
        for i in range(start, start + n)
    ]


async def _proportional(text: str, ratio: float) -> str:
    return "Summary: " + "s" * math.ceil(len(text) * ratio)


def _backend(fn=None, name: str = "fake") -> CallableSummarizer:
    return CallableSummarizer(AsyncMock(side_effect=fn or _proportional), name=name)


def _manager(services, backend=None, **kwargs) -> ContextBudgetManager:
    registry = SummarizerRegistry({SummarizerBackend.GEMINI: backend or _backend()}, health=services.health)
    return ContextBudgetManager(services=services, registry=registry, **kwargs)


def _settings(**kwargs) -> ContextManagementSettings:
    return ContextManagementSettings(**kwargs)


def _is_suffix(part: list[Message], whole: list[Message]) -> bool:
    return len(part) <= len(whole) and whole[len(whole) - len(part) :] == part


# ===========================================================================
# Limits and no-op paths
# ===========================================================================


class TestLimits:
    def test_settings_override_model(self):
        model = ModelDescriptor(context_length_tokens=1000)
        assert resolve_context_limit(model, _settings(max_context_tokens=500)) == 500

    def test_model_length(self):
        assert resolve_context_limit(ModelDescriptor(context_length_tokens=1000), _settings()) == 1000

    def test_hard_default(self):
        assert resolve_context_limit(ModelDescriptor(), _settings()) == 8192

    @pytest.mark.asyncio
    async def test_everything_fits(self, services):
        history = _history(5)
        result = await _manager(services).manage_context(history, MODEL, _settings(max_context_tokens=100))

        assert result.was_managed is False
        assert result.managed_history == history
        assert result.total_tokens == 50
        assert result.fits_budget is True

    @pytest.mark.asyncio
    async def test_non_positive_limit_is_noop(self, services):
        history = _history(50)
        result = await _manager(services).manage_context(history, MODEL, _settings(max_context_tokens=0))
        assert result.was_managed is False
        assert result.managed_history == history

    @pytest.mark.asyncio
    async def test_empty_history(self, services):
        result = await _manager(services).manage_context([], MODEL, _settings(max_context_tokens=100))
        assert result.managed_history == []
        assert result.was_managed is False

    @pytest.mark.asyncio
    async def test_accepts_dicts(self, services):
        history = [{"id": f"d{i}", "role": "user", "content": "a" * 38} for i in range(3)]
        result = await _manager(services).manage_context(history, MODEL, _settings(max_context_tokens=100))
        assert [m.id for m in result.managed_history] == ["d0", "d1", "d2"]

    @pytest.mark.asyncio
    async def test_uses_model_context_length(self, services):
        model = ModelDescriptor(provider=ModelProvider.GOOGLE, context_length_tokens=50)
        result = await _manager(services).manage_context(_history(20), model, _settings())
        assert len(result.managed_history) == 5


# ===========================================================================
# TRIM
# ===========================================================================


class TestTrim:
    @pytest.mark.asyncio
    async def test_keeps_newest_suffix(self, services):
        history = _history(20)
        result = await _manager(services).manage_context(history, MODEL, _settings(max_context_tokens=100))

        assert result.was_managed is True
        assert result.strategy == ContextStrategy.TRIM
        assert result.managed_history == history[10:]
        assert result.total_tokens <= 100
        assert result.fits_budget is True

    @pytest.mark.asyncio
    async def test_system_prompt_counts(self, services):
        history = _history(20)
        result = await _manager(services).manage_context(
            history, MODEL, _settings(max_context_tokens=100), system_prompt="a" * 38
        )
        assert result.system_prompt_tokens == 10
        assert result.managed_history == history[11:]
        assert result.total_tokens == 100

    @pytest.mark.asyncio
    async def test_two_hundred_messages_with_large_system_prompt(self, services):
        history = [
            Message(id=f"m{i}", role=MessageRole.USER, content="a" * 190, timestamp=i) for i in range(200)
        ]
        result = await _manager(services).manage_context(
            history, MODEL, _settings(max_context_tokens=8000, recent_zone_tokens=2000), system_prompt="a" * 1900
        )

        # 500-token system prompt leaves 7500 tokens: 150 messages of 50 tokens
        assert result.system_prompt_tokens == 500
        assert result.managed_history == history[50:]
        assert result.total_tokens == 8000

    @pytest.mark.asyncio
    async def test_oversized_newest_message_is_dropped(self, services):
        history = [*_history(3), Message(id="huge", role=MessageRole.USER, content="a" * 3800)]
        result = await _manager(services).manage_context(history, MODEL, _settings(max_context_tokens=100))
        assert result.managed_history == []
        assert result.was_managed is True

    @pytest.mark.asyncio
    async def test_system_prompt_alone_over_limit(self, services):
        result = await _manager(services).manage_context(
            _history(3), MODEL, _settings(max_context_tokens=10), system_prompt="a" * 380
        )
        assert result.managed_history == []
        assert result.fits_budget is False


# ===========================================================================
# SUMMARIZE
# ===========================================================================


class TestFlatSummarize:
    @pytest.mark.asyncio
    async def test_summary_message_plus_suffix(self, services):
        async def short_summary(text, ratio):
            return "Summary of earlier events, " * 4

        backend = _backend(short_summary)
        history = _history(20)
        result = await _manager(services, backend).manage_context(
            history, MODEL, _settings(strategy=ContextStrategy.SUMMARIZE, max_context_tokens=100)
        )

        summary, *rest = result.managed_history
        assert summary.is_summary is True
        assert summary.content.startswith("[Context Summary - 10 messages compressed]:\n")
        assert summary.timestamp == history[9].timestamp
        assert _is_suffix(rest, history)
        assert result.total_tokens <= 100
        assert result.fits_budget is True
        assert result.strategy == ContextStrategy.SUMMARIZE
        backend._fn.assert_awaited_once()
        assert backend._fn.await_args.args[1] == 0.3

    @pytest.mark.asyncio
    async def test_oldest_kept_messages_make_room_for_summary(self, services):
        async def summary_text(text, ratio):
            return "s" * 76  # 20 tokens

        history = _history(20)
        result = await _manager(services, _backend(summary_text)).manage_context(
            history, MODEL, _settings(strategy=ContextStrategy.SUMMARIZE, max_context_tokens=100)
        )

        # 10 kept messages + 20-token summary -> two oldest kept messages dropped
        assert result.managed_history[1:] == history[12:]
        assert result.total_tokens == 100

    @pytest.mark.asyncio
    async def test_backend_error_falls_back_to_trim(self, services):
        async def broken(text, ratio):
            raise RuntimeError("backend down")

        history = _history(20)
        result = await _manager(services, _backend(broken)).manage_context(
            history, MODEL, _settings(strategy=ContextStrategy.SUMMARIZE, max_context_tokens=100)
        )

        assert result.managed_history == history[10:]
        assert result.was_managed is True
        assert result.degraded_reason == "api_error"

    @pytest.mark.asyncio
    async def test_refusal_falls_back_to_trim(self, services):
        async def refuse(text, ratio):
            return "I'm unable to summarize this."

        history = _history(20)
        result = await _manager(services, _backend(refuse)).manage_context(
            history, MODEL, _settings(strategy=ContextStrategy.SUMMARIZE, max_context_tokens=100)
        )
        assert result.managed_history == history[10:]
        assert result.degraded_reason == "refusal_detected"

    @pytest.mark.asyncio
    async def test_summary_larger_than_limit_falls_back_to_trim(self, services):
        async def huge(text, ratio):
            return "s" * 1000

        history = _history(20)
        result = await _manager(services, _backend(huge)).manage_context(
            history, MODEL, _settings(strategy=ContextStrategy.SUMMARIZE, max_context_tokens=100)
        )
        assert result.managed_history == history[10:]
        assert result.degraded_reason == "summary_over_budget"

    @pytest.mark.asyncio
    async def test_missing_backend_falls_back_to_trim(self, services):
        manager = ContextBudgetManager(services=services, registry=SummarizerRegistry(health=services.health))
        history = _history(20)
        result = await manager.manage_context(
            history, MODEL, _settings(strategy=ContextStrategy.SUMMARIZE, max_context_tokens=100)
        )
        assert result.managed_history == history[10:]
        assert result.degraded_reason is not None

    @pytest.mark.asyncio
    async def test_abort_before_summarizing(self, services):
        abort = asyncio.Event()
        abort.set()
        with pytest.raises(ContextManagementCancelled):
            await _manager(services).manage_context(
                _history(20),
                MODEL,
                _settings(strategy=ContextStrategy.SUMMARIZE, max_context_tokens=100),
                abort_event=abort,
            )


# ===========================================================================
# SMART_SUMMARIZE
# ===========================================================================


def _smart(**kwargs) -> ContextManagementSettings:
    values = {
        "strategy": ContextStrategy.SMART_SUMMARIZE,
        "max_context_tokens": 1500,
        "recent_zone_tokens": 300,
    }
    values.update(kwargs)
    return ContextManagementSettings(**values)


class TestSmartSummarize:
    @pytest.mark.asyncio
    async def test_two_hundred_message_conversation(self, services):
        backend = _backend()
        history = _history(200)

        result = await _manager(services, backend).manage_context(history, MODEL, _smart(), conversation_id="conv-1")

        # recent 30 msgs; old 170 -> archive 102 (50+50+2), mid-term 68 (40+28)
        assert result.was_managed is True
        assert result.strategy == ContextStrategy.SMART_SUMMARIZE
        assert len(result.managed_history) == 32
        assert result.managed_history[0].content.startswith("[Archive Summary - 102 messages compressed]")
        assert result.managed_history[1].content.startswith("[Mid-term Summary - 68 messages compressed]")
        assert result.managed_history[2:] == history[170:]
        assert backend._fn.await_count == 5
        assert result.fits_budget is True
        assert result.total_tokens <= 1500

    @pytest.mark.asyncio
    async def test_unchanged_chunks_hit_cache_next_turn(self, services):
        backend = _backend()
        history = _history(200)
        manager = _manager(services, backend)

        await manager.manage_context(history, MODEL, _smart(), conversation_id="conv-1")
        second = await manager.manage_context(history, MODEL, _smart(), conversation_id="conv-1")

        assert backend._fn.await_count == 5
        assert len(second.managed_history) == 32
        assert services.chunk_cache.get_stats().hits == 5

    @pytest.mark.asyncio
    async def test_other_conversation_does_not_share_cache(self, services):
        backend = _backend()
        manager = _manager(services, backend)

        await manager.manage_context(_history(200), MODEL, _smart(), conversation_id="conv-1")
        await manager.manage_context(_history(200), MODEL, _smart(), conversation_id="conv-2")

        assert backend._fn.await_count == 10

    @pytest.mark.asyncio
    async def test_managed_output_is_not_resummarized(self, services):
        backend = _backend()
        manager = _manager(services, backend)

        first = await manager.manage_context(_history(200), MODEL, _smart(), conversation_id="conv-1")
        next_turn = first.managed_history + _history(70, start=200)
        second = await manager.manage_context(next_turn, MODEL, _smart(), conversation_id="conv-1")

        assert backend._fn.await_count == 5
        assert second.managed_history[:2] == first.managed_history[:2]
        non_summaries = [m for m in next_turn if not m.is_summary]
        assert _is_suffix(second.managed_history[2:], non_summaries)
        assert second.total_tokens <= 1500

    @pytest.mark.asyncio
    async def test_unresolvable_backend_degrades_to_recent_zone(self, services):
        manager = ContextBudgetManager(services=services, registry=SummarizerRegistry(health=services.health))
        history = _history(200)

        result = await manager.manage_context(history, MODEL, _smart())

        assert result.managed_history == history[170:]
        assert result.was_managed is True
        assert result.degraded_reason is not None

    @pytest.mark.asyncio
    async def test_failing_backend_still_summarizes_with_truncation(self, services):
        async def broken(text, ratio):
            raise RuntimeError("down")

        result = await _manager(services, _backend(broken)).manage_context(_history(200), MODEL, _smart())

        assert len(result.managed_history) == 32
        assert result.managed_history[0].summary.endswith("...")
        assert services.chunk_cache.size == 0

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, services):
        abort = asyncio.Event()
        abort.set()
        backend = _backend()

        with pytest.raises(ContextManagementCancelled):
            await _manager(services, backend).manage_context(_history(200), MODEL, _smart(), abort_event=abort)

        backend._fn.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_debug_mode_records_each_chunk(self, services):
        await _manager(services).manage_context(
            _history(200), MODEL, _smart(debug_mode=True), conversation_id="conv-1"
        )
        stats = services.telemetry.get_conversation_stats("conv-1")
        assert stats.total_summarizations == 5
        assert stats.success_count == 5

    @pytest.mark.asyncio
    async def test_no_debug_log_without_debug_mode(self, services):
        await _manager(services).manage_context(_history(200), MODEL, _smart(), conversation_id="conv-1")
        assert len(services.telemetry) == 0


# ===========================================================================
# Sizing preparation
# ===========================================================================


class TestAccurateCounting:
    @pytest.mark.asyncio
    async def test_single_batch_call_sizes_messages(self, services):
        # 20 x 38 chars, 400 tokens total -> 20 tokens per message
        counter = AsyncMock(return_value=400)
        manager = _manager(services, token_counter=counter, counter_credentials=["key-1"])

        result = await manager.manage_context(
            _history(20),
            MODEL,
            _settings(max_context_tokens=100, token_counting_mode=TokenCountingMode.ACCURATE),
        )

        counter.assert_awaited_once()
        assert len(result.managed_history) == 5
        assert result.total_tokens == 100

    @pytest.mark.asyncio
    async def test_counter_failure_falls_back_to_fast(self, services):
        counter = AsyncMock(side_effect=RuntimeError("network down"))
        manager = _manager(services, token_counter=counter, counter_credentials=["key-1"])

        result = await manager.manage_context(
            _history(20),
            MODEL,
            _settings(max_context_tokens=100, token_counting_mode=TokenCountingMode.ACCURATE),
        )
        assert len(result.managed_history) == 10

    @pytest.mark.asyncio
    async def test_without_credentials_uses_fast_mode(self, services):
        counter = AsyncMock(return_value=400)
        manager = _manager(services, token_counter=counter)

        await manager.manage_context(
            _history(20),
            MODEL,
            _settings(max_context_tokens=100, token_counting_mode=TokenCountingMode.ACCURATE),
        )
        counter.assert_not_awaited()


class TestAutoCalibration:
    @pytest.mark.asyncio
    async def test_calibrates_once_per_conversation(self, services):
        # Sample: 20 x 38 chars + 19 separators = 798 chars -> 7.98 chars/token
        counter = AsyncMock(return_value=100)
        manager = _manager(services, token_counter=counter, counter_credentials=["key-1"])
        settings = _settings(max_context_tokens=50, auto_calibrate=True)

        result = await manager.manage_context(_history(20), MODEL, settings, conversation_id="conv-1")
        await manager.manage_context(_history(20), MODEL, settings, conversation_id="conv-1")

        assert counter.await_count == 1
        assert services.calibration.get("conv-1") == pytest.approx(7.98)
        # ceil(38 / 7.98) = 5 tokens per message
        assert len(result.managed_history) == 10

    @pytest.mark.asyncio
    async def test_no_calibration_without_conversation_id(self, services):
        counter = AsyncMock(return_value=100)
        manager = _manager(services, token_counter=counter, counter_credentials=["key-1"])

        await manager.manage_context(_history(20), MODEL, _settings(max_context_tokens=50, auto_calibrate=True))
        counter.assert_not_awaited()


# ===========================================================================
# Failover and services
# ===========================================================================


class TestFailover:
    @pytest.mark.asyncio
    async def test_quota_error_fails_over_and_penalizes(self, services):
        async def over_quota(text, ratio):
            raise QuotaExceededError("429 RESOURCE_EXHAUSTED")

        primary = _backend(over_quota, name="primary")
        local = _backend(name="local")
        registry = SummarizerRegistry(
            {SummarizerBackend.GEMINI: primary, SummarizerBackend.KOBOLDCPP: local},
            health=services.health,
        )
        manager = ContextBudgetManager(services=services, registry=registry)
        settings = _settings(
            strategy=ContextStrategy.SUMMARIZE,
            max_context_tokens=100,
            failover_backends=[SummarizerBackend.KOBOLDCPP],
        )

        result = await manager.manage_context(_history(20), MODEL, settings)

        assert result.managed_history[0].is_summary
        local._fn.assert_awaited_once()
        assert services.health.is_penalized("primary")


class TestServices:
    def test_default_services_singleton(self):
        assert get_default_services() is get_default_services()

    def test_reset_default_services(self):
        first = get_default_services()
        reset_default_services()
        assert get_default_services() is not first

    def test_manager_uses_default_services(self):
        assert ContextBudgetManager().services is get_default_services()

    def test_forget_conversation(self):
        services = ContextServices()
        services.calibration.set("conv-1", 3.0)
        services.chunk_cache.put("conv-1:archive:a", "s", "conv-1", "archive")
        services.forget_conversation("conv-1")
        assert "conv-1" not in services.calibration
        assert services.chunk_cache.size == 0

    def test_keeps_injected_empty_instances(self):
        calibration = CalibrationCache()
        telemetry = SummarizationDebugLog()
        services = ContextServices(calibration=calibration, telemetry=telemetry)
        assert services.calibration is calibration
        assert services.telemetry is telemetry

    @pytest.mark.asyncio
    async def test_calibration_shared_across_managers(self, services):
        counter = AsyncMock(return_value=100)
        settings = _settings(max_context_tokens=50, auto_calibrate=True)

        for _ in range(2):
            manager = _manager(services, token_counter=counter, counter_credentials=["key-1"])
            await manager.manage_context(_history(20), MODEL, settings, conversation_id="conv-1")

        assert counter.await_count == 1
        assert services.calibration.get("conv-1") == pytest.approx(7.98)

    @pytest.mark.asyncio
    async def test_injected_debug_log_receives_entries(self, services):
        manager = _manager(services)
        settings = _settings(strategy=ContextStrategy.SUMMARIZE, max_context_tokens=100, debug_mode=True)

        await manager.manage_context(_history(20), MODEL, settings, conversation_id="conv-1")

        assert len(services.telemetry.get_conversation_logs("conv-1")) == 1

    @pytest.mark.asyncio
    async def test_cache_write_failure_keeps_turn_alive(self):
        cache = ChunkSummaryCache()
        cache.put = MagicMock(side_effect=KeyError("dictionary is empty"))
        services = ContextServices(chunk_cache=cache)
        settings = _settings(strategy=ContextStrategy.SUMMARIZE, max_context_tokens=100)

        result = await _manager(services).manage_context(_history(20), MODEL, settings, conversation_id="conv-1")

        assert result.managed_history[0].is_summary
        cache.put.assert_called_once()
