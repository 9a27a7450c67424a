# context_window_manager/__init__.py
"""
Context window budget management for long-running chat conversations.

Keeps a conversation's history within a model's context window on every
turn:
- Token estimation: script-aware heuristics, tiktoken, provider calibration
- Strategies: trim, flat summarize, smart (hierarchical) summarize
- Chunk validation with deterministic truncation fallback
- Credential/backend health tracking with quota penalties
- Chunk summary cache and a bounded summarization debug log
"""

from .backends import (
    CallableSummarizer,
    FailoverSummarizer,
    GeminiSummarizer,
    GeminiTokenCounter,
    KoboldCppSummarizer,
    OpenRouterSummarizer,
    SummarizationBackend,
    SummarizerRegistry,
)
from .cache import ChunkSummaryCache
from .exceptions import (
    BackendError,
    BackendExhaustedError,
    BackendResponseError,
    ContextManagementCancelled,
    ContextManagerError,
    NoCredentialsError,
    QuotaExceededError,
)
from .health import CredentialHealthTracker, is_quota_error
from .manager import (
    ContextBudgetManager,
    ContextServices,
    get_default_services,
    manage_context,
    reset_default_services,
)
from .models import (
    ChunkStatus,
    CompressionLevels,
    ContextManagementSettings,
    ContextStrategy,
    DebugLogEntry,
    FallbackReason,
    ImageAttachment,
    ManagedContext,
    Message,
    MessageRole,
    ModelDescriptor,
    ModelProvider,
    SummarizationZone,
    SummarizerBackend,
    TokenCountingMode,
)
from .summarizer import ChunkOutcome, ChunkSummarizer, HierarchicalSummarizer
from .telemetry import SummarizationDebugLog
from .tokens import CalibrationCache, MessageSizer, ScriptRatioTable, TokenEstimator
from .validation import SummaryValidationRules, SummaryValidator
from .zones import ZonePartitioner, ZonePlan

__version__ = "0.1.0"

__all__ = [
    # Entry points
    "ContextBudgetManager",
    "ContextServices",
    "get_default_services",
    "reset_default_services",
    "manage_context",
    # Models
    "Message",
    "ImageAttachment",
    "ManagedContext",
    "ModelDescriptor",
    "ContextManagementSettings",
    "CompressionLevels",
    "DebugLogEntry",
    "MessageRole",
    "ContextStrategy",
    "SummarizationZone",
    "ChunkStatus",
    "FallbackReason",
    "SummarizerBackend",
    "TokenCountingMode",
    "ModelProvider",
    # Components
    "TokenEstimator",
    "CalibrationCache",
    "ScriptRatioTable",
    "MessageSizer",
    "CredentialHealthTracker",
    "is_quota_error",
    "ChunkSummaryCache",
    "ZonePartitioner",
    "ZonePlan",
    "SummaryValidator",
    "SummaryValidationRules",
    "ChunkSummarizer",
    "ChunkOutcome",
    "HierarchicalSummarizer",
    "SummarizationDebugLog",
    # Backends
    "SummarizationBackend",
    "CallableSummarizer",
    "GeminiSummarizer",
    "GeminiTokenCounter",
    "KoboldCppSummarizer",
    "OpenRouterSummarizer",
    "FailoverSummarizer",
    "SummarizerRegistry",
    # Errors
    "ContextManagerError",
    "BackendError",
    "BackendResponseError",
    "QuotaExceededError",
    "BackendExhaustedError",
    "NoCredentialsError",
    "ContextManagementCancelled",
]
