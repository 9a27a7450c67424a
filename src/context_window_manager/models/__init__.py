"""
Models for context window management.

All public names are re-exported here so callers can write
``from context_window_manager.models import Message``.
"""

from context_window_manager.models.debug_log import DebugLogEntry  # noqa: F401
from context_window_manager.models.enums import (  # noqa: F401
    ARCHIVE_SUMMARY_PREFIX,
    CONTEXT_SUMMARY_PREFIX,
    MID_TERM_SUMMARY_PREFIX,
    SUMMARY_CONTENT_MARKERS,
    TRUNCATION_MARKER,
    ChunkStatus,
    ContextStrategy,
    FallbackReason,
    MessageRole,
    ModelProvider,
    SummarizationZone,
    SummarizerBackend,
    TokenCountingMode,
)
from context_window_manager.models.message import (  # noqa: F401
    ImageAttachment,
    ManagedContext,
    Message,
)
from context_window_manager.models.settings import (  # noqa: F401
    CompressionLevels,
    ContextManagementSettings,
    ModelDescriptor,
)
from context_window_manager.models.stats import (  # noqa: F401
    ChunkCacheStats,
    CredentialHealthStats,
    SummarizationSessionStats,
)

__all__ = [
    # enums
    "ChunkStatus",
    "ContextStrategy",
    "FallbackReason",
    "MessageRole",
    "ModelProvider",
    "SummarizationZone",
    "SummarizerBackend",
    "TokenCountingMode",
    # constants
    "ARCHIVE_SUMMARY_PREFIX",
    "MID_TERM_SUMMARY_PREFIX",
    "CONTEXT_SUMMARY_PREFIX",
    "SUMMARY_CONTENT_MARKERS",
    "TRUNCATION_MARKER",
    # messages
    "ImageAttachment",
    "Message",
    "ManagedContext",
    # settings
    "CompressionLevels",
    "ContextManagementSettings",
    "ModelDescriptor",
    # telemetry
    "DebugLogEntry",
    # stats
    "ChunkCacheStats",
    "CredentialHealthStats",
    "SummarizationSessionStats",
]
