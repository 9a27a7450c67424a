# context_window_manager/models/enums.py
"""Enums and constants for context window management."""

from enum import Enum

# =============================================================================
# Enums
# =============================================================================


class MessageRole(str, Enum):
    """Message roles in a conversation history."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ContextStrategy(str, Enum):
    """How history that no longer fits the model limit is handled."""

    TRIM = "trim"  # Drop the oldest messages
    SUMMARIZE = "summarize"  # One flat summary of everything dropped
    SMART_SUMMARIZE = "smart_summarize"  # Recent zone + tiered summaries


class SummarizationZone(str, Enum):
    """History tiers, oldest to newest."""

    ARCHIVE = "archive"
    MID_TERM = "midTerm"
    RECENT = "recent"
    FLAT = "flat"  # Single-pass summary used by ContextStrategy.SUMMARIZE


class ChunkStatus(str, Enum):
    """Lifecycle of one chunk summarization attempt."""

    PENDING = "pending"
    SUCCESS = "success"
    FALLBACK = "fallback"  # Backend answered but the answer was rejected
    ERROR = "error"  # Backend call raised


class FallbackReason(str, Enum):
    """Why a chunk fell back to truncation."""

    EMPTY_RESPONSE = "empty_response"
    REFUSAL_DETECTED = "refusal_detected"
    TOO_SHORT = "too_short"
    API_ERROR = "api_error"


class SummarizerBackend(str, Enum):
    """Interchangeable summarization backends."""

    GEMINI = "gemini"  # Primary cloud completion backend
    KOBOLDCPP = "koboldcpp"  # Local self-hosted inference
    OPENROUTER = "openrouter"  # Secondary cloud router


class TokenCountingMode(str, Enum):
    """FAST is a local approximation, ACCURATE asks the provider once per turn."""

    FAST = "fast"
    ACCURATE = "accurate"


class ModelProvider(str, Enum):
    """Chat model providers, used to pick a token estimation method."""

    GOOGLE = "google"
    OPENAI = "openai"
    OPENROUTER = "openrouter"
    KOBOLDCPP = "koboldcpp"
    OTHER = "other"


# =============================================================================
# Constants
# =============================================================================

# Content prefixes of synthetic summary messages. Older conversations carry
# these without the is_summary flag, so they double as a detection fallback.
ARCHIVE_SUMMARY_PREFIX = "[Archive Summary"
MID_TERM_SUMMARY_PREFIX = "[Mid-term Summary"
CONTEXT_SUMMARY_PREFIX = "[Context Summary"

SUMMARY_CONTENT_MARKERS: tuple[str, ...] = (
    ARCHIVE_SUMMARY_PREFIX,
    MID_TERM_SUMMARY_PREFIX,
    CONTEXT_SUMMARY_PREFIX,
)

# Marker appended to truncation fallbacks
TRUNCATION_MARKER = "..."
