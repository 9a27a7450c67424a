"""Summarization and token-counting backends."""

from .base import CallableSummarizer, SummarizationBackend, SummarizeFn
from .gemini import GeminiSummarizer, GeminiTokenCounter
from .koboldcpp import KoboldCppSummarizer
from .openrouter import OpenRouterSummarizer
from .registry import FailoverSummarizer, SummarizerRegistry

__all__ = [
    "SummarizationBackend",
    "SummarizeFn",
    "CallableSummarizer",
    "GeminiSummarizer",
    "GeminiTokenCounter",
    "KoboldCppSummarizer",
    "OpenRouterSummarizer",
    "FailoverSummarizer",
    "SummarizerRegistry",
]
