# context_window_manager/validation.py
"""
Validation of backend summaries.

A summary is rejected, in this order, when it is:
1. empty or whitespace only      -> FallbackReason.EMPTY_RESPONSE
2. a refusal ("I cannot ...")    -> FallbackReason.REFUSAL_DETECTED
3. shorter than a fraction of the target length -> FallbackReason.TOO_SHORT

The rule table is plain data so it can be tuned per deployment and tested
without a backend.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, Field

from .models import FallbackReason

DEFAULT_REFUSAL_PATTERNS: list[str] = [
    r"I cannot|I can't|I'm unable|I apologize|I'm sorry",
    r"inappropriate|unsafe|harmful|violates",
]


class SummaryValidationRules(BaseModel):
    """Configurable rule table for summary validation."""

    refusal_patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_REFUSAL_PATTERNS))
    ignore_case: bool = True
    min_length_fraction: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Summaries shorter than this fraction of the target length are rejected",
    )


class SummaryValidator:
    """Applies SummaryValidationRules to backend output."""

    def __init__(self, rules: SummaryValidationRules | None = None) -> None:
        self.rules = rules if rules is not None else SummaryValidationRules()
        flags = re.IGNORECASE if self.rules.ignore_case else 0
        self._patterns = [re.compile(p, flags) for p in self.rules.refusal_patterns]

    def is_refusal(self, summary: str) -> bool:
        return any(p.search(summary) for p in self._patterns)

    def validate(self, summary: str | None, target_length: int) -> FallbackReason | None:
        """Return the rejection reason, or None when the summary is usable."""
        if not summary or not summary.strip():
            return FallbackReason.EMPTY_RESPONSE
        if self.is_refusal(summary):
            return FallbackReason.REFUSAL_DETECTED
        if len(summary) < target_length * self.rules.min_length_fraction:
            return FallbackReason.TOO_SHORT
        return None
