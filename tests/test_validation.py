# tests/test_validation.py
"""Tests for summary validation rules."""

import pytest

from context_window_manager.models import FallbackReason
from context_window_manager.validation import SummaryValidationRules, SummaryValidator


class TestSummaryValidator:
    def test_valid_summary(self):
        assert SummaryValidator().validate("The party reached the city and met the mayor.", 100) is None

    @pytest.mark.parametrize("summary", [None, "", "   \n\t"])
    def test_empty(self, summary):
        assert SummaryValidator().validate(summary, 100) == FallbackReason.EMPTY_RESPONSE

    @pytest.mark.parametrize(
        "summary",
        [
            "I cannot summarize this conversation.",
            "i'm sorry, but I won't do that",
            "This content is inappropriate to summarize in detail.",
            "The request violates the content policy.",
        ],
    )
    def test_refusal(self, summary):
        assert SummaryValidator().validate(summary, 10) == FallbackReason.REFUSAL_DETECTED

    def test_refusal_checked_before_length(self):
        assert SummaryValidator().validate("I can't", 1000) == FallbackReason.REFUSAL_DETECTED

    def test_too_short(self):
        assert SummaryValidator().validate("x" * 99, 1000) == FallbackReason.TOO_SHORT

    def test_exactly_ten_percent_is_enough(self):
        assert SummaryValidator().validate("x" * 100, 1000) is None

    def test_custom_rules(self):
        rules = SummaryValidationRules(refusal_patterns=[r"\bnope\b"], min_length_fraction=0.5)
        validator = SummaryValidator(rules)
        assert validator.validate("I cannot believe the ending", 10) is None
        assert validator.validate("nope, not doing it", 10) == FallbackReason.REFUSAL_DETECTED
        assert validator.validate("x" * 4, 10) == FallbackReason.TOO_SHORT

    def test_case_sensitive_rules(self):
        validator = SummaryValidator(SummaryValidationRules(ignore_case=False))
        assert not validator.is_refusal("i cannot")
        assert validator.is_refusal("I cannot")
