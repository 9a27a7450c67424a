# tests/conftest.py
"""
Shared pytest fixtures and configuration for context_window_manager tests.

Fixtures build fresh services per test so no cache, penalty or debug log
state leaks between tests.
"""

import logging

import pytest

from context_window_manager.cache import ChunkSummaryCache
from context_window_manager.health import CredentialHealthTracker
from context_window_manager.manager import ContextServices, reset_default_services
from context_window_manager.telemetry import SummarizationDebugLog
from context_window_manager.tokens import CalibrationCache

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)
logging.getLogger("context_window_manager").setLevel(logging.DEBUG)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def health():
    """Health tracker without inter-attempt delay."""
    return CredentialHealthTracker(penalty_seconds=60, retry_delay=0)


@pytest.fixture
def services(health):
    """Isolated ContextServices for one test."""
    return ContextServices(
        calibration=CalibrationCache(),
        chunk_cache=ChunkSummaryCache(),
        health=health,
        telemetry=SummarizationDebugLog(),
    )


@pytest.fixture(autouse=True)
def _reset_default_services():
    reset_default_services()
    yield
    reset_default_services()
