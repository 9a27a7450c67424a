# context_window_manager/backends/base.py
"""
Summarization backend protocol.

A backend turns ``(text, retention_ratio)`` into a summary string. How it
gets there (cloud API, local inference server, router) is its own
business; the summarizer only relies on this call contract.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable

SummarizeFn = Callable[[str, float], Awaitable[str]]
"""Callback: (text, retention_ratio) -> summary."""


@runtime_checkable
class SummarizationBackend(Protocol):
    """
    Protocol for summarization backends.

    ``max_attempts`` is how many dispatch attempts one call may make
    (e.g. one per API key); callers use it to bound the total wait.
    """

    @property
    def name(self) -> str: ...

    @property
    def max_attempts(self) -> int: ...

    async def summarize(self, text: str, retention_ratio: float) -> str:
        """Return a summary of ``text`` aiming at ``retention_ratio`` of its length."""
        ...


class CallableSummarizer:
    """Adapts a plain async function to the SummarizationBackend protocol."""

    def __init__(self, fn: SummarizeFn, name: str = "callable") -> None:
        self._fn = fn
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    @property
    def max_attempts(self) -> int:
        return 1

    async def summarize(self, text: str, retention_ratio: float) -> str:
        return await self._fn(text, retention_ratio)
