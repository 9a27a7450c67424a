# context_window_manager/exceptions.py
"""Exception hierarchy for the context window manager."""

from __future__ import annotations


class ContextManagerError(Exception):
    """Base class for all context window manager errors."""


class BackendError(ContextManagerError):
    """A summarization or token-counting backend call failed."""

    def __init__(self, message: str, backend: str | None = None):
        self.backend = backend
        super().__init__(message)


class BackendResponseError(BackendError):
    """The backend answered, but the payload was empty or malformed."""


class QuotaExceededError(BackendError):
    """The backend rejected the call because a rate limit or quota was hit."""


class NoCredentialsError(ContextManagerError):
    """There is nothing to dispatch to: the candidate pool is empty."""


class BackendExhaustedError(BackendError):
    """Every credential or backend in the pool was tried and failed."""

    def __init__(self, attempts: int, last_error: Exception | None = None):
        self.attempts = attempts
        self.last_error = last_error
        detail = f": {last_error}" if last_error else ""
        super().__init__(f"All {attempts} dispatch attempt(s) failed{detail}")


class ContextManagementCancelled(ContextManagerError):
    """The chat turn was aborted while context management was in progress."""
