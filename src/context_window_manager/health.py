# context_window_manager/health.py
"""
Credential / backend health tracking ("penalty box").

A credential (API key) or backend that answers with a quota or rate-limit
error is penalized for a fixed cool-down window. Dispatch filters the
candidate pool to the unpenalized ones, rotates through them with a short
fixed delay, and penalizes again on the next quota error.

Usage::

    tracker = CredentialHealthTracker(penalty_seconds=60)

    async def call(api_key: str) -> str:
        return await client.summarize(text, api_key=api_key)

    summary = await tracker.dispatch(api_keys, call, timeout=60)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

import httpx

from .config import DEFAULT_PENALTY_SECONDS, DEFAULT_RETRY_DELAY_SECONDS
from .exceptions import BackendExhaustedError, NoCredentialsError, QuotaExceededError
from .models import CredentialHealthStats

logger = logging.getLogger(__name__)

T = TypeVar("T")

QUOTA_ERROR_MARKERS: tuple[str, ...] = ("429", "quota", "resource_exhausted", "rate limit")


def is_quota_error(error: BaseException) -> bool:
    """True when an exception signals a quota or rate-limit rejection."""
    if isinstance(error, QuotaExceededError):
        return True
    if isinstance(error, httpx.HTTPStatusError) and error.response.status_code == 429:
        return True
    message = str(error).lower()
    return any(marker in message for marker in QUOTA_ERROR_MARKERS)


def mask_identifier(identifier: str) -> str:
    """Only the last four characters of a credential ever reach the logs."""
    if len(identifier) <= 4:
        return identifier
    return f"...{identifier[-4:]}"


class CredentialHealthTracker:
    """
    Tracks penalty expiry per credential/backend identifier.

    Entries are created on quota errors and read before every dispatch.
    Expired entries are dropped lazily.
    """

    def __init__(
        self,
        penalty_seconds: float = DEFAULT_PENALTY_SECONDS,
        retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.penalty_seconds = penalty_seconds
        self.retry_delay = retry_delay
        self._clock = clock
        self._penalties: dict[str, float] = {}
        self._total_penalties = 0

    # ------------------------------------------------------------------ #
    # Penalty box
    # ------------------------------------------------------------------ #

    def penalize(self, identifier: str, seconds: float | None = None) -> float:
        """Exclude an identifier until now + seconds. Returns the expiry."""
        expires_at = self._clock() + (self.penalty_seconds if seconds is None else seconds)
        self._penalties[identifier] = expires_at
        self._total_penalties += 1
        logger.warning(
            "Penalized %s for %.0fs after a quota error",
            mask_identifier(identifier),
            self.penalty_seconds if seconds is None else seconds,
        )
        return expires_at

    def is_penalized(self, identifier: str) -> bool:
        expires_at = self._penalties.get(identifier)
        if expires_at is None:
            return False
        if expires_at <= self._clock():
            del self._penalties[identifier]
            return False
        return True

    def penalty_remaining(self, identifier: str) -> float:
        """Seconds left on the penalty, 0.0 when not penalized."""
        if not self.is_penalized(identifier):
            return 0.0
        return self._penalties[identifier] - self._clock()

    def release(self, identifier: str) -> bool:
        """Lift a penalty early. Returns True if one was active."""
        return self._penalties.pop(identifier, None) is not None

    def prune_expired(self) -> int:
        """Drop expired entries. Returns the number removed."""
        now = self._clock()
        expired = [key for key, expires_at in self._penalties.items() if expires_at <= now]
        for key in expired:
            del self._penalties[key]
        return len(expired)

    def clear(self) -> None:
        self._penalties.clear()

    def healthy(self, candidates: Sequence[str]) -> list[str]:
        """
        Candidates without an active penalty, in their original order.

        If every candidate is penalized the full pool is returned: a call
        that may be rate limited beats no call at all.
        """
        pool = [c for c in candidates if not self.is_penalized(c)]
        if not pool and candidates:
            logger.warning(
                "All %d candidate(s) are penalized; falling back to the full pool",
                len(candidates),
            )
            return list(candidates)
        return pool

    def stats(self) -> CredentialHealthStats:
        self.prune_expired()
        return CredentialHealthStats(
            penalized=len(self._penalties),
            total_penalties=self._total_penalties,
            penalty_seconds=self.penalty_seconds,
        )

    # ------------------------------------------------------------------ #
    # Dispatch
    # ------------------------------------------------------------------ #

    async def dispatch(
        self,
        candidates: Sequence[str],
        call: Callable[[str], Awaitable[T]],
        *,
        timeout: float | None = None,
        retry_delay: float | None = None,
    ) -> T:
        """
        Run ``call`` against healthy candidates until one succeeds.

        Each attempt is bounded by ``timeout``; attempts are separated by
        ``retry_delay`` seconds. Quota errors penalize the candidate, other
        errors just move on to the next one.

        Raises:
            NoCredentialsError: the candidate pool is empty.
            BackendExhaustedError: every candidate failed.
        """
        pool = self.healthy(candidates)
        if not pool:
            raise NoCredentialsError("No credentials or backends configured")

        delay = self.retry_delay if retry_delay is None else retry_delay
        last_error: Exception | None = None

        for attempt, candidate in enumerate(pool):
            if attempt > 0:
                logger.info("Retrying with candidate %d/%d", attempt + 1, len(pool))
                if delay > 0:
                    await asyncio.sleep(delay)
            try:
                if timeout is not None:
                    return await asyncio.wait_for(call(candidate), timeout=timeout)
                return await call(candidate)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                if is_quota_error(e):
                    self.penalize(candidate)
                else:
                    logger.warning(
                        "Dispatch to %s failed: %s",
                        mask_identifier(candidate),
                        str(e) or type(e).__name__,
                    )

        raise BackendExhaustedError(len(pool), last_error) from last_error
