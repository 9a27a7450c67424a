# context_window_manager/tokens.py
"""
Token estimation for context budgeting.

Two paths:

- Fast: character-to-token ratio chosen from the script mix of the text
  (Google-tokenized models), or tiktoken's ``cl100k_base`` for other
  providers. Pure and local.
- Calibrated/accurate: one real provider ``countTokens`` call measures a
  chars-per-token ratio for a conversation (cached for the process
  lifetime), or sizes a whole batch of texts in a single call.

Estimation never raises; the worst case is a cruder approximation.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import TYPE_CHECKING, Any

import tiktoken
from pydantic import BaseModel, Field

from .models import ImageAttachment, Message, ModelDescriptor, ModelProvider

if TYPE_CHECKING:
    from .health import CredentialHealthTracker

logger = logging.getLogger(__name__)

# =============================================================================
# Types & constants
# =============================================================================

TokenCountFn = Callable[[str, str, str], Awaitable[int]]
"""Callback: (text, model_id, credential) -> exact token count."""

DEFAULT_CHARS_PER_TOKEN = 2.51
CRUDE_CHARS_PER_TOKEN = 4.0

BATCH_SEPARATOR = "\n\n---SEP---\n\n"

# Image cost: one flat charge for small images, per-tile above that
IMAGE_BASE_TOKENS = 258
IMAGE_SMALL_MAX_DIMENSION = 384
IMAGE_TILE_SIZE = 768

# Calibration sample: the newest messages up to this many characters
CALIBRATION_SAMPLE_CHARS = 20_000

# Providers whose tokenizer is approximated by script-mix ratios
HEURISTIC_PROVIDERS = frozenset({ModelProvider.GOOGLE})


class ScriptRatioTable(BaseModel):
    """
    Chars-per-token ratios selected by the share of "dense" script characters.

    Dense scripts (Arabic by default) tokenize into fewer characters per token
    than Latin text; mixed content gets an interpolated ratio.
    """

    dense_script_pattern: str = Field(default=r"[\u0600-\u06FF\u0750-\u077F\uFB50-\uFDFF\uFE70-\uFEFF]")
    dense_threshold: float = 0.6
    mixed_threshold: float = 0.2
    dense_ratio: float = 2.51
    mixed_ratio: float = 2.8
    latin_ratio: float = 3.8

    def ratio_for(self, text: str) -> float:
        if not text:
            return self.latin_ratio
        dense_chars = len(re.findall(self.dense_script_pattern, text))
        share = dense_chars / len(text)
        if share > self.dense_threshold:
            return self.dense_ratio
        if share > self.mixed_threshold:
            return self.mixed_ratio
        return self.latin_ratio


def image_tokens(width: int | None = None, height: int | None = None) -> int:
    """
    Token cost of one image.

    Unknown or small (both sides <= 384px) images cost a flat 258 tokens;
    larger ones cost 258 per 768x768 tile, rounding up in each dimension.
    """
    if not width or not height:
        return IMAGE_BASE_TOKENS
    if width <= IMAGE_SMALL_MAX_DIMENSION and height <= IMAGE_SMALL_MAX_DIMENSION:
        return IMAGE_BASE_TOKENS
    tiles = math.ceil(width / IMAGE_TILE_SIZE) * math.ceil(height / IMAGE_TILE_SIZE)
    return tiles * IMAGE_BASE_TOKENS


def attachment_tokens(attachment: ImageAttachment | None) -> int:
    if attachment is None:
        return 0
    return image_tokens(attachment.width, attachment.height)


# =============================================================================
# Calibration cache
# =============================================================================


class CalibrationCache:
    """Conversation id -> measured chars-per-token ratio. Lives for the process."""

    def __init__(self) -> None:
        self._ratios: dict[str, float] = {}

    def get(self, conversation_id: str | None) -> float | None:
        if not conversation_id:
            return None
        return self._ratios.get(conversation_id)

    def set(self, conversation_id: str, ratio: float) -> None:
        self._ratios[conversation_id] = ratio

    def forget(self, conversation_id: str) -> bool:
        return self._ratios.pop(conversation_id, None) is not None

    def clear(self) -> None:
        self._ratios.clear()

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._ratios

    def __len__(self) -> int:
        return len(self._ratios)


# =============================================================================
# Estimator
# =============================================================================


class TokenEstimator:
    """
    Estimates token counts for text, images and messages.

    Args:
        calibration: Shared per-conversation ratio cache.
        counter: Optional provider counting backend, used only for
            calibration and accurate batch counting.
        health: Health tracker used to dispatch counter calls.
        ratios: Script-mix ratio table for the heuristic path.
    """

    def __init__(
        self,
        calibration: CalibrationCache | None = None,
        counter: TokenCountFn | None = None,
        health: CredentialHealthTracker | None = None,
        ratios: ScriptRatioTable | None = None,
        encoding_name: str = "cl100k_base",
    ) -> None:
        self.calibration = calibration if calibration is not None else CalibrationCache()
        self.counter = counter
        self.health = health
        self.ratios = ratios if ratios is not None else ScriptRatioTable()
        self.encoding_name = encoding_name
        self._encoder: Any | None = None
        self._encoder_failed = False

    # ------------------------------------------------------------------ #
    # Fast path
    # ------------------------------------------------------------------ #

    def estimate(
        self,
        text: str | None,
        model: ModelDescriptor | None = None,
        conversation_id: str | None = None,
    ) -> int:
        """Estimated token count of ``text``. Never raises."""
        if not text:
            return 0

        calibrated = self.calibration.get(conversation_id)
        if calibrated:
            return math.ceil(len(text) / calibrated)

        if model is None or model.provider in HEURISTIC_PROVIDERS:
            return math.ceil(len(text) / self.ratios.ratio_for(text))

        encoder = self._get_encoder()
        if encoder is not None:
            try:
                return len(encoder.encode(text, disallowed_special=()))
            except Exception as e:
                logger.debug("tiktoken encode failed, using crude estimate: %s", e)
        return math.ceil(len(text) / CRUDE_CHARS_PER_TOKEN)

    def estimate_message(
        self,
        message: Message,
        model: ModelDescriptor | None = None,
        conversation_id: str | None = None,
    ) -> int:
        """Text (summary preferred over content) plus any attached image."""
        return self.estimate(message.effective_text, model, conversation_id) + attachment_tokens(
            message.attached_image
        )

    def _get_encoder(self) -> Any | None:
        if self._encoder is not None or self._encoder_failed:
            return self._encoder
        try:
            self._encoder = tiktoken.get_encoding(self.encoding_name)
            logger.info("Tokenizer %s initialized", self.encoding_name)
        except Exception as e:
            self._encoder_failed = True
            logger.error("Failed to initialize tokenizer, falling back to approximation: %s", e)
        return self._encoder

    # ------------------------------------------------------------------ #
    # Provider-backed paths
    # ------------------------------------------------------------------ #

    async def _count_remote(self, text: str, model: ModelDescriptor, credentials: Sequence[str]) -> int:
        if self.counter is None:
            raise RuntimeError("No token counting backend configured")
        counter = self.counter

        async def call(credential: str) -> int:
            return await counter(text, model.id, credential)

        if self.health is not None:
            return await self.health.dispatch(credentials, call)
        if not credentials:
            raise RuntimeError("No credentials for token counting")
        return await call(credentials[0])

    async def calibrate(
        self,
        sample_text: str,
        model: ModelDescriptor,
        credentials: Sequence[str],
        conversation_id: str | None = None,
    ) -> float:
        """
        Measure chars-per-token for a conversation with one provider call.

        The ratio is cached per conversation; later ``estimate`` calls for the
        same conversation divide text length by it. Failures return the
        default ratio without caching, so a later turn can retry.
        """
        cached = self.calibration.get(conversation_id)
        if cached:
            return cached

        if self.counter is None or not credentials or not sample_text:
            logger.warning("Calibration unavailable, using default %.2f chars/token", DEFAULT_CHARS_PER_TOKEN)
            return DEFAULT_CHARS_PER_TOKEN

        try:
            total_tokens = await self._count_remote(sample_text, model, credentials)
        except Exception as e:
            logger.warning("Calibration failed, using default %.2f: %s", DEFAULT_CHARS_PER_TOKEN, e)
            return DEFAULT_CHARS_PER_TOKEN

        if total_tokens <= 0:
            logger.warning("Calibration returned %d tokens, using default ratio", total_tokens)
            return DEFAULT_CHARS_PER_TOKEN

        ratio = len(sample_text) / total_tokens
        logger.info(
            "Token counting calibrated: %.2f chars/token (%d chars -> %d tokens)",
            ratio,
            len(sample_text),
            total_tokens,
        )
        if conversation_id:
            self.calibration.set(conversation_id, ratio)
        return ratio

    async def batch_count_accurate(
        self,
        texts: Sequence[str],
        model: ModelDescriptor,
        credentials: Sequence[str],
    ) -> list[int]:
        """
        Size many texts with a single provider call.

        The texts are joined with a separator and counted once; the measured
        total is then split across the inputs by character share. This trades
        per-item exactness for one round trip: the sum is exact, individual
        counts are proportional approximations. Separator tokens are
        attributed to the texts, so counts lean high rather than low.
        Any failure falls back to fast estimates.
        """
        if not texts:
            return []

        text_chars = sum(len(t) for t in texts)
        if text_chars == 0:
            return [0] * len(texts)

        try:
            total_tokens = await self._count_remote(BATCH_SEPARATOR.join(texts), model, credentials)
        except Exception as e:
            logger.warning("Batch token counting failed, falling back to fast mode: %s", e)
            return [self.estimate(t, model) for t in texts]

        return [math.ceil(total_tokens * len(t) / text_chars) if t else 0 for t in texts]


def build_calibration_sample(messages: Iterable[Message], max_chars: int = CALIBRATION_SAMPLE_CHARS) -> str:
    """Newest-first transcript lines up to ``max_chars``, returned oldest first."""
    lines: list[str] = []
    used = 0
    for message in reversed(list(messages)):
        line = message.effective_text
        if not line:
            continue
        if used + len(line) > max_chars and lines:
            break
        lines.append(line)
        used += len(line)
    return "\n\n".join(reversed(lines))


# =============================================================================
# Per-turn sizing
# =============================================================================


class MessageSizer:
    """
    Sizes messages once per turn.

    Memoizes by message id, and can be seeded with exact counts from an
    accurate batch call.
    """

    def __init__(
        self,
        estimator: TokenEstimator,
        model: ModelDescriptor | None = None,
        conversation_id: str | None = None,
        precomputed: dict[str, int] | None = None,
    ) -> None:
        self.estimator = estimator
        self.model = model
        self.conversation_id = conversation_id
        self._counts: dict[str, int] = dict(precomputed or {})

    def __call__(self, message: Message) -> int:
        count = self._counts.get(message.id)
        if count is None:
            count = self.estimator.estimate_message(message, self.model, self.conversation_id)
            self._counts[message.id] = count
        return count

    def text(self, text: str | None) -> int:
        return self.estimator.estimate(text, self.model, self.conversation_id)

    def total(self, messages: Iterable[Message]) -> int:
        return sum(self(m) for m in messages)
