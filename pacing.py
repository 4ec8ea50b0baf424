"""
pacing.py

Shared pacing primitives for the speedpace engine: tokenizing, chunking,
cadence/duration math, rate validation and the drift-corrected scroll step.

Nothing in here touches a timer or a renderer, so every function is plain
input -> output and safe to call from anywhere.
"""

from __future__ import annotations

import math
import re
from typing import List, Union

# -------------------------------
# Tunables
# -------------------------------
CHUNK_SIZE = 4
DEFAULT_RATE_WPM = 300
MAX_RATE_WPM = 9999  # four digit WPM field

MS_PER_MINUTE = 60_000

HIGH_REFRESH_FRAME_MS = 16  # ~60 fps
LOW_REFRESH_FRAME_MS = 32  # ~30 fps, constrained devices

INTRO_DELAY_MS = 2500
INTRO_TEXT = "Speak fast & clear"

WHITESPACE_RE = re.compile(r"\s+")
DIGITS_RE = re.compile(r"^\d+$")


# ============================================================
# Errors
# ============================================================
class PacingError(Exception):
    """Base class for pacing engine errors."""


class InvalidInput(PacingError, ValueError):
    """Rejected session input: empty text, bad rate, missing layout size."""


# ============================================================
# Text -> tokens -> chunks
# ============================================================
def tokenize_words(text: str) -> List[str]:
    if not text:
        return []
    return [t for t in WHITESPACE_RE.split(text.strip()) if t]


def build_chunks(tokens: List[str], chunk_size: int = CHUNK_SIZE) -> List[str]:
    """Group consecutive tokens into space-joined chunks of ``chunk_size``.

    The last chunk holds whatever is left over and may be shorter.
    """
    if chunk_size < 1:
        raise InvalidInput(f"chunk size must be >= 1, got {chunk_size}")

    chunks: List[str] = []
    for start in range(0, len(tokens), chunk_size):
        chunks.append(" ".join(tokens[start:start + chunk_size]))
    return chunks


def chunk_text(text: str, chunk_size: int = CHUNK_SIZE) -> List[str]:
    return build_chunks(tokenize_words(text), chunk_size)


# ============================================================
# Validation
# ============================================================
def validate_text(text: object) -> str:
    if not isinstance(text, str) or not text.strip():
        raise InvalidInput("Text is empty")
    return text


def parse_rate(value: Union[int, str, float, None]) -> int:
    """Coerce a WPM value (int or digit string) into a positive int.

    Raises InvalidInput for anything that is not a whole number in
    ``1..MAX_RATE_WPM``.
    """
    if value is None or isinstance(value, bool):
        raise InvalidInput(f"Reading speed must be a whole number, got {value!r}")

    if isinstance(value, str):
        raw = value.strip()
        if not DIGITS_RE.match(raw):
            raise InvalidInput(f"Reading speed must be a whole number, got {value!r}")
        rate = int(raw)
    elif isinstance(value, int):
        rate = value
    elif isinstance(value, float) and math.isfinite(value) and value.is_integer():
        rate = int(value)
    else:
        raise InvalidInput(f"Reading speed must be a whole number, got {value!r}")

    if rate <= 0:
        raise InvalidInput(f"Reading speed must be positive, got {rate}")
    if rate > MAX_RATE_WPM:
        raise InvalidInput(f"Reading speed must be at most {MAX_RATE_WPM} WPM, got {rate}")
    return rate


def validate_distance(distance: Union[int, float, None]) -> float:
    if distance is None or isinstance(distance, bool):
        raise InvalidInput(f"Scroll distance must be a number, got {distance!r}")
    try:
        value = float(distance)
    except (TypeError, ValueError):
        raise InvalidInput(f"Scroll distance must be a number, got {distance!r}") from None
    if not math.isfinite(value) or value <= 0:
        raise InvalidInput(f"Scroll distance must be positive, got {distance!r}")
    return value


# ============================================================
# Cadence / duration
# ============================================================
def ms_per_word(rate_wpm: int) -> float:
    return MS_PER_MINUTE / rate_wpm


def ms_per_chunk(rate_wpm: int, chunk_size: int = CHUNK_SIZE) -> float:
    # Uniform reading cost per word; no tokenizer-aware weighting.
    return ms_per_word(rate_wpm) * chunk_size


def reading_duration_ms(word_count: int, rate_wpm: int) -> float:
    return (word_count / rate_wpm) * MS_PER_MINUTE


def frame_period_ms(high_refresh: bool = True) -> int:
    return HIGH_REFRESH_FRAME_MS if high_refresh else LOW_REFRESH_FRAME_MS


# ============================================================
# Drift-corrected scroll step
# ============================================================
def advance(position: float, delta_ms: float, pixels_per_ms: float) -> float:
    """Move ``position`` forward by the distance covered in ``delta_ms``.

    Scaling by the measured delta (instead of a fixed step per tick) keeps
    the position tied to wall-clock time when ticks arrive late.
    Negative deltas (clock hiccups) never move the position backwards.
    """
    if delta_ms <= 0:
        return position
    return position + pixels_per_ms * delta_ms


def reached(position: float, total: float) -> bool:
    return position >= total or math.isclose(position, total, rel_tol=1e-9, abs_tol=1e-6)
