"""Duration string codec.

Machine displays report times as ``HH:MM`` (older readings carry seconds as
``HH:MM:SS``).  Parsing is deliberately forgiving: anything that cannot be
read is treated as a zero duration instead of failing the calculation.
"""

from __future__ import annotations

import logging
import math
from typing import Any

logger = logging.getLogger(__name__)

MINUTES = "minutes"
SECONDS = "seconds"

ZERO_HHMM = "00:00"
ZERO_HHMMSS = "00:00:00"


def _is_plain_int(part: str) -> bool:
    return part.isascii() and part.isdigit()


def parse_duration(value: Any) -> int:
    """Return the number of seconds in a ``H:MM``, ``HH:MM`` or ``HH:MM:SS`` string.

    Empty strings, values without a colon, more than three components and any
    component that is not a non-negative integer all yield ``0``.

    Examples:
        >>> parse_duration("07:05")
        25500
        >>> parse_duration("bad")
        0
    """

    if not isinstance(value, str):
        return 0

    text = value.strip()
    if not text or ":" not in text:
        if text:
            logger.debug("Ignoring duration without a colon: %r", value)
        return 0

    parts = [part.strip() for part in text.split(":")]
    if len(parts) > 3 or not all(_is_plain_int(part) for part in parts):
        logger.debug("Ignoring malformed duration: %r", value)
        return 0

    hours, minutes = int(parts[0]), int(parts[1])
    seconds = int(parts[2]) if len(parts) == 3 else 0
    return hours * 3600 + minutes * 60 + seconds


def format_duration(seconds: Any, precision: str = MINUTES) -> str:
    """Format ``seconds`` as ``HH:MM`` (or ``HH:MM:SS`` for ``precision="seconds"``).

    Hours are not wrapped at 24 so cumulative totals stay readable.  Negative,
    NaN and non-numeric inputs produce the zero value.
    """

    if precision not in (MINUTES, SECONDS):
        raise ValueError(
            f"Unknown precision: '{precision}'. Valid options: '{MINUTES}', '{SECONDS}'"
        )
    zero = ZERO_HHMMSS if precision == SECONDS else ZERO_HHMM

    if isinstance(seconds, bool):
        return zero
    try:
        total = float(seconds)
    except (TypeError, ValueError):
        return zero
    if math.isnan(total) or math.isinf(total) or total < 0:
        return zero

    hours, remainder = divmod(int(total), 3600)
    minutes, secs = divmod(remainder, 60)
    if precision == SECONDS:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{hours:02d}:{minutes:02d}"


def duration_minutes(value: Any) -> float:
    """Return the duration string ``value`` expressed in minutes."""

    return seconds_to_minutes(parse_duration(value))


def seconds_to_minutes(seconds: float) -> float:
    return seconds / 60.0


def minutes_to_seconds(minutes: float) -> int:
    return int(round(minutes * 60))


def minutes_to_hhmm(minutes: Any) -> str:
    """Format a minute count as ``HH:MM``; negative or invalid input gives ``00:00``."""

    if isinstance(minutes, bool):
        return ZERO_HHMM
    try:
        value = float(minutes)
    except (TypeError, ValueError):
        return ZERO_HHMM
    if math.isnan(value) or math.isinf(value):
        return ZERO_HHMM
    return format_duration(value * 60, MINUTES)


def normalize_duration(value: Any) -> str:
    """Return ``value`` rewritten as a zero-padded ``HH:MM`` string.

    ``"7:5"`` becomes ``"07:05"`` and seconds are dropped.  Unreadable input
    becomes ``"00:00"``.
    """

    return format_duration(parse_duration(value), MINUTES)


__all__ = [
    "MINUTES",
    "SECONDS",
    "ZERO_HHMM",
    "ZERO_HHMMSS",
    "duration_minutes",
    "format_duration",
    "minutes_to_hhmm",
    "minutes_to_seconds",
    "normalize_duration",
    "parse_duration",
    "seconds_to_minutes",
]
