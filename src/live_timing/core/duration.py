"""Lap and race time strings.

Timing feeds carry durations as `H:MM:SS.mmm`, `M:SS.mmm` or `SS.mmm`;
internally everything is integer milliseconds.
"""

from __future__ import annotations

import math


def _seconds_to_ms(text: str) -> int | None:
    try:
        seconds = float(text)
    except ValueError:
        return None
    if not math.isfinite(seconds):
        return None
    return max(0, int(round(seconds * 1000)))


def _whole(text: str) -> int | None:
    if not text.isdigit():
        return None
    return int(text)


def from_string(s: str) -> int | None:
    """Parse a duration string to milliseconds, e.g. "1:35.365" -> 95365."""
    parts = s.split(":")
    if len(parts) == 3:
        hours, minutes, seconds = _whole(parts[0]), _whole(parts[1]), _seconds_to_ms(parts[2])
        if hours is None or minutes is None or seconds is None:
            return None
        return hours * 3_600_000 + minutes * 60_000 + seconds
    if len(parts) == 2:
        minutes, seconds = _whole(parts[0]), _seconds_to_ms(parts[1])
        if minutes is None or seconds is None:
            return None
        return minutes * 60_000 + seconds
    if len(parts) == 1 and parts[0]:
        return _seconds_to_ms(parts[0])
    return None


def to_string(ms: int) -> str:
    """Format milliseconds, e.g. 95365 -> "1:35.365", 4321 -> "4.321"."""
    millis = ms % 1000
    total = ms // 1000
    if total < 60:
        return f"{total}.{millis:03d}"
    if total < 3600:
        return f"{total // 60}:{total % 60:02d}.{millis:03d}"
    hours = total // 3600
    minutes = (total % 3600) // 60
    return f"{hours}:{minutes:02d}:{total % 60:02d}.{millis:03d}"


def format_race_time(seconds: float) -> str:
    """Elapsed/remaining session clock, e.g. 12255 -> "3:24:15"."""
    total = max(0, int(seconds))
    return f"{total // 3600}:{(total % 3600) // 60:02d}:{total % 60:02d}"


__all__ = ["from_string", "to_string", "format_race_time"]
