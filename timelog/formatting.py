from __future__ import annotations

import math


def _whole(value: float) -> int:
    # Absorb float noise such as 41.99999999 before truncating.
    return max(0, math.floor(round(float(value), 6)))


def format_clock(total_seconds: float) -> str:
    """Render seconds as HH:MM:SS; hours keep growing past 99."""
    safe_seconds = _whole(total_seconds)
    hours, remainder = divmod(safe_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02}:{minutes:02}:{seconds:02}"


def format_duration(minutes: float) -> str:
    """Render minutes as ``XhYm`` or ``Ym``; fractional minutes are dropped."""
    hours, mins = divmod(_whole(minutes), 60)
    if hours > 0:
        return f"{hours}h{mins}m"
    return f"{mins}m"


def format_duration_with_seconds(minutes: float) -> str:
    hours, remainder = divmod(_whole(float(minutes) * 60), 3600)
    mins, secs = divmod(remainder, 60)
    return f"({hours}h{mins}m{secs}s)"


__all__ = ["format_clock", "format_duration", "format_duration_with_seconds"]
