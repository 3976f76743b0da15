"""Grouping of closed sessions into ranked, percentage-normalised buckets."""

from __future__ import annotations

import datetime as dt
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from .entities import Bucket, DayBreakdown, TimeSession
from .errors import ValidationError

KeyFn = Callable[[TimeSession], str]

UNITS = ("minutes", "hours")
PERCENT_POLICIES = (0, 1)


def round_half_up(value: float, digits: int = 0) -> float:
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(repr(float(value))).quantize(quantum, rounding=ROUND_HALF_UP))


def by_client(session: TimeSession) -> str:
    return session.client_name


def by_user(session: TimeSession) -> str:
    return session.user_name


def by_project_type(session: TimeSession) -> str:
    return session.project_type


def local_end_date(session: TimeSession, tz: Optional[dt.tzinfo] = None) -> dt.date:
    end = session.end_time
    if end is None:
        raise ValueError("open sessions have no calendar day")
    return (end.astimezone(tz) if tz is not None else end).date()


def by_day(tz: Optional[dt.tzinfo] = None) -> KeyFn:
    def _key(session: TimeSession) -> str:
        return local_end_date(session, tz).isoformat()

    return _key


def by_month(tz: Optional[dt.tzinfo] = None) -> KeyFn:
    def _key(session: TimeSession) -> str:
        day = local_end_date(session, tz)
        return f"{day.year:04d}-{day.month:02d}"

    return _key


def completed(sessions: Iterable[TimeSession]) -> List[TimeSession]:
    """Drop sessions that are still running or were never given a duration."""
    return [s for s in sessions if s.end_time is not None and s.duration_minutes is not None]


def _check_policy(unit: str, percent_decimals: int) -> None:
    if unit not in UNITS:
        raise ValidationError(f"Unknown unit: {unit}")
    if percent_decimals not in PERCENT_POLICIES:
        raise ValidationError("percent_decimals must be 0 or 1")


def _display_value(minutes: float, unit: str) -> float:
    if unit == "hours":
        return round_half_up(minutes / 60, 1)
    return round_half_up(minutes, 0)


def _rank(totals: Dict[str, float], unit: str, percent_decimals: int) -> List[Bucket]:
    grand_total = sum(totals.values())
    buckets: List[Bucket] = []
    for key, minutes in totals.items():
        if grand_total > 0:
            percentage = round_half_up(minutes / grand_total * 100, percent_decimals)
        else:
            percentage = 0.0
        buckets.append(
            Bucket(
                key=key,
                total_minutes=minutes,
                value=_display_value(minutes, unit),
                percentage=percentage,
            )
        )
    # dicts keep first-appearance order and sorted() is stable.
    return sorted(buckets, key=lambda bucket: -bucket.total_minutes)


def _group(sessions: Iterable[TimeSession], dimension: KeyFn) -> Dict[str, float]:
    totals: Dict[str, float] = {}
    for session in sessions:
        key = dimension(session)
        totals[key] = totals.get(key, 0.0) + (session.duration_minutes or 0.0)
    return totals


def aggregate(
    sessions: Iterable[TimeSession],
    dimension: KeyFn,
    unit: str = "minutes",
    percent_decimals: int = 0,
) -> List[Bucket]:
    """Group closed sessions by ``dimension`` and rank them by total time.

    ``unit`` only affects ``Bucket.value``; ``total_minutes`` always holds the
    unrounded sum. ``percent_decimals`` picks whole (0) or one-decimal (1)
    percentages for the whole result.
    """
    _check_policy(unit, percent_decimals)
    return _rank(_group(completed(sessions), dimension), unit, percent_decimals)


def aggregate_by_day(
    sessions: Iterable[TimeSession],
    secondary: KeyFn = by_client,
    tz: Optional[dt.tzinfo] = None,
    days: Optional[Sequence[dt.date]] = None,
    percent_decimals: int = 0,
    unit: str = "minutes",
) -> List[DayBreakdown]:
    """Two-level aggregation: calendar day of ``end_time``, then ``secondary``.

    When ``days`` is given, exactly those days are returned in that order and
    days without sessions come back empty with a blank ``top_entry``.
    """
    _check_policy(unit, percent_decimals)
    per_day: Dict[dt.date, List[TimeSession]] = {}
    for session in completed(sessions):
        per_day.setdefault(local_end_date(session, tz), []).append(session)

    wanted = list(days) if days is not None else sorted(per_day)
    breakdowns: List[DayBreakdown] = []
    for day in wanted:
        entries = _rank(_group(per_day.get(day, []), secondary), unit, percent_decimals)
        breakdowns.append(
            DayBreakdown(
                day=day,
                total_minutes=sum(entry.total_minutes for entry in entries),
                top_entry=entries[0].key if entries else "",
                entries=entries,
            )
        )
    return breakdowns


__all__ = [
    "KeyFn",
    "UNITS",
    "round_half_up",
    "by_client",
    "by_user",
    "by_project_type",
    "by_day",
    "by_month",
    "local_end_date",
    "completed",
    "aggregate",
    "aggregate_by_day",
]
