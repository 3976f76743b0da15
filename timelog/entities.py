"""Domain objects passed between the store, the timer and the analytics code."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import List, Optional


UTC = dt.timezone.utc


def utcnow() -> dt.datetime:
    return dt.datetime.now(UTC)


def as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def minutes_between(start: dt.datetime, end: dt.datetime) -> float:
    """Fractional minutes from ``start`` to ``end``, sub-minute precision kept."""
    return (as_utc(end) - as_utc(start)).total_seconds() / 60


@dataclass(frozen=True, slots=True)
class TimeSession:
    """A timed work session as returned by the session store."""

    id: int
    user_name: str
    client_name: str
    project_type: str
    project_name: str
    start_time: dt.datetime
    end_time: Optional[dt.datetime] = None
    duration_minutes: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    @property
    def is_closed(self) -> bool:
        return self.end_time is not None and self.duration_minutes is not None

    def recomputed_duration(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return minutes_between(self.start_time, self.end_time)


@dataclass(frozen=True, slots=True)
class SessionForm:
    """Classification fields shown next to the running timer."""

    client_name: str = ""
    project_type: str = ""
    project_name: str = ""

    @classmethod
    def from_session(cls, session: TimeSession) -> "SessionForm":
        return cls(
            client_name=session.client_name,
            project_type=session.project_type,
            project_name=session.project_name,
        )


@dataclass(frozen=True, slots=True)
class StopResult:
    session_id: int
    end_time: dt.datetime
    duration_minutes: float
    already_closed: bool = False


@dataclass(frozen=True, slots=True)
class TimeWindow:
    start: dt.datetime
    end: dt.datetime

    def contains(self, instant: dt.datetime) -> bool:
        return self.start <= instant <= self.end


@dataclass(frozen=True, slots=True)
class Bucket:
    """One aggregation group with its summed minutes and share of the total."""

    key: str
    total_minutes: float
    value: float
    percentage: float


@dataclass(frozen=True, slots=True)
class DayBreakdown:
    day: dt.date
    total_minutes: float
    top_entry: str
    entries: List[Bucket] = field(default_factory=list)


__all__ = [
    "UTC",
    "utcnow",
    "as_utc",
    "minutes_between",
    "TimeSession",
    "SessionForm",
    "StopResult",
    "TimeWindow",
    "Bucket",
    "DayBreakdown",
]
