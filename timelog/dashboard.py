"""Admin dashboard read models built on the aggregation engine."""

from __future__ import annotations

import calendar
import datetime as dt
from dataclasses import dataclass, field, replace
from typing import Iterable, List, Optional, Union

from .aggregation import (
    aggregate,
    aggregate_by_day,
    by_client,
    by_project_type,
    by_user,
    completed,
    local_end_date,
)
from .entities import Bucket, DayBreakdown, TimeSession, TimeWindow
from .errors import ValidationError
from .formatting import format_duration_with_seconds
from .store import LogReader, collect_closed_sessions
from .windows import TimeFilter, parse_filter, resolve_window

ALL = "all"

# Calendar views never reach further back than the 365 day load window.
CALENDAR_MAX_DAYS = 366


@dataclass(frozen=True, slots=True)
class DashboardReport:
    unit: str
    per_client: List[Bucket]
    per_user: List[Bucket]
    project_types_by_user: List[Bucket]
    project_types_by_client: List[Bucket]
    users: List[str]
    clients: List[str]
    session_count: int
    time_filter: Optional[TimeFilter] = None
    window: Optional[TimeWindow] = None


@dataclass(frozen=True, slots=True)
class ClientTimeline:
    day: dt.date
    client_name: str
    entries: List[TimeSession] = field(default_factory=list)
    users: List[str] = field(default_factory=list)


def _unique(values: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(values))


def _selected(value: Optional[str]) -> Optional[str]:
    if value is None or value == "" or value == ALL:
        return None
    return value


def build_dashboard(
    sessions: Iterable[TimeSession],
    unit: str = "hours",
    user_filter: Optional[str] = None,
    client_filter: Optional[str] = None,
) -> DashboardReport:
    closed = completed(sessions)
    selected_user = _selected(user_filter)
    selected_client = _selected(client_filter)
    for_user = [s for s in closed if selected_user is None or s.user_name == selected_user]
    for_client = [s for s in closed if selected_client is None or s.client_name == selected_client]
    return DashboardReport(
        unit=unit,
        per_client=aggregate(closed, by_client, unit),
        per_user=aggregate(closed, by_user, unit),
        project_types_by_user=aggregate(for_user, by_project_type, unit),
        project_types_by_client=aggregate(for_client, by_project_type, unit),
        users=_unique(s.user_name for s in closed),
        clients=_unique(s.client_name for s in closed),
        session_count=len(closed),
    )


async def load_dashboard(
    reader: LogReader,
    token: Union[str, TimeFilter],
    now: dt.datetime,
    tz: Optional[dt.tzinfo] = None,
    *,
    unit: str = "hours",
    page_size: int = 1000,
    user_filter: Optional[str] = None,
    client_filter: Optional[str] = None,
) -> DashboardReport:
    time_filter = parse_filter(token)
    window = resolve_window(time_filter, now, tz)
    sessions = await collect_closed_sessions(reader, window, page_size)
    report = build_dashboard(sessions, unit, user_filter, client_filter)
    return replace(report, time_filter=time_filter, window=window)


async def load_calendar_sessions(
    reader: LogReader,
    now: dt.datetime,
    tz: Optional[dt.tzinfo] = None,
    *,
    page_size: int = 5000,
) -> List[TimeSession]:
    window = resolve_window(TimeFilter.LAST_365_DAYS, now, tz)
    return await collect_closed_sessions(reader, window, page_size)


def daily_calendar(
    sessions: Iterable[TimeSession],
    start_day: dt.date,
    end_day: dt.date,
    tz: Optional[dt.tzinfo] = None,
) -> List[DayBreakdown]:
    if end_day < start_day:
        raise ValidationError("end_day must not be before start_day")
    span = (end_day - start_day).days
    if span >= CALENDAR_MAX_DAYS:
        raise ValidationError(f"Calendar range is limited to {CALENDAR_MAX_DAYS} days")
    days = [start_day + dt.timedelta(days=offset) for offset in range(span + 1)]
    return aggregate_by_day(sessions, by_client, tz, days=days, percent_decimals=0)


def monthly_calendar(
    sessions: Iterable[TimeSession],
    year: int,
    month: int,
    tz: Optional[dt.tzinfo] = None,
) -> List[DayBreakdown]:
    if not dt.MINYEAR <= year <= dt.MAXYEAR:
        raise ValidationError(f"Invalid year: {year}")
    if not 1 <= month <= 12:
        raise ValidationError(f"Invalid month: {month}")
    _, last_day = calendar.monthrange(year, month)
    days = [dt.date(year, month, day) for day in range(1, last_day + 1)]
    return aggregate_by_day(sessions, by_client, tz, days=days, percent_decimals=1)


def client_timeline(
    sessions: Iterable[TimeSession],
    day: dt.date,
    client_name: str,
    tz: Optional[dt.tzinfo] = None,
) -> ClientTimeline:
    entries = sorted(
        (
            s
            for s in completed(sessions)
            if s.duration_minutes and s.client_name == client_name and local_end_date(s, tz) == day
        ),
        key=lambda s: s.start_time,
    )
    return ClientTimeline(
        day=day,
        client_name=client_name,
        entries=entries,
        users=sorted({s.user_name for s in entries}),
    )


def daily_summary(
    sessions: Iterable[TimeSession],
    user_name: str,
    day: dt.date,
    tz: Optional[dt.tzinfo] = None,
) -> List[TimeSession]:
    """Closed sessions of one user that ended on ``day``, oldest first."""
    return sorted(
        (s for s in completed(sessions) if s.user_name == user_name and local_end_date(s, tz) == day),
        key=lambda s: s.start_time,
    )


def format_daily_summary(
    display_name: str,
    day: dt.date,
    sessions: Iterable[TimeSession],
    tz: Optional[dt.tzinfo] = None,
) -> str:
    entries = list(sessions)
    if not entries:
        return ""
    header = f"{display_name}\n{day:%A}, {day.day} {day:%B} {day.year}"
    lines = []
    for session in entries:
        start = session.start_time.astimezone(tz) if tz else session.start_time
        end = session.end_time.astimezone(tz) if tz else session.end_time
        lines.append(
            f"{start:%H:%M} - {end:%H:%M} "
            f"{format_duration_with_seconds(session.duration_minutes or 0)} : "
            f"({session.client_name}) {session.project_name}"
        )
    return "\n".join([header, *lines])


__all__ = [
    "CALENDAR_MAX_DAYS",
    "DashboardReport",
    "ClientTimeline",
    "build_dashboard",
    "load_dashboard",
    "load_calendar_sessions",
    "daily_calendar",
    "monthly_calendar",
    "client_timeline",
    "daily_summary",
    "format_daily_summary",
]
