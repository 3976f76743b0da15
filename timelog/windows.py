from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Optional, Union

from .entities import TimeWindow
from .errors import ValidationError


class TimeFilter(str, Enum):
    TODAY = "today"
    YESTERDAY = "yesterday"
    LAST_7_DAYS = "7days"
    LAST_30_DAYS = "30days"
    LAST_365_DAYS = "365days"


_ROLLING_DAYS = {
    TimeFilter.LAST_7_DAYS: 7,
    TimeFilter.LAST_30_DAYS: 30,
    TimeFilter.LAST_365_DAYS: 365,
}

FILTER_LABELS = {
    TimeFilter.TODAY: "Today",
    TimeFilter.YESTERDAY: "Yesterday",
    TimeFilter.LAST_7_DAYS: "Last 7 Days",
    TimeFilter.LAST_30_DAYS: "Last 30 Days",
    TimeFilter.LAST_365_DAYS: "Last Year",
}

_END_OF_DAY = dt.time(23, 59, 59, 999000)


def parse_filter(token: Union[str, TimeFilter]) -> TimeFilter:
    if isinstance(token, TimeFilter):
        return token
    try:
        return TimeFilter(str(token).strip().lower())
    except ValueError as exc:
        raise ValidationError(f"Unknown time filter: {token}") from exc


def _local_midnight(day: dt.date, tz: dt.tzinfo) -> dt.datetime:
    return dt.datetime.combine(day, dt.time.min, tzinfo=tz)


def resolve_window(
    token: Union[str, TimeFilter],
    now: dt.datetime,
    tz: Optional[dt.tzinfo] = None,
) -> TimeWindow:
    """Map a filter token to explicit local instants relative to ``now``.

    ``yesterday`` is the previous calendar day (midnight to 23:59:59.999), not
    a rolling 24 hour window. The rolling filters start at local midnight
    N days back and end at ``now``.
    """
    time_filter = parse_filter(token)
    if now.tzinfo is None:
        raise ValidationError("now must be timezone-aware")
    local_now = now.astimezone(tz) if tz is not None else now
    zone = local_now.tzinfo
    today = local_now.date()

    if time_filter is TimeFilter.TODAY:
        return TimeWindow(start=_local_midnight(today, zone), end=local_now)
    if time_filter is TimeFilter.YESTERDAY:
        day = today - dt.timedelta(days=1)
        return TimeWindow(
            start=_local_midnight(day, zone),
            end=dt.datetime.combine(day, _END_OF_DAY, tzinfo=zone),
        )
    day = today - dt.timedelta(days=_ROLLING_DAYS[time_filter])
    return TimeWindow(start=_local_midnight(day, zone), end=local_now)


def day_bounds(day: dt.date, tz: dt.tzinfo) -> TimeWindow:
    start = _local_midnight(day, tz)
    return TimeWindow(start=start, end=dt.datetime.combine(day, _END_OF_DAY, tzinfo=tz))


__all__ = ["TimeFilter", "FILTER_LABELS", "parse_filter", "resolve_window", "day_bounds"]
