from __future__ import annotations

import datetime as dt
from zoneinfo import ZoneInfo

import pytest

from timelog.errors import ValidationError
from timelog.windows import FILTER_LABELS, TimeFilter, day_bounds, parse_filter, resolve_window

UTC = dt.timezone.utc
NOW = dt.datetime(2024, 3, 10, 15, 0, tzinfo=UTC)


def test_today_starts_at_local_midnight():
    window = resolve_window("today", NOW)
    assert window.start == dt.datetime(2024, 3, 10, 0, 0, tzinfo=UTC)
    assert window.end == NOW


def test_yesterday_is_previous_calendar_day():
    window = resolve_window(TimeFilter.YESTERDAY, NOW)
    assert window.start == dt.datetime(2024, 3, 9, 0, 0, tzinfo=UTC)
    assert window.end == dt.datetime(2024, 3, 9, 23, 59, 59, 999000, tzinfo=UTC)
    assert not window.contains(NOW)


@pytest.mark.parametrize(
    "token, first_day",
    [
        ("7days", dt.date(2024, 3, 3)),
        ("30days", dt.date(2024, 2, 9)),
        ("365days", dt.date(2023, 3, 11)),
    ],
)
def test_rolling_windows_start_at_midnight_n_days_back(token, first_day):
    window = resolve_window(token, NOW)
    assert window.start == dt.datetime.combine(first_day, dt.time.min, tzinfo=UTC)
    assert window.end == NOW


def test_windows_follow_the_configured_zone():
    jakarta = ZoneInfo("Asia/Jakarta")
    now = dt.datetime(2024, 3, 10, 20, 0, tzinfo=UTC)  # 03:00 on the 11th in Jakarta
    window = resolve_window("today", now, jakarta)
    assert window.start == dt.datetime(2024, 3, 11, 0, 0, tzinfo=jakarta)
    assert window.start.astimezone(UTC) == dt.datetime(2024, 3, 10, 17, 0, tzinfo=UTC)

    yesterday = resolve_window("yesterday", now, jakarta)
    assert yesterday.start.date() == dt.date(2024, 3, 10)


def test_naive_now_is_rejected():
    with pytest.raises(ValidationError):
        resolve_window("today", dt.datetime(2024, 3, 10, 15, 0))


def test_unknown_filter_is_rejected():
    with pytest.raises(ValidationError):
        parse_filter("fortnight")


def test_parse_filter_normalises_case():
    assert parse_filter(" 7DAYS ") is TimeFilter.LAST_7_DAYS
    assert FILTER_LABELS[TimeFilter.LAST_365_DAYS] == "Last Year"


def test_day_bounds_cover_the_whole_day():
    window = day_bounds(dt.date(2024, 1, 1), UTC)
    assert window.contains(dt.datetime(2024, 1, 1, 0, 0, tzinfo=UTC))
    assert window.contains(dt.datetime(2024, 1, 1, 23, 59, 59, tzinfo=UTC))
    assert not window.contains(dt.datetime(2024, 1, 2, 0, 0, tzinfo=UTC))


def test_yesterday_for_mid_morning_utc():
    window = resolve_window("yesterday", dt.datetime(2024, 3, 15, 10, 0, tzinfo=UTC), UTC)
    assert window.start.isoformat() == "2024-03-14T00:00:00+00:00"
    assert window.end.isoformat() == "2024-03-14T23:59:59.999000+00:00"
