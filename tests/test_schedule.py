import json
from datetime import date, timedelta

import pytest

from habitpulse.errors import InvalidSchedule
from habitpulse.models.habit import Habit
from habitpulse.services.schedule import is_due, is_tracked, expected_days, validate_schedule
from habitpulse.clock import date_range, start_of_week, local_date, parse_date

from conftest import TODAY, at_noon


def habit(frequency="DAILY", days=None, times=None, created=date(2024, 1, 1), **fields):
    return Habit(
        frequency=frequency,
        days_of_week=json.dumps(days or []),
        times_per_week=times,
        created_at=at_noon(created),
        **fields,
    )


def test_daily_is_due_every_day():
    h = habit()
    assert all(is_due(h, d) for d in date_range(date(2024, 3, 1), date(2024, 3, 31)))


def test_weekly_days_of_week():
    h = habit("WEEKLY", days=[6, 7])
    week = date_range(date(2024, 3, 18), date(2024, 3, 24))  # Mon..Sun
    assert [is_due(h, d) for d in week] == [False] * 5 + [True, True]


def test_weekly_times_per_week_is_due_daily():
    h = habit("WEEKLY", times=3)
    assert all(is_due(h, d) for d in date_range(date(2024, 3, 18), date(2024, 3, 24)))


def test_not_due_before_creation():
    h = habit(created=date(2024, 3, 10))
    assert not is_due(h, date(2024, 3, 9))
    assert is_due(h, date(2024, 3, 10))


def test_pause_window_with_end_date():
    h = habit(is_paused=True, paused_at=at_noon(date(2024, 3, 10)), paused_until=date(2024, 3, 12))
    assert is_due(h, date(2024, 3, 9))
    assert not is_due(h, date(2024, 3, 10))
    assert not is_due(h, date(2024, 3, 12))
    assert is_due(h, date(2024, 3, 13))


def test_open_ended_pause_only_covers_days_from_pause_start():
    h = habit(is_paused=True, paused_at=at_noon(date(2024, 3, 10)), paused_until=None)
    assert is_due(h, date(2024, 3, 1))
    assert not is_due(h, date(2024, 3, 10))
    assert not is_due(h, date(2025, 1, 1))


def test_resumed_habit_keeps_historical_pause():
    h = habit(is_paused=False, paused_at=at_noon(date(2024, 3, 10)), paused_until=date(2024, 3, 14))
    assert not is_due(h, date(2024, 3, 11))
    assert is_due(h, date(2024, 3, 15))


def test_earlier_pause_windows_stay_non_due():
    h = habit(is_paused=True, paused_at=at_noon(date(2024, 3, 18)), paused_until=None,
              past_pauses=json.dumps([["2024-03-01", "2024-03-03"]]))
    assert is_due(h, date(2024, 2, 29))
    assert not is_due(h, date(2024, 3, 2))
    assert is_due(h, date(2024, 3, 4))
    assert not is_due(h, date(2024, 3, 18))


def test_is_due_is_deterministic():
    h = habit("WEEKLY", days=[1, 3, 5])
    days = date_range(date(2024, 1, 1), date(2024, 3, 31))
    assert [is_due(h, d) for d in days] == [is_due(h, d) for d in days]


def test_is_tracked_stops_at_archive_day():
    h = habit(is_archived=True, archived_at=at_noon(date(2024, 3, 15)))
    assert is_tracked(h, date(2024, 3, 14))
    assert not is_tracked(h, date(2024, 3, 15))
    assert is_due(h, date(2024, 3, 15))


def test_expected_days():
    h = habit("WEEKLY", days=[1])
    days = date_range(date(2024, 3, 1), date(2024, 3, 31))
    assert expected_days(h, days) == [date(2024, 3, 4), date(2024, 3, 11), date(2024, 3, 18), date(2024, 3, 25)]


def test_local_day_uses_user_time_zone():
    h = habit(created=date(2024, 3, 10))
    # 12:00 UTC on the 10th is already the 11th in Auckland
    assert not is_due(h, date(2024, 3, 10), "Pacific/Auckland")
    assert is_due(h, date(2024, 3, 10), "UTC")


@pytest.mark.parametrize("frequency,days,times", [
    ("WEEKLY", [], None),
    ("WEEKLY", [0], None),
    ("WEEKLY", [8], None),
    ("DAILY", None, 9),
    ("MONTHLY", None, None),
])
def test_validate_schedule_rejects(frequency, days, times):
    with pytest.raises(InvalidSchedule):
        validate_schedule(frequency, days, times)


def test_validate_schedule_accepts():
    validate_schedule("DAILY", None, None)
    validate_schedule("WEEKLY", [6, 7], None)
    validate_schedule("WEEKLY", None, 3)


def test_clock_helpers():
    assert start_of_week(TODAY) == date(2024, 3, 18)
    assert start_of_week(date(2024, 3, 18)) == date(2024, 3, 18)
    assert date_range(TODAY, TODAY - timedelta(days=1)) == []
    assert local_date(date(2024, 3, 1), "Asia/Kolkata") == date(2024, 3, 1)
    assert parse_date("2024-03-01") == date(2024, 3, 1)
    with pytest.raises(InvalidSchedule):
        parse_date("03/01/2024")
