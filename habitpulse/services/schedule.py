"""
schedule.py — Due-day predicate
Decides whether a habit was expected on a given local calendar day. Every
aggregation builds its expected-denominator from is_due and nothing else.
"""

from datetime import date

from habitpulse.clock import local_date
from habitpulse.errors import InvalidSchedule
from habitpulse.models.habit import DAILY, WEEKLY, FREQUENCIES

DAY_NAMES = ["", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
DAY_ABBR = ["", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


def validate_schedule(frequency: str, days_of_week: list[int] | None, times_per_week: int | None):
    if frequency not in FREQUENCIES:
        raise InvalidSchedule(f"Unknown frequency '{frequency}'", {"frequency": frequency})
    days = days_of_week or []
    bad = [d for d in days if not isinstance(d, int) or d < 1 or d > 7]
    if bad:
        raise InvalidSchedule("days_of_week must use ISO weekdays 1..7", {"days_of_week": days})
    if times_per_week is not None and not 1 <= times_per_week <= 7:
        raise InvalidSchedule("times_per_week must be between 1 and 7", {"times_per_week": times_per_week})
    if frequency == WEEKLY and not days and times_per_week is None:
        raise InvalidSchedule("Weekly habits need days_of_week or times_per_week")


def in_pause_window(habit, day: date, tz: str = "UTC") -> bool:
    """Current window is [local(paused_at), paused_until], open-ended without an end date.
    Windows closed by earlier pauses are kept in pause_history and still apply."""
    if any(start <= day <= end for start, end in habit.pause_history):
        return True
    if habit.paused_at is None:
        return False
    start = local_date(habit.paused_at, tz)
    if day < start:
        return False
    if habit.paused_until is None:
        return bool(habit.is_paused)
    return day <= habit.paused_until


def is_due(habit, day: date, tz: str = "UTC") -> bool:
    created = local_date(habit.created_at, tz)
    if created is not None and day < created:
        return False
    if in_pause_window(habit, day, tz):
        return False
    if habit.frequency == DAILY:
        return True
    if habit.frequency == WEEKLY:
        weekdays = habit.weekdays
        if weekdays:
            return day.isoweekday() in weekdays
        # times_per_week only: the user picks the days
        return True
    return True


def is_tracked(habit, day: date, tz: str = "UTC") -> bool:
    """is_due, restricted to days before the habit was archived."""
    if habit.is_archived and habit.archived_at is not None:
        if day >= local_date(habit.archived_at, tz):
            return False
    return is_due(habit, day, tz)


def expected_days(habit, days: list[date], tz: str = "UTC") -> list[date]:
    return [d for d in days if is_due(habit, d, tz)]
