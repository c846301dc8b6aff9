import json
from datetime import date, timedelta

from sqlalchemy import select, func

from habitpulse.models.habit import Habit
from habitpulse.models.habit_log import HabitLog
from habitpulse.models.milestone import Milestone
from habitpulse.services.habit_service import HabitService
from habitpulse.services.schedule import is_due
from habitpulse.services.streak_service import StreakService, compute_streak
from habitpulse.services.tracking_service import TrackingService

from conftest import TODAY, at_noon


def ago(n):
    return TODAY - timedelta(days=n)


def daily(created=date(2024, 1, 1)):
    return Habit(frequency="DAILY", days_of_week="[]", created_at=at_noon(created))


# ============ PURE CORE ============

def test_no_logs():
    s = compute_streak(daily(), [], TODAY)
    assert s == {"current_streak": 0, "longest_streak": 0, "total_completions": 0, "last_completed_at": None}


def test_open_today_does_not_break_streak():
    s = compute_streak(daily(), [ago(1), ago(2), ago(3)], TODAY)
    assert s["current_streak"] == 3


def test_missed_yesterday_breaks_streak():
    s = compute_streak(daily(), [ago(2), ago(3)], TODAY)
    assert s["current_streak"] == 0
    assert s["longest_streak"] == 2


def test_non_due_days_are_skipped_not_counted():
    weekend = Habit(frequency="WEEKLY", days_of_week=json.dumps([6, 7]), created_at=at_noon(date(2024, 1, 1)))
    # Sat 9th, Sun 10th, Sat 16th, Sun 17th of March 2024
    dates = [date(2024, 3, 9), date(2024, 3, 10), date(2024, 3, 16), date(2024, 3, 17)]
    s = compute_streak(weekend, dates, TODAY)
    assert s["current_streak"] == 4
    assert s["longest_streak"] == 4


def test_longest_uses_calendar_runs_and_stored_value():
    dates = [ago(20), ago(19), ago(18), ago(17), ago(1)]
    s = compute_streak(daily(), dates, TODAY, stored_longest=2)
    assert s["current_streak"] == 1
    assert s["longest_streak"] == 4
    assert compute_streak(daily(), dates, TODAY, stored_longest=9)["longest_streak"] == 9


def test_current_never_exceeds_longest():
    weekend = Habit(frequency="WEEKLY", days_of_week=json.dumps([6, 7]), created_at=at_noon(date(2024, 1, 1)))
    # Two weekends: calendar run is 2, due-day streak is 4
    s = compute_streak(weekend, [date(2024, 3, 9), date(2024, 3, 10), date(2024, 3, 16), date(2024, 3, 17)], TODAY)
    assert s["current_streak"] <= s["longest_streak"]


def test_recompute_is_idempotent():
    dates = [ago(n) for n in range(12) if n != 4]
    first = compute_streak(daily(), dates, TODAY)
    second = compute_streak(daily(), dates, TODAY, stored_longest=first["longest_streak"])
    assert first == second


# ============ PERSISTED ============

async def test_scenario_daily_habit_with_one_gap(db, user, make_habit, add_logs):
    habit = await make_habit(created_days_ago=9)
    # Ten days counting back from today, day 7 (six days ago) missing
    await add_logs(habit, [ago(n) for n in range(10) if n != 6])

    streak = await StreakService.recalculate(db, user.id, habit.id, TODAY)
    await db.commit()

    assert streak["current_streak"] == 6
    assert streak["longest_streak"] >= 3
    assert streak["total_completions"] == 9
    assert habit.current_streak == 6
    assert habit.last_completed_at == TODAY


async def test_check_in_today_extends_stored_streak_by_one(db, user, make_habit, add_logs):
    habit = await make_habit(created_days_ago=10)
    await add_logs(habit, [ago(3), ago(2), ago(1)])
    await StreakService.recalculate(db, user.id, habit.id, TODAY)
    await db.commit()
    before = habit.current_streak

    result = await TrackingService.check_in(db, user.id, habit.id, today=TODAY)

    assert before == 3
    assert result["streak"]["current_streak"] == before + 1
    assert result["streak"]["last_completed_at"] == TODAY.isoformat()


async def test_delete_and_readd_restores_streak(db, user, make_habit, add_logs):
    habit = await make_habit(created_days_ago=10)
    await add_logs(habit, [ago(4), ago(3), ago(2), ago(1)])
    await StreakService.recalculate(db, user.id, habit.id, TODAY)
    await db.commit()
    before = habit.current_streak

    undone = await TrackingService.undo_check_in(db, user.id, habit.id, ago(2), today=TODAY)
    assert undone["streak"]["current_streak"] == 1

    redone = await TrackingService.check_in(db, user.id, habit.id, ago(2), today=TODAY)
    assert redone["streak"]["current_streak"] == before == 4


async def test_pause_window_keeps_streak_alive(db, user, make_habit, add_logs):
    habit = await make_habit(created_days_ago=20)
    await add_logs(habit, [ago(n) for n in range(6, 11)])
    habit.paused_at = at_noon(ago(5))
    habit.paused_until = ago(1)
    await db.commit()

    result = await TrackingService.check_in(db, user.id, habit.id, today=TODAY)
    assert result["streak"]["current_streak"] == 6


async def test_repause_keeps_earlier_pause_window(db, user, make_habit, add_logs):
    habit = await make_habit(created_days_ago=40)
    await add_logs(habit, [ago(n) for n in range(11, 30)] + [ago(n) for n in range(1, 6)])
    await HabitService.pause(db, user.id, habit.id, today=ago(10))
    await HabitService.resume(db, user.id, habit.id, today=ago(5))

    first = await StreakService.recalculate(db, user.id, habit.id, TODAY)
    await db.commit()
    assert first["current_streak"] == 24

    await HabitService.pause(db, user.id, habit.id, reason="travel", today=TODAY)
    second = await StreakService.recalculate(db, user.id, habit.id, TODAY)

    assert habit.pause_history == [(ago(10), ago(6))]
    assert not is_due(habit, ago(8))
    assert second["current_streak"] == 24


async def test_milestone_awarded_once(db, user, make_habit, add_logs):
    habit = await make_habit(created_days_ago=20)
    await add_logs(habit, [ago(n) for n in range(1, 7)])

    result = await TrackingService.check_in(db, user.id, habit.id, today=TODAY)
    assert [(m["type"], m["value"]) for m in result["milestones"]] == [("STREAK", 7)]

    # Re-checking the same day and recomputing again must not duplicate it
    again = await TrackingService.check_in(db, user.id, habit.id, today=TODAY)
    assert again["milestones"] == []
    streak = await StreakService.recalculate(db, user.id, habit.id, TODAY)
    assert await StreakService.check_milestones(db, habit, streak) == []

    count = (await db.execute(select(func.count()).select_from(Milestone))).scalar_one()
    assert count == 1


async def test_completion_milestones(db, user, make_habit, add_logs):
    habit = await make_habit(created_days_ago=60)
    # Every other day: ten completions, no long streak
    await add_logs(habit, [ago(n) for n in range(2, 22, 2)])

    result = await TrackingService.check_in(db, user.id, habit.id, today=TODAY)
    kinds = {(m["type"], m["value"]) for m in result["milestones"]}
    assert kinds == {("COMPLETIONS", 10)}


async def test_uncompleted_check_in_awards_nothing(db, user, make_habit, add_logs):
    habit = await make_habit(created_days_ago=20)
    await add_logs(habit, [ago(n) for n in range(1, 10)])

    result = await TrackingService.check_in(db, user.id, habit.id, completed=False, today=TODAY)

    assert result["milestones"] == []
    assert result["log"]["completed"] is False
    assert result["streak"]["current_streak"] == 9
    logs = (await db.execute(select(func.count()).select_from(HabitLog))).scalar_one()
    assert logs == 10
