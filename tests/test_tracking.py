from datetime import timedelta

import pytest

from habitpulse.errors import InvalidSchedule, NotFound, Conflict
from habitpulse.services.habit_service import HabitService
from habitpulse.services.tracking_service import TrackingService

from conftest import TODAY, at_noon


def ago(n):
    return TODAY - timedelta(days=n)


async def test_check_in_is_an_upsert(db, user, make_habit):
    habit = await make_habit(habit_type="NUMERIC", target_value=20, unit="pages")

    first = await TrackingService.check_in(db, user.id, habit.id, value=10, today=TODAY)
    second = await TrackingService.check_in(db, user.id, habit.id, value=25, notes="long chapter", today=TODAY)

    assert first["log"]["id"] == second["log"]["id"]
    assert second["log"]["value"] == 25
    assert second["log"]["notes"] == "long chapter"
    assert second["streak"]["total_completions"] == 1


async def test_future_check_in_rejected(db, user, make_habit):
    habit = await make_habit()
    with pytest.raises(InvalidSchedule):
        await TrackingService.check_in(db, user.id, habit.id, TODAY + timedelta(days=1), today=TODAY)


async def test_bad_date_format_rejected(db, user, make_habit):
    habit = await make_habit()
    with pytest.raises(InvalidSchedule):
        await TrackingService.check_in(db, user.id, habit.id, "20-03-2024", today=TODAY)


async def test_undo_without_log_is_not_found(db, user, make_habit):
    habit = await make_habit()
    with pytest.raises(NotFound):
        await TrackingService.undo_check_in(db, user.id, habit.id, today=TODAY)


async def test_other_users_habit_is_not_found(db, user, make_habit):
    habit = await make_habit()
    with pytest.raises(NotFound):
        await TrackingService.check_in(db, 999, habit.id, today=TODAY)


async def test_today_lists_only_due_habits(db, user, make_habit):
    daily = await make_habit("Meditate")
    await make_habit("Long run", frequency="WEEKLY", days_of_week=[6, 7])
    await TrackingService.check_in(db, user.id, daily.id, today=TODAY)

    result = await TrackingService.get_today_habits(db, user.id, today=TODAY)

    assert result["date"] == TODAY.isoformat()
    assert [h["name"] for h in result["habits"]] == ["Meditate"]
    assert result["habits"][0]["is_completed"] is True
    assert result["habits"][0]["current_streak"] == 1


async def test_habits_by_date_includes_habits_archived_later(db, user, make_habit):
    habit = await make_habit("Journal")
    habit.is_archived = True
    habit.archived_at = at_noon(ago(2))
    await db.commit()

    before = await TrackingService.get_habits_by_date(db, user.id, ago(5).isoformat())
    after = await TrackingService.get_habits_by_date(db, user.id, ago(1))

    assert [h["name"] for h in before["habits"]] == ["Journal"]
    assert after["habits"] == []


async def test_history_counts_and_percentages(db, user, make_habit, add_logs):
    a = await make_habit("A")
    b = await make_habit("B")
    await add_logs(a, [ago(1), ago(0)])
    await add_logs(b, [ago(0)])

    result = await TrackingService.get_history(db, user.id, start=ago(2), end=TODAY, today=TODAY)

    entries = {e["date"]: e for e in result["entries"]}
    assert entries[ago(2).isoformat()] == {"date": ago(2).isoformat(), "count": 0, "total": 2, "percentage": 0}
    assert entries[ago(1).isoformat()]["percentage"] == 50
    assert entries[TODAY.isoformat()]["percentage"] == 100
    assert len(result["logs"]) == 3


async def test_history_percentage_rounds_half_up(db, user, make_habit, add_logs):
    habits = [await make_habit(f"Habit {n}") for n in range(8)]
    await add_logs(habits[0], [ago(1)])

    result = await TrackingService.get_history(db, user.id, start=ago(1), end=ago(1), today=TODAY)

    # 1 of 8 is 12.5%
    assert result["entries"][0]["percentage"] == 13


async def test_history_rejects_inverted_range(db, user):
    with pytest.raises(InvalidSchedule):
        await TrackingService.get_history(db, user.id, start=TODAY, end=ago(3), today=TODAY)


async def test_milestones_listing(db, user, make_habit, add_logs):
    habit = await make_habit("Stretch")
    await add_logs(habit, [ago(n) for n in range(1, 7)])
    await TrackingService.check_in(db, user.id, habit.id, today=TODAY)

    milestones = await TrackingService.get_milestones(db, user.id)

    assert len(milestones) == 1
    assert milestones[0]["habit_name"] == "Stretch"
    assert milestones[0]["value"] == 7


# ============ LIFECYCLE ============

async def test_archive_and_unarchive(db, user, make_habit):
    habit = await make_habit()
    await HabitService.archive(db, user.id, habit.id)
    with pytest.raises(Conflict):
        await HabitService.archive(db, user.id, habit.id)

    listed = await HabitService.get_all(db, user.id, archived=True)
    assert listed["total"] == 1

    await HabitService.unarchive(db, user.id, habit.id)
    with pytest.raises(Conflict):
        await HabitService.unarchive(db, user.id, habit.id)


async def test_pause_and_resume(db, user, make_habit):
    habit = await make_habit()
    await HabitService.pause(db, user.id, habit.id, reason="vacation", today=ago(3))
    with pytest.raises(Conflict):
        await HabitService.pause(db, user.id, habit.id, today=ago(3))

    resumed = await HabitService.resume(db, user.id, habit.id, today=TODAY)

    assert resumed.is_paused is False
    assert resumed.paused_until == ago(1)
    with pytest.raises(Conflict):
        await HabitService.resume(db, user.id, habit.id, today=TODAY)


async def test_pause_can_restart_after_end_date_lapses(db, user, make_habit):
    habit = await make_habit()
    await HabitService.pause(db, user.id, habit.id, paused_until=ago(8), today=ago(10))

    await HabitService.pause(db, user.id, habit.id, today=ago(2))

    assert habit.pause_history == [(ago(10), ago(8))]
    assert habit.paused_until is None
    with pytest.raises(Conflict):
        await HabitService.pause(db, user.id, habit.id, today=TODAY)


async def test_pause_end_in_past_rejected(db, user, make_habit):
    habit = await make_habit()
    with pytest.raises(InvalidSchedule):
        await HabitService.pause(db, user.id, habit.id, paused_until=ago(1), today=TODAY)


async def test_invalid_weekly_schedule_rejected(db, user, make_habit):
    with pytest.raises(InvalidSchedule):
        await make_habit(frequency="WEEKLY")


async def test_soft_delete_hides_habit(db, user, make_habit):
    habit = await make_habit()
    await HabitService.delete(db, user.id, habit.id)
    with pytest.raises(NotFound):
        await HabitService.get_habit(db, user.id, habit.id)
    assert (await HabitService.get_all(db, user.id))["total"] == 0


async def test_schedule_change_recomputes_streak(db, user, make_habit, add_logs):
    habit = await make_habit()
    # Mon 18th and Sat 16th completed, Sun 17th missed
    await add_logs(habit, [ago(2), ago(4)])

    await HabitService.update(db, user.id, habit.id, {"frequency": "WEEKLY", "days_of_week": [1, 6]},
                              today=TODAY)

    # The Monday/Saturday schedule no longer expects Sunday
    assert habit.current_streak == 2


async def test_recalculate_all(db, user, make_habit, add_logs):
    a = await make_habit("A")
    b = await make_habit("B")
    await add_logs(a, [ago(1), ago(2)])
    await add_logs(b, [ago(1)])

    results = await HabitService.recalculate_all(db, user.id, today=TODAY)

    assert {r["habit_id"]: r["current_streak"] for r in results} == {a.id: 2, b.id: 1}
