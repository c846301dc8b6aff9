"""
streak_service.py — Streaks & Milestones
Re-derives a habit's rollups (current/longest streak, total completions,
last completion) from the full completed-log set after every write, and
awards milestone records the first time a threshold is crossed.
"""

import logging
from datetime import date, timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from habitpulse.clock import get_user_timezone, today_for_timezone
from habitpulse.errors import NotFound
from habitpulse.models.habit import Habit
from habitpulse.models.habit_log import HabitLog
from habitpulse.models.milestone import (
    Milestone, STREAK, COMPLETIONS, STREAK_MILESTONES, COMPLETION_MILESTONES,
)
from habitpulse.services.schedule import is_due

logger = logging.getLogger(__name__)


def compute_streak(habit, completed_dates, today: date, tz: str = "UTC", stored_longest: int = 0) -> dict:
    """Storage-free core of the streak engine.

    Walks backward from today (from yesterday when today is due but not yet
    logged, since an open day does not break a streak). Every due day needs a
    completion; the first due day without one ends the walk. Non-due days are
    passed over and never counted.
    """
    dates = sorted(set(completed_dates))
    if not dates:
        return {
            "current_streak": 0,
            "longest_streak": stored_longest,
            "total_completions": 0,
            "last_completed_at": None,
        }

    done = set(dates)
    current = 0
    cursor = today
    if is_due(habit, today, tz) and today not in done:
        cursor = today - timedelta(days=1)

    earliest = dates[0]
    while cursor >= earliest:
        if not is_due(habit, cursor, tz):
            cursor -= timedelta(days=1)
            continue
        if cursor not in done:
            break
        current += 1
        cursor -= timedelta(days=1)

    # Longest run of consecutive calendar days
    best = run = 1
    for prev, curr in zip(dates, dates[1:]):
        run = run + 1 if (curr - prev).days == 1 else 1
        best = max(best, run)

    return {
        "current_streak": current,
        "longest_streak": max(stored_longest, best, current),
        "total_completions": len(dates),
        "last_completed_at": dates[-1],
    }


class StreakService:
    @staticmethod
    async def completed_dates(db: AsyncSession, habit_id: int) -> list[date]:
        result = await db.execute(
            select(HabitLog.date)
            .where(HabitLog.habit_id == habit_id, HabitLog.completed.is_(True))
            .order_by(HabitLog.date.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def calculate_streak(db: AsyncSession, habit: Habit, tz: str, today: date) -> dict:
        dates = await StreakService.completed_dates(db, habit.id)
        return compute_streak(habit, dates, today, tz, habit.longest_streak or 0)

    @staticmethod
    async def recalculate(db: AsyncSession, user_id: int, habit_id: int, today: date | None = None) -> dict:
        """Re-derive and persist the streak snapshot (flushed, not committed)."""
        result = await db.execute(select(Habit).where(Habit.id == habit_id, Habit.user_id == user_id))
        habit = result.scalar_one_or_none()
        if not habit:
            raise NotFound("Habit", habit_id)

        tz = await get_user_timezone(db, user_id)
        today = today or today_for_timezone(tz)
        streak = await StreakService.calculate_streak(db, habit, tz, today)

        habit.current_streak = streak["current_streak"]
        habit.longest_streak = streak["longest_streak"]
        habit.total_completions = streak["total_completions"]
        habit.last_completed_at = streak["last_completed_at"]
        await db.flush()
        return streak

    @staticmethod
    async def check_milestones(db: AsyncSession, habit: Habit, streak: dict) -> list[Milestone]:
        """Create milestone rows for newly crossed thresholds.

        The (habit, type, value) unique constraint makes this idempotent; a
        row inserted concurrently by another writer is skipped.
        """
        result = await db.execute(
            select(Milestone.type, Milestone.value).where(Milestone.habit_id == habit.id)
        )
        existing = {(t, v) for t, v in result.all()}

        wanted = [(STREAK, t) for t in STREAK_MILESTONES if streak["current_streak"] >= t]
        wanted += [(COMPLETIONS, t) for t in COMPLETION_MILESTONES if streak["total_completions"] >= t]

        created = []
        for kind, threshold in wanted:
            if (kind, threshold) in existing:
                continue
            milestone = Milestone(habit_id=habit.id, user_id=habit.user_id, type=kind, value=threshold)
            try:
                async with db.begin_nested():
                    db.add(milestone)
                    await db.flush()
            except IntegrityError:
                logger.info(f"Milestone {kind}:{threshold} for habit {habit.id} already awarded")
                continue
            created.append(milestone)
            logger.info(f"Milestone achieved: habit={habit.id} user={habit.user_id} {kind}={threshold}")
        return created
