"""
tracking_service.py — Check-ins
Upserts one log per (habit, day), re-derives the streak snapshot, awards
milestones and drops the user's cached analytics. Invalidation runs even
when a later step of the write fails.
"""

import logging
from datetime import date, timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from habitpulse.clock import get_user_timezone, today_for_timezone, parse_date, date_range
from habitpulse.config import MAX_RANGE_DAYS
from habitpulse.errors import NotFound, InvalidSchedule
from habitpulse.models.habit import Habit
from habitpulse.models.habit_log import HabitLog
from habitpulse.models.milestone import Milestone
from habitpulse.services.analytics_service import pct
from habitpulse.services.cache_service import analytics_cache
from habitpulse.services.habit_service import HabitService
from habitpulse.services.schedule import is_due, is_tracked
from habitpulse.services.streak_service import StreakService

logger = logging.getLogger(__name__)


def _habit_row(habit: Habit, log: HabitLog | None) -> dict:
    return {
        "id": habit.id,
        "name": habit.name,
        "frequency": habit.frequency,
        "habit_type": habit.habit_type,
        "target_value": habit.target_value,
        "unit": habit.unit,
        "color": habit.color,
        "icon": habit.icon,
        "category": habit.category,
        "current_streak": habit.current_streak,
        "longest_streak": habit.longest_streak,
        "is_completed": log.completed if log else False,
        "log_value": log.value if log else None,
        "log_notes": log.notes if log else None,
        "log_id": log.id if log else None,
    }


class TrackingService:
    @staticmethod
    async def _find_log(db: AsyncSession, habit_id: int, d: date) -> HabitLog | None:
        result = await db.execute(select(HabitLog).where(HabitLog.habit_id == habit_id, HabitLog.date == d))
        return result.scalar_one_or_none()

    @staticmethod
    async def _upsert_log(db: AsyncSession, user_id: int, habit_id: int, d: date, completed: bool,
                          value: float | None, notes: str | None) -> HabitLog:
        log = await TrackingService._find_log(db, habit_id, d)
        if log is None:
            log = HabitLog(habit_id=habit_id, user_id=user_id, date=d, completed=completed, value=value, notes=notes)
            db.add(log)
            try:
                await db.commit()
                logger.info(f"Habit checked in: habit={habit_id} date={d}")
                return log
            except IntegrityError:
                # Lost the race for (habit, day): fall through and update the winner's row
                await db.rollback()
                log = await TrackingService._find_log(db, habit_id, d)
                if log is None:
                    raise
        log.completed = completed
        log.value = value
        log.notes = notes
        await db.commit()
        logger.info(f"Habit log updated: habit={habit_id} date={d}")
        return log

    @staticmethod
    async def check_in(db: AsyncSession, user_id: int, habit_id: int, day: str | date | None = None,
                       completed: bool = True, value: float | None = None, notes: str | None = None,
                       today: date | None = None) -> dict:
        """Mark a day, recompute the streak, award milestones."""
        habit = await HabitService.get_habit(db, user_id, habit_id)
        tz = await get_user_timezone(db, user_id)
        today = today or today_for_timezone(tz)
        d = parse_date(day) or today
        if d > today:
            raise InvalidSchedule("Cannot check in on a future date", {"date": d.isoformat()})

        try:
            log = await TrackingService._upsert_log(db, user_id, habit_id, d, completed, value, notes)
            streak = await StreakService.recalculate(db, user_id, habit_id, today)
            milestones = await StreakService.check_milestones(db, habit, streak) if completed else []
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        finally:
            await analytics_cache.invalidate_user(user_id)

        return {
            "log": log.to_dict(),
            "streak": {**streak, "last_completed_at": _iso(streak["last_completed_at"])},
            "milestones": [m.to_dict() for m in milestones],
        }

    @staticmethod
    async def undo_check_in(db: AsyncSession, user_id: int, habit_id: int, day: str | date | None = None,
                            today: date | None = None) -> dict:
        await HabitService.get_habit(db, user_id, habit_id)
        tz = await get_user_timezone(db, user_id)
        today = today or today_for_timezone(tz)
        d = parse_date(day) or today

        try:
            log = await TrackingService._find_log(db, habit_id, d)
            if log is None:
                raise NotFound("Habit log for this date")
            await db.delete(log)
            await db.commit()
            streak = await StreakService.recalculate(db, user_id, habit_id, today)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        finally:
            await analytics_cache.invalidate_user(user_id)

        logger.info(f"Habit check-in undone: habit={habit_id} date={d}")
        return {"streak": {**streak, "last_completed_at": _iso(streak["last_completed_at"])}}

    @staticmethod
    async def get_today_habits(db: AsyncSession, user_id: int, today: date | None = None) -> dict:
        tz = await get_user_timezone(db, user_id)
        today = today or today_for_timezone(tz)
        result = await db.execute(
            select(Habit)
            .where(Habit.user_id == user_id, Habit.is_active.is_(True), Habit.is_archived.is_(False))
            .order_by(Habit.sort_order, Habit.id)
        )
        habits = [h for h in result.scalars().all() if is_due(h, today, tz)]
        logs = await TrackingService._logs_on(db, [h.id for h in habits], today)
        return {"date": today.isoformat(), "habits": [_habit_row(h, logs.get(h.id)) for h in habits]}

    @staticmethod
    async def get_habits_by_date(db: AsyncSession, user_id: int, day: str | date) -> dict:
        """Habits that existed and were due on a day, including ones archived later."""
        d = parse_date(day)
        tz = await get_user_timezone(db, user_id)
        result = await db.execute(
            select(Habit).where(Habit.user_id == user_id, Habit.is_active.is_(True)).order_by(Habit.sort_order, Habit.id)
        )
        habits = [h for h in result.scalars().all() if is_tracked(h, d, tz)]
        logs = await TrackingService._logs_on(db, [h.id for h in habits], d)
        return {"date": d.isoformat(), "habits": [_habit_row(h, logs.get(h.id)) for h in habits]}

    @staticmethod
    async def _logs_on(db: AsyncSession, habit_ids: list[int], d: date) -> dict[int, HabitLog]:
        if not habit_ids:
            return {}
        result = await db.execute(select(HabitLog).where(HabitLog.habit_id.in_(habit_ids), HabitLog.date == d))
        return {log.habit_id: log for log in result.scalars().all()}

    @staticmethod
    async def get_history(db: AsyncSession, user_id: int, habit_id: int | None = None,
                          start: str | date | None = None, end: str | date | None = None,
                          limit: int = 90, today: date | None = None) -> dict:
        """Per-day completed/expected counts plus the raw logs of the range."""
        tz = await get_user_timezone(db, user_id)
        today = today or today_for_timezone(tz)
        end_d = parse_date(end) or today
        start_d = parse_date(start) or end_d - timedelta(days=max(1, min(limit, MAX_RANGE_DAYS)) - 1)
        if start_d > end_d or (end_d - start_d).days >= MAX_RANGE_DAYS:
            raise InvalidSchedule("Date range is invalid or too long",
                                  {"start": start_d.isoformat(), "end": end_d.isoformat()})

        query = select(Habit).where(Habit.user_id == user_id, Habit.is_active.is_(True))
        if habit_id is not None:
            query = query.where(Habit.id == habit_id)
        habits = list((await db.execute(query)).scalars().all())
        if habit_id is not None and not habits:
            raise NotFound("Habit", habit_id)
        by_id = {h.id: h for h in habits}

        result = await db.execute(
            select(HabitLog)
            .where(HabitLog.user_id == user_id, HabitLog.date >= start_d, HabitLog.date <= end_d,
                   HabitLog.habit_id.in_(list(by_id)))
            .order_by(HabitLog.date.desc())
        )
        logs = list(result.scalars().all())
        done_by_day: dict[date, set[int]] = {}
        for log in logs:
            if log.completed:
                done_by_day.setdefault(log.date, set()).add(log.habit_id)

        entries = []
        for d in date_range(start_d, end_d):
            due = [h for h in habits if is_tracked(h, d, tz)]
            count = sum(1 for h in due if h.id in done_by_day.get(d, set()))
            entries.append({
                "date": d.isoformat(),
                "count": count,
                "total": len(due),
                "percentage": pct(count, len(due)),
            })
        return {"entries": entries, "logs": [log.to_dict() for log in logs]}

    @staticmethod
    async def get_milestones(db: AsyncSession, user_id: int, habit_id: int | None = None) -> list[dict]:
        query = (
            select(Milestone, Habit.name)
            .join(Habit, Habit.id == Milestone.habit_id)
            .where(Milestone.user_id == user_id)
        )
        if habit_id is not None:
            query = query.where(Milestone.habit_id == habit_id)
        result = await db.execute(query.order_by(Milestone.achieved_at.desc(), Milestone.id.desc()))
        return [{**m.to_dict(), "habit_name": name} for m, name in result.all()]


def _iso(d: date | None) -> str | None:
    return d.isoformat() if d else None
