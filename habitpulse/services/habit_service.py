"""
habit_service.py — Habit lifecycle
Create/update/archive/pause habits. Every write drops the owner's cached
analytics; rollup columns are left to the streak engine.
"""

import json
import logging
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from habitpulse.clock import get_user_timezone, today_for_timezone, local_date
from habitpulse.errors import NotFound, Conflict, InvalidSchedule
from habitpulse.models.habit import Habit, DAILY, BOOLEAN, HABIT_TYPES
from habitpulse.models.user import User
from habitpulse.services.cache_service import analytics_cache
from habitpulse.services.schedule import validate_schedule
from habitpulse.services.streak_service import StreakService

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "name", "description", "frequency", "days_of_week", "times_per_week", "habit_type",
    "target_value", "unit", "category", "color", "icon", "sort_order",
)


class HabitService:
    @staticmethod
    async def ensure_user(db: AsyncSession, user_id: int, username: str | None = None,
                          tz: str | None = None) -> User:
        """Fetch or create the local user row that carries the time zone."""
        user = await db.get(User, user_id)
        if user is None:
            user = User(id=user_id, username=username or f"user-{user_id}", timezone=tz)
            db.add(user)
            await db.commit()
        elif tz and user.timezone != tz:
            user.timezone = tz
            await db.commit()
            await analytics_cache.invalidate_user(user_id)
        return user

    @staticmethod
    async def create(db: AsyncSession, user_id: int, data: dict) -> Habit:
        frequency = data.get("frequency") or DAILY
        days = data.get("days_of_week") or []
        validate_schedule(frequency, days, data.get("times_per_week"))
        habit_type = data.get("habit_type") or BOOLEAN
        if habit_type not in HABIT_TYPES:
            raise InvalidSchedule(f"Unknown habit type '{habit_type}'")

        result = await db.execute(select(func.max(Habit.sort_order)).where(Habit.user_id == user_id))
        max_order = result.scalar()

        h = Habit(
            user_id=user_id,
            name=data["name"],
            description=data.get("description"),
            frequency=frequency,
            days_of_week=json.dumps(sorted(set(days))),
            times_per_week=data.get("times_per_week"),
            habit_type=habit_type,
            target_value=data.get("target_value"),
            unit=data.get("unit"),
            category=data.get("category"),
            color=data.get("color") or "#6366f1",
            icon=data.get("icon"),
            sort_order=(max_order + 1) if max_order is not None else 0,
        )
        if data.get("created_at"):
            h.created_at = data["created_at"]
        db.add(h)
        await db.commit()
        await db.refresh(h)
        logger.info(f"Habit created: id={h.id} user={user_id} name={h.name!r}")
        await analytics_cache.invalidate_user(user_id)
        return h

    @staticmethod
    async def get_habit(db: AsyncSession, user_id: int, habit_id: int) -> Habit:
        result = await db.execute(
            select(Habit).where(Habit.id == habit_id, Habit.user_id == user_id, Habit.is_active.is_(True))
        )
        h = result.scalar_one_or_none()
        if not h:
            raise NotFound("Habit", habit_id)
        return h

    @staticmethod
    async def get_all(db: AsyncSession, user_id: int, archived: bool = False, category: str | None = None,
                      frequency: str | None = None, limit: int = 50, offset: int = 0) -> dict:
        query = select(Habit).where(
            Habit.user_id == user_id,
            Habit.is_active.is_(True),
            Habit.is_archived.is_(archived),
        )
        if category:
            query = query.where(Habit.category == category)
        if frequency:
            query = query.where(Habit.frequency == frequency)

        total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
        result = await db.execute(query.order_by(Habit.sort_order, Habit.id).limit(limit).offset(offset))
        return {"habits": list(result.scalars().all()), "total": total, "limit": limit, "offset": offset}

    @staticmethod
    async def update(db: AsyncSession, user_id: int, habit_id: int, data: dict,
                     today: date | None = None) -> Habit:
        h = await HabitService.get_habit(db, user_id, habit_id)
        changes = {k: v for k, v in data.items() if k in EDITABLE_FIELDS}

        frequency = changes.get("frequency", h.frequency)
        days = changes["days_of_week"] if "days_of_week" in changes else h.weekdays
        times = changes["times_per_week"] if "times_per_week" in changes else h.times_per_week
        validate_schedule(frequency, days, times)
        if "habit_type" in changes and changes["habit_type"] not in HABIT_TYPES:
            raise InvalidSchedule(f"Unknown habit type '{changes['habit_type']}'")

        for k, v in changes.items():
            if k == "days_of_week":
                v = json.dumps(sorted(set(v or [])))
            setattr(h, k, v)
        await db.commit()
        await db.refresh(h)

        schedule_changed = any(k in changes for k in ("frequency", "days_of_week", "times_per_week"))
        if schedule_changed:
            # Due days moved, so the streak must be re-derived
            await StreakService.recalculate(db, user_id, habit_id, today)
            await db.commit()
        await analytics_cache.invalidate_user(user_id)
        return h

    @staticmethod
    async def delete(db: AsyncSession, user_id: int, habit_id: int):
        """Soft delete: the habit disappears from every listing and dashboard."""
        h = await HabitService.get_habit(db, user_id, habit_id)
        h.is_active = False
        await db.commit()
        logger.info(f"Habit deleted: id={habit_id} user={user_id}")
        await analytics_cache.invalidate_user(user_id)

    @staticmethod
    async def archive(db: AsyncSession, user_id: int, habit_id: int) -> Habit:
        h = await HabitService.get_habit(db, user_id, habit_id)
        if h.is_archived:
            raise Conflict("Habit is already archived")
        h.is_archived = True
        h.archived_at = datetime.now(timezone.utc)
        await db.commit()
        logger.info(f"Habit archived: id={habit_id} user={user_id}")
        await analytics_cache.invalidate_user(user_id)
        return h

    @staticmethod
    async def unarchive(db: AsyncSession, user_id: int, habit_id: int) -> Habit:
        h = await HabitService.get_habit(db, user_id, habit_id)
        if not h.is_archived:
            raise Conflict("Habit is not archived")
        h.is_archived = False
        h.archived_at = None
        await db.commit()
        logger.info(f"Habit unarchived: id={habit_id} user={user_id}")
        await analytics_cache.invalidate_user(user_id)
        return h

    @staticmethod
    async def pause(db: AsyncSession, user_id: int, habit_id: int, paused_until: date | None = None,
                    reason: str | None = None, today: date | None = None) -> Habit:
        """Vacation mode: days inside the pause window are not due, so the streak survives."""
        h = await HabitService.get_habit(db, user_id, habit_id)
        tz = await get_user_timezone(db, user_id)
        today = today or today_for_timezone(tz)
        if h.is_paused and (h.paused_until is None or h.paused_until >= today):
            raise Conflict("Habit is already paused")
        if paused_until is not None and paused_until < today:
            raise InvalidSchedule("paused_until cannot be in the past", {"paused_until": paused_until.isoformat()})

        if h.paused_at is not None and h.paused_until is not None:
            # Keep the closed window before the new pause overwrites it
            start = local_date(h.paused_at, tz)
            if start <= h.paused_until:
                history = [[s.isoformat(), e.isoformat()] for s, e in h.pause_history]
                history.append([start.isoformat(), h.paused_until.isoformat()])
                h.past_pauses = json.dumps(history)

        h.is_paused = True
        h.paused_at = datetime.now(timezone.utc)
        if local_date(h.paused_at, tz) != today:
            # Caller-supplied "today" (backfills, tests) wins over the wall clock
            h.paused_at = datetime(today.year, today.month, today.day, 12, tzinfo=timezone.utc)
        h.paused_until = paused_until
        h.pause_reason = reason
        await db.commit()
        logger.info(f"Habit paused: id={habit_id} user={user_id} until={paused_until}")
        await analytics_cache.invalidate_user(user_id)
        return h

    @staticmethod
    async def resume(db: AsyncSession, user_id: int, habit_id: int, today: date | None = None) -> Habit:
        """End the pause. The window is closed at yesterday so past paused days stay non-due."""
        h = await HabitService.get_habit(db, user_id, habit_id)
        if not h.is_paused:
            raise Conflict("Habit is not paused")
        tz = await get_user_timezone(db, user_id)
        today = today or today_for_timezone(tz)
        yesterday = today - timedelta(days=1)
        if h.paused_until is None or h.paused_until > yesterday:
            h.paused_until = yesterday
        h.is_paused = False
        h.pause_reason = None
        await db.commit()
        logger.info(f"Habit resumed: id={habit_id} user={user_id}")
        await analytics_cache.invalidate_user(user_id)
        return h

    @staticmethod
    async def recalculate_all(db: AsyncSession, user_id: int, today: date | None = None) -> list[dict]:
        """Backfill path: re-derive every habit's rollups from its logs."""
        result = await db.execute(select(Habit.id).where(Habit.user_id == user_id, Habit.is_active.is_(True)))
        out = []
        try:
            for habit_id in result.scalars().all():
                streak = await StreakService.recalculate(db, user_id, habit_id, today)
                out.append({"habit_id": habit_id, **streak})
            await db.commit()
        finally:
            await analytics_cache.invalidate_user(user_id)
        return out
