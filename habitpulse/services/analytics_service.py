"""
analytics_service.py — Habit dashboards
Read-only projections over habits and logs: overview, period breakdowns,
heatmap, per-habit stats, leaderboard, insights, categories, week-over-week,
productivity score, day-of-week performance, pairwise correlation and
streak-risk prediction. Expected counts always come from the due-day
predicate; every endpoint is cached through AnalyticsService.serve().
"""

import logging
import math
from datetime import date, timedelta
from typing import Optional

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from habitpulse.clock import get_user_timezone, today_for_timezone, date_range, start_of_week
from habitpulse.config import CACHE_TTL, MAX_RANGE_DAYS, WEEK_TREND_DEAD_ZONE, PRODUCTIVITY_TREND_DEAD_ZONE
from habitpulse.errors import NotFound, InvalidSchedule
from habitpulse.models.habit import Habit, BOOLEAN
from habitpulse.models.habit_log import HabitLog
from habitpulse.models.milestone import Milestone, STREAK_MILESTONES
from habitpulse.services.cache_service import analytics_cache
from habitpulse.services.schedule import is_due, is_tracked, in_pause_window, DAY_NAMES, DAY_ABBR

logger = logging.getLogger(__name__)

CATEGORY_COLORS = {
    "Fitness": "#10b981",
    "Health": "#3b82f6",
    "Learning": "#f59e0b",
    "Mindfulness": "#8b5cf6",
    "Productivity": "#ef4444",
    "Uncategorized": "#64748b",
}

CORRELATION_HABIT_LIMIT = 10
CORRELATION_THRESHOLD = 0.2


# ============ PARAMS ============

class NoParams(BaseModel):
    pass


class PeriodParams(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class HeatmapParams(BaseModel):
    year: Optional[int] = Field(None, ge=1970, le=2100)
    habit_id: Optional[int] = None


class HabitParams(BaseModel):
    habit_id: int


class PageParams(BaseModel):
    limit: Optional[int] = Field(None, ge=1, le=50)
    offset: Optional[int] = Field(None, ge=0)


class CalendarParams(BaseModel):
    year: int = Field(ge=1970, le=2100)
    month: int = Field(ge=1, le=12)


class ComparisonParams(BaseModel):
    dead_zone: Optional[float] = Field(None, ge=0)


# ============ HELPERS ============

def _half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def pct(completed: int, expected: int) -> int:
    """Rounded percentage; 0 when nothing was expected."""
    return _half_up(completed / expected * 100) if expected > 0 else 0


def heat_level(percentage: float) -> int:
    if percentage <= 0:
        return 0
    if percentage < 25:
        return 1
    if percentage < 50:
        return 2
    if percentage < 75:
        return 3
    return 4


def phi_coefficient(both: int, only_a: int, only_b: int, neither: int) -> float:
    """Pearson correlation of two binary series from their 2x2 table."""
    num = both * neither - only_a * only_b
    marginals = (both + only_a) * (both + only_b) * (neither + only_a) * (neither + only_b)
    if marginals == 0:
        return 0.0
    return max(-1.0, min(1.0, num / math.sqrt(marginals)))


def interpret_correlation(phi: float) -> str:
    if phi > 0.5:
        return "Strong positive - often completed together"
    if phi >= 0.2:
        return "Moderate positive - tend to be done together"
    if phi < -0.5:
        return "Strong negative - rarely done on same day"
    if phi <= -0.2:
        return "Moderate negative - completing one may reduce other"
    return "Weak/no correlation"


def grade_for(score: int) -> str:
    if score >= 85:
        return "A"
    if score >= 70:
        return "B"
    if score >= 55:
        return "C"
    if score >= 40:
        return "D"
    return "F"


def trend_label(delta: float, dead_zone: float, up: str, down: str, flat: str) -> str:
    if delta > dead_zone:
        return up
    if delta < -dead_zone:
        return down
    return flat


def _check_range(start: date, end: date):
    if start > end:
        raise InvalidSchedule("start_date must not be after end_date",
                              {"start_date": start.isoformat(), "end_date": end.isoformat()})
    if (end - start).days >= MAX_RANGE_DAYS:
        raise InvalidSchedule(f"Date range cannot exceed {MAX_RANGE_DAYS} days")


def _tally(habits, done_by_day: dict, day: date, tz: str, predicate=is_due) -> tuple[int, int]:
    """(completed, expected) for one day; only due habits count on either side."""
    due = [h for h in habits if predicate(h, day, tz)]
    done = done_by_day.get(day, set())
    return sum(1 for h in due if h.id in done), len(due)


def _paginate(items: list, limit: int | None, offset: int | None, default_limit: int) -> list:
    start = offset or 0
    return items[start:start + (limit or default_limit)]


class AnalyticsService:

    # ------------------------------------------------------------------
    @staticmethod
    async def _context(db: AsyncSession, user_id: int, today: date | None) -> tuple[str, date]:
        tz = await get_user_timezone(db, user_id)
        return tz, today or today_for_timezone(tz)

    @staticmethod
    async def _habits(db: AsyncSession, user_id: int, include_archived: bool = False) -> list[Habit]:
        """Non-deleted habits; archived ones only for historical range queries."""
        query = select(Habit).where(Habit.user_id == user_id, Habit.is_active.is_(True))
        if not include_archived:
            query = query.where(Habit.is_archived.is_(False))
        result = await db.execute(query.order_by(Habit.sort_order, Habit.id))
        return list(result.scalars().all())

    @staticmethod
    async def _logs(db: AsyncSession, user_id: int, start: date, end: date, habit_ids: list[int],
                    completed_only: bool = True) -> list[HabitLog]:
        if not habit_ids:
            return []
        query = select(HabitLog).where(
            HabitLog.user_id == user_id,
            HabitLog.date >= start,
            HabitLog.date <= end,
            HabitLog.habit_id.in_(habit_ids),
        )
        if completed_only:
            query = query.where(HabitLog.completed.is_(True))
        result = await db.execute(query.order_by(HabitLog.date.desc()))
        return list(result.scalars().all())

    @staticmethod
    async def _done_by_day(db: AsyncSession, user_id: int, start: date, end: date,
                           habit_ids: list[int]) -> dict[date, set[int]]:
        done: dict[date, set[int]] = {}
        for log in await AnalyticsService._logs(db, user_id, start, end, habit_ids):
            done.setdefault(log.date, set()).add(log.habit_id)
        return done

    # ============ OVERVIEW ============

    @staticmethod
    async def get_overview(db: AsyncSession, user_id: int, today: date | None = None) -> dict:
        tz, today = await AnalyticsService._context(db, user_id, today)
        habits = await AnalyticsService._habits(db, user_id, include_archived=True)
        active = [h for h in habits if not h.is_archived]
        archived = [h for h in habits if h.is_archived]
        paused = [h for h in active if in_pause_window(h, today, tz)]

        week_start = start_of_week(today)
        month_start = today.replace(day=1)
        series_days = date_range(today - timedelta(days=6), today)
        window_start = min(series_days[0], month_start, week_start)
        done = await AnalyticsService._done_by_day(db, user_id, window_start, today, [h.id for h in active])

        completed_today, total_today = _tally(active, done, today, tz)

        week_days = date_range(week_start, today)
        week_completed = sum(_tally(active, done, d, tz)[0] for d in week_days)

        month_completed = month_expected = 0
        for d in date_range(month_start, today):
            c, e = _tally(active, done, d, tz)
            month_completed += c
            month_expected += e

        weekly_progress = []
        for d in series_days:
            c, e = _tally(active, done, d, tz)
            weekly_progress.append({
                "day": DAY_ABBR[d.isoweekday()],
                "date": d.isoformat(),
                "completed": c,
                "total": e,
                "percentage": pct(c, e),
            })

        stats = {
            "total_habits": len(habits),
            "active_habits": len(active),
            "archived_habits": len(archived),
            "paused_habits": len(paused),
            "completed_today": completed_today,
            "total_today": total_today,
            "today_percentage": pct(completed_today, total_today),
            "current_best_streak": max((h.current_streak for h in active), default=0),
            "longest_ever_streak": max((h.longest_streak for h in habits), default=0),
            "total_completions": sum(h.total_completions for h in habits),
            "weekly_average": round(week_completed / len(week_days), 1),
            "monthly_completion_rate": pct(month_completed, month_expected),
        }
        return {"stats": stats, "weekly_progress": weekly_progress}

    # ============ PERIOD BREAKDOWN ============

    @staticmethod
    async def get_weekly_analytics(db: AsyncSession, user_id: int, start_date: date | None = None,
                                   end_date: date | None = None, today: date | None = None) -> dict:
        """Per-day expected vs completed, with per-habit detail."""
        tz, today = await AnalyticsService._context(db, user_id, today)
        end = end_date or today
        start = start_date or start_of_week(end)
        _check_range(start, end)

        habits = await AnalyticsService._habits(db, user_id, include_archived=True)
        logs = await AnalyticsService._logs(db, user_id, start, end, [h.id for h in habits], completed_only=False)
        by_day: dict[date, dict[int, HabitLog]] = {}
        for log in logs:
            by_day.setdefault(log.date, {})[log.habit_id] = log

        days = []
        for d in date_range(start, end):
            due = [h for h in habits if is_tracked(h, d, tz)]
            day_logs = by_day.get(d, {})
            rows = []
            for h in due:
                log = day_logs.get(h.id)
                rows.append({
                    "id": h.id,
                    "name": h.name,
                    "completed": bool(log and log.completed),
                    "value": log.value if log else None,
                })
            completed = sum(1 for r in rows if r["completed"])
            days.append({
                "date": d.isoformat(),
                "completed": completed,
                "total": len(due),
                "percentage": pct(completed, len(due)),
                "habits": rows,
            })

        total = sum(d["total"] for d in days)
        completed = sum(d["completed"] for d in days)
        return {"days": days, "summary": {"total": total, "completed": completed, "rate": pct(completed, total)}}

    @staticmethod
    async def get_monthly_analytics(db: AsyncSession, user_id: int, start_date: date | None = None,
                                    end_date: date | None = None, today: date | None = None) -> dict:
        """Monday-based weeks clipped to the range; a week is the sum of its days."""
        tz, today = await AnalyticsService._context(db, user_id, today)
        end = end_date or today
        start = start_date or end.replace(day=1)
        _check_range(start, end)

        habits = await AnalyticsService._habits(db, user_id, include_archived=True)
        done = await AnalyticsService._done_by_day(db, user_id, start, end, [h.id for h in habits])

        weeks: list[dict] = []
        for d in date_range(start, end):
            ws = start_of_week(d)
            if not weeks or weeks[-1]["_start"] != ws:
                weeks.append({"_start": ws, "week_start": d.isoformat(), "week_end": d.isoformat(),
                              "completed": 0, "total": 0})
            c, e = _tally(habits, done, d, tz, is_tracked)
            week = weeks[-1]
            week["week_end"] = d.isoformat()
            week["completed"] += c
            week["total"] += e

        for week in weeks:
            del week["_start"]
            week["rate"] = pct(week["completed"], week["total"])

        total = sum(w["total"] for w in weeks)
        completed = sum(w["completed"] for w in weeks)
        return {"weeks": weeks, "summary": {"total": total, "completed": completed, "rate": pct(completed, total)}}

    @staticmethod
    async def get_calendar_data(db: AsyncSession, user_id: int, year: int, month: int,
                                today: date | None = None) -> dict:
        """Day-by-day view of one month, up to today."""
        tz, today = await AnalyticsService._context(db, user_id, today)
        start = date(year, month, 1)
        next_month = date(year + (month == 12), month % 12 + 1, 1)
        end = min(next_month - timedelta(days=1), today)
        if start > end:
            return {"days": [], "summary": {"total_completed": 0, "total_possible": 0, "percentage": 0}}

        breakdown = await AnalyticsService.get_weekly_analytics(db, user_id, start, end, today)
        colors = {h.id: (h.color, h.icon) for h in await AnalyticsService._habits(db, user_id, include_archived=True)}
        for day in breakdown["days"]:
            for row in day["habits"]:
                row["color"], row["icon"] = colors.get(row["id"], (None, None))
        summary = breakdown["summary"]
        return {
            "days": breakdown["days"],
            "summary": {
                "total_completed": summary["completed"],
                "total_possible": summary["total"],
                "percentage": summary["rate"],
            },
        }

    # ============ HEATMAP ============

    @staticmethod
    async def get_heatmap(db: AsyncSession, user_id: int, year: int | None = None, habit_id: int | None = None,
                          today: date | None = None) -> list[dict]:
        tz, today = await AnalyticsService._context(db, user_id, today)
        year = year or today.year
        start = date(year, 1, 1)
        end = min(date(year, 12, 31), today)
        if start > end:
            return []

        habits = await AnalyticsService._habits(db, user_id, include_archived=True)
        if habit_id is not None:
            habits = [h for h in habits if h.id == habit_id]
            if not habits:
                raise NotFound("Habit", habit_id)
        done = await AnalyticsService._done_by_day(db, user_id, start, end, [h.id for h in habits])

        out = []
        for d in date_range(start, end):
            count, total = _tally(habits, done, d, tz, is_tracked)
            out.append({
                "date": d.isoformat(),
                "count": count,
                "total": total,
                "level": heat_level(count / total * 100 if total else 0),
            })
        return out

    # ============ PER-HABIT ============

    @staticmethod
    async def get_habit_stats(db: AsyncSession, user_id: int, habit_id: int, today: date | None = None) -> dict:
        tz, today = await AnalyticsService._context(db, user_id, today)
        result = await db.execute(
            select(Habit).where(Habit.id == habit_id, Habit.user_id == user_id, Habit.is_active.is_(True))
        )
        habit = result.scalar_one_or_none()
        if not habit:
            raise NotFound("Habit", habit_id)

        window = date_range(today - timedelta(days=29), today)
        trend_start = start_of_week(today) - timedelta(weeks=7)
        logs = await AnalyticsService._logs(db, user_id, min(trend_start, window[0]), today, [habit.id],
                                            completed_only=False)
        done_days = {log.date for log in logs if log.completed}

        due = [d for d in window if is_due(habit, d, tz)]
        completed_days = sum(1 for d in due if d in done_days)

        average_value = None
        if habit.habit_type != BOOLEAN:
            values = [log.value for log in logs if log.date >= window[0] and log.completed and log.value is not None]
            if values:
                average_value = round(sum(values) / len(values), 2)

        weekly_trend = []
        for k in range(8):
            ws = trend_start + timedelta(weeks=k)
            week_due = [d for d in date_range(ws, min(ws + timedelta(days=6), today)) if is_due(habit, d, tz)]
            count = sum(1 for d in week_due if d in done_days)
            weekly_trend.append({"week": ws.isoformat(), "count": count, "percentage": pct(count, len(week_due))})

        result = await db.execute(
            select(Milestone).where(Milestone.habit_id == habit.id)
            .order_by(Milestone.achieved_at.desc(), Milestone.id.desc())
        )
        milestones = [m.to_dict() for m in result.scalars().all()]

        return {
            "habit": {
                "id": habit.id,
                "name": habit.name,
                "description": habit.description,
                "color": habit.color,
                "icon": habit.icon,
                "category": habit.category,
                "habit_type": habit.habit_type,
                "target_value": habit.target_value,
                "unit": habit.unit,
                "frequency": habit.frequency,
            },
            "current_streak": habit.current_streak,
            "longest_streak": habit.longest_streak,
            "total_completions": habit.total_completions,
            "completion_rate": pct(completed_days, len(due)),
            "expected_days": len(due),
            "completed_days": completed_days,
            "average_value": average_value,
            "last_completed_at": habit.last_completed_at.isoformat() if habit.last_completed_at else None,
            "recent_logs": [log.to_dict() for log in logs if log.date >= window[0]][:10],
            "weekly_trend": weekly_trend,
            "milestones": milestones,
        }

    @staticmethod
    async def get_streak_leaderboard(db: AsyncSession, user_id: int, limit: int | None = None,
                                     offset: int | None = None) -> dict:
        base = select(Habit).where(Habit.user_id == user_id, Habit.is_active.is_(True))
        total = (await db.execute(select(func.count()).select_from(base.subquery()))).scalar_one()
        result = await db.execute(
            base.order_by(Habit.current_streak.desc(), Habit.longest_streak.desc(), Habit.id)
            .limit(limit or 10).offset(offset or 0)
        )
        streaks = [{
            "habit_id": h.id,
            "habit_name": h.name,
            "color": h.color,
            "icon": h.icon,
            "current_streak": h.current_streak,
            "longest_streak": h.longest_streak,
            "is_active": not h.is_archived,
        } for h in result.scalars().all()]
        return {"streaks": streaks, "total": total}

    # ============ INSIGHTS ============

    @staticmethod
    async def get_insights(db: AsyncSession, user_id: int, today: date | None = None) -> dict:
        tz, today = await AnalyticsService._context(db, user_id, today)
        habits = await AnalyticsService._habits(db, user_id)
        days = date_range(today - timedelta(days=27), today)
        done = await AnalyticsService._done_by_day(db, user_id, days[0], today, [h.id for h in habits])

        per_day = {n: [0, 0] for n in range(1, 8)}
        for d in days:
            c, e = _tally(habits, done, d, tz)
            per_day[d.isoweekday()][0] += c
            per_day[d.isoweekday()][1] += e
        rates = [(pct(c, e), n) for n, (c, e) in per_day.items() if e > 0]
        best = min(rates, key=lambda r: (-r[0], r[1]), default=None)
        worst = min(rates, default=None)
        best_day = {"day": DAY_ABBR[best[1]], "percentage": best[0]} if best and best[0] > 0 else None
        worst_day = {"day": DAY_ABBR[worst[1]], "percentage": worst[0]} if worst and worst[0] < 100 else None

        top = max(habits, key=lambda h: h.current_streak, default=None)
        top_habit = {"name": top.name, "streak": top.current_streak} if top else None

        stale = []
        for h in habits:
            if in_pause_window(h, today, tz):
                continue
            missed = (today - h.last_completed_at).days if h.last_completed_at else None
            if missed is None or missed > 3:
                stale.append({"name": h.name, "missed_days": missed})
        # Never completed ranks as the most overdue
        stale.sort(key=lambda r: (r["missed_days"] is not None, -(r["missed_days"] or 0)))
        needs_attention = stale[:3]

        suggestions = []
        if best_day and worst_day and best_day["percentage"] - worst_day["percentage"] > 20:
            suggestions.append(
                f"You perform best on {best_day['day']}s ({best_day['percentage']}%). "
                f"Try to maintain that energy on {worst_day['day']}s too!"
            )
        if top and top.current_streak >= 7:
            suggestions.append(f'Great job on "{top.name}"! You have a {top.current_streak}-day streak going!')
        if needs_attention:
            first = needs_attention[0]
            if first["missed_days"] is None:
                suggestions.append(f'"{first["name"]}" needs your attention. You haven\'t completed it yet.')
            else:
                suggestions.append(
                    f'"{first["name"]}" needs your attention. '
                    f"It's been {first['missed_days']} days since your last completion."
                )
        if not habits:
            suggestions.append("Start your habit journey by creating your first habit!")

        return {
            "best_day": best_day,
            "worst_day": worst_day,
            "top_habit": top_habit,
            "needs_attention": needs_attention,
            "suggestions": suggestions,
        }

    # ============ CATEGORIES & TRENDS ============

    @staticmethod
    async def _habit_rates(db: AsyncSession, user_id: int, habits: list[Habit], days: list[date],
                           tz: str) -> list[dict]:
        done = await AnalyticsService._done_by_day(db, user_id, days[0], days[-1], [h.id for h in habits])
        rows = []
        for h in habits:
            due = [d for d in days if is_due(h, d, tz)]
            completed = sum(1 for d in due if h.id in done.get(d, set()))
            rows.append({"habit": h, "expected": len(due), "completed": completed, "rate": pct(completed, len(due))})
        return rows

    @staticmethod
    async def get_category_breakdown(db: AsyncSession, user_id: int, today: date | None = None) -> dict:
        tz, today = await AnalyticsService._context(db, user_id, today)
        habits = await AnalyticsService._habits(db, user_id)
        if not habits:
            return {"categories": [], "habit_rates": []}
        rows = await AnalyticsService._habit_rates(db, user_id, habits, date_range(today - timedelta(days=29), today), tz)

        groups: dict[str, dict] = {}
        for row in rows:
            name = row["habit"].category or "Uncategorized"
            g = groups.setdefault(name, {"completed": 0, "expected": 0, "count": 0})
            g["completed"] += row["completed"]
            g["expected"] += row["expected"]
            g["count"] += 1

        categories = [{
            "name": name,
            "color": CATEGORY_COLORS.get(name, CATEGORY_COLORS["Uncategorized"]),
            "habit_count": g["count"],
            "completion_rate": pct(g["completed"], g["expected"]),
            "total_completions": g["completed"],
        } for name, g in groups.items()]
        categories.sort(key=lambda c: (-c["completion_rate"], c["name"]))

        habit_rates = [{
            "id": row["habit"].id,
            "name": row["habit"].name,
            "color": row["habit"].color,
            "icon": row["habit"].icon,
            "category": row["habit"].category or "Uncategorized",
            "completion_rate": row["rate"],
            "current_streak": row["habit"].current_streak,
        } for row in rows]
        habit_rates.sort(key=lambda r: (-r["completion_rate"], r["name"]))
        return {"categories": categories, "habit_rates": habit_rates}

    @staticmethod
    async def get_week_comparison(db: AsyncSession, user_id: int, dead_zone: float | None = None,
                                  today: date | None = None) -> dict:
        """This calendar week so far vs the whole previous week."""
        tz, today = await AnalyticsService._context(db, user_id, today)
        dead_zone = WEEK_TREND_DEAD_ZONE if dead_zone is None else dead_zone
        this_start = start_of_week(today)
        last_start = this_start - timedelta(weeks=1)
        habits = await AnalyticsService._habits(db, user_id)
        done = await AnalyticsService._done_by_day(db, user_id, last_start, today, [h.id for h in habits])

        def summarize(days):
            completed = expected = 0
            for d in days:
                c, e = _tally(habits, done, d, tz)
                completed += c
                expected += e
            return {"completed": completed, "total": expected, "rate": pct(completed, expected)}

        this_week = summarize(date_range(this_start, today))
        last_week = summarize(date_range(last_start, this_start - timedelta(days=1)))
        change = this_week["rate"] - last_week["rate"]
        return {
            "this_week": this_week,
            "last_week": last_week,
            "change": change,
            "trend": trend_label(change, dead_zone, "up", "down", "same"),
        }

    @staticmethod
    async def get_monthly_trend(db: AsyncSession, user_id: int, today: date | None = None) -> dict:
        tz, today = await AnalyticsService._context(db, user_id, today)
        habits = await AnalyticsService._habits(db, user_id)
        days = date_range(today - timedelta(days=29), today)
        done = await AnalyticsService._done_by_day(db, user_id, days[0], today, [h.id for h in habits])

        trend = []
        rates = []
        for d in days:
            c, e = _tally(habits, done, d, tz)
            rate = pct(c, e)
            if e > 0:
                rates.append(rate)
            trend.append({"date": d.isoformat(), "rate": rate, "completed": c, "total": e})
        average = _half_up(sum(rates) / len(rates)) if rates else 0
        return {"days": trend, "average_rate": average}

    # ============ ADVANCED ============

    @staticmethod
    async def get_productivity_score(db: AsyncSession, user_id: int, today: date | None = None) -> dict:
        """0-100: consistency (40) + streak strength (30) + completion rate (30)."""
        tz, today = await AnalyticsService._context(db, user_id, today)
        habits = await AnalyticsService._habits(db, user_id)
        recent = date_range(today - timedelta(days=29), today)
        older = date_range(today - timedelta(days=59), today - timedelta(days=30))
        done = await AnalyticsService._done_by_day(db, user_id, older[0], today, [h.id for h in habits])

        active_days = sum(1 for d in recent if done.get(d))
        consistency = min(40, _half_up(active_days / len(recent) * 40))

        max_streak = max((h.current_streak for h in habits), default=0)
        avg_streak = sum(h.current_streak for h in habits) / len(habits) if habits else 0
        streaks = min(30, _half_up((max_streak * 0.5 + avg_streak * 0.5) * 2))

        def rate(days):
            completed = expected = 0
            for d in days:
                c, e = _tally(habits, done, d, tz)
                completed += c
                expected += e
            return completed / expected if expected else 0.0

        recent_rate = rate(recent)
        older_rate = rate(older)
        completion = min(30, _half_up(recent_rate * 30))

        score = consistency + streaks + completion
        return {
            "score": score,
            "grade": grade_for(score),
            "trend": trend_label(recent_rate - older_rate, PRODUCTIVITY_TREND_DEAD_ZONE,
                                 "improving", "declining", "stable"),
            "breakdown": {"consistency": consistency, "streaks": streaks, "completion": completion},
        }

    @staticmethod
    async def get_best_performing(db: AsyncSession, user_id: int, today: date | None = None) -> dict:
        tz, today = await AnalyticsService._context(db, user_id, today)
        habits = await AnalyticsService._habits(db, user_id)
        days = date_range(today - timedelta(days=29), today)
        done = await AnalyticsService._done_by_day(db, user_id, days[0], today, [h.id for h in habits])

        per_day = {n: [0, 0] for n in range(1, 8)}
        for d in days:
            c, e = _tally(habits, done, d, tz)
            per_day[d.isoweekday()][0] += c
            per_day[d.isoweekday()][1] += e
        by_day = [{
            "day": DAY_NAMES[n],
            "day_number": n,
            "completion_rate": pct(c, e),
            "completions": c,
        } for n, (c, e) in per_day.items()]
        ranked = sorted(
            (r for r in by_day if per_day[r["day_number"]][1] > 0),
            key=lambda r: (-r["completion_rate"], r["day_number"]),
        )

        rows = await AnalyticsService._habit_rates(db, user_id, habits, days, tz) if habits else []
        ranked_habits = sorted(
            ({"id": r["habit"].id, "name": r["habit"].name, "color": r["habit"].color, "rate": r["rate"]}
             for r in rows),
            key=lambda r: (-r["rate"], r["name"]),
        )
        return {
            "best_day_of_week": ranked[0] if ranked else None,
            "worst_day_of_week": min(ranked, key=lambda r: (r["completion_rate"], r["day_number"]), default=None),
            "by_day_of_week": by_day,
            "most_consistent_habit": ranked_habits[0] if ranked_habits else None,
            "least_consistent_habit": ranked_habits[-1] if ranked_habits else None,
        }

    @staticmethod
    async def get_habit_correlations(db: AsyncSession, user_id: int, limit: int | None = None,
                                     offset: int | None = None, today: date | None = None) -> dict:
        """Phi coefficient for each pair of the top habits by total completions."""
        tz, today = await AnalyticsService._context(db, user_id, today)
        habits = sorted(await AnalyticsService._habits(db, user_id), key=lambda h: (-h.total_completions, h.id))
        habits = habits[:CORRELATION_HABIT_LIMIT]
        if len(habits) < 2:
            return {"correlations": [], "total": 0}

        days = date_range(today - timedelta(days=29), today)
        done = await AnalyticsService._done_by_day(db, user_id, days[0], today, [h.id for h in habits])

        correlations = []
        for i, a in enumerate(habits):
            for b in habits[i + 1:]:
                both = only_a = only_b = neither = 0
                for d in days:
                    day_done = done.get(d, set())
                    a_done, b_done = a.id in day_done, b.id in day_done
                    if a_done and b_done:
                        both += 1
                    elif a_done:
                        only_a += 1
                    elif b_done:
                        only_b += 1
                    else:
                        neither += 1
                phi = round(phi_coefficient(both, only_a, only_b, neither), 2)
                if abs(phi) >= CORRELATION_THRESHOLD:
                    correlations.append({
                        "habit1": {"id": a.id, "name": a.name},
                        "habit2": {"id": b.id, "name": b.name},
                        "correlation": phi,
                        "interpretation": interpret_correlation(phi),
                        "table": {"both": both, "only_first": only_a, "only_second": only_b, "neither": neither},
                    })

        correlations.sort(key=lambda c: (-abs(c["correlation"]), c["habit1"]["id"], c["habit2"]["id"]))
        return {"correlations": _paginate(correlations, limit, offset, 20), "total": len(correlations)}

    @staticmethod
    async def get_streak_predictions(db: AsyncSession, user_id: int, limit: int | None = None,
                                     offset: int | None = None, today: date | None = None) -> dict:
        """Next milestone and break risk for every habit with a running streak."""
        tz, today = await AnalyticsService._context(db, user_id, today)
        habits = [
            h for h in await AnalyticsService._habits(db, user_id)
            if h.current_streak > 0 and not in_pause_window(h, today, tz)
        ]
        start = today - timedelta(days=60)
        done = await AnalyticsService._done_by_day(db, user_id, start, today, [h.id for h in habits])

        predictions = []
        for h in habits:
            next_milestone = next((m for m in STREAK_MILESTONES if m > h.current_streak), h.current_streak + 30)

            # An open, unlogged today is neither a hit nor a miss
            last_closed = today
            if is_due(h, today, tz) and h.id not in done.get(today, set()):
                last_closed = today - timedelta(days=1)

            window = date_range(last_closed - timedelta(days=6), last_closed)
            due = [d for d in window if is_due(h, d, tz)]
            hits = sum(1 for d in due if h.id in done.get(d, set()))
            recent_rate = hits / len(due) if due else 0.0

            if recent_rate >= 0.9:
                risk, reason = "low", None
            elif recent_rate >= 0.7:
                risk, reason = "medium", "Missed some days recently"
            else:
                risk, reason = "high", "Declining activity pattern"

            last_due = []
            cursor = last_closed
            while len(last_due) < 3 and cursor >= start:
                if is_due(h, cursor, tz):
                    last_due.append(cursor)
                cursor -= timedelta(days=1)
            if any(h.id not in done.get(d, set()) for d in last_due) and risk == "low":
                risk, reason = "medium", "Missed check-in in last 3 days"

            predictions.append({
                "habit_id": h.id,
                "habit_name": h.name,
                "current_streak": h.current_streak,
                "next_milestone": next_milestone,
                "predicted_days_to_milestone": next_milestone - h.current_streak,
                "recent_rate": round(recent_rate, 2),
                "risk_level": risk,
                "risk_reason": reason,
            })

        predictions.sort(key=lambda p: (p["predicted_days_to_milestone"], p["habit_id"]))
        return {"predictions": _paginate(predictions, limit, offset, 20), "total": len(predictions)}

    # ============ CACHED ENTRY POINT ============

    @staticmethod
    async def serve(db: AsyncSession, user_id: int, endpoint: str, params: BaseModel | dict | None = None,
                    today: date | None = None):
        """Cache-aside dispatch for one analytics endpoint."""
        if endpoint not in ENDPOINTS:
            raise NotFound("Analytics endpoint", endpoint)
        model, compute = ENDPOINTS[endpoint]
        if not isinstance(params, model):
            try:
                params = model(**(params or {}))
            except ValidationError as e:
                problems = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
                raise InvalidSchedule(f"Invalid parameters for {endpoint}", {"errors": problems})

        async def run():
            logger.debug(f"Computing {endpoint} for user {user_id}")
            return await compute(db, user_id, params, today)

        return await analytics_cache.remember(user_id, endpoint, params, CACHE_TTL[endpoint], run)


# endpoint name → (params model, compute)
ENDPOINTS = {
    "overview": (NoParams, lambda db, uid, p, t: AnalyticsService.get_overview(db, uid, t)),
    "weekly": (PeriodParams, lambda db, uid, p, t: AnalyticsService.get_weekly_analytics(
        db, uid, p.start_date, p.end_date, t)),
    "monthly": (PeriodParams, lambda db, uid, p, t: AnalyticsService.get_monthly_analytics(
        db, uid, p.start_date, p.end_date, t)),
    "calendar": (CalendarParams, lambda db, uid, p, t: AnalyticsService.get_calendar_data(
        db, uid, p.year, p.month, t)),
    "heatmap": (HeatmapParams, lambda db, uid, p, t: AnalyticsService.get_heatmap(db, uid, p.year, p.habit_id, t)),
    "habit-stats": (HabitParams, lambda db, uid, p, t: AnalyticsService.get_habit_stats(db, uid, p.habit_id, t)),
    "streaks": (PageParams, lambda db, uid, p, t: AnalyticsService.get_streak_leaderboard(db, uid, p.limit, p.offset)),
    "insights": (NoParams, lambda db, uid, p, t: AnalyticsService.get_insights(db, uid, t)),
    "categories": (NoParams, lambda db, uid, p, t: AnalyticsService.get_category_breakdown(db, uid, t)),
    "comparison": (ComparisonParams, lambda db, uid, p, t: AnalyticsService.get_week_comparison(
        db, uid, p.dead_zone, t)),
    "trend": (NoParams, lambda db, uid, p, t: AnalyticsService.get_monthly_trend(db, uid, t)),
    "productivity": (NoParams, lambda db, uid, p, t: AnalyticsService.get_productivity_score(db, uid, t)),
    "performance": (NoParams, lambda db, uid, p, t: AnalyticsService.get_best_performing(db, uid, t)),
    "correlations": (PageParams, lambda db, uid, p, t: AnalyticsService.get_habit_correlations(
        db, uid, p.limit, p.offset, t)),
    "predictions": (PageParams, lambda db, uid, p, t: AnalyticsService.get_streak_predictions(
        db, uid, p.limit, p.offset, t)),
}
