"""
clock.py — Local calendar days
Every date comparison happens on the user's local calendar day.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from habitpulse.config import DEFAULT_TIMEZONE
from habitpulse.errors import InvalidSchedule
from habitpulse.models.user import User

logger = logging.getLogger(__name__)


def resolve_zone(tz: str | None) -> ZoneInfo:
    """ZoneInfo for an IANA name; unknown or empty names fall back to UTC."""
    try:
        return ZoneInfo(tz or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown time zone '{tz}', falling back to UTC")
        return ZoneInfo("UTC")


async def get_user_timezone(db: AsyncSession, user_id: int) -> str:
    result = await db.execute(select(User.timezone).where(User.id == user_id))
    return result.scalar_one_or_none() or DEFAULT_TIMEZONE


def today_for_timezone(tz: str | None) -> date:
    return datetime.now(resolve_zone(tz)).date()


def local_date(value: datetime | date | None, tz: str | None = None) -> date | None:
    """Truncate an instant to the local calendar day. Naive datetimes are UTC."""
    if value is None:
        return None
    if not isinstance(value, datetime):
        return value
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(resolve_zone(tz)).date()


def parse_date(value: str | date | None) -> date | None:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise InvalidSchedule("Date must be in YYYY-MM-DD format", {"date": value})


def date_range(start: date, end: date) -> list[date]:
    """Inclusive list of days; empty when start > end."""
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


def start_of_week(day: date) -> date:
    """Monday of the ISO week containing day."""
    return day - timedelta(days=day.isoweekday() - 1)
