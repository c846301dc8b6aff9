import json
from datetime import date, datetime, timezone

from sqlalchemy import Column, Integer, String, Text, DateTime, Date, Boolean, Float, ForeignKey, Index
from habitpulse.database import Base

DAILY = "DAILY"
WEEKLY = "WEEKLY"
FREQUENCIES = (DAILY, WEEKLY)

BOOLEAN = "BOOLEAN"
NUMERIC = "NUMERIC"
DURATION = "DURATION"
HABIT_TYPES = (BOOLEAN, NUMERIC, DURATION)


class Habit(Base):
    __tablename__ = "habits"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    frequency = Column(String(20), default=DAILY, nullable=False)  # DAILY/WEEKLY
    days_of_week = Column(Text, nullable=True)  # JSON array of ISO weekdays, 1=Mon..7=Sun
    times_per_week = Column(Integer, nullable=True)
    habit_type = Column(String(20), default=BOOLEAN, nullable=False)  # BOOLEAN/NUMERIC/DURATION
    target_value = Column(Float, nullable=True)
    unit = Column(String(50), nullable=True)  # e.g. "pages", "minutes"
    category = Column(String(50), nullable=True)
    color = Column(String(20), default="#6366f1")
    icon = Column(String(10), nullable=True)  # emoji
    sort_order = Column(Integer, default=0)

    is_active = Column(Boolean, default=True)  # False once deleted
    is_archived = Column(Boolean, default=False)
    archived_at = Column(DateTime(timezone=True), nullable=True)
    is_paused = Column(Boolean, default=False)
    paused_at = Column(DateTime(timezone=True), nullable=True)
    paused_until = Column(Date, nullable=True)  # last local day of the pause, inclusive
    pause_reason = Column(String(200), nullable=True)
    past_pauses = Column(Text, nullable=True)  # JSON array of closed [start, end] local-date windows

    # Rollups written only by the streak engine
    current_streak = Column(Integer, default=0, nullable=False)
    longest_streak = Column(Integer, default=0, nullable=False)
    total_completions = Column(Integer, default=0, nullable=False)
    last_completed_at = Column(Date, nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_habits_user_streak", "user_id", "current_streak"),
    )

    @property
    def weekdays(self) -> list[int]:
        """Parsed days_of_week; empty when unset."""
        if not self.days_of_week:
            return []
        try:
            return [int(d) for d in json.loads(self.days_of_week)]
        except (TypeError, ValueError):
            return []

    @property
    def pause_history(self) -> list[tuple[date, date]]:
        """Closed pause windows from earlier pauses, as inclusive (start, end) pairs."""
        if not self.past_pauses:
            return []
        try:
            return [(date.fromisoformat(s), date.fromisoformat(e)) for s, e in json.loads(self.past_pauses)]
        except (TypeError, ValueError):
            return []

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "frequency": self.frequency,
            "days_of_week": self.weekdays,
            "times_per_week": self.times_per_week,
            "habit_type": self.habit_type,
            "target_value": self.target_value,
            "unit": self.unit,
            "category": self.category,
            "color": self.color,
            "icon": self.icon,
            "is_active": self.is_active,
            "is_archived": self.is_archived,
            "is_paused": self.is_paused,
            "paused_until": self.paused_until.isoformat() if self.paused_until else None,
            "pause_history": [{"start": s.isoformat(), "end": e.isoformat()} for s, e in self.pause_history],
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "total_completions": self.total_completions,
            "last_completed_at": self.last_completed_at.isoformat() if self.last_completed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
