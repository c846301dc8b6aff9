from datetime import datetime, timezone

from sqlalchemy import Column, Integer, Text, Date, DateTime, Boolean, Float, ForeignKey, UniqueConstraint, Index
from habitpulse.database import Base


class HabitLog(Base):
    __tablename__ = "habit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    habit_id = Column(Integer, ForeignKey("habits.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    date = Column(Date, nullable=False)  # local calendar day of the user
    completed = Column(Boolean, default=True, nullable=False)
    value = Column(Float, nullable=True)  # NUMERIC/DURATION habits
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint("habit_id", "date", name="uq_habit_date"),
        Index("ix_habit_logs_user_date", "user_id", "date"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "habit_id": self.habit_id,
            "date": self.date.isoformat(),
            "completed": self.completed,
            "value": self.value,
            "notes": self.notes,
        }
