from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from habitpulse.database import Base

STREAK = "STREAK"
COMPLETIONS = "COMPLETIONS"

STREAK_MILESTONES = [7, 14, 21, 30, 60, 90, 100, 180, 365, 500, 1000]
COMPLETION_MILESTONES = [10, 25, 50, 100, 250, 500, 1000]


class Milestone(Base):
    __tablename__ = "milestones"

    id = Column(Integer, primary_key=True, autoincrement=True)
    habit_id = Column(Integer, ForeignKey("habits.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    type = Column(String(20), nullable=False)  # STREAK/COMPLETIONS
    value = Column(Integer, nullable=False)  # threshold crossed
    achieved_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        UniqueConstraint("habit_id", "type", "value", name="uq_milestone_threshold"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "habit_id": self.habit_id,
            "type": self.type,
            "value": self.value,
            "achieved_at": self.achieved_at.isoformat() if self.achieved_at else None,
        }
