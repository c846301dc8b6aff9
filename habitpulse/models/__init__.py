# Import all models so they register with SQLAlchemy Base.metadata
# This ensures Base.metadata.create_all() creates all tables

from habitpulse.models.user import User
from habitpulse.models.habit import Habit
from habitpulse.models.habit_log import HabitLog
from habitpulse.models.milestone import Milestone

__all__ = [
    "User",
    "Habit",
    "HabitLog",
    "Milestone",
]
