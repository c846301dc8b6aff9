"""habitpulse — habit check-ins, streaks, milestones and cached analytics."""

__version__ = "0.1.0"
