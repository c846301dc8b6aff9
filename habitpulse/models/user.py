from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime
from habitpulse.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(50), unique=True, nullable=False)
    timezone = Column(String(64), nullable=True)  # IANA name, e.g. "Asia/Kolkata"
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
