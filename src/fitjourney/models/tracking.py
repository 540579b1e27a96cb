"""Body metrics, daily activity logs, and the per-user streak row."""
from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class DayActivity(str, Enum):
    WORKOUT = "workout"
    REST = "rest"


class UserMetric(SQLModel, table=True):
    """A body-weight measurement."""

    __tablename__ = "user_metrics"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    weight_kg: float
    measured_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class DailyLog(SQLModel, table=True):
    """One row per user per calendar day that had a workout or a rest day."""

    __tablename__ = "daily_log"
    __table_args__ = (UniqueConstraint("user_id", "log_date"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    log_date: date = Field(index=True)
    activity_type: DayActivity = DayActivity.WORKOUT
    notes: Optional[str] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Streak(SQLModel, table=True):
    """Consecutive-day counters for a user (one row per user)."""

    __tablename__ = "streak"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(unique=True, index=True)
    current_streak: int = 0
    longest_streak: int = 0
    last_activity_date: Optional[date] = None
    last_workout_date: Optional[date] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)
