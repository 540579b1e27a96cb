"""In-app notifications and the milestones that usually trigger them."""
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel


class NotificationType(str, Enum):
    GOAL_PROGRESS = "GoalProgress"
    NEW_STREAK = "NewStreak"
    MILESTONE = "Milestone"


class MilestoneType(str, Enum):
    PERSONAL_BEST = "PersonalBest"
    LONGEST_STREAK = "LongestStreak"
    GOAL_ACHIEVED = "GoalAchieved"


class Notification(SQLModel, table=True):
    __tablename__ = "notification"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    type: NotificationType
    message: str
    created_at: datetime = Field(default_factory=datetime.utcnow)
    is_read: bool = False


class Milestone(SQLModel, table=True):
    __tablename__ = "milestone"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    type: MilestoneType
    exercise_id: Optional[int] = None
    value: Optional[float] = None
    achieved_at: datetime = Field(default_factory=datetime.utcnow)
