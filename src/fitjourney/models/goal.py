"""Goal model and the typed goal targets derived from it.

A goal row stores its kind as a plain column; `Goal.target()` turns the row
into one of three target variants so callers dispatch on a closed set of
types instead of comparing strings.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from sqlmodel import Field, SQLModel


class GoalKind(str, Enum):
    STRENGTH = "ExerciseTarget"
    WEIGHT = "WeightTarget"
    FREQUENCY = "WorkoutFrequency"


class GoalStatus(str, Enum):
    ACTIVE = "active"
    ACHIEVED = "achieved"
    EXPIRED = "expired"


@dataclass(frozen=True)
class StrengthTarget:
    """Lift ``target_kg`` on ``exercise_id``; progress is the best set weight."""

    exercise_id: int
    target_kg: float


@dataclass(frozen=True)
class WeightTarget:
    """Reach ``target_kg`` body weight from ``starting_kg`` (loss or gain)."""

    target_kg: float
    starting_kg: Optional[float]

    @property
    def is_loss(self) -> bool:
        return self.starting_kg is not None and self.target_kg < self.starting_kg

    @property
    def is_gain(self) -> bool:
        return self.starting_kg is not None and self.target_kg > self.starting_kg


@dataclass(frozen=True)
class FrequencyTarget:
    """Log ``workouts`` workouts between the goal's start and end dates."""

    workouts: int


GoalTarget = Union[StrengthTarget, WeightTarget, FrequencyTarget]


class Goal(SQLModel, table=True):
    """A user goal; ``current_progress`` is maintained by the goal recalculator."""

    __tablename__ = "goal"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    kind: GoalKind
    exercise_id: Optional[int] = Field(default=None, foreign_key="exercise.id")
    target_value: float
    starting_weight: Optional[float] = None  # weight goals only
    start_date: datetime
    end_date: datetime
    status: GoalStatus = Field(default=GoalStatus.ACTIVE, index=True)
    current_progress: float = 0.0
    achieved_date: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def achieved(self) -> bool:
        return self.status == GoalStatus.ACHIEVED

    def target(self) -> GoalTarget:
        """Return the typed target for this goal's kind.

        Raises:
            ValueError: for a strength goal without an exercise, or an
                unknown kind.
        """
        if self.kind == GoalKind.STRENGTH:
            if self.exercise_id is None:
                raise ValueError(f"strength goal {self.id} has no exercise_id")
            return StrengthTarget(exercise_id=self.exercise_id, target_kg=self.target_value)
        if self.kind == GoalKind.WEIGHT:
            return WeightTarget(target_kg=self.target_value, starting_kg=self.starting_weight)
        if self.kind == GoalKind.FREQUENCY:
            return FrequencyTarget(workouts=int(self.target_value))
        raise ValueError(f"unknown goal kind: {self.kind!r}")

    def is_reached(self, progress: Optional[float] = None) -> bool:
        """True if ``progress`` (default: current) satisfies the target.

        Weight-loss goals are reached from above; everything else from below.
        """
        value = self.current_progress if progress is None else progress
        target = self.target()
        if isinstance(target, WeightTarget) and target.starting_kg is not None:
            if target.is_loss:
                return value <= target.target_kg
            if not target.is_gain:
                return value == target.target_kg
        return value >= self.target_value
