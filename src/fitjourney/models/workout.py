"""Workout data models: logged workouts, the exercises in them, and their sets."""
from datetime import datetime
from typing import List, Optional

from sqlmodel import Field, Relationship, SQLModel


class Exercise(SQLModel, table=True):
    """Catalogue entry referenced by workout exercises and strength goals."""

    __tablename__ = "exercise"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    muscle_group: Optional[str] = None
    description: Optional[str] = None


class Workout(SQLModel, table=True):
    """One row per logged workout session."""

    __tablename__ = "workout"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    date: datetime = Field(index=True)
    duration_minutes: Optional[int] = None
    notes: Optional[str] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    exercises: List["WorkoutExercise"] = Relationship(back_populates="workout")


class WorkoutExercise(SQLModel, table=True):
    """An exercise performed within a workout."""

    __tablename__ = "workout_exercise"

    id: Optional[int] = Field(default=None, primary_key=True)
    workout_id: int = Field(foreign_key="workout.id", index=True)
    exercise_id: int = Field(foreign_key="exercise.id", index=True)

    workout: Optional[Workout] = Relationship(back_populates="exercises")
    sets: List["WorkoutSet"] = Relationship(back_populates="workout_exercise")


class WorkoutSet(SQLModel, table=True):
    """A single set: reps at a weight."""

    __tablename__ = "workout_set"

    id: Optional[int] = Field(default=None, primary_key=True)
    workout_exercise_id: int = Field(foreign_key="workout_exercise.id", index=True)
    set_number: int
    reps: Optional[int] = None
    weight_kg: Optional[float] = None

    workout_exercise: Optional[WorkoutExercise] = Relationship(back_populates="sets")
