"""
Workout logging.

A workout, its exercises and sets are written in one session together with
the workout's INSERT queue entry. Exercises and sets travel nested inside
the workout document, so only the workout row is enqueued.

After the workout is committed the streak and goals are updated. Those
follow-ups are logged and swallowed on failure: the workout itself is
already safely stored and queued.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from fitjourney.dates import day_bounds, normalise_date
from fitjourney.db.engine import session_scope
from fitjourney.models.notification import Milestone, MilestoneType
from fitjourney.models.sync import SyncOperation, SyncTable
from fitjourney.models.workout import Exercise, Workout, WorkoutExercise, WorkoutSet

logger = logging.getLogger(__name__)

DEFAULT_EXERCISES = [
    ("Bench Press", "Chest"),
    ("Incline Dumbbell Press", "Chest"),
    ("Chest Fly", "Chest"),
    ("Push-Up", "Chest"),
    ("Deadlift", "Back"),
    ("Pull-Up", "Back"),
    ("Bent Over Row", "Back"),
    ("Lat Pulldown", "Back"),
    ("Squat", "Legs"),
    ("Leg Press", "Legs"),
    ("Leg Extension", "Legs"),
    ("Overhead Press", "Shoulders"),
    ("Lateral Raise", "Shoulders"),
    ("Bicep Curl", "Arms"),
    ("Tricep Extension", "Arms"),
    ("Plank", "Core"),
]


@dataclass
class SetInput:
    reps: Optional[int] = None
    weight_kg: Optional[float] = None


@dataclass
class ExerciseInput:
    exercise_id: int
    sets: List[SetInput] = field(default_factory=list)


class WorkoutNotFoundError(LookupError):
    """Raised when a workout id does not exist."""


class WorkoutService:
    def __init__(self, engine, queue, streaks=None, goals=None):
        """
        Args:
            engine: SQLAlchemy engine.
            queue: SyncQueue for the dual-write.
            streaks: StreakService, updated after each logged workout.
            goals: GoalService, recalculated after each logged workout.
        """
        self.engine = engine
        self.queue = queue
        self.streaks = streaks
        self.goals = goals

    # ── Exercise catalogue ────────────────────────────────────────────────────

    def seed_exercises(self) -> int:
        """Insert the default exercise catalogue into an empty table."""
        with session_scope(self.engine) as s:
            if s.exec(select(func.count()).select_from(Exercise)).one():
                return 0
            for name, group in DEFAULT_EXERCISES:
                s.add(Exercise(name=name, muscle_group=group))
        logger.info("Seeded %d exercises", len(DEFAULT_EXERCISES))
        return len(DEFAULT_EXERCISES)

    def list_exercises(self, muscle_group: Optional[str] = None) -> List[Exercise]:
        with Session(self.engine) as s:
            stmt = select(Exercise)
            if muscle_group:
                stmt = stmt.where(Exercise.muscle_group == muscle_group)
            return list(s.exec(stmt.order_by(Exercise.name)).all())

    def muscle_groups(self) -> List[str]:
        with Session(self.engine) as s:
            groups = s.exec(select(Exercise.muscle_group).distinct()).all()
        return sorted(g for g in groups if g)

    # ── Workouts ──────────────────────────────────────────────────────────────

    def log_workout(
        self,
        user_id: str,
        when: datetime,
        exercises: Optional[List[ExerciseInput]] = None,
        duration_minutes: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Workout:
        """Store a complete workout and enqueue it.

        Returns:
            The committed Workout row.
        """
        exercises = exercises or []
        personal_bests: Dict[int, float] = {}
        with session_scope(self.engine) as s:
            for ex in exercises:
                heaviest = max((st.weight_kg for st in ex.sets if st.weight_kg is not None), default=None)
                if heaviest is None:
                    continue
                previous = self._personal_best(s, user_id, ex.exercise_id)
                if previous is None or heaviest > previous:
                    personal_bests[ex.exercise_id] = max(heaviest, personal_bests.get(ex.exercise_id, heaviest))

            workout = Workout(
                user_id=user_id, date=when, duration_minutes=duration_minutes, notes=notes
            )
            s.add(workout)
            s.flush()
            for ex in exercises:
                we = WorkoutExercise(workout_id=workout.id, exercise_id=ex.exercise_id)
                s.add(we)
                s.flush()
                for number, st in enumerate(ex.sets, start=1):
                    s.add(WorkoutSet(
                        workout_exercise_id=we.id,
                        set_number=number,
                        reps=st.reps,
                        weight_kg=st.weight_kg,
                    ))
            for exercise_id, weight in personal_bests.items():
                s.add(Milestone(
                    user_id=user_id,
                    type=MilestoneType.PERSONAL_BEST,
                    exercise_id=exercise_id,
                    value=weight,
                ))
            self.queue.enqueue(user_id, SyncTable.WORKOUT, workout.id, SyncOperation.INSERT, session=s)

        logger.info("Logged workout %s for %s (%d exercises)", workout.id, user_id, len(exercises))
        self._after_workout(user_id, when)
        return workout

    def _after_workout(self, user_id: str, when: datetime) -> None:
        if self.streaks is not None:
            try:
                self.streaks.log_workout(user_id, when)
            except Exception as exc:
                logger.error("Updating streak after workout failed: %s", exc)
        if self.goals is not None:
            try:
                self.goals.recalculate_all(user_id)
            except Exception as exc:
                logger.error("Updating goals after workout failed: %s", exc)

    def update_workout(self, workout_id: int, **changes) -> Workout:
        """Update scalar workout fields (date, duration_minutes, notes)."""
        with session_scope(self.engine) as s:
            workout = s.get(Workout, workout_id)
            if workout is None:
                raise WorkoutNotFoundError(f"workout {workout_id} not found")
            for key, value in changes.items():
                setattr(workout, key, value)
            workout.updated_at = datetime.utcnow()
            s.add(workout)
            self.queue.enqueue(workout.user_id, SyncTable.WORKOUT, workout.id, SyncOperation.UPDATE, session=s)
            return workout

    def delete_workout(self, workout_id: int) -> None:
        """Delete a workout with its exercises and sets."""
        with session_scope(self.engine) as s:
            workout = s.get(Workout, workout_id)
            if workout is None:
                raise WorkoutNotFoundError(f"workout {workout_id} not found")
            for we in s.exec(select(WorkoutExercise).where(WorkoutExercise.workout_id == workout_id)).all():
                for ws in s.exec(select(WorkoutSet).where(WorkoutSet.workout_exercise_id == we.id)).all():
                    s.delete(ws)
                s.delete(we)
            self.queue.enqueue(workout.user_id, SyncTable.WORKOUT, workout.id, SyncOperation.DELETE, session=s)
            s.delete(workout)

    def list_workouts(self, user_id: str) -> List[Workout]:
        with Session(self.engine) as s:
            return list(s.exec(
                select(Workout).where(Workout.user_id == user_id).order_by(Workout.date.desc())
            ).all())

    def workouts_for_date(self, user_id: str, day: date) -> List[Workout]:
        start, end = day_bounds(normalise_date(day))
        with Session(self.engine) as s:
            return list(s.exec(
                select(Workout).where(
                    Workout.user_id == user_id, Workout.date >= start, Workout.date <= end
                )
            ).all())

    def workout_details(self, workout_id: int) -> Dict[str, Any]:
        """Workout with its exercises and sets as plain dicts."""
        with Session(self.engine) as s:
            workout = s.get(Workout, workout_id)
            if workout is None:
                raise WorkoutNotFoundError(f"workout {workout_id} not found")
            exercises = []
            for we in s.exec(
                select(WorkoutExercise).where(WorkoutExercise.workout_id == workout_id).order_by(WorkoutExercise.id)
            ).all():
                exercise = s.get(Exercise, we.exercise_id)
                sets = s.exec(
                    select(WorkoutSet).where(WorkoutSet.workout_exercise_id == we.id).order_by(WorkoutSet.set_number)
                ).all()
                exercises.append({
                    "exercise_id": we.exercise_id,
                    "name": exercise.name if exercise else None,
                    "sets": [
                        {"set_number": st.set_number, "reps": st.reps, "weight_kg": st.weight_kg}
                        for st in sets
                    ],
                })
            return {
                "id": workout.id,
                "date": workout.date,
                "duration_minutes": workout.duration_minutes,
                "notes": workout.notes,
                "exercises": exercises,
            }

    def workout_volume(self, workout_id: int) -> float:
        """Sum of reps x weight over every set of the workout."""
        total = 0.0
        for ex in self.workout_details(workout_id)["exercises"]:
            for st in ex["sets"]:
                total += (st["reps"] or 0) * (st["weight_kg"] or 0.0)
        return total

    def _personal_best(self, s: Session, user_id: str, exercise_id: int) -> Optional[float]:
        return s.exec(
            select(func.max(WorkoutSet.weight_kg))
            .join(WorkoutExercise, WorkoutSet.workout_exercise_id == WorkoutExercise.id)
            .join(Workout, WorkoutExercise.workout_id == Workout.id)
            .where(Workout.user_id == user_id, WorkoutExercise.exercise_id == exercise_id)
        ).one()

    def personal_best(self, user_id: str, exercise_id: int) -> Optional[float]:
        with Session(self.engine) as s:
            return self._personal_best(s, user_id, exercise_id)
