"""
Read-only progress queries over the local store: training volume, muscle
group distribution, per-exercise progress, personal bests and a summary.

Nothing here writes or enqueues. Streak counters are read through
StreakService.find_streak(), so a user with no streak row sees zeros.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from fitjourney.models.workout import Exercise, Workout, WorkoutExercise, WorkoutSet

logger = logging.getLogger(__name__)

WEEKLY_WORKOUT_TARGET = 5


class ExerciseNotFoundError(LookupError):
    """Raised when an exercise id does not exist."""


class ProgressService:
    def __init__(self, engine, streaks=None):
        """
        Args:
            engine: SQLAlchemy engine.
            streaks: StreakService, for the streak counters in the summary.
        """
        self.engine = engine
        self.streaks = streaks

    # ── Charts ────────────────────────────────────────────────────────────────

    def workout_volume_data(self, user_id: str, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """Per-workout volume (sum of reps x weight) between start and end, oldest first.

        Sets missing reps or weight add nothing; a workout without sets has
        volume 0.
        """
        volume = func.coalesce(func.sum(WorkoutSet.reps * WorkoutSet.weight_kg), 0.0)
        with Session(self.engine) as s:
            rows = s.exec(
                select(Workout.id, Workout.date, volume)
                .outerjoin(WorkoutExercise, WorkoutExercise.workout_id == Workout.id)
                .outerjoin(WorkoutSet, WorkoutSet.workout_exercise_id == WorkoutExercise.id)
                .where(Workout.user_id == user_id, Workout.date >= start, Workout.date <= end)
                .group_by(Workout.id, Workout.date)
                .order_by(Workout.date, Workout.id)
            ).all()
        return [
            {"workout_id": workout_id, "date": when, "volume": float(total)}
            for workout_id, when, total in rows
        ]

    def muscle_group_distribution(self, user_id: str, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """Exercises performed per muscle group between start and end, most trained first."""
        with Session(self.engine) as s:
            counts = self._muscle_group_counts(s, user_id, start, end)
        total = sum(count for _, count in counts)
        return [
            {
                "muscle_group": group,
                "count": count,
                "percentage": round(count / total * 100, 1) if total else 0.0,
            }
            for group, count in counts
        ]

    def _muscle_group_counts(self, s: Session, user_id: str, start=None, end=None):
        count = func.count(WorkoutExercise.id)
        stmt = (
            select(Exercise.muscle_group, count)
            .join(WorkoutExercise, WorkoutExercise.exercise_id == Exercise.id)
            .join(Workout, WorkoutExercise.workout_id == Workout.id)
            .where(Workout.user_id == user_id)
        )
        if start is not None:
            stmt = stmt.where(Workout.date >= start)
        if end is not None:
            stmt = stmt.where(Workout.date <= end)
        rows = s.exec(stmt.group_by(Exercise.muscle_group)).all()
        # ties broken by name so the order is stable
        return sorted(rows, key=lambda row: (-row[1], row[0] or ""))

    # ── Per exercise ──────────────────────────────────────────────────────────

    def exercise_progress(self, user_id: str, exercise_id: int) -> Dict[str, Any]:
        """Weight history of one exercise.

        Returns:
            personal_best and its date, the starting weight and date (first
            recorded set), the heaviest weight per workout date, and the
            improvement of the latest point over the starting weight in %.

        Raises:
            ExerciseNotFoundError: if the exercise does not exist.
        """
        with Session(self.engine) as s:
            exercise = s.get(Exercise, exercise_id)
            if exercise is None:
                raise ExerciseNotFoundError(f"exercise {exercise_id} not found")
            sets = s.exec(
                select(WorkoutSet.weight_kg, Workout.date)
                .join(WorkoutExercise, WorkoutSet.workout_exercise_id == WorkoutExercise.id)
                .join(Workout, WorkoutExercise.workout_id == Workout.id)
                .where(Workout.user_id == user_id, WorkoutExercise.exercise_id == exercise_id)
                .order_by(Workout.date, WorkoutSet.set_number)
            ).all()

        personal_best: Optional[float] = None
        personal_best_date: Optional[datetime] = None
        heaviest_by_date: Dict[datetime, float] = {}
        for weight, when in sets:
            if weight is None:
                continue
            if when not in heaviest_by_date or weight > heaviest_by_date[when]:
                heaviest_by_date[when] = weight
            if personal_best is None or weight > personal_best:
                personal_best, personal_best_date = weight, when

        starting_weight = sets[0][0] if sets else None
        starting_date = sets[0][1] if sets else None
        points = [{"date": when, "weight": weight} for when, weight in sorted(heaviest_by_date.items())]

        improvement = 0.0
        if starting_weight and points:
            improvement = round((points[-1]["weight"] - starting_weight) / starting_weight * 100, 1)

        return {
            "exercise_id": exercise_id,
            "exercise_name": exercise.name,
            "personal_best": personal_best,
            "personal_best_date": personal_best_date,
            "starting_weight": starting_weight,
            "starting_date": starting_date,
            "progress_points": points,
            "improvement_percentage": improvement,
        }

    def personal_bests(self, user_id: str) -> List[Dict[str, Any]]:
        """Heaviest set of every exercise the user has performed, by exercise name."""
        results = []
        with Session(self.engine) as s:
            exercises = s.exec(
                select(Exercise)
                .join(WorkoutExercise, WorkoutExercise.exercise_id == Exercise.id)
                .join(Workout, WorkoutExercise.workout_id == Workout.id)
                .where(Workout.user_id == user_id)
                .distinct()
                .order_by(Exercise.name)
            ).all()
            for exercise in exercises:
                best = s.exec(
                    select(WorkoutSet.weight_kg, WorkoutSet.reps, Workout.date)
                    .join(WorkoutExercise, WorkoutSet.workout_exercise_id == WorkoutExercise.id)
                    .join(Workout, WorkoutExercise.workout_id == Workout.id)
                    .where(
                        Workout.user_id == user_id,
                        WorkoutExercise.exercise_id == exercise.id,
                        WorkoutSet.weight_kg.is_not(None),
                    )
                    .order_by(WorkoutSet.weight_kg.desc(), Workout.date)
                    .limit(1)
                ).first()
                if best is None:
                    continue
                weight, reps, when = best
                results.append({
                    "exercise_id": exercise.id,
                    "exercise_name": exercise.name,
                    "muscle_group": exercise.muscle_group,
                    "max_weight": weight,
                    "reps": reps,
                    "date": when,
                })
        return results

    # ── Summary ───────────────────────────────────────────────────────────────

    def progress_summary(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Workout counts, recency, streak and the most trained muscle group.

        Weeks start on Monday at midnight.
        """
        now = now or datetime.utcnow()
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        week_start = today - timedelta(days=today.weekday())
        month_start = today.replace(day=1)

        with Session(self.engine) as s:
            def workouts_since(since=None) -> int:
                stmt = select(func.count()).select_from(Workout).where(Workout.user_id == user_id)
                if since is not None:
                    stmt = stmt.where(Workout.date >= since)
                return s.exec(stmt).one()

            total = workouts_since()
            weekly = workouts_since(week_start)
            monthly = workouts_since(month_start)
            most_recent = s.exec(
                select(func.max(Workout.date)).where(Workout.user_id == user_id)
            ).one()
            groups = self._muscle_group_counts(s, user_id)

        streak = self.streaks.find_streak(user_id) if self.streaks is not None else None
        top_group, top_count = groups[0] if groups else (None, None)
        return {
            "total_workouts": total,
            "weekly_workouts": weekly,
            "monthly_workouts": monthly,
            "weekly_target": WEEKLY_WORKOUT_TARGET,
            "weekly_progress": weekly / WEEKLY_WORKOUT_TARGET,
            "most_recent_workout": most_recent,
            "days_since_last_workout": (now - most_recent).days if most_recent else None,
            "current_streak": streak.current_streak if streak else 0,
            "longest_streak": streak.longest_streak if streak else 0,
            "most_trained_muscle_group": top_group,
            "muscle_group_count": top_count,
        }
