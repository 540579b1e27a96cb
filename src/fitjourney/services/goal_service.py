"""
Goal tracking and the goal progress recalculator.

Progress is derived from local rows according to the goal's target:

  StrengthTarget   heaviest set ever logged for the exercise
  WeightTarget     latest body-weight measurement
  FrequencyTarget  workouts logged between the goal's start and end dates

recalculate_all() runs on a schedule and on demand. Each goal is
recalculated in its own session; a goal that fails is logged and skipped
so the others still update. Changed goals are enqueued for sync together
with the change.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlmodel import Session, select

from fitjourney.dates import day_bounds, normalise_date
from fitjourney.db.engine import session_scope
from fitjourney.models.goal import (
    FrequencyTarget,
    Goal,
    GoalKind,
    GoalStatus,
    StrengthTarget,
    WeightTarget,
)
from fitjourney.models.notification import Milestone, MilestoneType, NotificationType
from fitjourney.models.sync import SyncOperation, SyncTable
from fitjourney.models.tracking import UserMetric
from fitjourney.models.workout import Exercise, Workout, WorkoutExercise, WorkoutSet

logger = logging.getLogger(__name__)


class GoalNotFoundError(LookupError):
    """Raised when a goal id does not exist."""


@dataclass
class RecalculationResult:
    updated: List[int] = field(default_factory=list)
    achieved: List[int] = field(default_factory=list)
    expired: List[int] = field(default_factory=list)
    failed: List[Tuple[int, str]] = field(default_factory=list)


def weight_goal_percentage(start: float, current: float, target: float) -> float:
    """Completion of a weight goal in [0, 1].

    Loss and gain goals score the share of the distance covered; a
    maintenance goal (target == start) loses 20 points per percent of
    deviation, so anything 5% off scores 0.
    """
    if target < start:
        if current <= target:
            return 1.0
        return min(max((start - current) / (start - target), 0.0), 1.0)
    if target > start:
        if current >= target:
            return 1.0
        return min(max((current - start) / (target - start), 0.0), 1.0)
    if current == target:
        return 1.0
    deviation = abs(current - target) / target
    return min(max(1.0 - deviation * 20, 0.0), 1.0)


def progress_fraction(goal: Goal) -> float:
    """Completion in [0, 1] for display."""
    target = goal.target()
    if isinstance(target, WeightTarget):
        start = target.starting_kg if target.starting_kg is not None else goal.current_progress
        return weight_goal_percentage(start, goal.current_progress, target.target_kg)
    if goal.target_value <= 0:
        return 1.0
    return min(max(goal.current_progress / goal.target_value, 0.0), 1.0)


class GoalService:
    def __init__(self, engine, queue, notifications):
        self.engine = engine
        self.queue = queue
        self.notifications = notifications

    # ── CRUD ──────────────────────────────────────────────────────────────────

    def _insert(self, goal: Goal, session: Optional[Session] = None) -> Goal:
        with session_scope(self.engine, session) as s:
            s.add(goal)
            s.flush()
            self.queue.enqueue(goal.user_id, SyncTable.GOAL, goal.id, SyncOperation.INSERT, session=s)
        logger.info("Created %s goal %s for %s", goal.kind.value, goal.id, goal.user_id)
        return goal

    def create_strength_goal(
        self,
        user_id: str,
        exercise_id: int,
        current_weight: float,
        target_weight: float,
        target_date: datetime,
    ) -> Goal:
        return self._insert(Goal(
            user_id=user_id,
            kind=GoalKind.STRENGTH,
            exercise_id=exercise_id,
            target_value=target_weight,
            start_date=datetime.utcnow(),
            end_date=target_date,
            current_progress=current_weight,
        ))

    def create_weight_goal(
        self,
        user_id: str,
        current_weight: float,
        target_weight: float,
        target_date: datetime,
    ) -> Goal:
        """Create a weight goal and log the starting weight as a measurement."""
        with session_scope(self.engine) as s:
            self._add_metric(s, user_id, current_weight, datetime.utcnow())
            return self._insert(Goal(
                user_id=user_id,
                kind=GoalKind.WEIGHT,
                target_value=target_weight,
                starting_weight=current_weight,
                start_date=datetime.utcnow(),
                end_date=target_date,
                current_progress=current_weight,
            ), session=s)

    def create_frequency_goal(
        self,
        user_id: str,
        target_workouts: int,
        end_date: datetime,
        start_date: Optional[datetime] = None,
    ) -> Goal:
        return self._insert(Goal(
            user_id=user_id,
            kind=GoalKind.FREQUENCY,
            target_value=float(target_workouts),
            start_date=start_date or datetime.utcnow(),
            end_date=end_date,
            current_progress=0.0,
        ))

    def get_goal(self, goal_id: int) -> Goal:
        with Session(self.engine) as s:
            goal = s.get(Goal, goal_id)
            if goal is None:
                raise GoalNotFoundError(f"goal {goal_id} not found")
            return goal

    def list_goals(self, user_id: str, status: Optional[GoalStatus] = None) -> List[Goal]:
        with Session(self.engine) as s:
            stmt = select(Goal).where(Goal.user_id == user_id)
            if status is not None:
                stmt = stmt.where(Goal.status == status)
            return list(s.exec(stmt.order_by(Goal.end_date)).all())

    def update_goal(self, goal_id: int, **changes) -> Goal:
        """Update goal fields. A changed target triggers a recalculation.

        Raises:
            GoalNotFoundError: if the goal does not exist.
        """
        with session_scope(self.engine) as s:
            goal = s.get(Goal, goal_id)
            if goal is None:
                raise GoalNotFoundError(f"goal {goal_id} not found")
            old_target = goal.target_value
            for key, value in changes.items():
                setattr(goal, key, value)
            goal.updated_at = datetime.utcnow()
            s.add(goal)
            self.queue.enqueue(goal.user_id, SyncTable.GOAL, goal.id, SyncOperation.UPDATE, session=s)
            if goal.target_value != old_target and goal.status == GoalStatus.ACTIVE:
                self._recalculate(s, goal, datetime.utcnow())
            return goal

    def delete_goal(self, goal_id: int) -> None:
        with session_scope(self.engine) as s:
            goal = s.get(Goal, goal_id)
            if goal is None:
                raise GoalNotFoundError(f"goal {goal_id} not found")
            self.queue.enqueue(goal.user_id, SyncTable.GOAL, goal.id, SyncOperation.DELETE, session=s)
            s.delete(goal)

    # ── Weight log ────────────────────────────────────────────────────────────

    def _add_metric(self, s: Session, user_id: str, weight: float, when: datetime) -> UserMetric:
        metric = UserMetric(user_id=user_id, weight_kg=weight, measured_at=when)
        s.add(metric)
        s.flush()
        self.queue.enqueue(user_id, SyncTable.USER_METRICS, metric.id, SyncOperation.INSERT, session=s)
        return metric

    def log_weight(self, user_id: str, weight: float, when: Optional[datetime] = None) -> UserMetric:
        """Record a body-weight measurement and update active weight goals."""
        now = datetime.utcnow()
        with session_scope(self.engine) as s:
            metric = self._add_metric(s, user_id, weight, when or now)
            goals = s.exec(
                select(Goal).where(
                    Goal.user_id == user_id,
                    Goal.status == GoalStatus.ACTIVE,
                    Goal.kind == GoalKind.WEIGHT,
                )
            ).all()
            for goal in goals:
                self._recalculate(s, goal, now)
            return metric

    # ── Progress ──────────────────────────────────────────────────────────────

    def compute_progress(self, s: Session, goal: Goal) -> Optional[float]:
        """Current progress for a goal, or None when there is no data yet."""
        target = goal.target()
        if isinstance(target, StrengthTarget):
            return s.exec(
                select(func.max(WorkoutSet.weight_kg))
                .join(WorkoutExercise, WorkoutSet.workout_exercise_id == WorkoutExercise.id)
                .join(Workout, WorkoutExercise.workout_id == Workout.id)
                .where(
                    Workout.user_id == goal.user_id,
                    WorkoutExercise.exercise_id == target.exercise_id,
                    WorkoutSet.weight_kg != None,  # noqa: E711
                )
            ).one()
        if isinstance(target, WeightTarget):
            return s.exec(
                select(UserMetric.weight_kg)
                .where(UserMetric.user_id == goal.user_id)
                .order_by(UserMetric.measured_at.desc(), UserMetric.id.desc())
            ).first()
        if isinstance(target, FrequencyTarget):
            start, _ = day_bounds(normalise_date(goal.start_date))
            _, end = day_bounds(normalise_date(goal.end_date))
            count = s.exec(
                select(func.count()).select_from(Workout).where(
                    Workout.user_id == goal.user_id,
                    Workout.date >= start,
                    Workout.date <= end,
                )
            ).one()
            return float(count)
        raise ValueError(f"unhandled goal target {target!r}")

    def _recalculate(self, s: Session, goal: Goal, now: datetime) -> str:
        """Recompute one goal inside ``s``.

        Returns:
            "achieved", "expired", "updated" or "unchanged".
        """
        progress = self.compute_progress(s, goal)
        outcome = "unchanged"
        if progress is not None and progress != goal.current_progress:
            goal.current_progress = progress
            outcome = "updated"

        if goal.status == GoalStatus.ACTIVE and goal.is_reached():
            self._mark_achieved(s, goal, now)
            outcome = "achieved"
        elif goal.status == GoalStatus.ACTIVE and goal.end_date < now:
            goal.status = GoalStatus.EXPIRED
            outcome = "expired"

        if outcome != "unchanged":
            goal.updated_at = now
            s.add(goal)
            self.queue.enqueue(goal.user_id, SyncTable.GOAL, goal.id, SyncOperation.UPDATE, session=s)
        return outcome

    def _mark_achieved(self, s: Session, goal: Goal, now: datetime) -> None:
        goal.status = GoalStatus.ACHIEVED
        goal.achieved_date = now
        s.add(Milestone(
            user_id=goal.user_id,
            type=MilestoneType.GOAL_ACHIEVED,
            exercise_id=goal.exercise_id,
            value=goal.target_value,
            achieved_at=now,
        ))
        self.notifications.create(
            goal.user_id,
            NotificationType.GOAL_PROGRESS,
            f"Congratulations! You achieved your {self._goal_name(s, goal)} goal!",
            session=s,
        )
        logger.info("Goal %s achieved by %s", goal.id, goal.user_id)

    def _goal_name(self, s: Session, goal: Goal) -> str:
        if goal.kind == GoalKind.STRENGTH and goal.exercise_id is not None:
            exercise = s.get(Exercise, goal.exercise_id)
            if exercise is not None:
                return exercise.name
            return "Strength"
        if goal.kind == GoalKind.WEIGHT:
            return "Weight"
        return "Workout Frequency"

    def recalculate_goal(self, goal_id: int, now: Optional[datetime] = None) -> Goal:
        with session_scope(self.engine) as s:
            goal = s.get(Goal, goal_id)
            if goal is None:
                raise GoalNotFoundError(f"goal {goal_id} not found")
            self._recalculate(s, goal, now or datetime.utcnow())
            return goal

    def recalculate_all(self, user_id: str, now: Optional[datetime] = None) -> RecalculationResult:
        """Recompute progress and status for every active goal of a user."""
        now = now or datetime.utcnow()
        result = RecalculationResult()
        with Session(self.engine) as s:
            goal_ids = s.exec(
                select(Goal.id).where(Goal.user_id == user_id, Goal.status == GoalStatus.ACTIVE)
            ).all()

        for goal_id in goal_ids:
            try:
                with session_scope(self.engine) as s:
                    goal = s.get(Goal, goal_id)
                    outcome = self._recalculate(s, goal, now)
            except Exception as exc:
                logger.error("Recalculating goal %s failed: %s", goal_id, exc)
                result.failed.append((goal_id, str(exc)))
                continue
            if outcome == "achieved":
                result.achieved.append(goal_id)
            elif outcome == "expired":
                result.expired.append(goal_id)
            if outcome != "unchanged":
                result.updated.append(goal_id)

        logger.info(
            "Goals for %s: %d updated, %d achieved, %d expired, %d failed",
            user_id, len(result.updated), len(result.achieved),
            len(result.expired), len(result.failed),
        )
        return result
