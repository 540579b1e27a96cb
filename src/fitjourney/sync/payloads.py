"""
Local rows -> remote document payloads, and the per-table row lookups the
sync engine needs.

Every syncable table maps to the remote collection named by
``SyncTable.collection``. The document id is the queue entry's ``row_id``:
the stringified primary key, except for ``streak`` and the ``users`` profile
where it is the user id (one row per user, so the document id stays stable
across devices).

Workouts are pushed as one document with their exercises and sets nested:

    {"date": ..., "duration_minutes": 45, "exercises": [
        {"exercise_id": 3, "sets": [{"set_number": 1, "reps": 8, "weight_kg": 60.0}]}
    ]}
"""
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from fitjourney.models.goal import Goal
from fitjourney.models.sync import SyncTable
from fitjourney.models.tracking import DailyLog, Streak, UserMetric
from fitjourney.models.user import User
from fitjourney.models.workout import Workout, WorkoutExercise, WorkoutSet


def workout_payload(session: Session, workout: Workout) -> Dict[str, Any]:
    exercises = session.exec(
        select(WorkoutExercise)
        .where(WorkoutExercise.workout_id == workout.id)
        .order_by(WorkoutExercise.id)
    ).all()
    nested: List[Dict[str, Any]] = []
    for we in exercises:
        sets = session.exec(
            select(WorkoutSet)
            .where(WorkoutSet.workout_exercise_id == we.id)
            .order_by(WorkoutSet.set_number)
        ).all()
        nested.append({
            "exercise_id": we.exercise_id,
            "sets": [
                {"set_number": s.set_number, "reps": s.reps, "weight_kg": s.weight_kg}
                for s in sets
            ],
        })
    return {
        "workout_id": workout.id,
        "user_id": workout.user_id,
        "date": workout.date,
        "duration_minutes": workout.duration_minutes,
        "notes": workout.notes,
        "exercises": nested,
    }


def goal_payload(session: Session, goal: Goal) -> Dict[str, Any]:
    return {
        "goal_id": goal.id,
        "user_id": goal.user_id,
        "type": goal.kind,
        "exercise_id": goal.exercise_id,
        "target_value": goal.target_value,
        "starting_weight": goal.starting_weight,
        "start_date": goal.start_date,
        "end_date": goal.end_date,
        "status": goal.status,
        "current_progress": goal.current_progress,
        "achieved": goal.achieved,
        "achieved_date": goal.achieved_date,
    }


def metric_payload(session: Session, metric: UserMetric) -> Dict[str, Any]:
    return {
        "metric_id": metric.id,
        "user_id": metric.user_id,
        "weight_kg": metric.weight_kg,
        "measured_at": metric.measured_at,
    }


def daily_log_payload(session: Session, log: DailyLog) -> Dict[str, Any]:
    payload = {
        "daily_log_id": log.id,
        "user_id": log.user_id,
        "date": log.log_date,
        "activity_type": log.activity_type,
    }
    if log.notes is not None:
        payload["notes"] = log.notes
    return payload


def streak_payload(session: Session, streak: Streak) -> Dict[str, Any]:
    return {
        "user_id": streak.user_id,
        "current_streak": streak.current_streak,
        "longest_streak": streak.longest_streak,
        "last_activity_date": streak.last_activity_date,
        "last_workout_date": streak.last_workout_date,
    }


def profile_payload(session: Session, user: User) -> Dict[str, Any]:
    return {
        "user_id": user.user_id,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "height_cm": user.height_cm,
        "registration_date": user.registration_date,
        "last_login": user.last_login,
    }


def _by_int_id(model) -> Callable[[Session, str, str], Optional[Any]]:
    def lookup(session: Session, user_id: str, row_id: str):
        try:
            row = session.get(model, int(row_id))
        except ValueError:
            return None
        if row is None or row.user_id != user_id:
            return None
        return row
    return lookup


def _streak_for_user(session: Session, user_id: str, row_id: str) -> Optional[Streak]:
    return session.exec(select(Streak).where(Streak.user_id == row_id)).first()


def _profile_for_user(session: Session, user_id: str, row_id: str) -> Optional[User]:
    if row_id != user_id:
        return None
    return session.get(User, row_id)


TABLE_MODELS = {
    SyncTable.USERS: User,
    SyncTable.WORKOUT: Workout,
    SyncTable.GOAL: Goal,
    SyncTable.USER_METRICS: UserMetric,
    SyncTable.DAILY_LOG: DailyLog,
    SyncTable.STREAK: Streak,
}

_LOOKUPS = {
    SyncTable.USERS: _profile_for_user,
    SyncTable.WORKOUT: _by_int_id(Workout),
    SyncTable.GOAL: _by_int_id(Goal),
    SyncTable.USER_METRICS: _by_int_id(UserMetric),
    SyncTable.DAILY_LOG: _by_int_id(DailyLog),
    SyncTable.STREAK: _streak_for_user,
}

_BUILDERS = {
    SyncTable.USERS: profile_payload,
    SyncTable.WORKOUT: workout_payload,
    SyncTable.GOAL: goal_payload,
    SyncTable.USER_METRICS: metric_payload,
    SyncTable.DAILY_LOG: daily_log_payload,
    SyncTable.STREAK: streak_payload,
}


def build_payload(
    session: Session, user_id: str, table: SyncTable, row_id: str
) -> Optional[Dict[str, Any]]:
    """Payload for one queued row, or None if the row no longer exists."""
    row = _LOOKUPS[table](session, user_id, row_id)
    if row is None:
        return None
    return _BUILDERS[table](session, row)


def row_key(table: SyncTable, row) -> str:
    """Queue/document id for a local row."""
    if table in (SyncTable.STREAK, SyncTable.USERS):
        return row.user_id
    return str(row.id)


def local_row_keys(session: Session, user_id: str, table: SyncTable) -> List[str]:
    model = TABLE_MODELS[table]
    order = model.user_id if table == SyncTable.USERS else model.id
    rows = session.exec(
        select(model).where(model.user_id == user_id).order_by(order)
    ).all()
    return [row_key(table, row) for row in rows]


def local_count(session: Session, user_id: str, table: SyncTable) -> int:
    model = TABLE_MODELS[table]
    return session.exec(
        select(func.count()).select_from(model).where(model.user_id == user_id)
    ).one()
