"""Goal progress, streak and training history routes."""
from datetime import date, datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from fitjourney.api.deps import get_services
from fitjourney.container import Services
from fitjourney.models.goal import GoalStatus
from fitjourney.scheduler.jobs import update_progress
from fitjourney.services.goal_service import progress_fraction
from fitjourney.services.progress_service import ExerciseNotFoundError

router = APIRouter()


class GoalProgressResponse(BaseModel):
    id: int
    kind: str
    status: str
    exercise_id: Optional[int]
    target_value: float
    current_progress: float
    percent: float
    start_date: datetime
    end_date: datetime
    achieved_date: Optional[datetime]


class StreakResponse(BaseModel):
    current_streak: int
    longest_streak: int
    last_activity_date: Optional[date]
    last_workout_date: Optional[date]


class VolumePoint(BaseModel):
    workout_id: int
    date: datetime
    volume: float


class MuscleGroupShare(BaseModel):
    muscle_group: Optional[str]
    count: int
    percentage: float


class WeightPoint(BaseModel):
    date: datetime
    weight: float


class ExerciseProgressResponse(BaseModel):
    exercise_id: int
    exercise_name: str
    personal_best: Optional[float]
    personal_best_date: Optional[datetime]
    starting_weight: Optional[float]
    starting_date: Optional[datetime]
    progress_points: List[WeightPoint]
    improvement_percentage: float


class PersonalBestResponse(BaseModel):
    exercise_id: int
    exercise_name: str
    muscle_group: Optional[str]
    max_weight: float
    reps: Optional[int]
    date: datetime


class ProgressSummaryResponse(BaseModel):
    total_workouts: int
    weekly_workouts: int
    monthly_workouts: int
    weekly_target: int
    weekly_progress: float
    most_recent_workout: Optional[datetime]
    days_since_last_workout: Optional[int]
    current_streak: int
    longest_streak: int
    most_trained_muscle_group: Optional[str]
    muscle_group_count: Optional[int]


def _window(start: Optional[datetime], end: Optional[datetime]):
    """Default to the last 30 days."""
    end = end or datetime.utcnow()
    return start or end - timedelta(days=30), end


@router.post("/refresh")
def refresh_progress(services: Services = Depends(get_services)):
    """Recalculate streak and goal progress now (pull-to-refresh)."""
    return update_progress(services)


@router.get("/goals", response_model=List[GoalProgressResponse])
def list_goals(
    status: Optional[GoalStatus] = None,
    services: Services = Depends(get_services),
):
    goals = services.goals.list_goals(services.current_user_id(), status=status)
    return [
        GoalProgressResponse(
            id=g.id,
            kind=g.kind.value,
            status=g.status.value,
            exercise_id=g.exercise_id,
            target_value=g.target_value,
            current_progress=g.current_progress,
            percent=round(progress_fraction(g) * 100, 1),
            start_date=g.start_date,
            end_date=g.end_date,
            achieved_date=g.achieved_date,
        )
        for g in goals
    ]


@router.get("/streak", response_model=StreakResponse)
def get_streak(services: Services = Depends(get_services)):
    streak = services.streaks.find_streak(services.current_user_id())
    if streak is None:
        return StreakResponse(
            current_streak=0, longest_streak=0, last_activity_date=None, last_workout_date=None
        )
    return StreakResponse(
        current_streak=streak.current_streak,
        longest_streak=streak.longest_streak,
        last_activity_date=streak.last_activity_date,
        last_workout_date=streak.last_workout_date,
    )


@router.get("/volume", response_model=List[VolumePoint])
def volume(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    services: Services = Depends(get_services),
):
    start, end = _window(start, end)
    return services.progress.workout_volume_data(services.current_user_id(), start, end)


@router.get("/muscle-groups", response_model=List[MuscleGroupShare])
def muscle_groups(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    services: Services = Depends(get_services),
):
    start, end = _window(start, end)
    return services.progress.muscle_group_distribution(services.current_user_id(), start, end)


@router.get("/exercises/{exercise_id}", response_model=ExerciseProgressResponse)
def exercise_progress(exercise_id: int, services: Services = Depends(get_services)):
    try:
        return services.progress.exercise_progress(services.current_user_id(), exercise_id)
    except ExerciseNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@router.get("/personal-bests", response_model=List[PersonalBestResponse])
def personal_bests(services: Services = Depends(get_services)):
    return services.progress.personal_bests(services.current_user_id())


@router.get("/summary", response_model=ProgressSummaryResponse)
def summary(services: Services = Depends(get_services)):
    return services.progress.progress_summary(services.current_user_id())
