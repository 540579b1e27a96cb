"""Integration tests for account deletion."""
from datetime import datetime, timedelta

import pytest
from sqlmodel import Session, select

from fitjourney.cloud.auth import NotLoggedInError
from fitjourney.models.goal import Goal
from fitjourney.models.sync import SyncQueueEntry
from fitjourney.models.tracking import DailyLog, Streak
from fitjourney.models.user import User
from fitjourney.models.workout import Exercise, Workout, WorkoutSet
from fitjourney.services.account_service import AccountDeletionError
from fitjourney.services.workout_service import ExerciseInput, SetInput

USER = "user-1"


def _seed(services, exercises):
    services.workouts.log_workout(USER, datetime.utcnow(), exercises=[
        ExerciseInput(exercises["Squat"], [SetInput(5, 100.0)]),
    ])
    services.goals.create_frequency_goal(USER, 3, datetime.utcnow() + timedelta(days=7))
    services.profiles.save_profile(USER, first_name="Ada")


@pytest.mark.asyncio
async def test_delete_account_wipes_remote_local_and_auth(services, store, auth, engine, exercises):
    _seed(services, exercises)
    await services.sync.trigger_manual_sync()
    assert store.count(USER, "workout") == 1
    assert store.count(USER, "profile") == 1

    message = await services.accounts.delete_account()

    assert "deleted" in message
    assert auth.deleted
    for collection in ("workout", "goal", "daily_log", "streak", "profile"):
        assert store.count(USER, collection) == 0
    with Session(engine) as s:
        for model in (User, Workout, WorkoutSet, Goal, DailyLog, Streak, SyncQueueEntry):
            assert s.exec(select(model)).all() == []
        # the exercise catalogue is shared, not owned by the user
        assert len(s.exec(select(Exercise)).all()) == 3


@pytest.mark.asyncio
async def test_other_users_rows_survive(services, engine):
    services.workouts.log_workout("someone-else", datetime.utcnow())
    await services.accounts.delete_account()
    with Session(engine) as s:
        assert [w.user_id for w in s.exec(select(Workout)).all()] == ["someone-else"]


@pytest.mark.asyncio
async def test_remote_failure_keeps_local_data(services, store, auth, engine, exercises):
    _seed(services, exercises)

    async def broken(*args, **kwargs):
        raise RuntimeError("permission denied")

    store.delete_collection = broken

    with pytest.raises(AccountDeletionError, match="cloud data"):
        await services.accounts.delete_account()
    assert not auth.deleted
    with Session(engine) as s:
        assert len(s.exec(select(Workout)).all()) == 1


@pytest.mark.asyncio
async def test_requires_signed_in_user(services, auth):
    auth.user_id = None
    with pytest.raises(NotLoggedInError):
        await services.accounts.delete_account()
