"""Tests for workout logging and its dual-write to the sync queue."""
from datetime import date, datetime
from unittest.mock import MagicMock, patch

import pytest
from sqlmodel import Session, select

from fitjourney.models.notification import Milestone, MilestoneType
from fitjourney.models.sync import SyncOperation, SyncTable
from fitjourney.models.workout import Exercise, Workout, WorkoutExercise, WorkoutSet
from fitjourney.services.workout_service import (
    DEFAULT_EXERCISES,
    ExerciseInput,
    SetInput,
    WorkoutNotFoundError,
    WorkoutService,
)
from fitjourney.sync.queue import SyncQueue

USER = "user-1"
WHEN = datetime(2025, 3, 3, 18, 0)


@pytest.fixture(name="queue")
def queue_fixture(engine):
    return SyncQueue(engine)


@pytest.fixture(name="workouts")
def workouts_fixture(engine, queue):
    return WorkoutService(engine, queue)


class TestCatalogue:
    def test_seed_exercises_once(self, workouts):
        assert workouts.seed_exercises() == len(DEFAULT_EXERCISES)
        assert workouts.seed_exercises() == 0
        assert len(workouts.list_exercises()) == len(DEFAULT_EXERCISES)

    def test_filter_by_muscle_group(self, workouts):
        workouts.seed_exercises()
        names = [e.name for e in workouts.list_exercises("Legs")]
        assert names == ["Leg Extension", "Leg Press", "Squat"]
        assert "Core" in workouts.muscle_groups()


class TestLogWorkout:
    def test_workout_and_queue_entry_written_together(self, engine, workouts, queue, exercises):
        workout = workouts.log_workout(USER, WHEN, exercises=[
            ExerciseInput(exercises["Bench Press"], [SetInput(8, 60.0), SetInput(6, 65.0)]),
        ], duration_minutes=45)

        with Session(engine) as s:
            assert s.exec(select(Workout)).one().duration_minutes == 45
            assert len(s.exec(select(WorkoutExercise)).all()) == 1
            assert [st.set_number for st in s.exec(select(WorkoutSet)).all()] == [1, 2]
        (entry,) = queue.drain(USER)
        assert (entry.table_name, entry.row_id, entry.operation) == (
            SyncTable.WORKOUT, str(workout.id), SyncOperation.INSERT
        )

    def test_failed_enqueue_rolls_back_workout(self, engine, workouts, queue):
        with patch.object(queue, "enqueue", side_effect=RuntimeError("disk full")):
            with pytest.raises(RuntimeError):
                workouts.log_workout(USER, WHEN, exercises=[ExerciseInput(1, [SetInput(5, 50.0)])])
        assert queue.pending_count() == 0
        with Session(engine) as s:
            assert s.exec(select(Workout)).all() == []
            assert s.exec(select(WorkoutSet)).all() == []

    def test_first_heavy_set_is_personal_best(self, engine, workouts, exercises):
        bench = exercises["Bench Press"]
        workouts.log_workout(USER, WHEN, exercises=[ExerciseInput(bench, [SetInput(5, 80.0)])])
        workouts.log_workout(USER, WHEN, exercises=[ExerciseInput(bench, [SetInput(5, 75.0)])])
        workouts.log_workout(USER, WHEN, exercises=[ExerciseInput(bench, [SetInput(3, 85.0)])])
        with Session(engine) as s:
            values = [m.value for m in s.exec(select(Milestone)).all()]
            types = {m.type for m in s.exec(select(Milestone)).all()}
        assert values == [80.0, 85.0]
        assert types == {MilestoneType.PERSONAL_BEST}
        assert workouts.personal_best(USER, bench) == 85.0

    def test_follow_ups_run_after_commit(self, workouts):
        workouts.streaks = MagicMock()
        workouts.goals = MagicMock()
        workouts.log_workout(USER, WHEN)
        workouts.streaks.log_workout.assert_called_once_with(USER, WHEN)
        workouts.goals.recalculate_all.assert_called_once_with(USER)

    def test_follow_up_failure_does_not_lose_workout(self, engine, workouts, queue):
        workouts.streaks = MagicMock()
        workouts.streaks.log_workout.side_effect = RuntimeError("streak table locked")
        workout = workouts.log_workout(USER, WHEN)
        assert workout.id is not None
        assert queue.pending_count(USER, SyncTable.WORKOUT) == 1


class TestEditAndDelete:
    def test_update_enqueues_update(self, workouts, queue):
        workout = workouts.log_workout(USER, WHEN)
        for entry in queue.drain(USER):
            queue.mark_synced(entry)
        updated = workouts.update_workout(workout.id, notes="felt strong")
        assert updated.notes == "felt strong"
        (entry,) = queue.drain(USER)
        assert entry.operation == SyncOperation.UPDATE

    def test_delete_removes_children_and_enqueues_delete(self, engine, workouts, queue, exercises):
        workout = workouts.log_workout(USER, WHEN, exercises=[
            ExerciseInput(exercises["Squat"], [SetInput(5, 100.0)]),
        ])
        workouts.delete_workout(workout.id)
        with Session(engine) as s:
            assert s.exec(select(WorkoutSet)).all() == []
            assert s.exec(select(WorkoutExercise)).all() == []
        (entry,) = queue.drain(USER)
        assert entry.operation == SyncOperation.DELETE

    def test_missing_workout_raises(self, workouts):
        with pytest.raises(WorkoutNotFoundError):
            workouts.delete_workout(999)


class TestReads:
    def test_details_and_volume(self, workouts, exercises):
        workout = workouts.log_workout(USER, WHEN, exercises=[
            ExerciseInput(exercises["Deadlift"], [SetInput(5, 100.0), SetInput(5, 110.0)]),
        ])
        details = workouts.workout_details(workout.id)
        assert details["exercises"][0]["name"] == "Deadlift"
        assert workouts.workout_volume(workout.id) == 1050.0

    def test_workouts_for_date(self, workouts):
        workouts.log_workout(USER, WHEN)
        workouts.log_workout(USER, datetime(2025, 3, 4, 7))
        assert len(workouts.workouts_for_date(USER, date(2025, 3, 3))) == 1
        assert len(workouts.list_workouts(USER)) == 2


def test_exercise_catalogue_is_shared(engine, workouts):
    workouts.seed_exercises()
    with Session(engine) as s:
        assert s.exec(select(Exercise).where(Exercise.name == "Plank")).one().muscle_group == "Core"
