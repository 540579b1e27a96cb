"""Account deletion: remote data first, then local rows, then the Firebase account."""
import asyncio
import logging

from sqlmodel import Session, select

from fitjourney.config import get_settings
from fitjourney.models.goal import Goal
from fitjourney.models.notification import Milestone, Notification
from fitjourney.models.sync import SyncLog, SyncQueueEntry, SyncTable
from fitjourney.models.tracking import DailyLog, Streak, UserMetric
from fitjourney.models.user import User
from fitjourney.models.workout import Workout, WorkoutExercise, WorkoutSet

logger = logging.getLogger(__name__)

_USER_TABLES = (User, Goal, UserMetric, DailyLog, Streak, Notification, Milestone, SyncQueueEntry, SyncLog)


class AccountDeletionError(RuntimeError):
    """Raised when any step of the account deletion fails."""


class AccountService:
    def __init__(self, engine, store, auth, settings=None):
        self.engine = engine
        self.store = store
        self.auth = auth
        self.settings = settings or get_settings()

    async def delete_account(self) -> str:
        """Delete everything belonging to the signed-in user.

        Raises:
            NotLoggedInError: if nobody is signed in.
            AccountDeletionError: if a remote or local step fails.
        """
        user_id = self.auth.current_user_id()
        try:
            await self.delete_remote_data(user_id)
        except Exception as exc:
            raise AccountDeletionError(f"Failed to delete cloud data: {exc}") from exc
        try:
            self.delete_local_data(user_id)
        except Exception as exc:
            raise AccountDeletionError(f"Failed to delete local data: {exc}") from exc

        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, self.auth.delete_account)
        logger.info("Account %s deleted", user_id)
        return "Account successfully deleted"

    async def delete_remote_data(self, user_id: str) -> int:
        deleted = 0
        for table in SyncTable:
            deleted += await self.store.delete_collection(
                user_id, table.collection, batch_size=self.settings.delete_batch_size
            )
        logger.info("Deleted %d remote documents for %s", deleted, user_id)
        return deleted

    def delete_local_data(self, user_id: str) -> None:
        """Delete every local row owned by ``user_id`` in one transaction."""
        with Session(self.engine) as s:
            for workout in s.exec(select(Workout).where(Workout.user_id == user_id)).all():
                for we in s.exec(select(WorkoutExercise).where(WorkoutExercise.workout_id == workout.id)).all():
                    for ws in s.exec(select(WorkoutSet).where(WorkoutSet.workout_exercise_id == we.id)).all():
                        s.delete(ws)
                    s.delete(we)
                s.delete(workout)
            for model in _USER_TABLES:
                for row in s.exec(select(model).where(model.user_id == user_id)).all():
                    s.delete(row)
            s.commit()
        logger.info("Deleted local data for %s", user_id)
