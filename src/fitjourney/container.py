"""
Service wiring.

Everything is built once at process start by build_services() and passed to
the scheduler, the API and the CLI. Nothing is looked up through module
globals, so tests can assemble the same graph around an in-memory engine
and a fake DocumentStore.
"""
from dataclasses import dataclass
from typing import Optional

from fitjourney.cloud.auth import FirebaseAuth
from fitjourney.cloud.firestore import FirestoreDocumentStore
from fitjourney.cloud.store import DocumentStore
from fitjourney.config import Settings, get_settings
from fitjourney.services.account_service import AccountService
from fitjourney.services.goal_service import GoalService
from fitjourney.services.notification_service import NotificationService
from fitjourney.services.profile_service import ProfileService
from fitjourney.services.progress_service import ProgressService
from fitjourney.services.streak_service import StreakService
from fitjourney.services.workout_service import WorkoutService
from fitjourney.sync.engine import SyncEngine
from fitjourney.sync.queue import SyncQueue


@dataclass
class Services:
    settings: Settings
    engine: object
    auth: object
    store: DocumentStore
    queue: SyncQueue
    notifications: NotificationService
    streaks: StreakService
    goals: GoalService
    workouts: WorkoutService
    profiles: ProfileService
    progress: ProgressService
    sync: SyncEngine
    accounts: AccountService

    def current_user_id(self) -> str:
        return self.auth.current_user_id()

    async def close(self) -> None:
        await self.store.close()


def build_services(
    engine=None,
    store: Optional[DocumentStore] = None,
    auth=None,
    settings: Optional[Settings] = None,
) -> Services:
    """Assemble the service graph; any piece can be swapped in for tests."""
    settings = settings or get_settings()
    if engine is None:
        from fitjourney.db.engine import get_engine
        engine = get_engine()
    auth = auth or FirebaseAuth(settings.firebase_api_key, settings.session_dir)
    store = store or FirestoreDocumentStore(
        settings.firebase_project_id, auth, timeout=settings.remote_timeout_seconds
    )

    queue = SyncQueue(engine)
    notifications = NotificationService(engine)
    streaks = StreakService(engine, queue, notifications)
    goals = GoalService(engine, queue, notifications)
    workouts = WorkoutService(engine, queue, streaks=streaks, goals=goals)
    profiles = ProfileService(engine, queue)
    progress = ProgressService(engine, streaks=streaks)
    sync = SyncEngine(engine, queue, store, auth, streaks=streaks, settings=settings)
    accounts = AccountService(engine, store, auth, settings=settings)

    return Services(
        settings=settings,
        engine=engine,
        auth=auth,
        store=store,
        queue=queue,
        notifications=notifications,
        streaks=streaks,
        goals=goals,
        workouts=workouts,
        profiles=profiles,
        progress=progress,
        sync=sync,
        accounts=accounts,
    )
