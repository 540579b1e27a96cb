"""SQLModel engine singleton and the shared session scope."""
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlmodel import Session, SQLModel, create_engine

from fitjourney.config import get_settings

_engine = None


def import_models() -> None:
    """Import every table model so SQLModel.metadata is complete."""
    from fitjourney.models.workout import Exercise, Workout, WorkoutExercise, WorkoutSet  # noqa
    from fitjourney.models.goal import Goal  # noqa
    from fitjourney.models.tracking import DailyLog, Streak, UserMetric  # noqa
    from fitjourney.models.notification import Milestone, Notification  # noqa
    from fitjourney.models.sync import SyncLog, SyncQueueEntry  # noqa
    from fitjourney.models.user import User  # noqa


def get_engine():
    """Return the module-level engine, creating it on first call."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine(
            settings.database_url,
            connect_args={"check_same_thread": False},  # SQLite only; safe for FastAPI
        )
        import_models()
        SQLModel.metadata.create_all(_engine)
        from fitjourney.db.migrations import run_migrations
        run_migrations(_engine)
    return _engine


@contextmanager
def session_scope(engine, session: Optional[Session] = None) -> Iterator[Session]:
    """Yield ``session`` if the caller already has one, else a fresh one.

    A fresh session is committed on success and keeps its objects loaded
    after the commit. A borrowed one is left for its owner to commit, so a
    mutation and its queue entry land together.
    """
    if session is not None:
        yield session
        return
    with Session(engine, expire_on_commit=False) as s:
        yield s
        s.commit()
