"""
User profile.

The ``users`` row is keyed by the uid and syncs to the ``profile`` remote
collection under the same id. Every change is enqueued in the session that
makes it.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlmodel import Session

from fitjourney.db.engine import session_scope
from fitjourney.models.sync import SyncOperation, SyncTable
from fitjourney.models.user import User

logger = logging.getLogger(__name__)

_EDITABLE = ("first_name", "last_name", "height_cm")


class ProfileService:
    def __init__(self, engine, queue):
        self.engine = engine
        self.queue = queue

    def get_profile(self, user_id: str) -> Optional[User]:
        with Session(self.engine) as s:
            return s.get(User, user_id)

    def save_profile(self, user_id: str, **changes) -> User:
        """Create or update the profile and enqueue it.

        Args:
            user_id: Signed-in user.
            **changes: Any of first_name, last_name, height_cm.

        Raises:
            ValueError: for an unknown field or a non-positive height.
        """
        unknown = set(changes) - set(_EDITABLE)
        if unknown:
            raise ValueError(f"unknown profile fields: {', '.join(sorted(unknown))}")
        height = changes.get("height_cm")
        if height is not None and height <= 0:
            raise ValueError("height_cm must be positive")

        with session_scope(self.engine) as s:
            user = s.get(User, user_id)
            operation = SyncOperation.UPDATE
            if user is None:
                user = User(user_id=user_id)
                operation = SyncOperation.INSERT
            for key, value in changes.items():
                setattr(user, key, value)
            user.updated_at = datetime.utcnow()
            s.add(user)
            self.queue.enqueue(user_id, SyncTable.USERS, user_id, operation, session=s)
        logger.info("Saved profile for %s", user_id)
        return user

    def record_login(self, user_id: str, when: Optional[datetime] = None) -> User:
        """Stamp last_login, creating the profile on the first sign-in."""
        with session_scope(self.engine) as s:
            user = s.get(User, user_id)
            operation = SyncOperation.UPDATE
            if user is None:
                user = User(user_id=user_id)
                operation = SyncOperation.INSERT
            user.last_login = when or datetime.utcnow()
            user.updated_at = datetime.utcnow()
            s.add(user)
            self.queue.enqueue(user_id, SyncTable.USERS, user_id, operation, session=s)
        return user
