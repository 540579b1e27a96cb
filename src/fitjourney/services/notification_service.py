"""In-app notifications. Local only; notifications are not synced."""
import logging
from typing import List, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from fitjourney.models.notification import Notification, NotificationType

logger = logging.getLogger(__name__)


class NotificationService:
    def __init__(self, engine):
        self.engine = engine

    def create(
        self,
        user_id: str,
        type: NotificationType,
        message: str,
        session: Optional[Session] = None,
    ) -> Notification:
        """Add a notification, inside ``session`` if the caller has one open."""
        notification = Notification(user_id=user_id, type=type, message=message)
        logger.info("Notification for %s: %s", user_id, message)
        if session is not None:
            session.add(notification)
            return notification
        with Session(self.engine) as s:
            s.add(notification)
            s.commit()
            s.refresh(notification)
        return notification

    def list(self, user_id: str, unread_only: bool = False, limit: int = 50) -> List[Notification]:
        with Session(self.engine) as s:
            stmt = select(Notification).where(Notification.user_id == user_id)
            if unread_only:
                stmt = stmt.where(Notification.is_read == False)  # noqa: E712
            stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc())
            return list(s.exec(stmt.limit(limit)).all())

    def unread_count(self, user_id: str) -> int:
        with Session(self.engine) as s:
            return s.exec(
                select(func.count()).select_from(Notification).where(
                    Notification.user_id == user_id,
                    Notification.is_read == False,  # noqa: E712
                )
            ).one()

    def mark_read(self, notification_id: int) -> None:
        with Session(self.engine) as s:
            notification = s.get(Notification, notification_id)
            if notification is None:
                return
            notification.is_read = True
            s.add(notification)
            s.commit()

    def mark_all_read(self, user_id: str) -> int:
        with Session(self.engine) as s:
            unread = s.exec(
                select(Notification).where(
                    Notification.user_id == user_id,
                    Notification.is_read == False,  # noqa: E712
                )
            ).all()
            for notification in unread:
                notification.is_read = True
                s.add(notification)
            s.commit()
            return len(unread)
