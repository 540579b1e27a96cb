"""Sync queue and sync audit log models."""
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel


class SyncOperation(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class SyncTable(str, Enum):
    """Local tables mirrored to per-user remote collections.

    Each collection is named after its table, except the ``users`` row which
    lives in the ``profile`` collection.
    """

    USERS = "users"
    WORKOUT = "workout"
    GOAL = "goal"
    USER_METRICS = "user_metrics"
    DAILY_LOG = "daily_log"
    STREAK = "streak"

    @property
    def collection(self) -> str:
        if self is SyncTable.USERS:
            return "profile"
        return self.value


class SyncQueueEntry(SQLModel, table=True):
    """A pending local -> remote change for one row."""

    __tablename__ = "sync_queue"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    table_name: SyncTable = Field(index=True)
    row_id: str
    operation: SyncOperation
    queued_at: datetime = Field(default_factory=datetime.utcnow)
    retry_count: int = 0
    last_error: Optional[str] = None
    synced: bool = Field(default=False, index=True)
    synced_at: Optional[datetime] = None


class SyncLog(SQLModel, table=True):
    """Records each drain attempt for audit and debugging."""

    __tablename__ = "sync_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: Optional[str] = None
    trigger: str = "manual"  # "manual", "scheduled", "reset"
    started_at: datetime = Field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None
    status: str = "running"  # "running", "success", "failed"
    entries_pushed: int = 0
    entries_failed: int = 0
    error_message: Optional[str] = None
