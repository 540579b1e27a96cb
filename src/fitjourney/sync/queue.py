"""
Durable queue of pending local -> remote changes, stored in ``sync_queue``.

Enqueue policy: one unsynced entry per (user, table, row). Enqueueing a row
that already has an unsynced entry replaces that entry's operation with the
new one and resets its retry bookkeeping; the entry keeps its id, so drain
order stays the order in which rows were first touched. The remote writes
are upserts and idempotent deletes, so the latest operation is all the
engine needs.

Entries are never removed by drain(); the engine marks each one synced after
its remote write succeeds. Synced entries are purged after a retention
period.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from fitjourney.models.sync import SyncOperation, SyncQueueEntry, SyncTable

logger = logging.getLogger(__name__)


class SyncQueue:
    """Sync queue backed by the local SQLite store."""

    def __init__(self, engine):
        self.engine = engine

    def enqueue(
        self,
        user_id: str,
        table: SyncTable,
        row_id,
        operation: SyncOperation,
        session: Optional[Session] = None,
    ) -> SyncQueueEntry:
        """Record a pending change for one row.

        Args:
            user_id: Owner of the row.
            table: Local table the row lives in.
            row_id: Row identity; stored as a string (remote document id).
            operation: INSERT, UPDATE or DELETE.
            session: When given, the entry is added to this session and the
                caller commits it together with the local mutation. Without
                it the entry is committed immediately.

        Returns:
            The new or collapsed queue entry.
        """
        if session is not None:
            return self._enqueue(session, user_id, table, str(row_id), operation)
        with Session(self.engine) as s:
            entry = self._enqueue(s, user_id, table, str(row_id), operation)
            s.commit()
            s.refresh(entry)
            return entry

    def _enqueue(
        self,
        s: Session,
        user_id: str,
        table: SyncTable,
        row_id: str,
        operation: SyncOperation,
    ) -> SyncQueueEntry:
        entry = s.exec(
            select(SyncQueueEntry).where(
                SyncQueueEntry.user_id == user_id,
                SyncQueueEntry.table_name == table,
                SyncQueueEntry.row_id == row_id,
                SyncQueueEntry.synced == False,  # noqa: E712
            )
        ).first()
        if entry is None:
            entry = SyncQueueEntry(
                user_id=user_id, table_name=table, row_id=row_id, operation=operation
            )
        else:
            logger.debug(
                "Collapsing %s %s/%s into pending %s",
                operation.value, table.value, row_id, entry.operation.value,
            )
            entry.operation = operation
            entry.queued_at = datetime.utcnow()
            entry.retry_count = 0
            entry.last_error = None
        s.add(entry)
        s.flush()
        return entry

    def pending_count(self, user_id: Optional[str] = None, table: Optional[SyncTable] = None) -> int:
        """Number of entries not yet marked synced."""
        with Session(self.engine) as s:
            stmt = select(func.count()).select_from(SyncQueueEntry).where(
                SyncQueueEntry.synced == False  # noqa: E712
            )
            if user_id is not None:
                stmt = stmt.where(SyncQueueEntry.user_id == user_id)
            if table is not None:
                stmt = stmt.where(SyncQueueEntry.table_name == table)
            return s.exec(stmt).one()

    def drain(self, user_id: str, max_retries: Optional[int] = None) -> List[SyncQueueEntry]:
        """Return the user's unsynced entries in insertion order.

        Entries that already failed more than ``max_retries`` times are left
        out; they stay in the queue until a reset clears it.
        """
        with Session(self.engine) as s:
            stmt = select(SyncQueueEntry).where(
                SyncQueueEntry.user_id == user_id,
                SyncQueueEntry.synced == False,  # noqa: E712
            )
            if max_retries is not None:
                stmt = stmt.where(SyncQueueEntry.retry_count <= max_retries)
            return list(s.exec(stmt.order_by(SyncQueueEntry.id)).all())

    def entries(
        self, user_id: str, include_synced: bool = False, limit: int = 100
    ) -> List[SyncQueueEntry]:
        """Queue contents for diagnostics, oldest first."""
        with Session(self.engine) as s:
            stmt = select(SyncQueueEntry).where(SyncQueueEntry.user_id == user_id)
            if not include_synced:
                stmt = stmt.where(SyncQueueEntry.synced == False)  # noqa: E712
            return list(s.exec(stmt.order_by(SyncQueueEntry.id).limit(limit)).all())

    def mark_synced(self, entry: SyncQueueEntry) -> bool:
        """Mark a drained entry synced.

        Returns False (entry left pending) if the row was enqueued again
        after ``entry`` was drained.
        """
        with Session(self.engine) as s:
            db_entry = s.get(SyncQueueEntry, entry.id)
            if db_entry is None:
                return False
            if db_entry.queued_at != entry.queued_at:
                logger.debug("%s/%s changed during push, keeping it queued", entry.table_name.value, entry.row_id)
                return False
            db_entry.synced = True
            db_entry.synced_at = datetime.utcnow()
            db_entry.last_error = None
            s.add(db_entry)
            s.commit()
        return True

    def record_failure(self, entry: SyncQueueEntry, error: str) -> None:
        """Keep the entry pending and note the failure."""
        with Session(self.engine) as s:
            db_entry = s.get(SyncQueueEntry, entry.id)
            if db_entry is None:
                return
            db_entry.retry_count += 1
            db_entry.last_error = error
            s.add(db_entry)
            s.commit()

    def clear(self, user_id: Optional[str] = None) -> int:
        """Delete queue entries (all, or one user's). Returns rows deleted."""
        with Session(self.engine) as s:
            stmt = select(SyncQueueEntry)
            if user_id is not None:
                stmt = stmt.where(SyncQueueEntry.user_id == user_id)
            entries = s.exec(stmt).all()
            for entry in entries:
                s.delete(entry)
            s.commit()
            return len(entries)

    def purge_synced(self, older_than_days: int = 7) -> int:
        """Delete synced entries older than the retention period."""
        cutoff = datetime.utcnow() - timedelta(days=older_than_days)
        with Session(self.engine) as s:
            entries = s.exec(
                select(SyncQueueEntry).where(
                    SyncQueueEntry.synced == True,  # noqa: E712
                    SyncQueueEntry.queued_at < cutoff,
                )
            ).all()
            for entry in entries:
                s.delete(entry)
            s.commit()
        if entries:
            logger.info("Purged %d synced queue entries", len(entries))
        return len(entries)
