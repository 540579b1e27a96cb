"""
SyncEngine: drains the sync queue into the remote store, then pulls.

Flow for one sync:
  1. Guard: only one drain at a time; a second trigger raises
     SyncInProgressError instead of starting another drain
  2. Publish Syncing (lastAttempt = now), create SyncLog (status="running")
  3. Create daily logs for recent workout days that have none
  4. Push every pending queue entry, oldest first:
       INSERT/UPDATE -> upsert the row's payload under its id
       DELETE        -> delete the document (idempotent)
     A failing entry stays queued with retry_count + 1 and last_error; the
     drain carries on with the next entry
  5. Purge old synced entries, pull remote changes
  6. Publish Success (lastSuccess = now) or Failed (lastError = first error),
     update SyncLog, publish Idle

Every remote call is bounded by ``remote_timeout_seconds``; a timeout counts
as an ordinary per-entry failure and is retried on the next sync.

With nobody signed in a sync does nothing and reports "not logged in".
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlmodel import Session, select

from fitjourney.cloud.auth import NotLoggedInError
from fitjourney.config import get_settings
from fitjourney.dates import as_date
from fitjourney.db.engine import session_scope
from fitjourney.models.sync import SyncLog, SyncOperation, SyncQueueEntry, SyncTable
from fitjourney.models.tracking import DailyLog, Streak
from fitjourney.sync.payloads import build_payload, local_count, local_row_keys
from fitjourney.sync.pull import RemotePuller
from fitjourney.sync.status import StatusChannel, SyncState, SyncStatus

logger = logging.getLogger(__name__)

NOT_LOGGED_IN = "Not logged in"
SYNC_INTERRUPTED = "Sync interrupted"


class SyncInProgressError(RuntimeError):
    """Raised when a sync is triggered while another one is running."""


@dataclass
class SyncResult:
    success: bool
    pushed: int = 0
    failed: int = 0
    skipped: int = 0
    pulled: Dict[str, int] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    @property
    def error(self) -> Optional[str]:
        return self.errors[0] if self.errors else None


class SyncEngine:
    """Orchestrates local queue -> remote store sync for the signed-in user."""

    def __init__(
        self,
        engine,
        queue,
        store,
        auth,
        streaks=None,
        puller: Optional[RemotePuller] = None,
        channel: Optional[StatusChannel] = None,
        settings=None,
    ):
        """
        Args:
            engine: SQLAlchemy engine (SQLModel create_engine result).
            queue: SyncQueue.
            store: DocumentStore (FirestoreDocumentStore, or a fake in tests).
            auth: Anything with ``current_user_id()``; raises NotLoggedInError.
            streaks: StreakService, used to create missing daily logs.
            puller: RemotePuller; built from ``store`` when omitted.
            channel: StatusChannel that observers subscribe to.
            settings: Settings; defaults to get_settings().
        """
        self.engine = engine
        self.queue = queue
        self.store = store
        self.auth = auth
        self.streaks = streaks
        self.settings = settings or get_settings()
        self.puller = puller or RemotePuller(store, engine, timeout=self.settings.remote_timeout_seconds)
        self.channel = channel or StatusChannel()
        self._running = False

    # ── Status ────────────────────────────────────────────────────────────────

    @property
    def status(self) -> SyncStatus:
        return self.channel.latest

    def _publish(self, **changes) -> SyncStatus:
        status = self.status.evolve(**changes)
        self.channel.publish(status)
        logger.info("Sync state -> %s", status.state.value)
        return status

    def _claim(self) -> None:
        # check-and-set with no await in between: atomic on the event loop
        if self._running:
            raise SyncInProgressError("A sync is already in progress")
        self._running = True
        self._publish(state=SyncState.SYNCING, last_attempt=datetime.utcnow())

    def _release(self) -> None:
        self._running = False
        if self.status.is_in_progress:
            # interrupted before an outcome was published (error or cancellation)
            logger.error("Sync interrupted before it finished")
            self._publish(state=SyncState.FAILED, last_error=SYNC_INTERRUPTED)
            self._publish(state=SyncState.IDLE)

    @asynccontextmanager
    async def _exclusive(self):
        self._claim()
        try:
            yield
        finally:
            self._release()

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _user_id(self) -> str:
        return self.auth.current_user_id()

    async def _remote(self, coro):
        return await asyncio.wait_for(coro, timeout=self.settings.remote_timeout_seconds)

    def _create_sync_log(self, user_id: str, trigger: str) -> SyncLog:
        log = SyncLog(user_id=user_id, trigger=trigger, started_at=datetime.utcnow(), status="running")
        with Session(self.engine) as s:
            s.add(log)
            s.commit()
            s.refresh(log)
        return log

    def _finish_sync_log(self, log: SyncLog, *, status: str, result: SyncResult) -> None:
        with Session(self.engine) as s:
            db_log = s.get(SyncLog, log.id)
            db_log.status = status
            db_log.finished_at = datetime.utcnow()
            db_log.entries_pushed = result.pushed
            db_log.entries_failed = result.failed
            db_log.error_message = result.error
            s.add(db_log)
            s.commit()

    # ── Public operations ─────────────────────────────────────────────────────

    def queue_for_sync(self, table: SyncTable, row_id, operation: SyncOperation) -> SyncQueueEntry:
        """Enqueue a change for the signed-in user.

        Raises:
            NotLoggedInError: if nobody is signed in.
        """
        return self.queue.enqueue(self._user_id(), table, row_id, operation)

    async def trigger_manual_sync(self, force_resync: bool = False) -> SyncResult:
        """Run one sync now.

        Args:
            force_resync: Re-enqueue the streak and every daily log first.

        Raises:
            SyncInProgressError: if a sync is already running.
        """
        return await self._sync("manual", force_resync=force_resync)

    async def sync_all(self, trigger: str = "scheduled") -> SyncResult:
        """Run one sync (used by the scheduler).

        Raises:
            SyncInProgressError: if a sync is already running.
        """
        return await self._sync(trigger)

    async def _sync(self, trigger: str, force_resync: bool = False) -> SyncResult:
        try:
            user_id = self._user_id()
        except NotLoggedInError:
            logger.warning("Sync skipped: nobody is signed in")
            self._publish(last_attempt=datetime.utcnow(), last_error=NOT_LOGGED_IN)
            return SyncResult(success=False, errors=[NOT_LOGGED_IN])

        async with self._exclusive():
            return await self._run(user_id, trigger, force_resync)

    def claim_manual_sync(self) -> None:
        """Reserve the sync slot now for a manual sync that runs later.

        The caller must follow up with run_claimed_manual_sync(), which
        releases the slot when it finishes.

        Raises:
            NotLoggedInError: if nobody is signed in.
            SyncInProgressError: if a sync is already running.
        """
        self._user_id()
        self._claim()

    async def run_claimed_manual_sync(self, force_resync: bool = False) -> SyncResult:
        """Run the manual sync reserved by claim_manual_sync()."""
        try:
            return await self._run(self._user_id(), "manual", force_resync)
        finally:
            self._release()

    async def _run(self, user_id: str, trigger: str, force_resync: bool) -> SyncResult:
        if force_resync:
            try:
                await self._force_streak(user_id)
                self._force_daily_logs(user_id)
            except Exception as exc:
                logger.error("Re-enqueueing streak/daily logs failed: %s", exc)
        return await self._drain_and_pull(user_id, trigger)

    async def _drain_and_pull(self, user_id: str, trigger: str) -> SyncResult:
        log = None
        result = SyncResult(success=False)
        since = self.status.last_success
        try:
            log = self._create_sync_log(user_id, trigger)
            if self.streaks is not None:
                self.streaks.ensure_daily_logs(user_id, lookback_days=self.settings.daily_log_lookback_days)

            await self._push(user_id, result)
            self.queue.purge_synced(self.settings.queue_retention_days)

            if since is not None:
                since = since - timedelta(minutes=self.settings.pull_overlap_minutes)
            pull = await self.puller.pull(user_id, since=since)
            result.pulled = pull.applied
            result.errors.extend(pull.errors)
        except Exception as exc:
            result.errors.insert(0, str(exc))
            if log is not None:
                self._finish_sync_log(log, status="failed", result=result)
            self._publish(state=SyncState.FAILED, last_error=str(exc))
            self._publish(state=SyncState.IDLE)
            raise

        result.success = not result.errors
        if result.success:
            self._finish_sync_log(log, status="success", result=result)
            self._publish(state=SyncState.SUCCESS, last_success=datetime.utcnow(), last_error=None)
        else:
            self._finish_sync_log(log, status="failed", result=result)
            self._publish(state=SyncState.FAILED, last_error=result.error)
        self._publish(state=SyncState.IDLE)
        logger.info(
            "Sync for %s finished: %d pushed, %d failed, %d skipped",
            user_id, result.pushed, result.failed, result.skipped,
        )
        return result

    async def _push(self, user_id: str, result: SyncResult) -> None:
        entries = self.queue.drain(user_id, max_retries=self.settings.max_retries)
        result.skipped = self.queue.pending_count(user_id) - len(entries)
        if result.skipped:
            logger.warning("Skipping %d entries that exceeded %d retries", result.skipped, self.settings.max_retries)

        for entry in entries:
            try:
                await self._push_entry(user_id, entry)
            except asyncio.TimeoutError:
                error = f"timed out after {self.settings.remote_timeout_seconds}s"
            except Exception as exc:
                error = str(exc) or type(exc).__name__
            else:
                self.queue.mark_synced(entry)
                result.pushed += 1
                continue
            logger.error(
                "Pushing %s %s/%s failed: %s",
                entry.operation.value, entry.table_name.value, entry.row_id, error,
            )
            self.queue.record_failure(entry, error)
            result.failed += 1
            result.errors.append(f"{entry.table_name.value}/{entry.row_id}: {error}")

    async def _push_entry(self, user_id: str, entry: SyncQueueEntry) -> None:
        collection = entry.table_name.collection
        if entry.operation == SyncOperation.DELETE:
            await self._remote(self.store.delete_document(user_id, collection, entry.row_id))
            return

        with Session(self.engine) as s:
            payload = build_payload(s, user_id, entry.table_name, entry.row_id)
        if payload is None:
            # deleted locally since; its DELETE entry carries the remote effect
            logger.info("%s/%s no longer exists locally, marking synced", collection, entry.row_id)
            return
        await self._remote(self.store.set_document(user_id, collection, entry.row_id, payload))

    # ── Administrative re-enqueueing ──────────────────────────────────────────

    async def force_add_streak_to_sync_queue(self) -> str:
        """Re-enqueue the streak, unless the remote one should win.

        A local streak of 0 never overwrites a higher remote streak (e.g. on
        a fresh install); the remote value is imported instead.

        Returns:
            "imported", "queued" or "none" (no streak anywhere).
        """
        return await self._force_streak(self._user_id())

    async def _force_streak(self, user_id: str) -> str:
        remote = await self._remote(
            self.store.get_document(user_id, SyncTable.STREAK.value, user_id)
        )
        remote_current = int((remote or {}).get("current_streak") or 0)
        with session_scope(self.engine) as s:
            local = s.exec(select(Streak).where(Streak.user_id == user_id)).first()
            if local is None and remote is None:
                return "none"
            if local is None or (local.current_streak == 0 and remote_current > 0):
                local = local or Streak(user_id=user_id)
                local.current_streak = remote_current
                local.longest_streak = max(local.longest_streak, int(remote.get("longest_streak") or 0))
                local.last_activity_date = as_date(remote.get("last_activity_date"))
                local.last_workout_date = as_date(remote.get("last_workout_date"))
                local.updated_at = datetime.utcnow()
                s.add(local)
                logger.info("Imported remote streak (%d days) for %s", remote_current, user_id)
                return "imported"
            self.queue.enqueue(user_id, SyncTable.STREAK, user_id, SyncOperation.UPDATE, session=s)
            return "queued"

    def force_add_daily_logs_to_sync_queue(self) -> int:
        """Re-enqueue every daily log of the signed-in user."""
        return self._force_daily_logs(self._user_id())

    def _force_daily_logs(self, user_id: str) -> int:
        with session_scope(self.engine) as s:
            ids = s.exec(select(DailyLog.id).where(DailyLog.user_id == user_id)).all()
            for log_id in ids:
                self.queue.enqueue(user_id, SyncTable.DAILY_LOG, log_id, SyncOperation.UPDATE, session=s)
        logger.info("Re-enqueued %d daily logs for %s", len(ids), user_id)
        return len(ids)

    async def force_add_to_sync_queue(self, kind: SyncTable) -> int:
        """Re-enqueue every local row of one table, bypassing change tracking.

        Returns:
            Number of rows enqueued.
        """
        user_id = self._user_id()
        if kind == SyncTable.STREAK:
            return 1 if await self._force_streak(user_id) == "queued" else 0
        if kind == SyncTable.DAILY_LOG:
            return self._force_daily_logs(user_id)
        return self._enqueue_all(user_id, [kind], SyncOperation.UPDATE)

    def _enqueue_all(self, user_id: str, tables, operation: SyncOperation) -> int:
        count = 0
        with session_scope(self.engine) as s:
            for table in tables:
                for key in local_row_keys(s, user_id, table):
                    self.queue.enqueue(user_id, table, key, operation, session=s)
                    count += 1
        return count

    # ── Cloud reset ───────────────────────────────────────────────────────────

    async def reset_cloud_data(self) -> SyncResult:
        """Replace the remote copy with the local one.

        Deletes every remote collection in bounded batches, clears the queue,
        re-enqueues every local row and syncs.

        Raises:
            NotLoggedInError: if nobody is signed in.
            SyncInProgressError: if a sync is already running.
        """
        user_id = self._user_id()
        async with self._exclusive():
            try:
                for table in SyncTable:
                    deleted = await self.store.delete_collection(
                        user_id, table.collection, batch_size=self.settings.delete_batch_size
                    )
                    logger.info("Reset: deleted %d remote %s documents", deleted, table.collection)
                self.queue.clear(user_id)
                queued = self._enqueue_all(user_id, list(SyncTable), SyncOperation.INSERT)
                logger.info("Reset: re-enqueued %d local rows for %s", queued, user_id)
            except Exception as exc:
                logger.error("Cloud reset failed: %s", exc)
                self._publish(state=SyncState.FAILED, last_error=str(exc))
                self._publish(state=SyncState.IDLE)
                raise
            return await self._drain_and_pull(user_id, "reset")

    # ── Diagnostics ───────────────────────────────────────────────────────────

    async def stats(self) -> Dict[str, Any]:
        """Local vs remote counts per table, pending entries and status."""
        user_id = self._user_id()
        tables: Dict[str, Dict[str, Optional[int]]] = {}
        with Session(self.engine) as s:
            for table in SyncTable:
                tables[table.value] = {"local": local_count(s, user_id, table), "remote": None}
        for table in SyncTable:
            try:
                tables[table.value]["remote"] = await self._remote(
                    self.store.count_documents(user_id, table.collection)
                )
            except Exception as exc:
                logger.warning("Counting remote %s failed: %s", table.value, exc)
        return {
            "user_id": user_id,
            "tables": tables,
            "pending": self.queue.pending_count(user_id),
            "status": self.status.to_dict(),
        }

    def history(self, limit: int = 20) -> List[SyncLog]:
        with Session(self.engine) as s:
            return list(s.exec(
                select(SyncLog).order_by(SyncLog.started_at.desc(), SyncLog.id.desc()).limit(limit)
            ).all())
