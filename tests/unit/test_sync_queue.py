"""Tests for the durable sync queue."""
from datetime import datetime, timedelta

from sqlmodel import Session, select

from fitjourney.models.sync import SyncOperation, SyncQueueEntry, SyncTable
from fitjourney.sync.queue import SyncQueue

USER = "user-1"


class TestEnqueue:
    def test_enqueue_creates_pending_entry(self, engine):
        queue = SyncQueue(engine)
        entry = queue.enqueue(USER, SyncTable.WORKOUT, 7, SyncOperation.INSERT)
        assert entry.id is not None
        assert entry.row_id == "7"
        assert entry.synced is False
        assert queue.pending_count(USER) == 1

    def test_second_enqueue_collapses_to_latest_operation(self, engine):
        queue = SyncQueue(engine)
        first = queue.enqueue(USER, SyncTable.GOAL, 1, SyncOperation.INSERT)
        second = queue.enqueue(USER, SyncTable.GOAL, 1, SyncOperation.UPDATE)
        assert second.id == first.id
        assert second.operation == SyncOperation.UPDATE
        assert queue.pending_count(USER) == 1

    def test_collapse_keeps_queue_position(self, engine):
        queue = SyncQueue(engine)
        queue.enqueue(USER, SyncTable.WORKOUT, 1, SyncOperation.INSERT)
        queue.enqueue(USER, SyncTable.WORKOUT, 2, SyncOperation.INSERT)
        queue.enqueue(USER, SyncTable.WORKOUT, 1, SyncOperation.DELETE)
        drained = queue.drain(USER)
        assert [(e.row_id, e.operation) for e in drained] == [
            ("1", SyncOperation.DELETE),
            ("2", SyncOperation.INSERT),
        ]

    def test_collapse_resets_retry_bookkeeping(self, engine):
        queue = SyncQueue(engine)
        entry = queue.enqueue(USER, SyncTable.GOAL, 3, SyncOperation.UPDATE)
        queue.record_failure(entry, "boom")
        again = queue.enqueue(USER, SyncTable.GOAL, 3, SyncOperation.UPDATE)
        assert again.retry_count == 0
        assert again.last_error is None

    def test_synced_entry_is_not_reused(self, engine):
        queue = SyncQueue(engine)
        entry = queue.enqueue(USER, SyncTable.GOAL, 3, SyncOperation.INSERT)
        queue.mark_synced(entry)
        again = queue.enqueue(USER, SyncTable.GOAL, 3, SyncOperation.UPDATE)
        assert again.id != entry.id
        assert queue.pending_count(USER) == 1

    def test_enqueue_in_caller_session_is_rolled_back_with_it(self, engine):
        queue = SyncQueue(engine)
        with Session(engine) as s:
            queue.enqueue(USER, SyncTable.WORKOUT, 1, SyncOperation.INSERT, session=s)
            s.rollback()
        assert queue.pending_count(USER) == 0

    def test_enqueue_in_caller_session_commits_with_it(self, engine):
        queue = SyncQueue(engine)
        with Session(engine) as s:
            queue.enqueue(USER, SyncTable.WORKOUT, 1, SyncOperation.INSERT, session=s)
            s.commit()
        assert queue.pending_count(USER) == 1


class TestDrain:
    def test_drain_returns_insertion_order(self, engine):
        queue = SyncQueue(engine)
        for row_id in (5, 3, 9):
            queue.enqueue(USER, SyncTable.WORKOUT, row_id, SyncOperation.INSERT)
        assert [e.row_id for e in queue.drain(USER)] == ["5", "3", "9"]

    def test_drain_does_not_remove_entries(self, engine):
        queue = SyncQueue(engine)
        queue.enqueue(USER, SyncTable.WORKOUT, 1, SyncOperation.INSERT)
        queue.drain(USER)
        assert queue.pending_count(USER) == 1

    def test_drain_is_per_user(self, engine):
        queue = SyncQueue(engine)
        queue.enqueue(USER, SyncTable.WORKOUT, 1, SyncOperation.INSERT)
        queue.enqueue("someone-else", SyncTable.WORKOUT, 2, SyncOperation.INSERT)
        assert [e.row_id for e in queue.drain(USER)] == ["1"]

    def test_drain_skips_entries_over_retry_limit(self, engine):
        queue = SyncQueue(engine)
        entry = queue.enqueue(USER, SyncTable.WORKOUT, 1, SyncOperation.INSERT)
        for _ in range(3):
            queue.record_failure(entry, "down")
        assert queue.drain(USER, max_retries=2) == []
        assert len(queue.drain(USER, max_retries=3)) == 1

    def test_mark_synced_removes_from_pending(self, engine):
        queue = SyncQueue(engine)
        queue.enqueue(USER, SyncTable.WORKOUT, 1, SyncOperation.INSERT)
        for entry in queue.drain(USER):
            assert queue.mark_synced(entry) is True
        assert queue.pending_count(USER) == 0

    def test_mark_synced_keeps_entry_changed_during_push(self, engine):
        queue = SyncQueue(engine)
        queue.enqueue(USER, SyncTable.WORKOUT, 1, SyncOperation.INSERT)
        (drained,) = queue.drain(USER)
        # the row is edited again while its push is in flight
        with Session(engine) as s:
            db_entry = s.get(SyncQueueEntry, drained.id)
            db_entry.queued_at = drained.queued_at + timedelta(seconds=1)
            s.add(db_entry)
            s.commit()
        assert queue.mark_synced(drained) is False
        assert queue.pending_count(USER) == 1

    def test_record_failure_keeps_entry_pending(self, engine):
        queue = SyncQueue(engine)
        entry = queue.enqueue(USER, SyncTable.WORKOUT, 1, SyncOperation.INSERT)
        queue.record_failure(entry, "timeout")
        (pending,) = queue.entries(USER)
        assert pending.retry_count == 1
        assert pending.last_error == "timeout"


class TestMaintenance:
    def test_pending_count_filters_by_table(self, engine):
        queue = SyncQueue(engine)
        queue.enqueue(USER, SyncTable.WORKOUT, 1, SyncOperation.INSERT)
        queue.enqueue(USER, SyncTable.GOAL, 1, SyncOperation.INSERT)
        assert queue.pending_count(USER, SyncTable.GOAL) == 1
        assert queue.pending_count() == 2

    def test_clear_only_touches_one_user(self, engine):
        queue = SyncQueue(engine)
        queue.enqueue(USER, SyncTable.WORKOUT, 1, SyncOperation.INSERT)
        queue.enqueue("other", SyncTable.WORKOUT, 1, SyncOperation.INSERT)
        assert queue.clear(USER) == 1
        assert queue.pending_count() == 1

    def test_purge_synced_removes_only_old_synced_entries(self, engine):
        queue = SyncQueue(engine)
        old = queue.enqueue(USER, SyncTable.WORKOUT, 1, SyncOperation.INSERT)
        recent = queue.enqueue(USER, SyncTable.WORKOUT, 2, SyncOperation.INSERT)
        queue.enqueue(USER, SyncTable.WORKOUT, 3, SyncOperation.INSERT)
        queue.mark_synced(old)
        queue.mark_synced(recent)
        with Session(engine) as s:
            db_old = s.get(SyncQueueEntry, old.id)
            db_old.queued_at = datetime.utcnow() - timedelta(days=30)
            s.add(db_old)
            s.commit()

        assert queue.purge_synced(older_than_days=7) == 1
        with Session(engine) as s:
            remaining = {e.row_id for e in s.exec(select(SyncQueueEntry)).all()}
        assert remaining == {"2", "3"}

    def test_entries_can_include_synced(self, engine):
        queue = SyncQueue(engine)
        entry = queue.enqueue(USER, SyncTable.WORKOUT, 1, SyncOperation.INSERT)
        queue.mark_synced(entry)
        assert queue.entries(USER) == []
        assert len(queue.entries(USER, include_synced=True)) == 1
