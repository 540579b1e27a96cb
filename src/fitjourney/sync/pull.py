"""
Incoming sync: apply remote documents to the local store.

Runs after the outgoing push. Rows written here are NOT enqueued, otherwise
every pull would bounce straight back to the remote store.

  profile                       the user's profile document is upserted into
                                the local ``users`` row
  workout, goal, user_metrics   documents with last_updated after ``since``
                                (all of them on a first sync) are upserted by
                                id; a workout's nested exercises and sets
                                replace the local children
  streak                        highest wins: max current/longest counters,
                                latest activity/workout dates; the remote copy
                                is rewritten when it was behind
  daily_log                     every remote log is upserted (one per date)

A document whose row still has an unsynced queue entry is left alone: the
pending local change wins and reaches the remote store on a later push.

A document that cannot be applied is logged and skipped; the pull carries on
with the rest and reports the errors it saw.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Set

from sqlmodel import Session, select

from fitjourney.cloud.store import DocumentStore, RemoteDocument
from fitjourney.dates import as_date, parse_iso
from fitjourney.models.goal import Goal, GoalKind, GoalStatus
from fitjourney.models.sync import SyncQueueEntry, SyncTable
from fitjourney.models.tracking import DailyLog, DayActivity, Streak, UserMetric
from fitjourney.models.user import User
from fitjourney.models.workout import Workout, WorkoutExercise, WorkoutSet
from fitjourney.sync.payloads import streak_payload

logger = logging.getLogger(__name__)


@dataclass
class PullResult:
    applied: Dict[str, int] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class RemotePuller:
    """Pulls one user's remote collections into the local store."""

    def __init__(self, store: DocumentStore, engine, timeout: float = 30.0):
        self.store = store
        self.engine = engine
        self.timeout = timeout

    async def pull(self, user_id: str, since: Optional[datetime] = None) -> PullResult:
        """
        Apply remote changes for ``user_id``.

        Args:
            user_id: Signed-in user.
            since: Only documents updated after this are fetched for the
                incremental collections. None fetches everything.
        """
        result = PullResult()
        try:
            if await self._merge_profile(user_id):
                result.applied[SyncTable.USERS.value] = 1
        except Exception as exc:
            logger.error("Profile pull failed for %s: %s", user_id, exc)
            result.errors.append(f"profile: {exc}")

        incremental = (
            (SyncTable.WORKOUT, self._apply_workout),
            (SyncTable.GOAL, self._apply_goal),
            (SyncTable.USER_METRICS, self._apply_metric),
        )
        for table, apply in incremental:
            await self._pull_collection(result, user_id, table, apply, since)

        try:
            if await self._merge_streak(user_id):
                result.applied[SyncTable.STREAK.value] = 1
        except Exception as exc:
            logger.error("Streak pull failed for %s: %s", user_id, exc)
            result.errors.append(f"streak: {exc}")

        await self._pull_collection(result, user_id, SyncTable.DAILY_LOG, self._apply_daily_log, None)
        logger.info("Pull for %s applied %s (%d errors)", user_id, result.applied, len(result.errors))
        return result

    async def _remote(self, coro):
        return await asyncio.wait_for(coro, timeout=self.timeout)

    async def _pull_collection(
        self, result: PullResult, user_id: str, table: SyncTable, apply, since
    ) -> None:
        try:
            docs = await self._remote(
                self.store.list_documents(user_id, table.collection, updated_since=since)
            )
        except Exception as exc:
            logger.error("Listing remote %s failed: %s", table.value, exc)
            result.errors.append(f"{table.value}: {exc}")
            return

        pending = self._pending_row_ids(user_id, table)
        applied = 0
        for doc in docs:
            if doc.id in pending:
                logger.debug("Keeping pending local change for %s/%s", table.value, doc.id)
                continue
            try:
                with Session(self.engine) as s:
                    if apply(s, user_id, doc) is False:
                        continue
                    s.commit()
                applied += 1
            except Exception as exc:
                logger.warning("Skipping remote %s/%s: %s", table.value, doc.id, exc)
                result.errors.append(f"{table.value}/{doc.id}: {exc}")
        result.applied[table.value] = applied

    def _pending_row_ids(self, user_id: str, table: SyncTable) -> Set[str]:
        with Session(self.engine) as s:
            return set(s.exec(
                select(SyncQueueEntry.row_id).where(
                    SyncQueueEntry.user_id == user_id,
                    SyncQueueEntry.table_name == table,
                    SyncQueueEntry.synced == False,  # noqa: E712
                )
            ).all())

    # ── Per-table upserts ─────────────────────────────────────────────────────

    def _apply_workout(self, s: Session, user_id: str, doc: RemoteDocument) -> None:
        data = doc.data
        workout_id = int(doc.id)
        workout = s.get(Workout, workout_id)
        if workout is None:
            workout = Workout(id=workout_id, user_id=user_id, date=parse_iso(data.get("date")) or datetime.utcnow())
        else:
            workout.date = parse_iso(data.get("date")) or workout.date
        workout.duration_minutes = data.get("duration_minutes")
        workout.notes = data.get("notes")
        workout.updated_at = datetime.utcnow()
        s.add(workout)
        s.flush()

        if data.get("exercises") is None:
            return
        # Replace children so stale exercises/sets are never left behind
        for we in s.exec(select(WorkoutExercise).where(WorkoutExercise.workout_id == workout_id)).all():
            for ws in s.exec(select(WorkoutSet).where(WorkoutSet.workout_exercise_id == we.id)).all():
                s.delete(ws)
            s.delete(we)
        s.flush()
        for ex in data["exercises"]:
            we = WorkoutExercise(workout_id=workout_id, exercise_id=int(ex["exercise_id"]))
            s.add(we)
            s.flush()
            for st in ex.get("sets") or []:
                s.add(WorkoutSet(
                    workout_exercise_id=we.id,
                    set_number=int(st.get("set_number", 1)),
                    reps=st.get("reps"),
                    weight_kg=st.get("weight_kg"),
                ))

    def _apply_goal(self, s: Session, user_id: str, doc: RemoteDocument) -> None:
        data = doc.data
        fields: Dict[str, Any] = {
            "kind": GoalKind(data["type"]),
            "exercise_id": data.get("exercise_id"),
            "target_value": float(data["target_value"]),
            "starting_weight": data.get("starting_weight"),
            "start_date": parse_iso(data["start_date"]),
            "end_date": parse_iso(data["end_date"]),
            "status": GoalStatus(data.get("status") or GoalStatus.ACTIVE.value),
            "current_progress": float(data.get("current_progress") or 0.0),
            "achieved_date": parse_iso(data.get("achieved_date")),
            "updated_at": datetime.utcnow(),
        }
        goal = s.get(Goal, int(doc.id))
        if goal is None:
            goal = Goal(id=int(doc.id), user_id=user_id, **fields)
        else:
            for key, value in fields.items():
                setattr(goal, key, value)
        s.add(goal)

    def _apply_metric(self, s: Session, user_id: str, doc: RemoteDocument) -> None:
        data = doc.data
        metric = s.get(UserMetric, int(doc.id))
        if metric is None:
            metric = UserMetric(id=int(doc.id), user_id=user_id, weight_kg=float(data["weight_kg"]))
        metric.weight_kg = float(data["weight_kg"])
        metric.measured_at = parse_iso(data.get("measured_at")) or metric.measured_at
        metric.updated_at = datetime.utcnow()
        s.add(metric)

    def _apply_daily_log(self, s: Session, user_id: str, doc: RemoteDocument) -> Optional[bool]:
        data = doc.data
        log_date = as_date(data["date"])
        log = s.get(DailyLog, int(doc.id))
        if log is None:
            # a log for that day may already exist locally under another id
            log = s.exec(
                select(DailyLog).where(DailyLog.user_id == user_id, DailyLog.log_date == log_date)
            ).first()
            if log is not None and _is_pending(s, user_id, SyncTable.DAILY_LOG, log.id):
                logger.debug("Keeping pending local daily log for %s", log_date)
                return False
        if log is None:
            log = DailyLog(id=int(doc.id), user_id=user_id, log_date=log_date)
        log.log_date = log_date
        log.activity_type = DayActivity(data.get("activity_type") or DayActivity.WORKOUT.value)
        log.notes = data.get("notes")
        log.updated_at = datetime.utcnow()
        s.add(log)

    async def _merge_profile(self, user_id: str) -> bool:
        """Upsert the remote profile locally. Returns True if it was applied."""
        remote = await self._remote(
            self.store.get_document(user_id, SyncTable.USERS.collection, user_id)
        )
        if remote is None:
            return False

        with Session(self.engine) as s:
            if _is_pending(s, user_id, SyncTable.USERS, user_id):
                logger.debug("Keeping pending local profile for %s", user_id)
                return False
            user = s.get(User, user_id)
            if user is None:
                user = User(user_id=user_id)
            user.first_name = remote.get("first_name")
            user.last_name = remote.get("last_name")
            height = remote.get("height_cm")
            user.height_cm = float(height) if height is not None else None
            user.registration_date = parse_iso(remote.get("registration_date")) or user.registration_date
            user.last_login = parse_iso(remote.get("last_login")) or user.last_login
            user.updated_at = datetime.utcnow()
            s.add(user)
            s.commit()
        logger.info("Pulled profile for %s", user_id)
        return True

    async def _merge_streak(self, user_id: str) -> bool:
        """Highest-wins streak merge. Returns True if anything changed."""
        remote = await self._remote(
            self.store.get_document(user_id, SyncTable.STREAK.value, user_id)
        )
        if remote is None:
            return False

        remote_current = int(remote.get("current_streak") or 0)
        remote_longest = int(remote.get("longest_streak") or 0)
        remote_activity = as_date(remote.get("last_activity_date"))
        remote_workout = as_date(remote.get("last_workout_date"))

        with Session(self.engine) as s:
            local = s.exec(select(Streak).where(Streak.user_id == user_id)).first()
            if local is None:
                logger.info("No local streak for %s, importing remote (%d days)", user_id, remote_current)
                s.add(Streak(
                    user_id=user_id,
                    current_streak=remote_current,
                    longest_streak=remote_longest,
                    last_activity_date=remote_activity,
                    last_workout_date=remote_workout,
                ))
                s.commit()
                return True

            current = max(local.current_streak, remote_current)
            longest = max(local.longest_streak, remote_longest)
            activity = _latest(local.last_activity_date, remote_activity)
            workout = _latest(local.last_workout_date, remote_workout)

            changed = (
                current != local.current_streak
                or longest != local.longest_streak
                or activity != local.last_activity_date
                or workout != local.last_workout_date
            )
            if changed:
                logger.info("Raising local streak for %s to current=%d longest=%d", user_id, current, longest)
                local.current_streak = current
                local.longest_streak = longest
                local.last_activity_date = activity
                local.last_workout_date = workout
                local.updated_at = datetime.utcnow()
                s.add(local)
                s.commit()
                s.refresh(local)
            payload = streak_payload(s, local)

        if current != remote_current or longest != remote_longest:
            logger.info("Raising remote streak for %s to current=%d longest=%d", user_id, current, longest)
            await self._remote(
                self.store.set_document(user_id, SyncTable.STREAK.value, user_id, payload)
            )
            changed = True
        return changed


def _is_pending(s: Session, user_id: str, table: SyncTable, row_id) -> bool:
    return s.exec(
        select(SyncQueueEntry.id).where(
            SyncQueueEntry.user_id == user_id,
            SyncQueueEntry.table_name == table,
            SyncQueueEntry.row_id == str(row_id),
            SyncQueueEntry.synced == False,  # noqa: E712
        )
    ).first() is not None


def _latest(a: Optional[date], b: Optional[date]) -> Optional[date]:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)
