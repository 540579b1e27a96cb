"""
Daily activity logs and the per-user streak.

A day counts towards the streak if it has a daily log, workout or rest.
Logging a workout on the day after the last activity extends the streak;
a gap of more than a day restarts it at 1. Rest days keep the streak alive
but never replace a workout logged for the same day.

Every change to a daily log or the streak row is enqueued in the same
session as the change itself. The streak's queue id is the user id.
"""
import logging
from datetime import date, datetime, timedelta
from typing import List, Optional

from sqlmodel import Session, select

from fitjourney.dates import day_bounds, normalise_date
from fitjourney.db.engine import session_scope
from fitjourney.models.notification import Milestone, MilestoneType, NotificationType
from fitjourney.models.sync import SyncOperation, SyncTable
from fitjourney.models.tracking import DailyLog, DayActivity, Streak
from fitjourney.models.workout import Workout

logger = logging.getLogger(__name__)

STREAK_MILESTONES = (7, 30)


class StreakService:
    def __init__(self, engine, queue, notifications):
        """
        Args:
            engine: SQLAlchemy engine.
            queue: SyncQueue for the dual-write.
            notifications: NotificationService for milestone messages.
        """
        self.engine = engine
        self.queue = queue
        self.notifications = notifications

    # ── Streak row ────────────────────────────────────────────────────────────

    def get_streak(self, user_id: str, session: Optional[Session] = None) -> Streak:
        """Return the user's streak row, creating an empty one if needed."""
        with session_scope(self.engine, session) as s:
            streak = s.exec(select(Streak).where(Streak.user_id == user_id)).first()
            if streak is None:
                streak = Streak(user_id=user_id)
                s.add(streak)
                s.flush()
                self.queue.enqueue(user_id, SyncTable.STREAK, user_id, SyncOperation.INSERT, session=s)
            return streak

    def find_streak(self, user_id: str) -> Optional[Streak]:
        """Return the user's streak row without creating one."""
        with Session(self.engine) as s:
            return s.exec(select(Streak).where(Streak.user_id == user_id)).first()

    def _save_streak(self, s: Session, streak: Streak) -> None:
        streak.updated_at = datetime.utcnow()
        s.add(streak)
        self.queue.enqueue(
            streak.user_id, SyncTable.STREAK, streak.user_id, SyncOperation.UPDATE, session=s
        )

    # ── Daily logs ────────────────────────────────────────────────────────────

    def _log_for(self, s: Session, user_id: str, day: date) -> Optional[DailyLog]:
        return s.exec(
            select(DailyLog).where(DailyLog.user_id == user_id, DailyLog.log_date == day)
        ).first()

    def _upsert_log(
        self, s: Session, user_id: str, day: date, activity: DayActivity, notes: Optional[str] = None
    ) -> DailyLog:
        log = self._log_for(s, user_id, day)
        if log is None:
            log = DailyLog(user_id=user_id, log_date=day, activity_type=activity, notes=notes)
            operation = SyncOperation.INSERT
        else:
            log.activity_type = activity
            if notes is not None:
                log.notes = notes
            log.updated_at = datetime.utcnow()
            operation = SyncOperation.UPDATE
        s.add(log)
        s.flush()
        self.queue.enqueue(user_id, SyncTable.DAILY_LOG, log.id, operation, session=s)
        return log

    def history(self, user_id: str, start: date, end: date) -> List[DailyLog]:
        """Daily logs between ``start`` and ``end`` inclusive, most recent first."""
        with Session(self.engine) as s:
            return list(s.exec(
                select(DailyLog)
                .where(
                    DailyLog.user_id == user_id,
                    DailyLog.log_date >= start,
                    DailyLog.log_date <= end,
                )
                .order_by(DailyLog.log_date.desc())
            ).all())

    # ── Logging activity ──────────────────────────────────────────────────────

    def log_workout(self, user_id: str, when, session: Optional[Session] = None) -> Streak:
        """Record a workout day and advance the streak.

        Args:
            user_id: Owner.
            when: Date or datetime of the workout.
            session: Optional open session; the caller commits.

        Returns:
            The updated streak row.
        """
        day = normalise_date(when)
        with session_scope(self.engine, session) as s:
            self._upsert_log(s, user_id, day, DayActivity.WORKOUT)
            streak = self.get_streak(user_id, session=s)

            previous = streak.current_streak
            current = previous
            if streak.last_activity_date is None:
                current = 1
            else:
                gap = (day - streak.last_activity_date).days
                if gap == 1:
                    current += 1
                elif gap > 1:
                    current = 1
                elif gap == 0 and current == 0:
                    current = 1
                # an earlier day than the last activity leaves the counter alone

            streak.current_streak = current
            streak.longest_streak = max(streak.longest_streak, current)
            if streak.last_activity_date is None or day >= streak.last_activity_date:
                streak.last_activity_date = day
            if streak.last_workout_date is None or day >= streak.last_workout_date:
                streak.last_workout_date = day
            self._save_streak(s, streak)
            if current > previous:
                self._check_milestones(s, user_id, current)
            logger.info("Workout logged for %s on %s, streak %d", user_id, day, current)
            return streak

    def log_rest_day(self, user_id: str, when) -> Streak:
        """Record a rest day. A day that already has a workout is left as is."""
        day = normalise_date(when)
        with session_scope(self.engine) as s:
            existing = self._log_for(s, user_id, day)
            if existing is not None and existing.activity_type == DayActivity.WORKOUT:
                return self.get_streak(user_id, session=s)

            self._upsert_log(s, user_id, day, DayActivity.REST)
            streak = self.get_streak(user_id, session=s)
            last = streak.last_activity_date
            if last is None or (day - last).days > 1:
                # rest keeps a running streak alive but never starts one
                streak.current_streak = 0
            if last is None or day >= last:
                streak.last_activity_date = day
            self._save_streak(s, streak)
            return streak

    def _check_milestones(self, s: Session, user_id: str, current: int) -> None:
        if current not in STREAK_MILESTONES:
            return
        s.add(Milestone(user_id=user_id, type=MilestoneType.LONGEST_STREAK, value=float(current)))
        self.notifications.create(
            user_id,
            NotificationType.NEW_STREAK,
            f"You're on a {current}-day streak! Keep it going!",
            session=s,
        )

    # ── Daily maintenance ─────────────────────────────────────────────────────

    def daily_check(self, user_id: str, today: Optional[date] = None) -> Streak:
        """Reset the streak after a missed day; remind the user the day after.

        Returns:
            The (possibly reset) streak row.
        """
        today = today or date.today()
        with session_scope(self.engine) as s:
            streak = self.get_streak(user_id, session=s)
            if streak.last_activity_date is None:
                return streak
            gap = (today - streak.last_activity_date).days
            if gap > 1 and streak.current_streak != 0:
                logger.info("Streak for %s reset after %d days without activity", user_id, gap)
                streak.current_streak = 0
                self._save_streak(s, streak)
            elif gap == 1 and streak.current_streak > 0:
                self.notifications.create(
                    user_id,
                    NotificationType.NEW_STREAK,
                    f"Log an activity today to keep your {streak.current_streak}-day streak.",
                    session=s,
                )
            return streak

    def recompute_streak(self, user_id: str, today: Optional[date] = None) -> int:
        """Recount the current streak from the daily logs.

        Walks back one day at a time and stops at the first day without a
        log. Today does not break the streak while it has no log yet; the
        walk then starts from yesterday.

        Returns:
            The new current streak, also persisted and enqueued.
        """
        today = today or date.today()
        with session_scope(self.engine) as s:
            logged = set(s.exec(
                select(DailyLog.log_date).where(
                    DailyLog.user_id == user_id, DailyLog.log_date <= today
                )
            ).all())
            day = today if today in logged else today - timedelta(days=1)
            count = 0
            while day in logged:
                count += 1
                day -= timedelta(days=1)

            streak = self.get_streak(user_id, session=s)
            if streak.current_streak != count or streak.longest_streak < count:
                streak.current_streak = count
                streak.longest_streak = max(streak.longest_streak, count)
                self._save_streak(s, streak)
            return count

    # ── Logs from workouts ────────────────────────────────────────────────────

    def _workout_days(self, s: Session, user_id: str, start: date, end: date) -> dict:
        first, _ = day_bounds(start)
        _, last = day_bounds(end)
        workouts = s.exec(
            select(Workout)
            .where(Workout.user_id == user_id, Workout.date >= first, Workout.date <= last)
            .order_by(Workout.date)
        ).all()
        days = {}
        for workout in workouts:
            days.setdefault(normalise_date(workout.date), workout)
        return days

    def ensure_daily_logs(self, user_id: str, lookback_days: int = 90, today: Optional[date] = None) -> int:
        """Create a workout log for every recent workout day that has none.

        Returns:
            Number of logs created (each enqueued as INSERT).
        """
        today = today or date.today()
        created = 0
        with session_scope(self.engine) as s:
            for day, workout in self._workout_days(
                s, user_id, today - timedelta(days=lookback_days), today
            ).items():
                if self._log_for(s, user_id, day) is None:
                    self._upsert_log(s, user_id, day, DayActivity.WORKOUT, notes=workout.notes)
                    created += 1
        if created:
            logger.info("Created %d daily logs from workouts for %s", created, user_id)
        return created

    def regenerate_daily_logs(self, user_id: str, start: date, end: date) -> int:
        """Make every workout day in [start, end] a workout log.

        Missing logs are created; rest-day logs on workout days are upgraded.

        Returns:
            Number of logs created or changed.
        """
        changed = 0
        with session_scope(self.engine) as s:
            for day, workout in self._workout_days(s, user_id, start, end).items():
                log = self._log_for(s, user_id, day)
                if log is not None and log.activity_type == DayActivity.WORKOUT:
                    continue
                self._upsert_log(s, user_id, day, DayActivity.WORKOUT, notes=workout.notes)
                changed += 1
        logger.info("Regenerated %d daily logs for %s between %s and %s", changed, user_id, start, end)
        return changed
