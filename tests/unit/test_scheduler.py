"""Tests for APScheduler job configuration and job bodies."""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from fitjourney.cloud.auth import NotLoggedInError
from fitjourney.scheduler.jobs import (
    _daily_progress_update,
    _periodic_sync,
    build_scheduler,
    update_progress,
)
from fitjourney.services.goal_service import RecalculationResult
from fitjourney.sync.engine import SyncInProgressError, SyncResult


class TestBuildScheduler:
    def test_returns_scheduler(self):
        scheduler = build_scheduler(MagicMock())
        assert isinstance(scheduler, AsyncIOScheduler)

    def test_jobs_registered(self):
        scheduler = build_scheduler(MagicMock())
        job_ids = {job.id for job in scheduler.get_jobs()}
        assert job_ids == {"periodic_sync", "daily_progress_update"}

    def test_periodic_sync_is_interval(self):
        scheduler = build_scheduler(MagicMock())
        job = next(j for j in scheduler.get_jobs() if j.id == "periodic_sync")
        assert job.trigger.__class__.__name__ == "IntervalTrigger"

    def test_intervals_from_settings(self):
        """Scheduler respects SYNC_INTERVAL_MINUTES and DAILY_UPDATE_HOUR."""
        with patch("fitjourney.scheduler.jobs.get_settings") as mock_settings:
            mock_settings.return_value.sync_interval_minutes = 30
            mock_settings.return_value.daily_update_hour = 4
            scheduler = build_scheduler(MagicMock())

        periodic = next(j for j in scheduler.get_jobs() if j.id == "periodic_sync")
        assert periodic.trigger.interval.total_seconds() == 30 * 60
        daily = next(j for j in scheduler.get_jobs() if j.id == "daily_progress_update")
        fields = {f.name: f for f in daily.trigger.fields}
        assert str(fields["hour"]) == "4"

    def test_scheduler_not_running_on_creation(self):
        """build_scheduler should not auto-start."""
        scheduler = build_scheduler(MagicMock())
        assert not scheduler.running


def _services():
    services = MagicMock()
    services.current_user_id.return_value = "user-1"
    services.streaks.recompute_streak.return_value = 4
    services.goals.recalculate_all.return_value = RecalculationResult(
        updated=[1, 2], achieved=[2], failed=[(3, "boom")]
    )
    return services


class TestUpdateProgress:
    def test_runs_check_streak_and_goals(self):
        services = _services()
        summary = update_progress(services)
        services.streaks.daily_check.assert_called_once_with("user-1")
        services.goals.recalculate_all.assert_called_once_with("user-1")
        assert summary["current_streak"] == 4
        assert summary["goals_achieved"] == [2]
        assert summary["goals_failed"] == [3]

    def test_requires_signed_in_user(self):
        services = _services()
        services.current_user_id.side_effect = NotLoggedInError("nobody")
        with pytest.raises(NotLoggedInError):
            update_progress(services)


class TestJobBodies:
    @pytest.mark.asyncio
    async def test_periodic_sync_runs_scheduled_sync(self):
        services = MagicMock()
        services.sync.sync_all = AsyncMock(return_value=SyncResult(success=True))
        await _periodic_sync(services)
        services.sync.sync_all.assert_awaited_once_with(trigger="scheduled")

    @pytest.mark.asyncio
    async def test_periodic_sync_skips_when_busy(self):
        services = MagicMock()
        services.sync.sync_all = AsyncMock(side_effect=SyncInProgressError("busy"))
        await _periodic_sync(services)  # must not raise

    @pytest.mark.asyncio
    async def test_periodic_sync_swallows_unexpected_errors(self):
        services = MagicMock()
        services.sync.sync_all = AsyncMock(side_effect=RuntimeError("db locked"))
        await _periodic_sync(services)

    @pytest.mark.asyncio
    async def test_daily_update_without_user_does_not_raise(self):
        services = _services()
        services.current_user_id.side_effect = NotLoggedInError("nobody")
        await _daily_progress_update(services)
        services.goals.recalculate_all.assert_not_called()

    @pytest.mark.asyncio
    async def test_daily_update_swallows_errors(self):
        services = _services()
        services.streaks.daily_check.side_effect = RuntimeError("boom")
        await _daily_progress_update(services)
