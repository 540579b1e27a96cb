"""
APScheduler jobs.

  periodic_sync          every ``sync_interval_minutes``: push the queue, pull
  daily_progress_update  daily at ``daily_update_hour``: streak check, streak
                         and goal recalculation

The same progress update runs once at startup (see __main__) and on demand
through POST /progress/refresh. Job bodies never raise: a failing run is
logged and the next one is attempted on schedule.
"""
import logging
from datetime import datetime
from typing import Any, Dict

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from fitjourney.cloud.auth import NotLoggedInError
from fitjourney.config import get_settings
from fitjourney.sync.engine import SyncInProgressError

logger = logging.getLogger(__name__)


def build_scheduler(services) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        services: Services container (fitjourney.container).

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _periodic_sync,
        trigger="interval",
        minutes=settings.sync_interval_minutes,
        id="periodic_sync",
        replace_existing=True,
        kwargs={"services": services},
    )
    scheduler.add_job(
        _daily_progress_update,
        trigger="cron",
        hour=settings.daily_update_hour,
        minute=0,
        id="daily_progress_update",
        replace_existing=True,
        kwargs={"services": services},
    )

    return scheduler


def update_progress(services) -> Dict[str, Any]:
    """Streak check plus streak and goal recalculation for the signed-in user.

    Raises:
        NotLoggedInError: if nobody is signed in.
    """
    user_id = services.current_user_id()
    services.streaks.daily_check(user_id)
    streak = services.streaks.recompute_streak(user_id)
    goals = services.goals.recalculate_all(user_id)
    return {
        "current_streak": streak,
        "goals_updated": goals.updated,
        "goals_achieved": goals.achieved,
        "goals_expired": goals.expired,
        "goals_failed": [goal_id for goal_id, _ in goals.failed],
    }


async def _periodic_sync(services) -> None:
    """Interval job: one sync of the queue. Skipped while another sync runs."""
    try:
        result = await services.sync.sync_all(trigger="scheduled")
        if not result.success:
            logger.warning("Scheduled sync finished with errors: %s", result.error)
    except SyncInProgressError:
        logger.info("Scheduled sync skipped: a sync is already running")
    except Exception as exc:
        logger.error("Scheduled sync failed: %s", exc)


async def _daily_progress_update(services) -> None:
    """Daily job: streak and goal recalculation."""
    logger.info("Daily progress update starting at %s", datetime.utcnow().isoformat())
    try:
        summary = update_progress(services)
        logger.info("Daily progress update done: %s", summary)
    except NotLoggedInError:
        logger.warning("Daily progress update skipped: nobody is signed in")
    except Exception as exc:
        logger.error("Daily progress update failed: %s", exc)
