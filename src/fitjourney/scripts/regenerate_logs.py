"""
Rebuild daily activity logs from workout history.

Usage:
    python -m fitjourney.scripts.regenerate_logs --days 90

Every day in the window with a workout gets a WORKOUT DailyLog; rest-day
logs on such days are upgraded. Changed rows are enqueued for sync, so
run `python -m fitjourney sync` afterwards (or wait for the scheduler)
to push them. The streak is recomputed at the end.
"""
import argparse
import logging
from datetime import date, timedelta

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


def _regenerate(days: int) -> None:
    from fitjourney.container import build_services

    services = build_services()
    user_id = services.current_user_id()

    end = date.today()
    start = end - timedelta(days=days - 1)
    logger.info("Regenerating daily logs %s → %s for %s", start, end, user_id)

    changed = services.streaks.regenerate_daily_logs(user_id, start, end)
    streak = services.streaks.recompute_streak(user_id)
    logger.info("Done. %d logs written, current streak %d", changed, streak)


def main() -> None:
    parser = argparse.ArgumentParser(description="Rebuild daily activity logs")
    parser.add_argument("--days", type=int, default=90, help="Days of history to rebuild")
    args = parser.parse_args()
    if args.days < 1:
        parser.error("--days must be at least 1")
    _regenerate(args.days)


if __name__ == "__main__":
    main()
