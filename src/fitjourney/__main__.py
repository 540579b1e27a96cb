"""
Main entrypoint: progress update at startup, then the APScheduler loop.

FastAPI runs separately under uvicorn.

Usage:
    python -m fitjourney setup          # one-time Firebase sign-in
    python -m fitjourney sync           # one manual sync, then exit
    python -m fitjourney reset-cloud    # wipe remote data and re-upload
    python -m fitjourney                # starts scheduler (periodic sync)
    uvicorn --factory fitjourney.api.main:create_app --host 0.0.0.0 --port 8000  # starts API
"""
import asyncio
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def _run_setup() -> None:
    from fitjourney.scripts.setup import run_setup
    run_setup()


async def _run_once(reset: bool) -> int:
    from fitjourney.cloud.auth import NotLoggedInError
    from fitjourney.container import build_services

    services = build_services()
    try:
        services.current_user_id()
    except NotLoggedInError:
        logger.error("Nobody is signed in. Run `python -m fitjourney setup` first.")
        return 1

    try:
        if reset:
            result = await services.sync.reset_cloud_data()
        else:
            result = await services.sync.trigger_manual_sync(force_resync=True)
    finally:
        await services.close()

    logger.info(
        "Sync %s: pushed=%d failed=%d skipped=%d pulled=%s",
        "succeeded" if result.success else "failed",
        result.pushed, result.failed, result.skipped, result.pulled,
    )
    for error in result.errors:
        logger.warning("  %s", error)
    return 0 if result.success else 1


async def _run_scheduler() -> None:
    from fitjourney.cloud.auth import NotLoggedInError
    from fitjourney.container import build_services
    from fitjourney.scheduler.jobs import build_scheduler, update_progress

    services = build_services()

    try:
        summary = update_progress(services)
        logger.info("Startup progress update: %s", summary)
    except NotLoggedInError:
        logger.warning(
            "Nobody is signed in; sync stays idle until `python -m fitjourney setup` is run."
        )
    except Exception as exc:
        logger.error("Startup progress update failed: %s", exc)

    scheduler = build_scheduler(services)
    scheduler.start()
    logger.info(
        "Scheduler started (sync every %d min, daily update at %02d:00)",
        services.settings.sync_interval_minutes,
        services.settings.daily_update_hour,
    )

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()
        await services.close()
        logger.info("Goodbye.")


if __name__ == "__main__":
    # Dispatch on first argument: setup / sync / reset-cloud, or nothing
    command = sys.argv[1] if len(sys.argv) > 1 else None
    if command == "setup":
        _run_setup()
    elif command == "sync":
        sys.exit(asyncio.run(_run_once(reset=False)))
    elif command == "reset-cloud":
        sys.exit(asyncio.run(_run_once(reset=True)))
    elif command is None:
        asyncio.run(_run_scheduler())
    else:
        print(f"Unknown command: {command}")
        print("Usage: python -m fitjourney [setup|sync|reset-cloud]")
        sys.exit(2)
