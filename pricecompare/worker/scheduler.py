"""APScheduler job definitions."""

import logging
from functools import partial

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from pricecompare.config import Settings, settings as default_settings
from pricecompare.worker.orchestrator import Orchestrator
from pricecompare.worker.watchdog import run_watchdog_check

logger = logging.getLogger(__name__)


def setup_scheduler(
    orchestrator: Orchestrator,
    settings: Settings = default_settings,
) -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    Scheduling overview:
    - The full pipeline runs daily at schedule_hour:schedule_minute (UTC)
    - The run watchdog checks for stale runs every run_watchdog_interval_seconds

    Returns:
        Configured scheduler instance
    """
    scheduler = AsyncIOScheduler(timezone="UTC")

    scheduler.add_job(
        orchestrator.run_scheduled,
        CronTrigger(hour=settings.schedule_hour, minute=settings.schedule_minute),
        id="daily_pipeline",
        name="Run ingestion, backfill, deals and pruning",
        max_instances=1,  # Prevent overlapping runs
        coalesce=True,
        misfire_grace_time=600,
        replace_existing=True,
    )

    scheduler.add_job(
        partial(
            run_watchdog_check,
            orchestrator.lock,
            session_factory=orchestrator.session_factory,
            settings=settings,
        ),
        IntervalTrigger(seconds=settings.run_watchdog_interval_seconds),
        id="run_watchdog",
        name="Scheduler run watchdog",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    logger.info(
        "Scheduler configured: daily pipeline at %02d:%02d UTC, run watchdog every %d seconds",
        settings.schedule_hour,
        settings.schedule_minute,
        settings.run_watchdog_interval_seconds,
    )
    return scheduler
