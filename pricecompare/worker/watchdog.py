"""Watchdog task recovering scheduler runs left in `running`."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pricecompare import metrics
from pricecompare.config import Settings, settings as default_settings
from pricecompare.db.models import SchedulerRun
from pricecompare.db.session import AsyncSessionLocal
from pricecompare.worker.run_lock import RunLock

logger = logging.getLogger(__name__)


async def run_watchdog_check(
    lock: RunLock,
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    settings: Settings = default_settings,
    heartbeat_stale_seconds: int = 300,
    reason_prefix: str = "Watchdog",
    now: Optional[datetime] = None,
) -> dict:
    """
    Mark stale running SchedulerRuns as failed.

    Logic:
    1. Read the run lock and its heartbeat age
    2. A running run that does not own the lock lost its process: mark failed
    3. A running run that owns the lock but exceeded max_run_duration_seconds:
       mark failed and clear the lock
    4. A lock with no running run and a stale heartbeat is cleared
    """
    stats = {"runs_recovered": 0, "lock_cleared": False}
    now = now or datetime.utcnow()

    try:
        lock_read_at = datetime.utcnow()
        lock_info = await lock.get_lock_info()
        heartbeat_age = await lock.get_heartbeat_age()
        lock_run_id = (lock_info or {}).get("run_id")

        async with session_factory() as db:
            result = await db.execute(
                select(SchedulerRun).where(SchedulerRun.status == "running")
            )
            running = list(result.scalars().all())
            owner_found = False

            for run in running:
                if run.started_at >= lock_read_at:
                    # Created after the lock was read; ownership unknown until the next check
                    continue
                elapsed = (now - run.started_at).total_seconds()

                if lock_run_id is None or run.lock_run_id != lock_run_id:
                    logger.warning(
                        f"{reason_prefix}: SchedulerRun {run.id} is running without holding "
                        f"the run lock (age {elapsed:.0f}s). Marking as failed."
                    )
                    run.status = "failed"
                    run.completed_at = now
                    run.error_details = f"{reason_prefix}: run lock lost; process presumed dead"
                    stats["runs_recovered"] += 1
                    continue

                owner_found = True
                if elapsed > settings.max_run_duration_seconds:
                    logger.warning(
                        f"{reason_prefix}: SchedulerRun {run.id} (lock_run_id: {lock_run_id[:16]}...) "
                        f"has been running for {elapsed:.0f} seconds "
                        f"(> {settings.max_run_duration_seconds}). Marking as failed and clearing lock."
                    )
                    run.status = "failed"
                    run.completed_at = now
                    run.error_details = (
                        f"{reason_prefix}: run exceeded {settings.max_run_duration_seconds} seconds "
                        f"(ran for {elapsed:.0f} seconds)"
                    )
                    stats["runs_recovered"] += 1
                    stats["lock_cleared"] = await lock.force_unlock()

            await db.commit()

        if lock_info and not owner_found and not stats["lock_cleared"]:
            if heartbeat_age is None or heartbeat_age > heartbeat_stale_seconds:
                logger.warning(
                    f"{reason_prefix}: Stale run lock detected (lock_run_id: {lock_run_id}). "
                    "No matching running SchedulerRun found. Clearing lock."
                )
                stats["lock_cleared"] = await lock.force_unlock()

        if stats["runs_recovered"]:
            metrics.stale_runs_recovered_total.inc(stats["runs_recovered"])
        elif lock_info:
            logger.debug(
                f"{reason_prefix}: Run lock healthy (lock_run_id: {lock_run_id}, "
                f"TTL: {lock_info.get('ttl_seconds')}s, heartbeat_age: {heartbeat_age})"
            )

    except Exception as e:
        logger.error(f"Watchdog check failed: {e}", exc_info=True)

    return stats
