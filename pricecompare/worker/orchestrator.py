"""Orchestrator sequencing the batch pipeline.

A run acquires the run lock, records a SchedulerRun, executes every task in
critical-first priority order with a per-task timeout, and always leaves the
SchedulerRun in a terminal state.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pricecompare import metrics
from pricecompare.config import Settings, settings as default_settings
from pricecompare.db.models import SchedulerRun
from pricecompare.db.session import AsyncSessionLocal
from pricecompare.deals.engine import DealAggregationEngine
from pricecompare.errors import RunAlreadyActiveError, RunAbortedError, TaskTimeoutError
from pricecompare.history.backfill import HistoryBackfiller
from pricecompare.history.pruning import prune_price_history
from pricecompare.ingest.discovery import DiscoverySource, build_discovery_source, run_discovery
from pricecompare.ingest.ingestor import PriceIngestor
from pricecompare.logging_config import RunLogAdapter, get_run_logger
from pricecompare.worker.run_lock import RunLock, build_run_lock, refresh_lock_heartbeat

logger = logging.getLogger(__name__)

TaskFunc = Callable[[], Awaitable[Any]]


@dataclass
class TaskSpec:
    """One pipeline step."""

    name: str
    identifier: str
    priority: int
    critical: bool
    func: TaskFunc
    timeout_seconds: Optional[float] = None


@dataclass
class RunHandle:
    """A started run: its SchedulerRun id and lock ownership."""

    run_id: int
    run_type: str
    lock_run_id: str
    lock_token: str
    started_at: datetime = field(default_factory=datetime.utcnow)


def order_tasks(tasks: list[TaskSpec]) -> list[TaskSpec]:
    """Critical tasks first, each group by ascending priority."""
    return sorted(tasks, key=lambda task: (not task.critical, task.priority))


def _jsonable(value: Any) -> Any:
    return json.loads(json.dumps(value, default=str))


def build_default_tasks(
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    settings: Settings = default_settings,
    discovery_source: Optional[DiscoverySource] = None,
) -> list[TaskSpec]:
    """The standard pipeline: ingestion, backfill, deals, pruning."""
    ingestor = PriceIngestor(session_factory, settings)
    source = discovery_source or build_discovery_source(settings)
    backfiller = HistoryBackfiller(session_factory, settings)
    deal_engine = DealAggregationEngine(session_factory, settings)

    return [
        TaskSpec(
            name="Product discovery & price ingestion",
            identifier="ingestion",
            priority=1,
            critical=True,
            func=lambda: run_discovery(source, ingestor),
        ),
        TaskSpec(
            name="Historical price backfill",
            identifier="backfill",
            priority=2,
            critical=False,
            func=backfiller.backfill_all,
        ),
        TaskSpec(
            name="Featured deals update",
            identifier="deals",
            priority=3,
            critical=True,
            func=deal_engine.update_all_scopes,
        ),
        TaskSpec(
            name="Price history pruning",
            identifier="pruning",
            priority=4,
            critical=False,
            func=lambda: prune_price_history(session_factory, settings),
        ),
    ]


class Orchestrator:
    """
    Runs the pipeline tasks and records the outcome.

    Task failures never stop the loop: a run with failed tasks finishes as
    `completed_with_errors`. An exception escaping the loop marks the run
    `failed`, including RunAbortedError when the run loses its lock or the
    watchdog closes it; the run then stops before its next task.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
        settings: Settings = default_settings,
        lock: Optional[RunLock] = None,
        tasks: Optional[list[TaskSpec]] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.lock = lock or build_run_lock(settings)
        self.tasks = tasks if tasks is not None else build_default_tasks(session_factory, settings)

    async def start_run(self, run_type: str = "manual") -> RunHandle:
        """
        Acquire the run lock and create the SchedulerRun in `running`.

        Raises:
            RunAlreadyActiveError: Another run holds the lock
        """
        lock_run_id = uuid4().hex
        token = await self.lock.acquire(lock_run_id, ttl_seconds=self.settings.run_lock_ttl_seconds)
        if not token:
            lock_info = await self.lock.get_lock_info()
            metrics.run_lock_rejections_total.labels(run_type=run_type).inc()
            logger.info(
                "Run already active; rejecting %s run (lock_run_id: %s, ttl_s: %s)",
                run_type,
                (lock_info or {}).get("run_id"),
                (lock_info or {}).get("ttl_seconds"),
            )
            raise RunAlreadyActiveError(lock_info)

        try:
            async with self.session_factory() as db:
                run = SchedulerRun(
                    run_type=run_type,
                    status="running",
                    lock_run_id=lock_run_id,
                    started_at=datetime.utcnow(),
                )
                db.add(run)
                await db.commit()
                await db.refresh(run)
        except Exception:
            await self.lock.release(lock_run_id, token)
            raise

        logger.info(f"Created SchedulerRun {run.id} ({run_type}, lock_run_id: {lock_run_id[:16]}...)")
        return RunHandle(
            run_id=run.id,
            run_type=run_type,
            lock_run_id=lock_run_id,
            lock_token=token,
            started_at=run.started_at,
        )

    async def execute_run(self, handle: RunHandle) -> dict:
        """
        Execute every task for a started run and write its terminal state.

        Returns:
            Run summary (also stored on the SchedulerRun)
        """
        ordered = order_tasks(self.tasks)
        results: dict[str, dict] = {}
        status = "failed"
        error_details: Optional[str] = "Run interrupted before completion"
        heartbeat_task: Optional[asyncio.Task] = None
        clock_start = time.monotonic()
        run_logger = get_run_logger(__name__, handle.run_id, run_type=handle.run_type)

        run_logger.info(
            "Starting tasks: "
            + ", ".join(f"{t.identifier}(p{t.priority}{', critical' if t.critical else ''})" for t in ordered)
        )

        try:
            heartbeat_task = asyncio.create_task(
                refresh_lock_heartbeat(
                    self.lock,
                    run_id=handle.lock_run_id,
                    token=handle.lock_token,
                    interval=self.settings.run_lock_heartbeat_interval_seconds,
                    ttl=self.settings.run_lock_ttl_seconds,
                )
            )

            for index, task in enumerate(ordered):
                if index and self.settings.orchestrator_inter_task_delay_seconds > 0:
                    await asyncio.sleep(self.settings.orchestrator_inter_task_delay_seconds)
                await self._ensure_run_active(handle, heartbeat_task)
                results[task.identifier] = await self._run_task(task, run_logger.bind(task=task.identifier))

            failed = sum(1 for r in results.values() if r["status"] != "completed")
            status = "completed" if failed == 0 else "completed_with_errors"
            error_details = None

        except Exception as e:
            run_logger.error(f"Run failed: {e}", exc_info=True)
            status = "failed"
            error_details = str(e)[:2000]
            raise

        finally:
            if heartbeat_task and not heartbeat_task.done():
                heartbeat_task.cancel()
                try:
                    await heartbeat_task
                except asyncio.CancelledError:
                    pass

            summary = self._summarize(handle, ordered, results, status, error_details, clock_start)
            stored = await self._finish_run(handle, summary)
            if stored is not None and stored != summary["status"]:
                summary["status"] = stored
                summary["overall_success"] = False
                status = stored

            released = await self.lock.release(handle.lock_run_id, handle.lock_token)
            if not released:
                logger.warning(f"Failed to release run lock for run {handle.run_id}")

            metrics.record_scheduler_run(handle.run_type, status)

        run_logger.info(
            f"Run {status} in {summary['execution_time_seconds']:.1f}s: "
            f"{summary['tasks_completed']}/{summary['total_tasks']} tasks completed "
            f"(success rate {summary['success_rate']}%)"
        )
        return summary

    async def run(self, run_type: str = "manual") -> dict:
        """Start and execute a run."""
        handle = await self.start_run(run_type)
        return await self.execute_run(handle)

    async def run_scheduled(self) -> Optional[dict]:
        """APScheduler entrypoint; an active run makes this a logged no-op."""
        try:
            return await self.run(run_type="scheduled")
        except RunAlreadyActiveError as e:
            logger.info(f"Skipping scheduled run: {e}")
            return None
        except RunAbortedError as e:
            logger.error(f"Scheduled run aborted: {e}")
            return None

    async def _run_task(self, task: TaskSpec, task_logger: RunLogAdapter) -> dict:
        timeout = task.timeout_seconds or self.settings.orchestrator_task_timeout_seconds
        task_logger.info(f"Running task '{task.name}' (timeout {timeout:.0f}s)")
        started = time.monotonic()

        try:
            result = await asyncio.wait_for(task.func(), timeout=timeout)
        except asyncio.TimeoutError:
            duration = time.monotonic() - started
            error = TaskTimeoutError(task.name, timeout)
            task_logger.error(str(error))
            metrics.record_task_result(task.identifier, False, duration)
            return self._task_entry(task, "failed", duration, error=str(error))
        except Exception as e:
            duration = time.monotonic() - started
            task_logger.error(f"Task '{task.name}' failed: {e}", exc_info=True)
            metrics.record_task_result(task.identifier, False, duration)
            return self._task_entry(task, "failed", duration, error=str(e)[:1000])

        duration = time.monotonic() - started
        metrics.record_task_result(task.identifier, True, duration)
        task_logger.info(f"Task '{task.name}' completed in {duration:.1f}s")
        return self._task_entry(task, "completed", duration, result=_jsonable(result))

    @staticmethod
    def _task_entry(
        task: TaskSpec,
        status: str,
        duration: float,
        result: Any = None,
        error: Optional[str] = None,
    ) -> dict:
        entry = {
            "name": task.name,
            "status": status,
            "critical": task.critical,
            "priority": task.priority,
            "duration_seconds": round(duration, 3),
        }
        if status == "completed":
            entry["result"] = result
        else:
            entry["error"] = error
        return entry

    @staticmethod
    def _summarize(
        handle: RunHandle,
        ordered: list[TaskSpec],
        results: dict[str, dict],
        status: str,
        error_details: Optional[str],
        clock_start: float,
    ) -> dict:
        total = len(ordered)
        completed = sum(1 for r in results.values() if r["status"] == "completed")
        critical = [t for t in ordered if t.critical]
        critical_passed = sum(
            1 for t in critical
            if results.get(t.identifier, {}).get("status") == "completed"
        )
        return {
            "run_id": handle.run_id,
            "run_type": handle.run_type,
            "status": status,
            "started_at": handle.started_at.isoformat(),
            "completed_at": datetime.utcnow().isoformat(),
            "execution_time_seconds": round(time.monotonic() - clock_start, 3),
            "total_tasks": total,
            "tasks_completed": completed,
            "tasks_failed": total - completed,
            "critical_tasks": len(critical),
            "critical_failed": len(critical) - critical_passed,
            "success_rate": round(completed / total * 100, 1) if total else 100.0,
            "overall_success": critical_passed == len(critical),
            "tasks": results,
            "error": error_details,
        }

    async def _ensure_run_active(self, handle: RunHandle, heartbeat_task: Optional[asyncio.Task]) -> None:
        """
        Raise RunAbortedError when the run must not start another task: the
        heartbeat gave up, the lock is held by nobody or by another run, or
        the SchedulerRun already left `running`.
        """
        holder = (await self.lock.get_lock_info() or {}).get("run_id")
        if heartbeat_task is not None and heartbeat_task.done():
            reason = "lock heartbeat stopped"
        elif holder != handle.lock_run_id:
            reason = f"run lock now held by {holder}" if holder else "run lock released"
        else:
            async with self.session_factory() as db:
                stored = await db.scalar(
                    select(SchedulerRun.status).where(SchedulerRun.id == handle.run_id)
                )
            if stored == "running":
                return
            reason = f"run record is {stored}"

        logger.error(f"Stopping run {handle.run_id} before its next task: {reason}")
        raise RunAbortedError(handle.run_id, reason)

    async def _finish_run(self, handle: RunHandle, summary: dict) -> Optional[str]:
        """
        Write the terminal state with a fresh session.

        The update only applies while the run is still `running`; a run the
        watchdog already closed keeps its terminal state.

        Returns:
            The status stored on the SchedulerRun, or None if it could not be read
        """
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    update(SchedulerRun)
                    .where(SchedulerRun.id == handle.run_id, SchedulerRun.status == "running")
                    .values(
                        status=summary["status"],
                        completed_at=datetime.utcnow(),
                        execution_time_seconds=summary["execution_time_seconds"],
                        tasks_completed=summary["tasks_completed"],
                        tasks_failed=summary["tasks_failed"],
                        summary=summary,
                        error_details=summary["error"],
                    )
                )
                await db.commit()
                if result.rowcount:
                    return summary["status"]

                stored = await db.scalar(
                    select(SchedulerRun.status).where(SchedulerRun.id == handle.run_id)
                )
                if stored is None:
                    logger.error(f"SchedulerRun {handle.run_id} disappeared before completion")
                else:
                    logger.warning(
                        f"SchedulerRun {handle.run_id} was already {stored}; "
                        f"not overwriting with {summary['status']}"
                    )
                return stored
        except Exception as e:
            logger.error(f"Failed to record terminal state for run {handle.run_id}: {e}", exc_info=True)
            return None
