"""Tests for APScheduler job setup."""

from pricecompare.worker.orchestrator import Orchestrator
from pricecompare.worker.run_lock import LocalRunLock
from pricecompare.worker.scheduler import setup_scheduler


def test_scheduler_registers_pipeline_and_watchdog(session_factory, test_settings):
    settings = test_settings.model_copy(
        update={"schedule_hour": 4, "schedule_minute": 30, "run_watchdog_interval_seconds": 60}
    )
    orchestrator = Orchestrator(session_factory, settings, lock=LocalRunLock(), tasks=[])

    scheduler = setup_scheduler(orchestrator, settings)
    jobs = {job.id: job for job in scheduler.get_jobs()}

    assert set(jobs) == {"daily_pipeline", "run_watchdog"}
    assert jobs["daily_pipeline"].func == orchestrator.run_scheduled
    assert "hour='4'" in str(jobs["daily_pipeline"].trigger)
    assert "minute='30'" in str(jobs["daily_pipeline"].trigger)
    assert jobs["run_watchdog"].trigger.interval.total_seconds() == 60
    assert jobs["run_watchdog"].func.args == (orchestrator.lock,)
