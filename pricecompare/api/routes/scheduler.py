"""Orchestrator trigger and run status API endpoints."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from pricecompare.api.deps import get_catalog_service, get_database, get_orchestrator
from pricecompare.catalog.service import CatalogService
from pricecompare.db.models import SchedulerRun
from pricecompare.errors import RunAlreadyActiveError
from pricecompare.worker.orchestrator import Orchestrator, RunHandle

logger = logging.getLogger(__name__)

router = APIRouter(tags=["scheduler"])


class SchedulerRunResponse(BaseModel):
    """Response model for a scheduler run."""
    id: int
    run_type: str
    status: str
    started_at: datetime
    completed_at: Optional[datetime]
    execution_time_seconds: Optional[float]
    tasks_completed: int
    tasks_failed: int
    summary: Optional[Dict[str, Any]]
    error_details: Optional[str]

    class Config:
        from_attributes = True


class TriggerResponse(BaseModel):
    """Response for an accepted trigger."""
    run_id: int
    status: str


async def _execute_in_background(orchestrator: Orchestrator, handle: RunHandle) -> None:
    try:
        await orchestrator.execute_run(handle)
    except Exception as e:
        # Already recorded on the SchedulerRun as failed
        logger.error(f"Background run {handle.run_id} failed: {e}")


@router.post(
    "/orchestrate",
    status_code=status.HTTP_202_ACCEPTED,
    responses={409: {"description": "A run is already active"}},
)
async def trigger_orchestration(
    background_tasks: BackgroundTasks,
    response: Response,
    wait: bool = False,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """
    Trigger a manual pipeline run.

    Returns 202 with the run id while the run executes in the background, or
    200 with the full run summary when `wait=true`.
    """
    try:
        handle = await orchestrator.start_run(run_type="manual")
    except RunAlreadyActiveError as e:
        lock_info = e.lock_info
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": "A scheduler run is already in progress",
                "lock_run_id": lock_info.get("run_id"),
                "started_at": lock_info.get("started_at"),
                "ttl_seconds": lock_info.get("ttl_seconds"),
            },
        )

    if wait:
        try:
            summary = await orchestrator.execute_run(handle)
        except Exception as e:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Run {handle.run_id} failed: {e}",
            )
        response.status_code = status.HTTP_200_OK
        return summary

    background_tasks.add_task(_execute_in_background, orchestrator, handle)
    return TriggerResponse(run_id=handle.run_id, status="running")


@router.get("/api/scheduler/runs", response_model=List[SchedulerRunResponse])
async def list_scheduler_runs(
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_database),
    service: CatalogService = Depends(get_catalog_service),
):
    """Most recent scheduler runs, newest first."""
    return await service.list_runs(db, limit=limit)


@router.get("/api/scheduler/runs/{run_id}", response_model=SchedulerRunResponse)
async def get_scheduler_run(run_id: int, db: AsyncSession = Depends(get_database)):
    """Get a specific scheduler run."""
    run = await db.get(SchedulerRun, run_id)
    if not run:
        raise HTTPException(status_code=404, detail="Scheduler run not found")
    return run
