"""API routes for run control and status."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request
from pydantic import BaseModel

from leadsync.models import BatchResult, LedgerStats
from leadsync.pipeline import PipelineOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


class LimiterStatusItem(BaseModel):
    """Observability snapshot of one rate limiter."""
    name: str
    available_slots: int
    max_slots: int
    window_ms: int
    wait_time_ms: int


class StatusResponse(BaseModel):
    """Response for pipeline status."""
    active: bool
    rate_limiters: list[LimiterStatusItem]
    last_run_id: Optional[str] = None
    last_run_completed_at: Optional[datetime] = None
    alerts: Optional[dict] = None


class RunResponse(BaseModel):
    """Response for run submission."""
    status: str
    message: str


def get_orchestrator(request: Request) -> PipelineOrchestrator:
    orchestrator = request.app.state.orchestrator
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Pipeline not initialized")
    return orchestrator


@router.get("/status", response_model=StatusResponse)
async def get_status(request: Request):
    """Whether a run is in flight, plus rate limiter headroom."""
    orchestrator = get_orchestrator(request)
    last = orchestrator.last_result

    return StatusResponse(
        active=orchestrator.is_active(),
        rate_limiters=[
            LimiterStatusItem(**vars(status)) for status in orchestrator.limiters.statuses()
        ],
        last_run_id=last.run_id if last else None,
        last_run_completed_at=last.completed_at if last else None,
        alerts=orchestrator.alerts.status() if orchestrator.alerts else None,
    )


@router.get("/stats", response_model=LedgerStats)
async def get_stats(request: Request):
    """Ledger totals."""
    return await get_orchestrator(request).get_stats()


@router.get("/runs/last", response_model=BatchResult)
async def get_last_run(request: Request):
    """Result of the most recent completed run."""
    last = get_orchestrator(request).last_result
    if last is None:
        raise HTTPException(status_code=404, detail="No run has completed yet")
    return last


@router.post("/runs", response_model=RunResponse, status_code=202)
async def start_run(request: Request, background_tasks: BackgroundTasks):
    """Trigger a run in the background."""
    orchestrator = get_orchestrator(request)
    if orchestrator.is_active():
        raise HTTPException(status_code=409, detail="already_running")

    background_tasks.add_task(run_pipeline, orchestrator)
    return RunResponse(status="started", message="Pipeline run started")


@router.post("/runs/cancel", response_model=RunResponse)
async def cancel_run(request: Request):
    """Ask the in-flight run to stop after its current step."""
    if not get_orchestrator(request).cancel():
        raise HTTPException(status_code=409, detail="No run in progress")
    return RunResponse(status="cancelling", message="Cancellation requested")


async def run_pipeline(orchestrator: PipelineOrchestrator):
    """Background task to run the pipeline."""
    try:
        result = await orchestrator.run()
        if result.skipped_run:
            logger.info("Background run skipped: already running")
    except Exception as e:
        logger.error(f"Background pipeline run failed: {e}")
