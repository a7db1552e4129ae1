"""
Job endpoints - inspection, cancellation and executor status reports.
"""

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ValidationError

from feed_dispatch.core.cqrs.command_bus import CommandBus
from feed_dispatch.core.exceptions import (
    InvalidTransitionError,
    JobNotFoundError,
    TerminationSignalError,
)
from feed_dispatch.dependencies import get_command_bus, get_job_queue, get_scheduler
from feed_dispatch.domains.execution.commands import CancelJobCommand, ReportJobStatusCommand
from feed_dispatch.domains.execution.scheduler import JobScheduler
from feed_dispatch.domains.job_queue.job_queue import JobQueue
from feed_dispatch.models import JobInstance, JobState, JobStatusReport

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


class JobStatusUpdate(BaseModel):
    state: JobState
    reason: Optional[str] = None
    output_location: Optional[str] = None


class JobStatistics(BaseModel):
    by_state: Dict[str, int]
    total_enqueued: int
    total_started: int


@router.get("", response_model=List[JobInstance])
async def list_jobs(
    state: Optional[JobState] = None, job_queue: JobQueue = Depends(get_job_queue)
) -> List[JobInstance]:
    return await job_queue.list_jobs(state)


@router.get("/stats", response_model=JobStatistics)
async def job_statistics(
    job_queue: JobQueue = Depends(get_job_queue),
    scheduler: JobScheduler = Depends(get_scheduler),
) -> JobStatistics:
    return JobStatistics(
        by_state=await job_queue.counts_by_state(),
        total_enqueued=job_queue.total_jobs_enqueued,
        total_started=scheduler.total_jobs_started,
    )


@router.get("/{job_id}", response_model=JobInstance)
async def get_job(job_id: str, job_queue: JobQueue = Depends(get_job_queue)) -> JobInstance:
    try:
        return await job_queue.get(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post("/{job_id}/cancel", response_model=JobInstance)
async def cancel_job(
    job_id: str, command_bus: CommandBus = Depends(get_command_bus)
) -> JobInstance:
    """
    Cancel a job. A QUEUED job comes back CANCELLED; a RUNNING job comes back
    RUNNING and turns CANCELLED once the executor confirms.
    """
    try:
        job = await command_bus.execute(CancelJobCommand(job_id=job_id))
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except TerminationSignalError as e:
        logging.error(f"API: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    logging.info(f"API: Cancel requested for job {job_id}, state now {job.state.value}")
    return job


@router.post("/{job_id}/status", response_model=JobInstance)
async def report_job_status(
    job_id: str,
    update: JobStatusUpdate,
    command_bus: CommandBus = Depends(get_command_bus),
) -> JobInstance:
    """Terminal status callback for executors running outside this process."""
    try:
        report = JobStatusReport(
            job_id=job_id,
            state=update.state,
            reason=update.reason,
            output_location=update.output_location,
        )
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail=f"Status reports must carry a terminal state, got {update.state.value}",
        ) from e

    try:
        return await command_bus.execute(ReportJobStatusCommand(report=report))
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
