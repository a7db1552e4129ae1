import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from feed_dispatch.core.cqrs.command_bus import CommandBus
from feed_dispatch.core.exceptions import InvalidTransitionError, NotFoundError
from feed_dispatch.domains.execution.commands import ReportJobStatusCommand
from feed_dispatch.models import JobInstance, JobState, JobStatusReport, WorkerCapacityUnit


class JobExecutor(ABC):
    """
    Runs rendered jobs on assigned worker capacity.

    Executors never change job state themselves; they report terminal
    outcomes through ReportJobStatusCommand on the command bus.
    """

    def __init__(self, command_bus: CommandBus):
        self._command_bus = command_bus

    @abstractmethod
    async def start(self, job: JobInstance, unit: WorkerCapacityUnit) -> None:
        """Hand ``job`` to the runtime. Must return promptly; execution is asynchronous."""
        raise NotImplementedError

    @abstractmethod
    async def terminate(self, job_id: str) -> None:
        """Best-effort stop. Confirmation arrives later as a CANCELLED report."""
        raise NotImplementedError

    async def shutdown(self) -> None:
        """Release background resources. Running jobs are left to the runtime."""

    async def report(
        self,
        job_id: str,
        state: JobState,
        reason: Optional[str] = None,
        output_location: Optional[str] = None,
    ) -> None:
        report = JobStatusReport(
            job_id=job_id, state=state, reason=reason, output_location=output_location
        )
        try:
            await self._command_bus.execute(ReportJobStatusCommand(report=report))
        except (InvalidTransitionError, NotFoundError) as e:
            logging.error(f"Executor status report for job {job_id} rejected: {e}")


class SimulatedJobExecutor(JobExecutor):
    """
    In-process executor for local runs and tests.

    With ``run_seconds`` set, every job succeeds after that many seconds.
    With ``run_seconds=None`` jobs run until ``complete()`` is called.
    """

    def __init__(self, command_bus: CommandBus, run_seconds: Optional[float] = None):
        super().__init__(command_bus)
        self._run_seconds = run_seconds
        self._running: Dict[str, Optional[asyncio.Task]] = {}
        self.started_jobs: List[str] = []

        logging.info(
            "SimulatedJobExecutor initialiseret "
            + (f"(jobs finish after {run_seconds}s)" if run_seconds is not None else "(manual completion)")
        )

    @property
    def running_job_ids(self) -> List[str]:
        return list(self._running)

    async def start(self, job: JobInstance, unit: WorkerCapacityUnit) -> None:
        logging.info(
            f"Starting job {job.job_id} on {unit.unit_id}: {' '.join(job.rendered_arguments)}"
        )
        self.started_jobs.append(job.job_id)

        timer = None
        if self._run_seconds is not None:
            timer = asyncio.create_task(
                self._finish_after(job.job_id, self._run_seconds), name=f"simulated-{job.job_id}"
            )
        self._running[job.job_id] = timer

    async def complete(
        self,
        job_id: str,
        succeeded: bool = True,
        reason: Optional[str] = None,
        output_location: Optional[str] = None,
    ) -> None:
        """Finish a running job as the container would."""
        if job_id not in self._running:
            raise KeyError(f"Job {job_id} is not running on this executor")
        timer = self._running.pop(job_id)
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

        state = JobState.SUCCEEDED if succeeded else JobState.FAILED
        await self.report(job_id, state, reason=reason, output_location=output_location)

    async def terminate(self, job_id: str) -> None:
        if job_id not in self._running:
            logging.warning(f"Terminate requested for unknown job {job_id}")
            return
        timer = self._running.pop(job_id)
        if timer is not None:
            timer.cancel()
        logging.info(f"Simulated job {job_id} terminated")
        await self.report(job_id, JobState.CANCELLED, reason="Terminated on request")

    async def shutdown(self) -> None:
        timers = [timer for timer in self._running.values() if timer is not None]
        for timer in timers:
            timer.cancel()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)
        self._running.clear()

    async def _finish_after(self, job_id: str, seconds: float) -> None:
        await asyncio.sleep(seconds)
        await self.complete(job_id, succeeded=True)
