import asyncio
import logging
from typing import Optional, Set

from feed_dispatch.core.exceptions import (
    CapacityUnavailableError,
    InvalidTransitionError,
    TerminationSignalError,
    UnitNotFoundError,
)
from feed_dispatch.domains.execution.executor import JobExecutor
from feed_dispatch.domains.job_queue.job_queue import JobQueue
from feed_dispatch.domains.resource_pool.pool_manager import ResourcePoolManager
from feed_dispatch.models import JobInstance, JobState, JobStatusReport, WorkerCapacityUnit

# Prune job history every N scheduling passes
HISTORY_PRUNE_EVERY = 600


class JobScheduler:
    """
    The matching loop: pairs QUEUED jobs with free worker capacity units and
    hands them to the executor.

    Runs on its own timer, independent of dispatch. Terminal status reports
    from the executor and cancellation requests also come through here so
    that unit release always follows the job's state change.
    """

    def __init__(
        self,
        job_queue: JobQueue,
        resource_pool: ResourcePoolManager,
        executor: JobExecutor,
        interval_seconds: float = 1.0,
        job_history_hours: Optional[int] = None,
    ):
        self._job_queue = job_queue
        self._resource_pool = resource_pool
        self._executor = executor
        self._interval_seconds = interval_seconds
        self._job_history_hours = job_history_hours

        self._cancel_requested: Set[str] = set()
        # One scheduling pass at a time; concurrent passes would race on next_ready()
        self._pass_lock = asyncio.Lock()
        self._running = False
        self._passes = 0
        self._total_jobs_started = 0

        logging.info(f"JobScheduler initialiseret (interval={interval_seconds}s)")

    async def start_scheduling(self) -> None:
        if self._running:
            logging.warning("Scheduler er allerede startet")
            return

        self._running = True
        logging.info("JobScheduler startet")

        try:
            while self._running:
                try:
                    await self.run_once()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logging.error(f"Fejl i scheduling pass: {e}", exc_info=True)
                await asyncio.sleep(self._interval_seconds)
        except asyncio.CancelledError:
            logging.info("JobScheduler blev cancelled")
            raise
        finally:
            self._running = False
            logging.info("JobScheduler stoppet")

    def stop_scheduling(self) -> None:
        self._running = False
        logging.info("JobScheduler stop request")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def total_jobs_started(self) -> int:
        return self._total_jobs_started

    async def run_once(self) -> int:
        """
        One scheduling pass: scale the pool toward demand, then start as many
        queued jobs as there are free units.

        Returns:
            Number of jobs moved to RUNNING.
        """
        async with self._pass_lock:
            started = await self._match_queued_jobs()

        if self._job_history_hours is not None and self._passes % HISTORY_PRUNE_EVERY == 0:
            await self._job_queue.prune_history(self._job_history_hours)

        if started:
            logging.info(f"Scheduling pass started {started} job(s)")
        return started

    async def _match_queued_jobs(self) -> int:
        await self._resource_pool.reconcile(await self._job_queue.queued_demand())

        started = 0
        while True:
            job = await self._job_queue.next_ready()
            if job is None:
                break
            try:
                unit = await self._resource_pool.request_capacity(
                    job.cpu_request, job.memory_request_mib, job_id=job.job_id
                )
            except CapacityUnavailableError as e:
                logging.debug(f"Job {job.job_id} stays queued: {e}")
                break

            if await self._start_on_unit(job, unit):
                started += 1

        self._passes += 1
        return started

    async def handle_status_report(self, report: JobStatusReport) -> JobInstance:
        """
        Apply a terminal status from the executor and free the job's unit.

        Raises:
            JobNotFoundError: Unknown job id.
            InvalidTransitionError: The job is not RUNNING.
        """
        job = await self._job_queue.get(report.job_id)
        unit_id = job.assigned_unit_id

        updated = await self._job_queue.mark_state(
            report.job_id,
            report.state,
            status_reason=report.reason,
            output_location=report.output_location,
            assigned_unit_id=None,
        )
        self._cancel_requested.discard(report.job_id)

        if unit_id is not None:
            await self._release_unit(unit_id)

        log = logging.warning if report.state == JobState.FAILED else logging.info
        log(f"Job {report.job_id} finished: {report.state.value}" + (f" ({report.reason})" if report.reason else ""))
        return updated

    async def cancel(self, job_id: str) -> JobInstance:
        """
        Cancel a job. QUEUED jobs are cancelled immediately; RUNNING jobs are
        signalled and stay RUNNING until the executor confirms.

        Raises:
            JobNotFoundError: Unknown job id.
            InvalidTransitionError: The job is SUBMITTED or already terminal.
            TerminationSignalError: The executor could not be signalled; the
                job stays RUNNING and the cancel can be retried.
        """
        job = await self._job_queue.get(job_id)

        if job.state == JobState.QUEUED:
            try:
                return await self._job_queue.mark_state(
                    job_id, JobState.CANCELLED, status_reason="Cancelled before start"
                )
            except InvalidTransitionError:
                # Lost the race against the scheduler; fall through to the running path
                job = await self._job_queue.get(job_id)

        if job.state != JobState.RUNNING:
            raise InvalidTransitionError(job_id, job.state.value, JobState.CANCELLED.value)

        if job_id in self._cancel_requested:
            logging.info(f"Cancellation of job {job_id} already requested")
            return job

        self._cancel_requested.add(job_id)
        try:
            signalled = await self._resource_pool.signal_termination(job_id)
        except Exception as e:
            # Not signalled, so a later cancel must be able to try again
            self._cancel_requested.discard(job_id)
            raise TerminationSignalError(job_id, e) from e
        if not signalled:
            self._cancel_requested.discard(job_id)

        # The executor may have confirmed synchronously
        return await self._job_queue.get(job_id)

    def is_cancel_requested(self, job_id: str) -> bool:
        return job_id in self._cancel_requested

    async def _start_on_unit(self, job: JobInstance, unit: WorkerCapacityUnit) -> bool:
        unit_id = unit.unit_id
        try:
            running = await self._job_queue.mark_state(
                job.job_id, JobState.RUNNING, assigned_unit_id=unit_id
            )
        except InvalidTransitionError as e:
            # Cancelled between selection and assignment
            logging.info(f"Job {job.job_id} no longer startable: {e}")
            await self._release_unit(unit_id)
            return False

        try:
            await self._executor.start(running, unit)
        except Exception as e:
            logging.error(f"Executor failed to start job {job.job_id}: {e}", exc_info=True)
            await self._job_queue.mark_state(
                job.job_id,
                JobState.FAILED,
                status_reason=f"Executor start failed: {e}",
                assigned_unit_id=None,
            )
            await self._release_unit(unit_id)
            return False

        self._total_jobs_started += 1
        return True

    async def _release_unit(self, unit_id: str) -> None:
        try:
            await self._resource_pool.release(unit_id)
        except UnitNotFoundError as e:
            logging.error(f"Could not release unit: {e}")
