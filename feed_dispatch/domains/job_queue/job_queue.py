import asyncio
import logging
from collections import Counter
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

from feed_dispatch.core.exceptions import InvalidTransitionError, JobNotFoundError
from feed_dispatch.core.job_repository import JobRepository
from feed_dispatch.core.job_state_machine import JobStateMachine
from feed_dispatch.domains.resource_pool.pool_manager import ResourcePoolManager
from feed_dispatch.models import JobInstance, JobState, utcnow


class JobQueue:
    """
    Ordered queue of submitted jobs awaiting worker capacity.

    Jobs are served highest priority first and, within a priority, strictly in
    the order they were enqueued. There is no admission limit: when the pool is
    saturated jobs simply stay QUEUED until a unit frees up.
    """

    def __init__(
        self,
        job_repository: JobRepository,
        state_machine: JobStateMachine,
        resource_pool: ResourcePoolManager,
    ):
        self._repository = job_repository
        self._state_machine = state_machine
        self._resource_pool = resource_pool
        self._lock = asyncio.Lock()

        self._total_jobs_enqueued = 0

        logging.info("JobQueue initialiseret (unbounded, FIFO within priority)")

    async def enqueue(self, job: JobInstance) -> int:
        """
        Take ownership of a SUBMITTED job and move it to QUEUED.

        Returns:
            1-based position of the job among the currently queued jobs.
        """
        if job.state != JobState.SUBMITTED:
            raise InvalidTransitionError(job.job_id, job.state.value, JobState.QUEUED.value)

        async with self._lock:
            if not await self._repository.add(job):
                raise ValueError(f"Job {job.job_id} is already enqueued")

            await self._state_machine.transition(job_id=job.job_id, new_state=JobState.QUEUED)
            self._total_jobs_enqueued += 1

            queued = await self._queued_in_order()
            position = next(
                index for index, queued_job in enumerate(queued, start=1)
                if queued_job.job_id == job.job_id
            )

        logging.info(
            f"Job {job.job_id} enqueued at position {position}: "
            f"{job.source_location}/{job.object_key}"
        )
        return position

    async def next_ready(self) -> Optional[JobInstance]:
        """
        Oldest QUEUED job that the resource pool can take right now, or None.
        """
        for job in await self._queued_in_order():
            if await self._resource_pool.has_capacity_for(job.cpu_request, job.memory_request_mib):
                return job
        return None

    async def mark_state(self, job_id: str, new_state: JobState, **changes) -> JobInstance:
        """
        Transition a job. Raises JobNotFoundError or InvalidTransitionError.
        """
        return await self._state_machine.transition(job_id=job_id, new_state=new_state, **changes)

    async def get(self, job_id: str) -> JobInstance:
        job = await self._repository.get_by_id(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def list_jobs(self, state: Optional[JobState] = None) -> List[JobInstance]:
        jobs = await self._repository.get_all()
        if state is None:
            return jobs
        return [job for job in jobs if job.state == state]

    async def queued_jobs(self) -> List[JobInstance]:
        return await self._queued_in_order()

    async def queued_demand(self) -> List[Tuple[int, int]]:
        """(cpu, memory_mib) of every QUEUED job, in queue order."""
        return [(job.cpu_request, job.memory_request_mib) for job in await self._queued_in_order()]

    async def counts_by_state(self) -> Dict[str, int]:
        counts = Counter(job.state.value for job in await self._repository.get_all())
        return {state.value: counts.get(state.value, 0) for state in JobState}

    async def prune_history(self, keep_hours: int) -> int:
        """Forget terminal jobs that finished more than ``keep_hours`` ago."""
        removed = await self._repository.remove_finished_before(
            utcnow() - timedelta(hours=keep_hours)
        )
        if removed:
            logging.info(f"Pruned {removed} finished job(s) older than {keep_hours} hours")
        return removed

    @property
    def total_jobs_enqueued(self) -> int:
        return self._total_jobs_enqueued

    async def _queued_in_order(self) -> List[JobInstance]:
        queued = [job for job in await self._repository.get_all() if job.state == JobState.QUEUED]
        # Repository order is insertion order; the stable sort keeps it within a priority
        return sorted(queued, key=lambda job: -job.priority)
