"""
Job Repository - A pure data access layer for JobInstance objects.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional

from feed_dispatch.models import JobInstance


class JobRepository:
    """
    In-memory, lock-guarded store of JobInstance objects.

    Iteration order is insertion order, which the job queue relies on for
    first-in-first-out scheduling.
    """

    def __init__(self):
        self._jobs_by_id: Dict[str, JobInstance] = {}
        self._lock = asyncio.Lock()
        logging.info("JobRepository initialized")

    async def get_by_id(self, job_id: str) -> Optional[JobInstance]:
        async with self._lock:
            return self._jobs_by_id.get(job_id)

    async def get_all(self) -> List[JobInstance]:
        async with self._lock:
            return list(self._jobs_by_id.values())

    async def add(self, job: JobInstance) -> bool:
        """Add a new job. Returns False if the ID is already present."""
        async with self._lock:
            if job.job_id in self._jobs_by_id:
                logging.error(
                    f"Job with ID {job.job_id} already exists in repository. Use update() to modify."
                )
                return False
            self._jobs_by_id[job.job_id] = job
            return True

    async def update(self, job: JobInstance) -> None:
        async with self._lock:
            if job.job_id not in self._jobs_by_id:
                logging.warning(
                    f"Job with ID {job.job_id} does not exist in repository. Cannot update."
                )
                return
            self._jobs_by_id[job.job_id] = job

    async def remove(self, job_id: str) -> bool:
        async with self._lock:
            if job_id in self._jobs_by_id:
                del self._jobs_by_id[job_id]
                return True
            return False

    async def remove_finished_before(self, cutoff: datetime) -> int:
        """Drop terminal jobs that finished before ``cutoff``. Returns the count removed."""
        async with self._lock:
            stale = [
                job_id
                for job_id, job in self._jobs_by_id.items()
                if job.state.is_terminal and job.finished_at and job.finished_at < cutoff
            ]
            for job_id in stale:
                del self._jobs_by_id[job_id]
            return len(stale)

    async def count(self) -> int:
        async with self._lock:
            return len(self._jobs_by_id)
