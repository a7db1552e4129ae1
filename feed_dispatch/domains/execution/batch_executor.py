"""
AWS Batch executor - submits rendered jobs to a Batch job queue and polls
their status until they reach a terminal state.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set

import boto3

from feed_dispatch.core.cqrs.command_bus import CommandBus
from feed_dispatch.domains.dispatch.dispatcher import (
    INPUT_BUCKET_PLACEHOLDER,
    OBJECT_KEY_PLACEHOLDER,
)
from feed_dispatch.domains.execution.executor import JobExecutor
from feed_dispatch.models import JobInstance, JobState, WorkerCapacityUnit

# describe_jobs accepts at most 100 job ids per call
DESCRIBE_BATCH_SIZE = 100

TERMINATE_REASON = "Cancelled by vendor feed dispatcher"


class BatchJobExecutor(JobExecutor):
    """Runs jobs as AWS Batch jobs against a pre-registered job definition."""

    def __init__(
        self,
        command_bus: CommandBus,
        job_queue_name: str,
        job_definition: str,
        region_name: str = "us-east-1",
        poll_interval_seconds: float = 10.0,
        client: Optional[Any] = None,
    ):
        super().__init__(command_bus)
        self._job_queue_name = job_queue_name
        self._job_definition = job_definition
        self._poll_interval_seconds = poll_interval_seconds
        self._client = client or boto3.client("batch", region_name=region_name)

        # our job id -> Batch job id, and the reverse
        self._batch_ids: Dict[str, str] = {}
        self._job_ids: Dict[str, str] = {}
        self._terminating: Set[str] = set()

        self._running = False
        self._poll_task: Optional[asyncio.Task] = None

        logging.info(
            f"BatchJobExecutor initialiseret (queue={job_queue_name}, definition={job_definition})"
        )

    async def start_polling(self) -> None:
        if self._running:
            logging.warning("Batch status polling er allerede startet")
            return

        self._running = True
        logging.info("Batch status polling startet")
        try:
            while self._running:
                await self.poll_once()
                await asyncio.sleep(self._poll_interval_seconds)
        except asyncio.CancelledError:
            logging.info("Batch status polling blev cancelled")
            raise
        finally:
            self._running = False

    def stop_polling(self) -> None:
        self._running = False

    async def shutdown(self) -> None:
        self.stop_polling()

    async def start(self, job: JobInstance, unit: WorkerCapacityUnit) -> None:
        response = await asyncio.to_thread(
            self._client.submit_job,
            jobName=job.job_name,
            jobQueue=self._job_queue_name,
            jobDefinition=self._job_definition,
            parameters={
                INPUT_BUCKET_PLACEHOLDER: job.source_location,
                OBJECT_KEY_PLACEHOLDER: job.object_key,
            },
            containerOverrides={
                "command": list(job.rendered_arguments),
                "environment": [
                    {"name": name, "value": value}
                    for name, value in job.rendered_environment.items()
                ],
                "resourceRequirements": [
                    {"type": "VCPU", "value": str(job.cpu_request)},
                    {"type": "MEMORY", "value": str(job.memory_request_mib)},
                ],
            },
        )

        batch_job_id = response["jobId"]
        self._batch_ids[job.job_id] = batch_job_id
        self._job_ids[batch_job_id] = job.job_id
        logging.info(f"Job {job.job_id} submitted to Batch as {batch_job_id} ({job.job_name})")

    async def terminate(self, job_id: str) -> None:
        batch_job_id = self._batch_ids.get(job_id)
        if batch_job_id is None:
            logging.warning(f"Terminate requested for job {job_id}, which was not submitted to Batch")
            return

        self._terminating.add(job_id)
        await asyncio.to_thread(
            self._client.terminate_job, jobId=batch_job_id, reason=TERMINATE_REASON
        )
        logging.info(f"Batch job {batch_job_id} termination requested")

    async def poll_once(self) -> int:
        """Describe all tracked jobs once. Returns the number of terminal reports sent."""
        batch_job_ids = list(self._job_ids)
        reported = 0

        for offset in range(0, len(batch_job_ids), DESCRIBE_BATCH_SIZE):
            chunk = batch_job_ids[offset:offset + DESCRIBE_BATCH_SIZE]
            try:
                response = await asyncio.to_thread(self._client.describe_jobs, jobs=chunk)
            except Exception as e:
                logging.warning(f"Error describing Batch jobs: {e}")
                continue

            for description in response.get("jobs", []):
                if await self._handle_description(description):
                    reported += 1

        return reported

    async def _handle_description(self, description: Dict[str, Any]) -> bool:
        batch_job_id = description.get("jobId")
        job_id = self._job_ids.get(batch_job_id)
        status = description.get("status")
        if job_id is None or status not in ("SUCCEEDED", "FAILED"):
            return False

        reason = description.get("statusReason")
        if status == "SUCCEEDED":
            state = JobState.SUCCEEDED
        elif job_id in self._terminating:
            # Batch reports terminated jobs as FAILED
            state = JobState.CANCELLED
        else:
            state = JobState.FAILED

        self._forget(job_id)
        await self.report(
            job_id,
            state,
            reason=reason,
            output_location=_log_stream(description),
        )
        return True

    def _forget(self, job_id: str) -> None:
        batch_job_id = self._batch_ids.pop(job_id, None)
        if batch_job_id is not None:
            self._job_ids.pop(batch_job_id, None)
        self._terminating.discard(job_id)

    @property
    def tracked_job_ids(self) -> List[str]:
        return list(self._batch_ids)


def _log_stream(description: Dict[str, Any]) -> Optional[str]:
    container = description.get("container") or {}
    return container.get("logStreamName")
