import asyncio
import logging
from typing import Dict, Optional, Set

from feed_dispatch.core.events.event_bus import DomainEventBus
from feed_dispatch.core.events.job_events import JobStateChangedEvent
from feed_dispatch.core.exceptions import InvalidTransitionError, JobNotFoundError
from feed_dispatch.core.job_repository import JobRepository
from feed_dispatch.models import JobInstance, JobState, utcnow

# All legal transitions. Terminal states have no outgoing edges.
TRANSITIONS: Dict[JobState, Set[JobState]] = {
    JobState.SUBMITTED: {JobState.QUEUED},
    JobState.QUEUED: {JobState.RUNNING, JobState.CANCELLED},
    JobState.RUNNING: {JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED},
    JobState.SUCCEEDED: set(),
    JobState.FAILED: set(),
    JobState.CANCELLED: set(),
}

# Identity and state are never changed through **changes
PROTECTED_FIELDS = frozenset({"job_id", "template_id", "state"})


class JobStateMachine:
    """
    The single gatekeeper for job state transitions.

    This is the ONLY class allowed to:
    1. Validate a state transition.
    2. Change a JobInstance's .state field.
    3. Save the change to the JobRepository.
    4. Publish JobStateChangedEvent.
    """

    def __init__(
        self,
        job_repository: JobRepository,
        event_bus: DomainEventBus,
    ):
        self._repository = job_repository
        self._event_bus = event_bus
        # Serialises transitions so two tasks never move the same job concurrently
        self._lock = asyncio.Lock()
        self._pending_publications: Set[asyncio.Task] = set()
        logging.info("JobStateMachine initialiseret med %s overgangsregler", len(TRANSITIONS))

    async def transition(
        self,
        *,  # Force all parameters to be keyword-only
        job_id: str,
        new_state: JobState,
        **changes,
    ) -> JobInstance:
        """
        Performs a state transition atomically and publishes an event.

        Args:
            job_id: ID of the job to transition (keyword-only).
            new_state: The desired new state (keyword-only).
            **changes: Optional fields to update with the transition
                (e.g. assigned_unit_id, status_reason).

        Usage:
            await state_machine.transition(
                job_id="abc123",
                new_state=JobState.RUNNING,
                assigned_unit_id="unit-1",
            )

        Returns:
            The updated JobInstance.

        Raises:
            InvalidTransitionError: If the transition is not allowed, including
                repeating the current state.
            JobNotFoundError: If the job does not exist.
        """
        event_to_publish: Optional[JobStateChangedEvent] = None

        async with self._lock:
            job = await self._repository.get_by_id(job_id)
            if not job:
                raise JobNotFoundError(job_id)

            old_state = job.state

            if new_state not in TRANSITIONS[old_state]:
                raise InvalidTransitionError(job_id, old_state.value, new_state.value)

            logging.info(f"Transition: job {job_id} | {old_state.value} -> {new_state.value}")

            updates = {
                key: value
                for key, value in changes.items()
                if key in JobInstance.model_fields and key not in PROTECTED_FIELDS
            }
            updates["state"] = new_state

            now = utcnow()
            if new_state == JobState.RUNNING and not job.started_at:
                updates.setdefault("started_at", now)
            elif new_state.is_terminal and not job.finished_at:
                updates.setdefault("finished_at", now)

            # Copy-on-write keeps concurrent readers from seeing half-applied changes
            updated_job = job.model_copy(update=updates)
            await self._repository.update(updated_job)

            event_to_publish = JobStateChangedEvent(
                job_id=job_id,
                old_state=old_state,
                new_state=new_state,
            )

        # Announce outside the lock so slow subscribers never block transitions
        task = asyncio.create_task(self._event_bus.publish(event_to_publish))
        self._pending_publications.add(task)
        task.add_done_callback(self._pending_publications.discard)

        return updated_job
