"""
Domain events for the job lifecycle and the worker pool.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from feed_dispatch.models import JobState, utcnow


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    """
    Something that happened to a job or to the worker pool.

    Every event gets its own id and the UTC time it was raised.
    """

    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    occurred_at: datetime = field(default_factory=utcnow)

    @property
    def name(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class JobSubmittedEvent(DomainEvent):
    """Published when the dispatcher has rendered and enqueued a job."""

    job_id: str
    template_id: str
    source_location: str
    object_key: str


@dataclass(frozen=True)
class JobStateChangedEvent(DomainEvent):
    """Published after every accepted job state transition."""

    job_id: str
    old_state: Optional[JobState]
    new_state: JobState


@dataclass(frozen=True)
class CapacityUnitProvisionedEvent(DomainEvent):
    unit_id: str
    cpu_capacity: int
    memory_capacity_mib: int


@dataclass(frozen=True)
class CapacityUnitDeprovisionedEvent(DomainEvent):
    unit_id: str
    reason: str
