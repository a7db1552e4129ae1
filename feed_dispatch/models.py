from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

PLACEHOLDER_PREFIX = "Ref::"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobState(str, Enum):
    """
    Status for et job gennem hele livsforløbet.

    Normal Workflow: Submitted -> Queued -> Running -> Succeeded | Failed
    Cancellation: Queued -> Cancelled, Running -> Cancelled (only on executor confirmation)
    """

    SUBMITTED = "SUBMITTED"  # Rendered by the dispatcher, not yet in the queue
    QUEUED = "QUEUED"  # Waiting for a worker capacity unit
    RUNNING = "RUNNING"  # Assigned to a unit and handed to the executor
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"  # Business-logic failure inside the executor; never retried here
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED})


class ArrivalEvent(BaseModel):
    """Notification that a new vendor feed file is available for processing."""

    model_config = ConfigDict(
        frozen=True,
        # Wire shape is camelCase (sourceLocation, objectKey); snake_case is accepted too
        alias_generator=to_camel,
        populate_by_name=True,
    )

    source_location: str = Field(..., description="Bucket/container identifier")
    object_key: str = Field(..., description="Key of the newly arrived object")
    arrival_timestamp: datetime = Field(default_factory=utcnow)

    # Informational fields carried from storage notifications
    object_size: Optional[int] = Field(default=None, ge=0)
    event_name: Optional[str] = None


@dataclass(frozen=True)
class JobTemplate:
    """
    Immutable definition of how a single file-processing job is run.

    ``argument_schema`` is the ordered command line; tokens written as
    ``Ref::<name>`` are placeholders resolved per submission.
    """

    template_id: str
    container_image: str
    cpu_request: int
    memory_request_mib: int
    argument_schema: Tuple[str, ...]
    environment_defaults: Mapping[str, str] = field(default_factory=dict)
    parameter_defaults: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.template_id:
            raise ValueError("template_id must not be empty")
        if self.cpu_request < 1 or self.memory_request_mib < 1:
            raise ValueError(
                f"Template '{self.template_id}' needs a positive cpu and memory request"
            )
        # Freeze the collections so shared templates cannot be mutated in place
        object.__setattr__(self, "argument_schema", tuple(self.argument_schema))
        object.__setattr__(
            self, "environment_defaults", MappingProxyType(dict(self.environment_defaults))
        )
        object.__setattr__(
            self, "parameter_defaults", MappingProxyType(dict(self.parameter_defaults))
        )

    @property
    def placeholders(self) -> List[str]:
        """Placeholder names in the order they appear in the argument schema."""
        return [
            token[len(PLACEHOLDER_PREFIX):]
            for token in self.argument_schema
            if token.startswith(PLACEHOLDER_PREFIX)
        ]

    def describe(self) -> dict:
        return {
            "template_id": self.template_id,
            "container_image": self.container_image,
            "cpu_request": self.cpu_request,
            "memory_request_mib": self.memory_request_mib,
            "argument_schema": list(self.argument_schema),
            "environment_defaults": dict(self.environment_defaults),
            "parameter_defaults": dict(self.parameter_defaults),
        }


class JobInstance(BaseModel):
    """
    One concrete execution derived from a template.

    Owned by the job queue until terminal. Only the state machine changes it,
    and never its identity or template reference.
    """

    job_id: str = Field(default_factory=lambda: str(uuid4()), frozen=True)
    template_id: str = Field(..., frozen=True)
    job_name: str
    queue_name: str
    priority: int = 1

    source_location: str
    object_key: str

    rendered_arguments: List[str]
    rendered_environment: Dict[str, str]
    cpu_request: int = Field(..., ge=1)
    memory_request_mib: int = Field(..., ge=1)

    state: JobState = JobState.SUBMITTED
    submission_time: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    assigned_unit_id: Optional[str] = None
    status_reason: Optional[str] = None
    output_location: Optional[str] = None

    def __str__(self) -> str:
        return (
            f"JobInstance(id={self.job_id[:8]}, "
            f"key={self.source_location}/{self.object_key}, "
            f"state={self.state.value})"
        )


class WorkerCapacityUnit(BaseModel):
    """One schedulable slice of compute capacity. Holds at most one job."""

    unit_id: str = Field(default_factory=lambda: f"unit-{uuid4().hex[:12]}", frozen=True)
    cpu_capacity: int = Field(..., ge=1)
    memory_capacity_mib: int = Field(..., ge=1)
    assigned_job_id: Optional[str] = None
    provisioned_at: datetime = Field(default_factory=utcnow)
    idle_since: Optional[datetime] = Field(default_factory=utcnow)

    @property
    def is_idle(self) -> bool:
        return self.assigned_job_id is None

    def fits(self, cpu: int, memory_mib: int) -> bool:
        return cpu <= self.cpu_capacity and memory_mib <= self.memory_capacity_mib


class JobStatusReport(BaseModel):
    """Terminal status reported by a job executor."""

    job_id: str
    state: JobState
    reason: Optional[str] = None
    output_location: Optional[str] = None

    @field_validator("state")
    @classmethod
    def _must_be_terminal(cls, value: JobState) -> JobState:
        if not value.is_terminal:
            raise ValueError(f"Executor reports must carry a terminal state, got {value.value}")
        return value


class PoolSnapshot(BaseModel):
    """Point-in-time view of the resource pool."""

    min_vcpus: int
    max_vcpus: int
    provisioned_vcpus: int
    pending_vcpus: int
    assigned_vcpus: int
    units: List[WorkerCapacityUnit]
