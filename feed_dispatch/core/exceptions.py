class DispatchError(Exception):
    """Base class for failures returned to the event source by dispatch()."""


class InvalidEventError(DispatchError):
    """Raised when an arrival event is malformed. Not retried; logged and dropped."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid arrival event: {reason}")


class TemplateRenderError(DispatchError):
    """Raised when a job template cannot be fully rendered (configuration defect)."""

    def __init__(self, template_id: str, unresolved: list[str]):
        self.template_id = template_id
        self.unresolved = unresolved
        super().__init__(
            f"Template '{template_id}' has unresolved placeholders: {', '.join(unresolved)}"
        )


class CapacityUnavailableError(Exception):
    """Transient: no worker capacity unit can be assigned right now. Callers re-poll."""

    def __init__(self, cpu: int, memory_mib: int):
        self.cpu = cpu
        self.memory_mib = memory_mib
        super().__init__(
            f"No worker capacity available for {cpu} vCPU / {memory_mib} MiB"
        )


class InvalidTransitionError(Exception):
    """Raised when a job state transition is not allowed."""

    def __init__(self, job_id: str, from_state: str, to_state: str):
        self.job_id = job_id
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid state transition for job {job_id}: "
            f"Cannot move from '{from_state}' to '{to_state}'."
        )


class TerminationSignalError(Exception):
    """The executor could not be asked to stop a running job. The cancel may be retried."""

    def __init__(self, job_id: str, cause: Exception):
        self.job_id = job_id
        super().__init__(f"Could not signal termination of job {job_id}: {cause}")


class NotFoundError(LookupError):
    """Base class for lookups of unknown identifiers."""


class JobNotFoundError(NotFoundError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job with ID {job_id} does not exist.")


class TemplateNotFoundError(NotFoundError):
    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Job template '{template_id}' is not registered.")


class UnitNotFoundError(NotFoundError):
    def __init__(self, unit_id: str):
        self.unit_id = unit_id
        super().__init__(f"Worker capacity unit {unit_id} does not exist.")


class TemplateAlreadyRegisteredError(ValueError):
    """Templates are write-once; re-registering an id is refused."""

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(
            f"Job template '{template_id}' is already registered; register a new template id instead."
        )
