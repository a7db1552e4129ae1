"""
Commands for the execution domain.
"""
from dataclasses import dataclass

from feed_dispatch.core.cqrs.command import Command
from feed_dispatch.models import JobStatusReport


@dataclass
class CancelJobCommand(Command):
    """
    Command to cancel a job.

    QUEUED jobs are cancelled at once. RUNNING jobs get a termination signal
    and become CANCELLED only when the executor confirms.
    """
    job_id: str


@dataclass
class ReportJobStatusCommand(Command):
    """Command carrying a terminal status from a job executor."""
    report: JobStatusReport
