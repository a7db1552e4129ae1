"""
Registration for the Execution domain.

Executors report terminal status and the API requests cancellation through
the command bus; both land in the JobScheduler so that unit release always
follows the job's state change.
"""
import logging

from feed_dispatch.core.cqrs.command_bus import CommandBus
from feed_dispatch.domains.execution.command_handlers import (
    CancelJobCommandHandler,
    ReportJobStatusCommandHandler,
)
from feed_dispatch.domains.execution.commands import CancelJobCommand, ReportJobStatusCommand
from feed_dispatch.domains.execution.scheduler import JobScheduler


def register_execution_domain(command_bus: CommandBus, scheduler: JobScheduler) -> None:
    logging.info("Registrerer 'Execution' command handlers...")
    if not command_bus.is_registered(ReportJobStatusCommand):
        command_bus.register(ReportJobStatusCommand, ReportJobStatusCommandHandler(scheduler).handle)
    if not command_bus.is_registered(CancelJobCommand):
        command_bus.register(CancelJobCommand, CancelJobCommandHandler(scheduler).handle)
