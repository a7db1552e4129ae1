"""
Command handlers for the execution domain.
"""
from feed_dispatch.core.cqrs.command import CommandHandler
from feed_dispatch.domains.execution.commands import CancelJobCommand, ReportJobStatusCommand
from feed_dispatch.domains.execution.scheduler import JobScheduler
from feed_dispatch.models import JobInstance


class CancelJobCommandHandler(CommandHandler[CancelJobCommand, JobInstance]):
    def __init__(self, scheduler: JobScheduler):
        self._scheduler = scheduler

    async def handle(self, command: CancelJobCommand) -> JobInstance:
        return await self._scheduler.cancel(command.job_id)


class ReportJobStatusCommandHandler(CommandHandler[ReportJobStatusCommand, JobInstance]):
    def __init__(self, scheduler: JobScheduler):
        self._scheduler = scheduler

    async def handle(self, command: ReportJobStatusCommand) -> JobInstance:
        return await self._scheduler.handle_status_report(command.report)
