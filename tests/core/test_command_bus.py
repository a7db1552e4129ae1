from unittest.mock import AsyncMock

import pytest

from feed_dispatch.core.cqrs.command_bus import CommandBus
from feed_dispatch.domains.execution.commands import CancelJobCommand, ReportJobStatusCommand


class TestCommandBus:
    @pytest.mark.asyncio
    async def test_execute_calls_registered_handler(self):
        bus = CommandBus()
        handler = AsyncMock(return_value="done")
        bus.register(CancelJobCommand, handler)

        command = CancelJobCommand(job_id="job-1")
        result = await bus.execute(command)

        assert result == "done"
        assert bus.registered_commands == ["CancelJobCommand"]
        handler.assert_awaited_once_with(command)

    def test_duplicate_registration_raises(self):
        bus = CommandBus()
        handler = AsyncMock()
        bus.register(CancelJobCommand, handler)

        with pytest.raises(ValueError):
            bus.register(CancelJobCommand, handler)

    @pytest.mark.asyncio
    async def test_execute_without_handler_raises(self):
        bus = CommandBus()

        assert not bus.is_registered(ReportJobStatusCommand)
        with pytest.raises(ValueError):
            await bus.execute(CancelJobCommand(job_id="job-1"))

    @pytest.mark.asyncio
    async def test_handler_exceptions_propagate(self):
        bus = CommandBus()
        handler = AsyncMock(side_effect=LookupError("nope"))
        bus.register(CancelJobCommand, handler)

        with pytest.raises(LookupError):
            await bus.execute(CancelJobCommand(job_id="job-1"))
