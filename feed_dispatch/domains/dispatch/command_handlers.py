"""
Command handlers for the dispatch domain.
"""
import logging

from feed_dispatch.core.cqrs.command import CommandHandler
from feed_dispatch.domains.dispatch.commands import DispatchArrivalCommand
from feed_dispatch.domains.dispatch.dispatcher import JobDispatcher


class DispatchArrivalCommandHandler(CommandHandler[DispatchArrivalCommand, str]):
    """Runs DispatchArrivalCommand through the JobDispatcher."""

    def __init__(self, dispatcher: JobDispatcher):
        self._dispatcher = dispatcher

    async def handle(self, command: DispatchArrivalCommand) -> str:
        logging.debug(
            f"DispatchArrivalCommand for {command.event.source_location}/{command.event.object_key}"
        )
        return await self._dispatcher.dispatch(command.event)
