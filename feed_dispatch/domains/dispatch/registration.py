"""
Registration for the Dispatch domain.

Binds DispatchArrivalCommand to the JobDispatcher on the command bus.
"""
import logging

from feed_dispatch.core.cqrs.command_bus import CommandBus
from feed_dispatch.domains.dispatch.command_handlers import DispatchArrivalCommandHandler
from feed_dispatch.domains.dispatch.commands import DispatchArrivalCommand
from feed_dispatch.domains.dispatch.dispatcher import JobDispatcher


def register_dispatch_domain(command_bus: CommandBus, dispatcher: JobDispatcher) -> None:
    logging.info("Registrerer 'Dispatch' command handlers...")
    if not command_bus.is_registered(DispatchArrivalCommand):
        command_bus.register(DispatchArrivalCommand, DispatchArrivalCommandHandler(dispatcher).handle)
