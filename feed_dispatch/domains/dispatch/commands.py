"""
Commands for the dispatch domain.
"""
from dataclasses import dataclass

from feed_dispatch.core.cqrs.command import Command
from feed_dispatch.models import ArrivalEvent


@dataclass
class DispatchArrivalCommand(Command):
    """
    Command to turn one arrival event into a queued job.

    The handler returns the new job id or raises a DispatchError subclass.
    """
    event: ArrivalEvent
