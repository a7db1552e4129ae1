"""
Write-side message types: a command asks for one change, a handler makes it.
"""
from abc import ABC, abstractmethod
from typing import Generic, TypeVar

C = TypeVar("C", bound="Command")
R = TypeVar("R")


class Command(ABC):
    """Marker base for commands (dispatch an arrival, cancel a job, report a status)."""


class CommandHandler(Generic[C, R], ABC):
    """Handles exactly one command type; the bus calls ``handle`` and returns its result."""

    @abstractmethod
    async def handle(self, command: C) -> R:
        raise NotImplementedError
