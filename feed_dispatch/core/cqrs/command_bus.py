import logging
from typing import Any, Awaitable, Callable, Dict, List, Type

from feed_dispatch.core.cqrs.command import Command

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[Any]]


class CommandBus:
    """
    Routes each command to the single handler registered for its type.

    Callers use it where a direct call would create an import cycle, such as
    executors reporting status back to the scheduler.
    """

    def __init__(self):
        self._routes: Dict[Type[Command], Handler] = {}

    def register(self, command_type: Type[Command], handler: Handler) -> None:
        """Bind ``handler`` to ``command_type``. A second binding raises ValueError."""
        if command_type in self._routes:
            message = f"{command_type.__name__} has a handler already"
            logger.error(message)
            raise ValueError(message)

        self._routes[command_type] = handler
        logger.debug(f"{command_type.__name__} -> {getattr(handler, '__qualname__', handler)}")

    def is_registered(self, command_type: Type[Command]) -> bool:
        return command_type in self._routes

    @property
    def registered_commands(self) -> List[str]:
        return sorted(command_type.__name__ for command_type in self._routes)

    async def execute(self, command: Command) -> Any:
        """
        Run ``command`` through its handler and return the handler's result.

        Raises ValueError when nothing is registered for the command's type;
        exceptions from the handler reach the caller unchanged.
        """
        handler = self._routes.get(type(command))
        if handler is None:
            message = f"No handler registered for {type(command).__name__}"
            logger.error(message)
            raise ValueError(message)

        return await handler(command)
