"""
In-process publish/subscribe for job and pool events.
"""
import asyncio
import logging
from collections import defaultdict
from typing import Awaitable, Callable, Dict, List, Type

from feed_dispatch.core.events.job_events import DomainEvent

EventHandler = Callable[[DomainEvent], Awaitable[None]]


class DomainEventBus:
    """
    Fans each published event out to the handlers subscribed to its exact type.

    Handlers run concurrently. One that raises is logged with its traceback
    and does not affect the others or the publisher.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[Type[DomainEvent], List[EventHandler]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def subscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        async with self._lock:
            self._subscribers[event_type].append(handler)
        logging.debug(f"{_handler_name(handler)} lytter på {event_type.__name__}")

    async def unsubscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> bool:
        """Remove ``handler``. Returns False if it was not subscribed."""
        async with self._lock:
            handlers = self._subscribers.get(event_type, [])
            if handler not in handlers:
                return False
            handlers.remove(handler)
            return True

    def subscriber_count(self, event_type: Type[DomainEvent]) -> int:
        return len(self._subscribers.get(event_type, []))

    async def publish(self, event: DomainEvent) -> None:
        # Snapshot so a handler subscribing during delivery is not called for this event
        handlers = list(self._subscribers.get(type(event), []))
        if not handlers:
            return

        logging.debug(f"Delivering {event.name} ({event.event_id}) to {len(handlers)} handler(s)")
        await asyncio.gather(*(self._deliver(handler, event) for handler in handlers))

    async def _deliver(self, handler: EventHandler, event: DomainEvent) -> None:
        try:
            await handler(event)
        except Exception as e:
            logging.error(
                f"Event handler {_handler_name(handler)} failed on {event.name}: {e}",
                exc_info=True,
            )


def _handler_name(handler: EventHandler) -> str:
    return getattr(handler, "__qualname__", None) or getattr(handler, "__name__", repr(handler))
