"""
In-process event bus connecting engine services to their observers.
"""
import asyncio
import logging
from collections import defaultdict
from typing import Awaitable, Callable, Dict, List, Type

from storage_engine.core.events.domain_event import DomainEvent

EventHandler = Callable[[DomainEvent], Awaitable[None]]


class DomainEventBus:
    """
    Asynchronous publish/subscribe bus.

    Handlers for one event run concurrently. A failing handler is logged and
    never stops the publisher or the other handlers, so a broken notifier
    cannot abort a restore or a recovery.
    """

    def __init__(self) -> None:
        self._handlers: Dict[Type[DomainEvent], List[EventHandler]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def subscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        async with self._lock:
            if handler not in self._handlers[event_type]:
                self._handlers[event_type].append(handler)
                logging.debug(f"{_handler_name(handler)} subscribed to {event_type.__name__}")

    async def unsubscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        async with self._lock:
            if handler in self._handlers.get(event_type, []):
                self._handlers[event_type].remove(handler)

    def handler_count(self, event_type: Type[DomainEvent]) -> int:
        return len(self._handlers.get(event_type, []))

    async def publish(self, event: DomainEvent) -> int:
        """
        Deliver an event to every handler subscribed to its exact type.

        Returns:
            Number of handlers the event was delivered to.
        """
        handlers = list(self._handlers.get(type(event), []))
        if not handlers:
            logging.debug(f"No handlers for event {event.name}")
            return 0

        logging.debug(f"Publishing {event.name} to {len(handlers)} handler(s)")
        await asyncio.gather(*(self._safe_execute(h, event) for h in handlers))
        return len(handlers)

    async def _safe_execute(self, handler: EventHandler, event: DomainEvent) -> None:
        try:
            await handler(event)
        except Exception as e:
            logging.error(
                f"Unhandled exception in handler '{_handler_name(handler)}' for event "
                f"'{event.name}': {e}",
                exc_info=True,
            )


def _handler_name(handler: EventHandler) -> str:
    return getattr(handler, "__qualname__", None) or getattr(handler, "__name__", repr(handler))
