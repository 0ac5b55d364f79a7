"""Push-event transport contract and an in-process implementation."""

from collections.abc import Callable
from typing import Any, Protocol

from conversation_sync.logging import get_logger

logger = get_logger("transport")

EventHandler = Callable[[Any], None]


class PushTransport(Protocol):
    """Named-event subscription API of the realtime connection."""

    def subscribe(self, event_name: str, handler: EventHandler) -> None: ...

    def unsubscribe(self, event_name: str) -> None: ...


class LocalEventBus:
    """In-process PushTransport.

    Delivers emitted payloads synchronously to the handler registered for the
    event name. Used to embed the core without a network connection and to
    drive it in tests. One handler per event name; subscribing again replaces
    the previous handler.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, EventHandler] = {}

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        self._handlers[event_name] = handler

    def unsubscribe(self, event_name: str) -> None:
        self._handlers.pop(event_name, None)

    def is_subscribed(self, event_name: str) -> bool:
        return event_name in self._handlers

    def emit(self, event_name: str, payload: Any) -> bool:
        """Deliver a payload.

        Returns:
            True if a handler received it, False if nobody is subscribed
        """
        handler = self._handlers.get(event_name)
        if handler is None:
            logger.debug("No subscriber for event: event=%s", event_name)
            return False
        handler(payload)
        return True
