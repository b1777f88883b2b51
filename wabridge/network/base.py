import inspect
from collections import defaultdict
from typing import Any, Callable, Dict, List, Type

from wabridge.network.events import EVENT_TYPES


class Network:
    """
    Capability the bridge consumes: connect, emit typed events, send.

    Subclasses implement connect/send/disconnect and call `emit` for every
    event the protocol layer produces. Handlers for one event run to
    completion before the next event is emitted.
    """

    def __init__(self):
        self._handlers: Dict[Type, List[Callable]] = defaultdict(list)

    def subscribe(self, event_type: Type, handler: Callable) -> None:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type!r}")
        self._handlers[event_type].append(handler)

    async def emit(self, event: Any) -> None:
        for handler in list(self._handlers.get(type(event), ())):
            result = handler(event)
            if inspect.isawaitable(result):
                await result

    async def connect(self, auth_state=None) -> None:
        raise NotImplementedError

    async def send(self, to: str, body: str) -> None:
        raise NotImplementedError

    async def disconnect(self) -> None:
        """Close the connection. The device stays linked; stored credentials remain valid."""
        raise NotImplementedError
