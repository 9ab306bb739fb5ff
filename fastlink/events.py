"""Typed domain events and the bus that delivers them to consumers."""

import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    DefaultDict,
    Dict,
    List,
    Optional,
    Type,
    Union,
)

if TYPE_CHECKING:
    from .player import PlayerSnapshot

_LOGGER = logging.getLogger(__name__)

EventHandler = Callable[[Any], Union[Awaitable[None], None]]


@dataclass(frozen=True)
class FastLinkEvent:
    """Base class for every event; subscribe to it to receive all of them."""


@dataclass(frozen=True)
class TrackStart(FastLinkEvent):
    node: str
    guild_id: str
    player: "PlayerSnapshot"
    track: Optional[Dict[str, Any]]


@dataclass(frozen=True)
class TrackEnd(FastLinkEvent):
    node: str
    guild_id: str
    player: "PlayerSnapshot"
    track: Optional[Dict[str, Any]]
    reason: Optional[str]


@dataclass(frozen=True)
class TrackException(FastLinkEvent):
    node: str
    guild_id: str
    player: "PlayerSnapshot"
    track: Optional[Dict[str, Any]]
    exception: Optional[Dict[str, Any]]


@dataclass(frozen=True)
class TrackStuck(FastLinkEvent):
    node: str
    guild_id: str
    player: "PlayerSnapshot"
    track: Optional[Dict[str, Any]]
    threshold_ms: Optional[int]


@dataclass(frozen=True)
class WebSocketClosed(FastLinkEvent):
    """The node lost its voice WebSocket to Discord for a guild."""
    node: str
    guild_id: str
    player: "PlayerSnapshot"
    code: Optional[int]
    reason: Optional[str]
    by_remote: Optional[bool]


@dataclass(frozen=True)
class NodeConnected(FastLinkEvent):
    node: str
    session_id: str
    resumed: bool = False


@dataclass(frozen=True)
class NodeDisconnected(FastLinkEvent):
    node: str
    error: Optional[str] = None


class EventBus:
    """In-process pub/sub bus for FastLink events.

    Handlers may be plain functions or coroutine functions. They run one at a
    time in subscription order, in the task that publishes the event, so a
    subscriber sees the events of one node in the order the node sent them.
    Exceptions raised by a handler are logged and do not stop the others.
    """

    def __init__(self) -> None:
        self._handlers: DefaultDict[Type[FastLinkEvent], List[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: Type[FastLinkEvent], handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)
        _LOGGER.debug("Subscribed handler to: %s", event_type.__name__)

    def unsubscribe(self, event_type: Type[FastLinkEvent], handler: EventHandler) -> None:
        handlers = self._handlers[event_type]
        if handler in handlers:
            handlers.remove(handler)
            _LOGGER.debug("Unsubscribed handler from %s", event_type.__name__)

    def on(self, event_type: Type[FastLinkEvent]) -> Callable[[EventHandler], EventHandler]:
        """Decorator form of :meth:`subscribe`."""

        def decorator(handler: EventHandler) -> EventHandler:
            self.subscribe(event_type, handler)
            return handler

        return decorator

    async def publish(self, event: FastLinkEvent) -> None:
        """Deliver ``event`` to the handlers of its type and of its base classes."""
        handlers: List[EventHandler] = []
        for event_type in type(event).__mro__:
            handlers.extend(self._handlers.get(event_type, []))

        if not handlers:
            _LOGGER.debug("No handlers for %s", type(event).__name__)
            return

        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                _LOGGER.exception("Error in handler for %s", type(event).__name__)

    def clear(self) -> None:
        """Remove all handlers."""
        self._handlers.clear()
