"""Per-node WebSocket session.

This module implements the connection lifecycle to one audio node:
connect with the protocol headers, wait for the ``ready`` frame, feed every
following frame to the dispatcher in arrival order, and reconnect with
exponential backoff when the transport closes or fails.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

from .config import ClientConfig
from .events import EventBus, NodeConnected, NodeDisconnected
from .node import Node, NodeRegistry
from .protocol import OpType, Ready, build_connect_headers, parse_frame

_LOGGER = logging.getLogger(__name__)

FrameCallback = Callable[[str, Any], Awaitable[None]]


class ConnectionState:
    """Connection state constants."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    ACTIVE = "active"
    CLOSING = "closing"
    FAULTED = "faulted"


class NodeSession:
    """WebSocket session with one node.

    Handles:
    - Connection headers (credential, shard count, bot id, client name)
    - The ready handshake and the node session id
    - Ordered delivery of frames to the dispatcher
    - Reconnection with exponential backoff, resuming when possible

    One instance runs per node; sessions never share state besides the
    registries they update.
    """

    def __init__(
        self,
        node: Node,
        config: ClientConfig,
        registry: NodeRegistry,
        bus: EventBus,
        on_frame: FrameCallback,
        connector: Callable[..., Any] = connect,
    ) -> None:
        """Initialize the session.

        Args:
            node: Registry entry of the node to connect to
            config: Client configuration (bot id, shards, backoff)
            registry: Node registry marked connected/disconnected by the session
            bus: Event bus for NodeConnected/NodeDisconnected
            on_frame: Coroutine receiving (node name, raw frame) for each frame
            connector: WebSocket connect function, replaceable for testing
        """
        self._node = node
        self._config = config
        self._registry = registry
        self._bus = bus
        self._on_frame = on_frame
        self._connector = connector

        self._state = ConnectionState.DISCONNECTED
        self._websocket: Optional[ClientConnection] = None
        self._should_reconnect = True
        self._ready_event = asyncio.Event()

        # Last session id issued by the node, offered back on reconnect
        self._resume_session_id: Optional[str] = None
        self._attempt = 0

        self._task: Optional[asyncio.Task] = None

    @property
    def name(self) -> str:
        return self._node.name

    @property
    def state(self) -> str:
        """Current connection state."""
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state == ConnectionState.ACTIVE

    def start(self) -> asyncio.Task:
        """Run the connection loop in a background task."""
        if self._task is None or self._task.done():
            self._should_reconnect = True
            self._task = asyncio.create_task(self.run(), name=f"fastlink-node-{self.name}")
        return self._task

    async def wait_until_ready(self) -> None:
        await self._ready_event.wait()

    async def run(self) -> None:
        """Connection loop with reconnection logic."""
        while self._should_reconnect:
            try:
                await self._connect_once()
            except asyncio.CancelledError:
                break

            if self._should_reconnect:
                delay = self._next_delay()
                _LOGGER.info("[%s] Reconnecting in %.1f seconds...", self.name, delay)
                await asyncio.sleep(delay)

    async def close(self) -> None:
        """Stop reconnecting and close the connection."""
        self._should_reconnect = False

        if self._websocket is not None:
            self._set_state(ConnectionState.CLOSING)
            await self._websocket.close()

        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        self._ready_event.clear()
        self._registry.mark_disconnected(self.name)
        self._set_state(ConnectionState.DISCONNECTED)

    def _next_delay(self) -> float:
        delay = min(
            self._config.reconnect_delay * (2 ** self._attempt),
            self._config.max_reconnect_delay,
        )
        self._attempt += 1
        return delay

    async def _connect_once(self) -> None:
        """Attempt a single connection and run it until it ends."""
        self._set_state(ConnectionState.CONNECTING)
        url = self._node.config.ws_url
        headers = build_connect_headers(
            password=self._node.config.password.get_secret_value(),
            shard_count=self._config.shard_count,
            bot_id=self._config.bot_id,
            client_name=self._config.client_name,
            session_id=self._resume_session_id,
        )
        _LOGGER.info("[%s] Connecting to %s", self.name, url)

        error: Optional[str] = None
        try:
            async with self._connector(
                url,
                additional_headers=headers,
                ping_interval=30,
                ping_timeout=10,
            ) as websocket:
                self._websocket = websocket
                await self._handshake()
                await self._message_loop()
            self._set_state(ConnectionState.CLOSING)
        except ConnectionClosed as e:
            _LOGGER.warning("[%s] Connection closed: %s", self.name, e)
            self._set_state(ConnectionState.CLOSING)
        except Exception as e:
            _LOGGER.error("[%s] WebSocket error: %s", self.name, e)
            error = str(e)
            self._set_state(ConnectionState.FAULTED)
        finally:
            self._websocket = None
            await self._handle_disconnect(error)

    async def _handshake(self) -> None:
        """Wait for the ready frame and record the node session id."""
        self._set_state(ConnectionState.HANDSHAKING)

        message = await self._websocket.recv()
        op, frame = parse_frame(message)
        if op != OpType.READY:
            raise RuntimeError(f"Expected ready, got {op}")

        ready = Ready.from_dict(frame)
        self._registry.mark_connected(self.name, ready.session_id)
        self._resume_session_id = ready.session_id
        self._attempt = 0
        self._set_state(ConnectionState.ACTIVE)
        self._ready_event.set()

        if ready.resumed:
            _LOGGER.info("[%s] Resumed session %s", self.name, ready.session_id)

        await self._bus.publish(
            NodeConnected(node=self.name, session_id=ready.session_id, resumed=ready.resumed)
        )

    async def _message_loop(self) -> None:
        """Hand frames to the dispatcher one at a time, in arrival order."""
        async for message in self._websocket:
            try:
                await self._on_frame(self.name, message)
            except Exception as e:
                _LOGGER.warning("[%s] Error handling message: %s", self.name, e)

    async def _handle_disconnect(self, error: Optional[str]) -> None:
        was_connected = self._node.connected
        self._ready_event.clear()
        self._registry.mark_disconnected(self.name)
        self._set_state(ConnectionState.DISCONNECTED)

        if was_connected:
            await self._bus.publish(NodeDisconnected(node=self.name, error=error))

    def _set_state(self, state: str) -> None:
        if state != self._state:
            _LOGGER.debug("[%s] State: %s -> %s", self.name, self._state, state)
            self._state = state
