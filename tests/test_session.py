"""
Tests for the per-node WebSocket session, driven by an in-memory
connector instead of a real node.
"""

import asyncio
import logging
from typing import Callable, List

import pytest

from fastlink import ClientConfig, ConnectionState, FastLink, NodeConfig, NodeConnected, NodeDisconnected
from fastlink.events import EventBus, FastLinkEvent
from fastlink.node import NodeRegistry
from fastlink.session import NodeSession
from helpers import BOT_ID, NODE_A, frame


class FakeWebSocket:
    """Yields queued messages; with ``hold`` it stays open until closed."""

    def __init__(self, messages: List[str], hold: bool = True) -> None:
        self._messages = list(messages)
        self._hold = hold
        self._closed = asyncio.Event()

    async def recv(self) -> str:
        return self._messages.pop(0)

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> str:
        if self._messages:
            return self._messages.pop(0)
        if self._hold:
            await self._closed.wait()
        raise StopAsyncIteration

    async def close(self) -> None:
        self._closed.set()

    async def __aenter__(self) -> "FakeWebSocket":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()


class FakeConnector:
    """Hands out the given sockets in order, then refuses connections."""

    def __init__(self, *sockets: FakeWebSocket) -> None:
        self._sockets = list(sockets)
        self.calls = []

    def __call__(self, url: str, **kwargs) -> FakeWebSocket:
        self.calls.append((url, kwargs))
        if not self._sockets:
            raise OSError("connection refused")
        return self._sockets.pop(0)


def ready(session_id: str = "s1", resumed: bool = False) -> str:
    return frame(op="ready", resumed=resumed, sessionId=session_id)


async def wait_for(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def config():
    return ClientConfig(
        bot_id=BOT_ID, shard_count=2, reconnect_delay=0.01, max_reconnect_delay=0.05
    )


@pytest.fixture
def harness(config):
    """Build a session around a connector and record frames and events."""

    def build(connector: FakeConnector, on_frame=None):
        registry = NodeRegistry()
        node = registry.register(NodeConfig(hostname="node.local", password="pw"))
        bus = EventBus()
        events: List[FastLinkEvent] = []
        bus.subscribe(FastLinkEvent, events.append)
        frames: List[str] = []

        async def record(name, message):
            frames.append(message)

        session = NodeSession(
            node=node,
            config=config,
            registry=registry,
            bus=bus,
            on_frame=on_frame or record,
            connector=connector,
        )
        return session, node, events, frames

    return build


@pytest.mark.asyncio
async def test_handshake_marks_node_connected(harness):
    connector = FakeConnector(FakeWebSocket([ready("s1")]))
    session, node, events, _ = harness(connector)

    session.start()
    await asyncio.wait_for(session.wait_until_ready(), 1.0)

    assert session.is_active
    assert session.state == ConnectionState.ACTIVE
    assert node.connected is True
    assert node.session_id == "s1"
    assert events == [NodeConnected(node="node.local", session_id="s1", resumed=False)]

    url, kwargs = connector.calls[0]
    assert url == "ws://node.local:2333/v4/websocket"
    assert kwargs["additional_headers"] == {
        "Authorization": "pw",
        "Num-Shards": "2",
        "User-Id": BOT_ID,
        "Client-Name": "FastLink",
    }

    await session.close()

    assert node.connected is False
    assert node.session_id is None
    assert session.state == ConnectionState.DISCONNECTED
    assert isinstance(events[-1], NodeDisconnected)


@pytest.mark.asyncio
async def test_frames_are_delivered_in_order(harness):
    messages = [frame(op="stats", n=i) for i in range(5)]
    connector = FakeConnector(FakeWebSocket([ready()] + messages))
    session, _, _, frames = harness(connector)

    session.start()
    await wait_for(lambda: len(frames) == 5)

    assert frames == messages
    await session.close()


@pytest.mark.asyncio
async def test_failing_frame_handler_does_not_stop_the_loop(harness, caplog):
    delivered = []

    async def on_frame(name, message):
        if not delivered:
            delivered.append(None)
            raise RuntimeError("bad frame")
        delivered.append(message)

    connector = FakeConnector(FakeWebSocket([ready(), frame(op="stats"), frame(op="event")]))
    session, _, _, _ = harness(connector, on_frame=on_frame)

    session.start()
    await wait_for(lambda: len(delivered) == 2)

    assert delivered[1] == frame(op="event")
    assert "bad frame" in caplog.text
    await session.close()


@pytest.mark.asyncio
async def test_non_ready_first_frame_is_rejected(harness, caplog):
    connector = FakeConnector(FakeWebSocket([frame(op="stats")]))
    session, node, events, frames = harness(connector)

    with caplog.at_level(logging.ERROR, logger="fastlink"):
        session.start()
        await wait_for(lambda: len(connector.calls) >= 2)

    assert node.connected is False
    assert events == []
    assert frames == []
    assert "Expected ready" in caplog.text
    await session.close()


@pytest.mark.asyncio
async def test_reconnect_offers_previous_session_id(harness):
    connector = FakeConnector(
        FakeWebSocket([ready("s1")], hold=False),
        FakeWebSocket([ready("s1", resumed=True)]),
    )
    session, node, events, _ = harness(connector)

    session.start()
    await wait_for(lambda: len(connector.calls) == 2 and session.is_active)

    assert "Session-Id" not in connector.calls[0][1]["additional_headers"]
    assert connector.calls[1][1]["additional_headers"]["Session-Id"] == "s1"
    assert [type(event) for event in events] == [NodeConnected, NodeDisconnected, NodeConnected]
    assert events[2].resumed is True
    assert node.session_id == "s1"

    await session.close()


@pytest.mark.asyncio
async def test_connection_refused_is_retried(harness):
    connector = FakeConnector()
    session, node, events, _ = harness(connector)

    session.start()
    await wait_for(lambda: len(connector.calls) >= 3)

    assert node.connected is False
    assert events == []
    await session.close()
    assert session.state == ConnectionState.DISCONNECTED


def test_backoff_doubles_up_to_the_cap():
    config = ClientConfig(bot_id=BOT_ID, shard_count=1, reconnect_delay=1.0, max_reconnect_delay=5.0)
    registry = NodeRegistry()
    node = registry.register(NodeConfig(hostname="node.local", password="pw"))
    session = NodeSession(
        node=node, config=config, registry=registry, bus=EventBus(), on_frame=None
    )

    delays = [session._next_delay() for _ in range(5)]

    assert delays == [1.0, 2.0, 4.0, 5.0, 5.0]


@pytest.mark.asyncio
async def test_client_lifecycle(gateway):
    client = FastLink(
        nodes=[NODE_A],
        config={"botId": BOT_ID, "shards": 1},
        send_payload=gateway,
    )
    connector = FakeConnector(FakeWebSocket([ready("s1")]))
    client.session_for("node-a.local")._connector = connector

    assert client.any_node_available() is False

    await client.start()
    await asyncio.wait_for(client.wait_until_ready(), 1.0)

    assert client.any_node_available() is True
    assert client.nodes.get("node-a.local").session_id == "s1"

    await client.close()

    assert client.any_node_available() is False
