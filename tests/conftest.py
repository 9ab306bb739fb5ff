from unittest.mock import AsyncMock

import pytest

from fastlink import FastLink, FastLinkEvent

from helpers import BOT_ID, NODE_A, mock_rest


@pytest.fixture
def gateway():
    """Mock of the bot's gateway payload sender."""
    return AsyncMock()


@pytest.fixture
def make_client(gateway):
    """Factory for clients with mocked REST and connected nodes."""

    def factory(queue: bool = True, nodes=(NODE_A,), connected: bool = True) -> FastLink:
        client = FastLink(
            nodes=list(nodes),
            config={"botId": BOT_ID, "shards": 1, "queue": queue},
            send_payload=gateway,
        )
        mock_rest(client)
        if connected:
            for node in client.nodes:
                client.nodes.mark_connected(node.name, f"session-{node.name}")
        return client

    return factory


@pytest.fixture
def queue_client(make_client):
    return make_client(queue=True)


@pytest.fixture
def single_client(make_client):
    return make_client(queue=False)


@pytest.fixture
def recorded_events():
    """Attach a recorder to a client's event bus."""

    def attach(client: FastLink) -> list:
        events: list = []
        client.events.subscribe(FastLinkEvent, events.append)
        return events

    return attach
