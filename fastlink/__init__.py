"""FastLink: an asyncio client for Lavalink v4 compatible audio nodes.

This package manages a pool of audio nodes, places one player per guild on
the least loaded node, and keeps player and queue state in sync with the
events the nodes push.

Example usage:
    from fastlink import FastLink, TrackEnd

    client = FastLink(
        nodes=[{"hostname": "127.0.0.1", "password": "youshallnotpass"}],
        config={"botId": "1234", "shards": 1, "queue": True},
        send_payload=send_to_gateway,
    )
    await client.start()

    @client.on(TrackEnd)
    async def on_track_end(event):
        ...

For more information about the node protocol, see:
https://lavalink.dev/api/
"""

from .client import FastLink
from .config import ClientConfig, NodeConfig
from .events import (
    EventBus,
    FastLinkEvent,
    NodeConnected,
    NodeDisconnected,
    TrackEnd,
    TrackException,
    TrackStart,
    TrackStuck,
    WebSocketClosed,
)
from .exceptions import (
    FastLinkError,
    InvalidArgumentError,
    NoNodeAvailableError,
    NodeNotConnectedError,
    NodeNotFoundError,
    PlayerExistsError,
    PlayerNotFoundError,
    QueueDisabledError,
    RestError,
)
from .node import Node, NodeRegistry
from .player import GuildPlayer, Player, PlayerSnapshot, Queued, Single, SkipResult
from .protocol import API_VERSION, DEFAULT_PORT, NodeStats
from .session import ConnectionState, NodeSession

__all__ = [
    # Main client
    "FastLink",
    "ClientConfig",
    "NodeConfig",
    # Nodes
    "Node",
    "NodeRegistry",
    "NodeStats",
    "NodeSession",
    "ConnectionState",
    # Players
    "GuildPlayer",
    "Player",
    "PlayerSnapshot",
    "Queued",
    "Single",
    "SkipResult",
    # Events
    "EventBus",
    "FastLinkEvent",
    "NodeConnected",
    "NodeDisconnected",
    "TrackStart",
    "TrackEnd",
    "TrackException",
    "TrackStuck",
    "WebSocketClosed",
    # Errors
    "FastLinkError",
    "InvalidArgumentError",
    "NoNodeAvailableError",
    "NodeNotConnectedError",
    "NodeNotFoundError",
    "PlayerExistsError",
    "PlayerNotFoundError",
    "QueueDisabledError",
    "RestError",
    # Constants
    "API_VERSION",
    "DEFAULT_PORT",
]
