"""Frame builders and mocks shared by the test modules."""

import json
from unittest.mock import AsyncMock, MagicMock

from fastlink import FastLink

BOT_ID = "100000000000000001"
GUILD_ID = "200000000000000002"

NODE_A = {"hostname": "node-a.local", "password": "youshallnotpass"}
NODE_B = {"hostname": "node-b.local", "password": "youshallnotpass", "port": 2444}


def frame(**fields) -> str:
    """Serialize a node frame the way it arrives on the WebSocket."""
    return json.dumps(fields)


def track_end(guild_id: str = GUILD_ID, reason: str = "finished", encoded: str = "A") -> str:
    return frame(
        op="event",
        type="TrackEndEvent",
        guildId=guild_id,
        track={"encoded": encoded, "info": {}},
        reason=reason,
    )


def mock_rest(client: FastLink) -> None:
    """Replace the network-facing REST calls of every node with mocks."""
    for node in client.nodes:
        rest = client.rest_for(node.name)
        rest.play = MagicMock()
        rest.destroy_player = MagicMock()
        rest.update_session = MagicMock()
        rest.update_player = AsyncMock(return_value={"guildId": GUILD_ID})
        rest.load_tracks = AsyncMock(return_value={"loadType": "search", "data": []})
        rest.load_captions = AsyncMock(return_value={"captions": []})
        rest.decode_track = AsyncMock(return_value={"encoded": "A"})
        rest.decode_tracks = AsyncMock(return_value=[{"encoded": "A"}])
