"""Lavalink v4 protocol constants, frame types and serialization.

This module implements the frame format for the WebSocket event stream of a
Lavalink-compatible node, plus the connection headers and the gateway
voice-join payload the client produces.

Protocol Reference: https://lavalink.dev/api/websocket
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------

API_VERSION = "v4"
DEFAULT_PORT = 2333
CLIENT_NAME = "FastLink"

# Discord gateway opcode for "Voice State Update"
VOICE_JOIN_OP = 4


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------


class OpType(str):
    """Top-level frame kinds sent by the node."""
    READY = "ready"
    STATS = "stats"
    PLAYER_UPDATE = "playerUpdate"
    EVENT = "event"


class EventType(str):
    """Subtypes of the ``event`` frame."""
    TRACK_START = "TrackStartEvent"
    TRACK_END = "TrackEndEvent"
    TRACK_EXCEPTION = "TrackExceptionEvent"
    TRACK_STUCK = "TrackStuckEvent"
    WEBSOCKET_CLOSED = "WebSocketClosedEvent"


class TrackEndReason(str):
    """Reasons carried by ``TrackEndEvent``."""
    FINISHED = "finished"
    LOAD_FAILED = "loadFailed"
    STOPPED = "stopped"
    REPLACED = "replaced"
    CLEANUP = "cleanup"


# -----------------------------------------------------------------------------
# Client -> Node
# -----------------------------------------------------------------------------


def build_connect_headers(
    password: str,
    shard_count: int,
    bot_id: str,
    client_name: str = CLIENT_NAME,
    session_id: Optional[str] = None,
) -> Dict[str, str]:
    """Build the headers required to open the node WebSocket.

    Args:
        password: Node authorization credential
        shard_count: Number of gateway shards the bot runs
        bot_id: User ID of the bot
        client_name: Name reported to the node
        session_id: Previous session to resume, if any

    Returns:
        Header dictionary for the WebSocket upgrade request
    """
    headers = {
        "Authorization": password,
        "Num-Shards": str(shard_count),
        "User-Id": str(bot_id),
        "Client-Name": client_name,
    }
    if session_id:
        headers["Session-Id"] = session_id
    return headers


@dataclass
class VoiceJoin:
    """Gateway payload asking Discord to move the bot into a voice channel."""
    guild_id: str
    channel_id: Optional[str]
    self_mute: bool = False
    self_deaf: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the gateway payload dictionary."""
        return {
            "op": VOICE_JOIN_OP,
            "d": {
                "guild_id": self.guild_id,
                "channel_id": self.channel_id,
                "self_mute": self.self_mute,
                "self_deaf": self.self_deaf,
            },
        }


# -----------------------------------------------------------------------------
# Node -> Client
# -----------------------------------------------------------------------------


@dataclass
class Ready:
    """ready frame, the first frame of every session."""
    session_id: str
    resumed: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Ready":
        """Parse from a frame dictionary."""
        session_id = data.get("sessionId")
        if not session_id:
            raise ValueError("ready frame without sessionId")
        return cls(session_id=session_id, resumed=bool(data.get("resumed", False)))


@dataclass
class NodeStats:
    """Load snapshot reported by a node in stats frames."""
    players: int = 0
    playing_players: int = 0
    uptime: int = 0
    cores: int = 1
    system_load: float = 0.0
    lavalink_load: float = 0.0
    memory: Dict[str, int] = field(default_factory=dict)
    frame_stats: Optional[Dict[str, int]] = None

    @property
    def load_score(self) -> float:
        """Per-core system load as a percentage, lower is better."""
        cores = self.cores if self.cores > 0 else 1
        return (self.system_load / cores) * 100

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodeStats":
        """Parse from a stats frame.

        Accepts the nested v4 layout (``cpu.systemLoad``) and a flat one
        (``systemLoad``, ``cores``).
        """
        cpu = data.get("cpu") or {}
        return cls(
            players=data.get("players", 0),
            playing_players=data.get("playingPlayers", 0),
            uptime=data.get("uptime", 0),
            cores=cpu.get("cores", data.get("cores", 1)),
            system_load=cpu.get("systemLoad", data.get("systemLoad", 0.0)),
            lavalink_load=cpu.get("lavalinkLoad", data.get("lavalinkLoad", 0.0)),
            memory=dict(data.get("memory") or {}),
            frame_stats=data.get("frameStats"),
        )


@dataclass
class PlayerUpdate:
    """playerUpdate frame with transport and position bookkeeping."""
    guild_id: str
    time: int = 0
    position: int = 0
    connected: bool = False
    ping: int = -1

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlayerUpdate":
        state = data.get("state") or {}
        return cls(
            guild_id=str(data.get("guildId", "")),
            time=state.get("time", 0),
            position=state.get("position", 0),
            connected=state.get("connected", False),
            ping=state.get("ping", -1),
        )


@dataclass
class NodeEvent:
    """event frame; which optional fields are set depends on ``type``."""
    type: str
    guild_id: str
    track: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None  # TrackEnd reason, or WebSocketClosed reason text
    exception: Optional[Dict[str, Any]] = None  # TrackException
    threshold_ms: Optional[int] = None  # TrackStuck
    code: Optional[int] = None  # WebSocketClosed
    by_remote: Optional[bool] = None  # WebSocketClosed
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodeEvent":
        """Parse from an event frame dictionary."""
        return cls(
            type=data.get("type", ""),
            guild_id=str(data.get("guildId", "")),
            track=data.get("track"),
            reason=data.get("reason"),
            exception=data.get("exception"),
            threshold_ms=data.get("thresholdMs"),
            code=data.get("code"),
            by_remote=data.get("byRemote"),
            raw=data,
        )


# -----------------------------------------------------------------------------
# Frame Parsing
# -----------------------------------------------------------------------------


def parse_frame(text: Any) -> Tuple[str, Dict[str, Any]]:
    """Parse a JSON WebSocket text frame.

    Args:
        text: JSON string (or bytes) received from the node

    Returns:
        Tuple of (op, frame_dict)

    Raises:
        ValueError: If the frame is not a JSON object
    """
    frame = json.loads(text)
    if not isinstance(frame, dict):
        raise ValueError(f"Expected a JSON object frame, got {type(frame).__name__}")
    return frame.get("op", ""), frame
