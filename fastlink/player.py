"""Per-guild player state and the commands that drive it.

A :class:`Player` is the local mirror of one node-side player. Its mode is
either :class:`Queued` (an ordered list of encoded tracks whose head is the
track playing or about to play) or :class:`Single` (at most one track),
fixed at creation from ``ClientConfig.queue_enabled``.

:class:`GuildPlayer` is the consumer-facing command surface. Every state
change happens while holding the guild's lock from :class:`PlayerRegistry`;
awaited REST calls are made after the lock is released so a slow node never
holds up event dispatch for the guild.
"""

import asyncio
import inspect
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncContextManager,
    AsyncIterator,
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Tuple,
    Union,
)

from .exceptions import (
    InvalidArgumentError,
    PlayerExistsError,
    PlayerNotFoundError,
    QueueDisabledError,
    require_callable,
    require_mapping,
    require_str,
    require_str_list,
)
from .protocol import VoiceJoin

if TYPE_CHECKING:
    from .client import FastLink
    from .rest import RestClient

_LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Player Entity
# -----------------------------------------------------------------------------


@dataclass
class Queued:
    """Queue mode: ``tracks[0]`` is the current track."""
    tracks: List[str] = field(default_factory=list)


@dataclass
class Single:
    """Single-track mode."""
    track: Optional[str] = None


PlayerMode = Union[Queued, Single]


@dataclass(frozen=True)
class PlayerSnapshot:
    """Immutable copy of a player, attached to events."""
    guild_id: str
    node: str
    connected: bool
    playing: bool
    paused: bool
    volume: Optional[int]
    position: int
    track: Optional[str]
    queue: Optional[Tuple[str, ...]]


@dataclass
class Player:
    guild_id: str
    node: str
    mode: PlayerMode
    connected: bool = False
    playing: bool = False
    paused: bool = False
    volume: Optional[int] = None
    position: int = 0
    ping: int = -1

    @property
    def queue_enabled(self) -> bool:
        return isinstance(self.mode, Queued)

    @property
    def queue(self) -> List[str]:
        """The live queue.

        Raises:
            QueueDisabledError: If the player is in single-track mode
        """
        if not isinstance(self.mode, Queued):
            raise QueueDisabledError()
        return self.mode.tracks

    @property
    def track(self) -> Optional[str]:
        """Encoded track currently playing or about to play."""
        if isinstance(self.mode, Queued):
            return self.mode.tracks[0] if self.mode.tracks else None
        return self.mode.track

    def clear_playback(self) -> None:
        """Mark the player idle after its last track ended."""
        if isinstance(self.mode, Single):
            self.mode.track = None
        self.playing = False
        self.volume = None

    def snapshot(self) -> PlayerSnapshot:
        return PlayerSnapshot(
            guild_id=self.guild_id,
            node=self.node,
            connected=self.connected,
            playing=self.playing,
            paused=self.paused,
            volume=self.volume,
            position=self.position,
            track=self.track,
            queue=tuple(self.mode.tracks) if isinstance(self.mode, Queued) else None,
        )


@dataclass
class SkipResult:
    skipped: bool
    queue: List[str]
    error: Optional[str] = None


class PlayerRegistry:
    """All players by guild id, with one asyncio lock per guild."""

    def __init__(self) -> None:
        self._players: Dict[str, Player] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    def __contains__(self, guild_id: object) -> bool:
        return guild_id in self._players

    def __len__(self) -> int:
        return len(self._players)

    def __iter__(self) -> Iterator[Player]:
        return iter(list(self._players.values()))

    @asynccontextmanager
    async def locked(self, guild_id: str) -> AsyncIterator[None]:
        """Hold the guild's lock.

        The lock is dropped once nobody holds or waits for it and the guild
        has no player, so the map only keeps entries for live guilds.
        """
        lock = self._locks.get(guild_id)
        if lock is None:
            lock = self._locks[guild_id] = asyncio.Lock()
        self._lock_users[guild_id] = self._lock_users.get(guild_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            users = self._lock_users[guild_id] - 1
            if users:
                self._lock_users[guild_id] = users
            else:
                del self._lock_users[guild_id]
                if guild_id not in self._players:
                    del self._locks[guild_id]

    def find(self, guild_id: str) -> Optional[Player]:
        return self._players.get(guild_id)

    def get(self, guild_id: str) -> Player:
        player = self._players.get(guild_id)
        if player is None:
            raise PlayerNotFoundError(guild_id)
        return player

    def insert(self, player: Player) -> None:
        if player.guild_id in self._players:
            raise PlayerExistsError(player.guild_id)
        self._players[player.guild_id] = player

    def remove(self, guild_id: str) -> Player:
        player = self.get(guild_id)
        del self._players[guild_id]
        return player


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------


class GuildPlayer:
    """Command surface for the player of one guild.

    Instances are cheap handles; the state lives in the client's
    :class:`PlayerRegistry`. All methods except :meth:`create` and
    :attr:`exists` raise :class:`PlayerNotFoundError` when the guild has no
    player.
    """

    def __init__(self, client: "FastLink", guild_id: str) -> None:
        self._client = client
        self.guild_id = require_str(guild_id, "guild_id")

    def __repr__(self) -> str:
        return f"<GuildPlayer: guild_id={self.guild_id}, node={self.node}>"

    @property
    def exists(self) -> bool:
        return self.guild_id in self._client.players

    @property
    def state(self) -> Player:
        return self._client.players.get(self.guild_id)

    @property
    def node(self) -> Optional[str]:
        player = self._client.players.find(self.guild_id)
        return player.node if player else None

    def _lock(self) -> AsyncContextManager[None]:
        return self._client.players.locked(self.guild_id)

    def _rest(self) -> "RestClient":
        return self._client.rest_for(self.state.node)

    async def create(self) -> str:
        """Create the player on the least loaded node.

        Returns:
            Name of the node the player was assigned to

        Raises:
            PlayerExistsError: If the guild already has a player
            NoNodeAvailableError: If no node is connected
        """
        players = self._client.players
        async with self._lock():
            if self.guild_id in players:
                raise PlayerExistsError(self.guild_id)

            node = self._client.nodes.select_best()
            mode: PlayerMode = Queued() if self._client.config.queue_enabled else Single()
            players.insert(Player(guild_id=self.guild_id, node=node.name, mode=mode))
            node.players.add(self.guild_id)

        _LOGGER.debug("Created player for guild %s on node %s", self.guild_id, node.name)
        return node.name

    async def connect(self, channel_id: str, *, mute: bool = False, deaf: bool = False) -> None:
        """Ask the gateway to join a voice channel.

        Args:
            channel_id: Voice channel to join
            mute: Join self-muted
            deaf: Join self-deafened
        """
        require_str(channel_id, "channel_id")
        if not isinstance(mute, bool) or not isinstance(deaf, bool):
            raise InvalidArgumentError("mute and deaf must be booleans.", argument="options")
        send_payload = require_callable(self._client.send_payload, "send_payload")

        async with self._lock():
            self.state.connected = True

        payload = VoiceJoin(
            guild_id=self.guild_id,
            channel_id=channel_id,
            self_mute=mute,
            self_deaf=deaf,
        ).to_dict()
        result = send_payload(self.guild_id, payload)
        if inspect.isawaitable(result):
            await result

    async def update(self, body: Mapping[str, Any], no_replace: bool = False) -> Any:
        """Merge a command into the local state and send it to the node.

        ``encodedTrack`` is queued when queueing is enabled and only sent if
        the queue was empty; ``encodedTracks`` adopts or extends the queue.
        Any other field is sent as a player PATCH.

        Args:
            body: Player update body in node wire format
            no_replace: Keep the current track if one is playing

        Returns:
            The node's answer, or None when nothing was awaited
        """
        body = dict(require_mapping(body, "body"))
        if "encodedTracks" in body:
            require_str_list(body["encodedTracks"], "encodedTracks")
        if body.get("encodedTrack") is not None:
            require_str(body["encodedTrack"], "encodedTrack")
        if "paused" in body and not isinstance(body["paused"], bool):
            raise InvalidArgumentError("paused must be a boolean.", argument="paused")

        async with self._lock():
            player = self.state
            rest = self._rest()
            rest.player_path(self.guild_id)  # fails before any mutation without a session

            if "encodedTracks" in body:
                if not isinstance(player.mode, Queued):
                    raise QueueDisabledError()
                queue = player.mode.tracks
                was_empty = not queue
                queue.extend(body["encodedTracks"])
                if was_empty:
                    player.playing = True
                    rest.play(self.guild_id, queue[0])
                return None

            if "encodedTrack" in body:
                track = body["encodedTrack"]
                if isinstance(player.mode, Queued):
                    if track is not None:
                        player.mode.tracks.append(track)
                        if len(player.mode.tracks) != 1:
                            return None
                    else:
                        player.mode.tracks.clear()
                else:
                    player.mode.track = track
                player.playing = track is not None

            if "paused" in body:
                player.playing = not body["paused"]
                player.paused = body["paused"]

            if "volume" in body:
                player.volume = body["volume"]

        return await rest.update_player(self.guild_id, body, no_replace=no_replace is True)

    async def destroy(self) -> None:
        """Remove the player locally and on its node."""
        async with self._lock():
            player = self._client.players.remove(self.guild_id)
            node = self._client.nodes.get(player.node)
            node.players.discard(self.guild_id)
            self._client.voice.discard(self.guild_id)

        if node.connected:
            self._client.rest_for(node.name).destroy_player(self.guild_id)
        else:
            _LOGGER.warning(
                "Node %s is not connected, skipped remote delete for guild %s",
                node.name,
                self.guild_id,
            )

    async def skip(self) -> SkipResult:
        """Drop the current track and start the next one in the queue."""
        async with self._lock():
            player = self.state
            queue = player.queue
            if len(queue) < 1:
                return SkipResult(skipped=False, queue=[], error="No tracks in queue.")

            rest = self._rest()
            rest.player_path(self.guild_id)  # fails before any mutation without a session

            queue.pop(0)
            head = queue[0] if queue else None
            player.playing = head is not None
            rest.play(self.guild_id, head)
            return SkipResult(skipped=True, queue=list(queue))

    def get_queue(self) -> List[str]:
        if not self._client.config.queue_enabled:
            raise QueueDisabledError()
        return self.state.queue

    def update_session(self, data: Mapping[str, Any]) -> None:
        """Update the node session, e.g. ``{"resuming": True, "timeout": 60}``."""
        require_mapping(data, "data")
        self._rest().update_session(data)

    # -------------------------------------------------------------------------
    # Stateless node proxies
    # -------------------------------------------------------------------------

    async def load_track(self, search: str) -> Any:
        require_str(search, "search")
        return await self._rest().load_tracks(search)

    async def get_captions(self, track: str) -> Any:
        require_str(track, "track")
        return await self._rest().load_captions(track)

    async def load_captions(self, track: str, lang: Optional[str] = None) -> Any:
        require_str(track, "track")
        if lang is not None and not isinstance(lang, str):
            raise InvalidArgumentError("lang must be a string.", argument="lang")
        return await self._rest().load_captions(track, lang)

    async def decode_track(self, track: str) -> Any:
        require_str(track, "track")
        return await self._rest().decode_track(track)

    async def decode_tracks(self, tracks: List[str]) -> Any:
        tracks = require_str_list(tracks, "tracks")
        return await self._rest().decode_tracks(tracks)
