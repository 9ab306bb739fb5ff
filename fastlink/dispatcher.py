"""Inbound frame dispatch.

The dispatcher turns raw WebSocket frames into registry updates and domain
events. Routing is a table lookup on the frame ``op`` and, for ``event``
frames, on the event ``type``. Handlers only touch the player of the
frame's guild, under that guild's lock, and read node metadata.
"""

import logging
from typing import Any, Awaitable, Callable, Dict

from .events import (
    EventBus,
    TrackEnd,
    TrackException,
    TrackStart,
    TrackStuck,
    WebSocketClosed,
)
from .exceptions import FastLinkError
from .node import NodeRegistry
from .player import PlayerRegistry
from .protocol import (
    EventType,
    NodeEvent,
    NodeStats,
    OpType,
    PlayerUpdate,
    TrackEndReason,
    parse_frame,
)
from .rest import RestClient

_LOGGER = logging.getLogger(__name__)

FrameHandler = Callable[[str, Dict[str, Any]], Awaitable[None]]
EventHandler = Callable[[str, NodeEvent], Awaitable[None]]


class EventDispatcher:
    """Routes frames from every node session to their handlers."""

    def __init__(
        self,
        nodes: NodeRegistry,
        players: PlayerRegistry,
        bus: EventBus,
        rest_for: Callable[[str], RestClient],
    ) -> None:
        """Initialize the dispatcher.

        Args:
            nodes: Node registry, updated by stats frames
            players: Player registry, updated by player-scoped frames
            bus: Bus the domain events are published on
            rest_for: Returns the REST client of a node by name
        """
        self._nodes = nodes
        self._players = players
        self._bus = bus
        self._rest_for = rest_for

        self._op_handlers: Dict[str, FrameHandler] = {
            OpType.READY: self._handle_ready,
            OpType.STATS: self._handle_stats,
            OpType.PLAYER_UPDATE: self._handle_player_update,
            OpType.EVENT: self._handle_event,
        }
        self._event_handlers: Dict[str, EventHandler] = {
            EventType.TRACK_START: self._handle_track_start,
            EventType.TRACK_END: self._handle_track_finished,
            EventType.TRACK_EXCEPTION: self._handle_track_finished,
            EventType.TRACK_STUCK: self._handle_track_stuck,
            EventType.WEBSOCKET_CLOSED: self._handle_websocket_closed,
        }

    async def dispatch(self, node: str, message: Any) -> None:
        """Decode one frame from ``node`` and run its handler."""
        try:
            op, frame = parse_frame(message)
        except ValueError as e:
            _LOGGER.warning("[%s] Dropping undecodable frame: %s", node, e)
            return

        handler = self._op_handlers.get(op)
        if handler is None:
            _LOGGER.debug("[%s] Unhandled op: %s", node, op)
            return
        await handler(node, frame)

    async def _handle_ready(self, node: str, frame: Dict[str, Any]) -> None:
        # The session consumes ready during its handshake
        _LOGGER.debug("[%s] Ignoring ready outside of handshake", node)

    async def _handle_stats(self, node: str, frame: Dict[str, Any]) -> None:
        self._nodes.update_stats(node, NodeStats.from_dict(frame))

    async def _handle_player_update(self, node: str, frame: Dict[str, Any]) -> None:
        update = PlayerUpdate.from_dict(frame)
        async with self._players.locked(update.guild_id):
            player = self._players.find(update.guild_id)
            if player is None:
                _LOGGER.debug("[%s] playerUpdate for unknown guild %s", node, update.guild_id)
                return
            player.position = update.position
            player.ping = update.ping
            player.connected = update.connected

    async def _handle_event(self, node: str, frame: Dict[str, Any]) -> None:
        event = NodeEvent.from_dict(frame)
        handler = self._event_handlers.get(event.type)
        if handler is None:
            _LOGGER.debug("[%s] Unhandled event type: %s", node, event.type)
            return
        if not event.guild_id:
            _LOGGER.warning("[%s] %s without guildId", node, event.type)
            return
        await handler(node, event)

    async def _handle_track_start(self, node: str, event: NodeEvent) -> None:
        _LOGGER.debug("[%s] Track started in guild %s", node, event.guild_id)
        async with self._players.locked(event.guild_id):
            player = self._players.find(event.guild_id)
            if player is None:
                _LOGGER.warning("[%s] Received %s but no player was found", node, event.type)
                return
            snapshot = player.snapshot()

        await self._bus.publish(
            TrackStart(node=node, guild_id=event.guild_id, player=snapshot, track=event.track)
        )

    async def _handle_track_finished(self, node: str, event: NodeEvent) -> None:
        """Handle TrackEndEvent and TrackExceptionEvent.

        With queueing, the finished head is popped and the next track is
        sent to the node; otherwise (or once the queue runs dry) the player
        goes idle. With queueing, a track ended because it was replaced
        leaves the queue untouched, since the replacing track is its head.
        """
        _LOGGER.debug("[%s] %s in guild %s", node, event.type, event.guild_id)
        async with self._players.locked(event.guild_id):
            player = self._players.find(event.guild_id)
            if player is None:
                _LOGGER.warning("[%s] Received %s but no player was found", node, event.type)
                return

            if not player.queue_enabled:
                player.clear_playback()
            elif event.reason == TrackEndReason.REPLACED:
                pass
            elif player.queue:
                queue = player.queue
                queue.pop(0)
                if queue:
                    self._advance(player.node, event.guild_id, queue[0])
                else:
                    player.clear_playback()
            else:
                player.clear_playback()

            snapshot = player.snapshot()

        if event.type == EventType.TRACK_EXCEPTION:
            await self._bus.publish(
                TrackException(
                    node=node,
                    guild_id=event.guild_id,
                    player=snapshot,
                    track=event.track,
                    exception=event.exception,
                )
            )
        else:
            await self._bus.publish(
                TrackEnd(
                    node=node,
                    guild_id=event.guild_id,
                    player=snapshot,
                    track=event.track,
                    reason=event.reason,
                )
            )

    def _advance(self, node: str, guild_id: str, encoded_track: str) -> None:
        try:
            self._rest_for(node).play(guild_id, encoded_track)
        except FastLinkError as e:
            _LOGGER.error("[%s] Could not advance queue for guild %s: %s", node, guild_id, e)

    async def _handle_track_stuck(self, node: str, event: NodeEvent) -> None:
        async with self._players.locked(event.guild_id):
            player = self._players.find(event.guild_id)
            if player is None:
                _LOGGER.warning("[%s] Received %s but no player was found", node, event.type)
                return
            snapshot = player.snapshot()

        await self._bus.publish(
            TrackStuck(
                node=node,
                guild_id=event.guild_id,
                player=snapshot,
                track=event.track,
                threshold_ms=event.threshold_ms,
            )
        )

    async def _handle_websocket_closed(self, node: str, event: NodeEvent) -> None:
        async with self._players.locked(event.guild_id):
            player = self._players.find(event.guild_id)
            if player is None:
                _LOGGER.warning("[%s] Received %s but no player was found", node, event.type)
                return
            snapshot = player.snapshot()

        await self._bus.publish(
            WebSocketClosed(
                node=node,
                guild_id=event.guild_id,
                player=snapshot,
                code=event.code,
                reason=event.reason,
                by_remote=event.by_remote,
            )
        )
