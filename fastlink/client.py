"""FastLink client: the object a bot creates and talks to.

Example usage:
    client = FastLink(
        nodes=[{"hostname": "localhost", "password": "youshallnotpass"}],
        config={"botId": "1234", "shards": 1, "queue": True},
        send_payload=lambda guild_id, payload: shard_for(guild_id).send(payload),
    )
    await client.start()

    player = client.player("5678")
    await player.create()
    await player.connect("91011")
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Type, Union

from .config import ClientConfig, NodeConfig
from .dispatcher import EventDispatcher
from .events import EventBus, EventHandler, FastLinkEvent
from .exceptions import InvalidArgumentError, NodeNotFoundError, require_callable, require_str
from .node import NodeRegistry
from .player import GuildPlayer, PlayerRegistry
from .rest import RestClient
from .session import NodeSession
from .voice import VoiceCorrelator

_LOGGER = logging.getLogger(__name__)

NodeSpec = Union[NodeConfig, Mapping[str, Any]]
ClientSpec = Union[ClientConfig, Mapping[str, Any]]
PayloadSender = Callable[[str, Dict[str, Any]], Any]


class FastLink:
    """Pool of audio nodes and the players running on them."""

    def __init__(
        self,
        nodes: Iterable[NodeSpec],
        config: ClientSpec,
        send_payload: Optional[PayloadSender] = None,
    ) -> None:
        """Validate configuration and build the registries.

        Nothing connects until :meth:`start` is awaited.

        Args:
            nodes: Node configurations (models or plain dicts)
            config: Client configuration (model or plain dict)
            send_payload: Sends a gateway payload for a guild's shard; may be
                a coroutine function. Required for :meth:`GuildPlayer.connect`.
        """
        if nodes is None:
            raise InvalidArgumentError("No nodes provided.", argument="nodes")
        if isinstance(nodes, (str, Mapping)):
            raise InvalidArgumentError("nodes must be a list.", argument="nodes")
        if config is None:
            raise InvalidArgumentError("No config provided.", argument="config")
        if send_payload is not None:
            require_callable(send_payload, "send_payload")

        self.config = config if isinstance(config, ClientConfig) else ClientConfig.model_validate(config)
        node_configs = [
            node if isinstance(node, NodeConfig) else NodeConfig.model_validate(node)
            for node in nodes
        ]
        if not node_configs:
            raise InvalidArgumentError("No nodes provided.", argument="nodes")

        if self.config.debug:
            logging.getLogger("fastlink").setLevel(logging.DEBUG)

        self.send_payload = send_payload
        self.events = EventBus()
        self.nodes = NodeRegistry()
        self.players = PlayerRegistry()

        self._rest: Dict[str, RestClient] = {}
        self._sessions: Dict[str, NodeSession] = {}

        self.dispatcher = EventDispatcher(self.nodes, self.players, self.events, self.rest_for)
        self.voice = VoiceCorrelator(
            bot_id=self.config.bot_id,
            has_player=lambda guild_id: guild_id in self.players,
            apply_voice=self._apply_voice,
        )

        for node_config in node_configs:
            node = self.nodes.register(node_config)
            self._rest[node.name] = RestClient(node, timeout=self.config.request_timeout)
            self._sessions[node.name] = NodeSession(
                node=node,
                config=self.config,
                registry=self.nodes,
                bus=self.events,
                on_frame=self.dispatcher.dispatch,
            )

    async def start(self) -> None:
        """Start one session per node; they connect in the background."""
        for session in self._sessions.values():
            session.start()

    async def wait_until_ready(self) -> None:
        """Wait until at least one node has completed its handshake."""
        waiters = [
            asyncio.ensure_future(session.wait_until_ready())
            for session in self._sessions.values()
        ]
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()

    async def close(self) -> None:
        """Close every session and REST client."""
        for session in self._sessions.values():
            await session.close()
        for rest in self._rest.values():
            await rest.close()

    # -------------------------------------------------------------------------
    # Players and events
    # -------------------------------------------------------------------------

    def player(self, guild_id: str) -> GuildPlayer:
        return GuildPlayer(self, guild_id)

    async def create_player(self, guild_id: str) -> GuildPlayer:
        player = GuildPlayer(self, guild_id)
        await player.create()
        return player

    def on(self, event_type: Type[FastLinkEvent]) -> Callable[[EventHandler], EventHandler]:
        """Subscribe a handler to an event type, as a decorator."""
        return self.events.on(event_type)

    async def handle_raw(self, packet: Mapping[str, Any]) -> None:
        """Feed a raw Discord gateway packet for voice correlation."""
        await self.voice.handle_raw(packet)

    async def _apply_voice(self, guild_id: str, voice: Dict[str, Any]) -> Any:
        return await self.player(guild_id).update({"voice": voice})

    # -------------------------------------------------------------------------
    # Nodes
    # -------------------------------------------------------------------------

    def any_node_available(self) -> bool:
        return self.nodes.any_available()

    def rest_for(self, node: str) -> RestClient:
        try:
            return self._rest[node]
        except KeyError:
            raise NodeNotFoundError(node) from None

    def session_for(self, node: str) -> NodeSession:
        try:
            return self._sessions[node]
        except KeyError:
            raise NodeNotFoundError(node) from None

    def _node_rest(self, node: str) -> RestClient:
        return self.rest_for(require_str(node, "node"))

    async def get_players(self, node: str) -> Any:
        return await self._node_rest(node).get_players()

    async def get_info(self, node: str) -> Any:
        return await self._node_rest(node).get_info()

    async def get_stats(self, node: str) -> Any:
        return await self._node_rest(node).get_stats()

    async def get_version(self, node: str) -> Any:
        return await self._node_rest(node).get_version()

    async def get_route_planner_status(self, node: str) -> Any:
        return await self._node_rest(node).get_route_planner_status()

    async def unmark_failed_address(self, node: str, address: str) -> Any:
        rest = self._node_rest(node)
        return await rest.unmark_failed_address(require_str(address, "address"))

    async def unmark_all_failed_addresses(self, node: str) -> Any:
        return await self._node_rest(node).unmark_all_failed_addresses()
