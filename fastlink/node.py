"""Node registry and load-based node selection.

The registry holds one :class:`Node` per configured audio node. Its
mutators are synchronous and never await, so each update of a node entry
runs to completion before any other coroutine observes the entry.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set

from .config import NodeConfig
from .exceptions import InvalidArgumentError, NoNodeAvailableError, NodeNotFoundError
from .protocol import NodeStats

_LOGGER = logging.getLogger(__name__)


@dataclass
class Node:
    """Live state of one audio node.

    ``session_id`` is set exactly while ``connected`` is True.
    """
    config: NodeConfig
    connected: bool = False
    session_id: Optional[str] = None
    stats: Optional[NodeStats] = None
    players: Set[str] = field(default_factory=set)

    @property
    def name(self) -> str:
        return self.config.identifier

    @property
    def load_score(self) -> float:
        """Selection score; a node that has not reported stats counts as idle."""
        if self.stats is None:
            return 0.0
        return self.stats.load_score

    def __repr__(self) -> str:
        return (
            "<Node: "
            f"name={self.name}, "
            f"connected={self.connected}, "
            f"session_id={self.session_id}, "
            f"players={len(self.players)}, "
            f"stats={self.stats}>"
        )


class NodeRegistry:
    """All configured nodes, keyed by name, in registration order."""

    def __init__(self) -> None:
        self._nodes: Dict[str, Node] = {}

    def __iter__(self) -> Iterator[Node]:
        return iter(list(self._nodes.values()))

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, name: object) -> bool:
        return name in self._nodes

    def register(self, config: NodeConfig) -> Node:
        """Insert a node in the disconnected state.

        Raises:
            InvalidArgumentError: If a node with the same name exists
        """
        if not isinstance(config, NodeConfig):
            raise InvalidArgumentError("config must be a NodeConfig.", argument="config")
        if config.identifier in self._nodes:
            raise InvalidArgumentError(
                f"Node '{config.identifier}' is already registered.", argument="config"
            )

        node = Node(config=config)
        self._nodes[node.name] = node
        _LOGGER.debug("Registered node %s (%s)", node.name, config.rest_url)
        return node

    def get(self, name: str) -> Node:
        try:
            return self._nodes[name]
        except KeyError:
            raise NodeNotFoundError(name) from None

    def mark_connected(self, name: str, session_id: str) -> None:
        if not session_id:
            raise InvalidArgumentError("No session_id provided.", argument="session_id")
        node = self.get(name)
        node.connected = True
        node.session_id = session_id
        _LOGGER.info("Node %s connected (session %s)", name, session_id)

    def mark_disconnected(self, name: str) -> None:
        node = self.get(name)
        if node.connected:
            _LOGGER.info("Node %s disconnected", name)
        node.connected = False
        node.session_id = None

    def update_stats(self, name: str, stats: NodeStats) -> None:
        self.get(name).stats = stats

    def connected_nodes(self) -> List[Node]:
        return [node for node in self._nodes.values() if node.connected]

    def any_available(self) -> bool:
        """Whether at least one node is connected."""
        return any(node.connected for node in self._nodes.values())

    def select_best(self) -> Node:
        """Return the connected node with the lowest per-core load.

        Ties resolve to the node registered first.

        Raises:
            NoNodeAvailableError: If no node is connected
        """
        nodes = self.connected_nodes()
        if not nodes:
            raise NoNodeAvailableError()
        # min() keeps the first of equal scores, i.e. registration order
        return min(nodes, key=lambda node: node.load_score)
