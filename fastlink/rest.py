"""REST client for a single audio node.

Calls whose result the caller needs (track loading, decoding, info queries,
player updates) are awaited and raise :class:`RestError` on an error
status. Commands that nothing waits on (auto-advance, skip, destroy,
session updates) are started as background tasks whose failures are only
logged.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Set

import aiohttp

from .exceptions import NodeNotConnectedError, RestError
from .node import Node
from .protocol import API_VERSION

_LOGGER = logging.getLogger(__name__)

ROUTE_PLANNER_STATUS_PATH = "/routerplanner/status"


class RestClient:
    """aiohttp-based client for the REST API of one node."""

    def __init__(
        self,
        node: Node,
        timeout: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        """Initialize the REST client.

        Args:
            node: Registry entry of the node; its session id is read on each call
            timeout: Total timeout per request in seconds (None for no timeout)
            session: Shared aiohttp session; one is created lazily if omitted
        """
        self._node = node
        self._timeout = timeout
        self._session = session
        self._owns_session = session is None
        self._pending: Set[asyncio.Task] = set()

    @property
    def node(self) -> Node:
        return self._node

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": self._node.config.password.get_secret_value()}

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            )
            self._owns_session = True
        return self._session

    def session_path(self, suffix: str = "") -> str:
        """Path scoped to the node's current session.

        Raises:
            NodeNotConnectedError: If the node has no active session
        """
        if not self._node.session_id:
            raise NodeNotConnectedError(self._node.name)
        return f"/sessions/{self._node.session_id}{suffix}"

    def player_path(self, guild_id: str) -> str:
        return self.session_path(f"/players/{guild_id}")

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, str]] = None,
        body: Any = None,
        versioned: bool = True,
    ) -> Any:
        """Perform a request against the node and decode the JSON answer.

        Args:
            method: HTTP method
            path: Path relative to the API root, e.g. "/loadtracks"
            params: Query parameters
            body: JSON body, omitted when None
            versioned: Prefix the path with the API version

        Returns:
            Decoded JSON, the raw text if the answer is not JSON, or None
            for an empty answer

        Raises:
            RestError: If the node answers with a status >= 400
        """
        prefix = f"/{API_VERSION}" if versioned else ""
        url = f"{self._node.config.rest_url}{prefix}{path}"
        _LOGGER.debug("[%s] %s %s params=%s body=%s", self._node.name, method, path, params, body)

        kwargs: Dict[str, Any] = {"headers": self.headers}
        if params:
            kwargs["params"] = dict(params)
        if body is not None:
            kwargs["json"] = body

        async with self._get_session().request(method, url, **kwargs) as resp:
            text = await resp.text()
            try:
                data = json.loads(text) if text else None
            except ValueError:
                data = text
            if resp.status >= 400:
                raise RestError(resp.status, data, method, path)
            return data

    def fire(self, method: str, path: str, **kwargs: Any) -> asyncio.Task:
        """Start a request in the background and only log its failure."""
        task = asyncio.create_task(self.request(method, path, **kwargs))
        self._pending.add(task)
        task.add_done_callback(self._on_fired_done)
        return task

    def _on_fired_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _LOGGER.error("[%s] Background request failed: %s", self._node.name, exc)

    async def join(self) -> None:
        """Wait for all background requests started so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        await self.join()
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    # -------------------------------------------------------------------------
    # Player commands
    # -------------------------------------------------------------------------

    async def update_player(
        self, guild_id: str, body: Mapping[str, Any], no_replace: bool = False
    ) -> Any:
        return await self.request(
            "PATCH",
            self.player_path(guild_id),
            params={"noReplace": "true" if no_replace else "false"},
            body=dict(body),
        )

    def play(self, guild_id: str, encoded_track: Optional[str]) -> asyncio.Task:
        """Set the node's current track; None stops playback."""
        return self.fire("PATCH", self.player_path(guild_id), body={"encodedTrack": encoded_track})

    def destroy_player(self, guild_id: str) -> asyncio.Task:
        return self.fire("DELETE", self.player_path(guild_id))

    def update_session(self, data: Mapping[str, Any]) -> asyncio.Task:
        return self.fire("PATCH", self.session_path(), body=dict(data))

    async def get_players(self) -> Any:
        return await self.request("GET", self.session_path("/players"))

    # -------------------------------------------------------------------------
    # Tracks
    # -------------------------------------------------------------------------

    async def load_tracks(self, identifier: str) -> Any:
        return await self.request("GET", "/loadtracks", params={"identifier": identifier})

    async def load_captions(self, encoded_track: str, language: Optional[str] = None) -> Any:
        params = {"encodedTrack": encoded_track}
        if language:
            params["language"] = language
        return await self.request("GET", "/loadcaptions", params=params)

    async def decode_track(self, encoded_track: str) -> Any:
        return await self.request("GET", "/decodetrack", params={"encodedTrack": encoded_track})

    async def decode_tracks(self, encoded_tracks: List[str]) -> Any:
        return await self.request("POST", "/decodetracks", body=list(encoded_tracks))

    # -------------------------------------------------------------------------
    # Node information and route planner
    # -------------------------------------------------------------------------

    async def get_info(self) -> Any:
        return await self.request("GET", "/info")

    async def get_stats(self) -> Any:
        return await self.request("GET", "/stats")

    async def get_version(self) -> Any:
        return await self.request("GET", "/version", versioned=False)

    async def get_route_planner_status(self) -> Any:
        return await self.request("GET", ROUTE_PLANNER_STATUS_PATH)

    async def unmark_failed_address(self, address: str) -> Any:
        return await self.request(
            "GET", "/routeplanner/free/address", body={"address": address}
        )

    async def unmark_all_failed_addresses(self) -> Any:
        return await self.request("GET", "/routeplanner/free/all")
