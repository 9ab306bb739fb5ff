"""Correlation of Discord voice state and voice server notifications.

Discord delivers the voice session id (VOICE_STATE_UPDATE) and the voice
server token and endpoint (VOICE_SERVER_UPDATE) separately and in no fixed
order. The node needs all three, so the session id is held per guild until
the matching server notification arrives.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import aiohttp

from .exceptions import FastLinkError, require_mapping

_LOGGER = logging.getLogger(__name__)

VOICE_STATE_UPDATE = "VOICE_STATE_UPDATE"
VOICE_SERVER_UPDATE = "VOICE_SERVER_UPDATE"

VoiceApplier = Callable[[str, Dict[str, str]], Awaitable[Any]]


class VoiceCorrelator:
    """Two-phase merge of voice credentials, keyed by guild id."""

    def __init__(
        self,
        bot_id: str,
        has_player: Callable[[str], bool],
        apply_voice: VoiceApplier,
    ) -> None:
        """Initialize the correlator.

        Args:
            bot_id: User ID of the bot; other users' voice states are ignored
            has_player: Whether a guild currently has a player
            apply_voice: Sends ``{token, endpoint, sessionId}`` to a guild's player
        """
        self._bot_id = str(bot_id)
        self._has_player = has_player
        self._apply_voice = apply_voice
        self._pending: Dict[str, str] = {}

    def pending(self, guild_id: str) -> Optional[str]:
        """Voice session id waiting for its server notification, if any."""
        return self._pending.get(guild_id)

    def discard(self, guild_id: str) -> None:
        self._pending.pop(guild_id, None)

    async def handle_raw(self, packet: Mapping[str, Any]) -> None:
        """Feed a raw gateway dispatch packet (``{"t": ..., "d": ...}``)."""
        require_mapping(packet, "packet")
        kind = packet.get("t")
        data = packet.get("d") or {}

        if kind == VOICE_STATE_UPDATE:
            self.on_voice_state_update(data)
        elif kind == VOICE_SERVER_UPDATE:
            await self.on_voice_server_update(data)

    def on_voice_state_update(self, data: Mapping[str, Any]) -> None:
        user_id = ((data.get("member") or {}).get("user") or {}).get("id") or data.get("user_id")
        if user_id is None or str(user_id) != self._bot_id:
            return

        guild_id = data.get("guild_id")
        session_id = data.get("session_id")
        if not guild_id or not session_id:
            return

        # Repeated notifications overwrite: the latest session id wins
        self._pending[str(guild_id)] = session_id
        _LOGGER.debug("Stored voice session for guild %s", guild_id)

    async def on_voice_server_update(self, data: Mapping[str, Any]) -> None:
        guild_id = str(data.get("guild_id") or "")
        if guild_id not in self._pending:
            _LOGGER.debug("Dropping voice server update for guild %s: no session", guild_id)
            return
        if not self._has_player(guild_id):
            _LOGGER.debug("Dropping voice server update for guild %s: no player", guild_id)
            return

        voice = {
            "token": data.get("token"),
            "endpoint": data.get("endpoint"),
            "sessionId": self._pending.pop(guild_id),
        }
        try:
            await self._apply_voice(guild_id, voice)
        except (FastLinkError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            _LOGGER.error("Failed to send voice credentials for guild %s: %s", guild_id, e)
