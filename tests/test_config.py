"""
Tests for configuration models and protocol helpers.
"""

import pytest
from pydantic import ValidationError

from fastlink import ClientConfig, NodeConfig
from fastlink.protocol import NodeStats, Ready, VoiceJoin, build_connect_headers, parse_frame


class TestNodeConfig:
    def test_defaults(self):
        config = NodeConfig(hostname="node.local", password="pw")

        assert config.port == 2333
        assert config.secure is False
        assert config.identifier == "node.local"
        assert config.ws_url == "ws://node.local:2333/v4/websocket"
        assert config.rest_url == "http://node.local:2333"

    def test_secure_urls(self):
        config = NodeConfig(hostname="node.local", password="pw", secure=True, port=443)

        assert config.ws_url == "wss://node.local:443/v4/websocket"
        assert config.rest_url == "https://node.local:443"

    def test_name_overrides_identifier(self):
        config = NodeConfig(hostname="node.local", password="pw", name="primary")

        assert config.identifier == "primary"

    def test_password_is_not_exposed_in_repr(self):
        config = NodeConfig(hostname="node.local", password="hunter2")

        assert "hunter2" not in repr(config)
        assert config.password.get_secret_value() == "hunter2"

    @pytest.mark.parametrize(
        "data",
        [
            {"hostname": "", "password": "pw"},
            {"hostname": "node.local", "password": ""},
            {"hostname": "node.local"},
            {"hostname": "node.local", "password": "pw", "port": 0},
            {"hostname": "node.local", "password": "pw", "port": "2333"},
            {"hostname": "node.local", "password": "pw", "secure": "yes"},
        ],
    )
    def test_invalid_node_config(self, data):
        with pytest.raises(ValidationError):
            NodeConfig.model_validate(data)

    def test_frozen(self):
        config = NodeConfig(hostname="node.local", password="pw")

        with pytest.raises(ValidationError):
            config.port = 1234


class TestClientConfig:
    def test_camel_case_aliases(self):
        config = ClientConfig.model_validate(
            {"botId": "123", "shards": 2, "queue": True, "debug": True}
        )

        assert config.bot_id == "123"
        assert config.shard_count == 2
        assert config.queue_enabled is True
        assert config.debug is True

    def test_defaults(self):
        config = ClientConfig(bot_id="123", shard_count=1)

        assert config.queue_enabled is False
        assert config.debug is False
        assert config.client_name == "FastLink"

    def test_integer_bot_id_is_coerced(self):
        config = ClientConfig.model_validate({"botId": 123, "shards": 1})

        assert config.bot_id == "123"

    @pytest.mark.parametrize(
        "data",
        [
            {"shards": 1},
            {"botId": "123"},
            {"botId": "", "shards": 1},
            {"botId": "123", "shards": 0},
            {"botId": "123", "shards": "1"},
            {"botId": "123", "shards": 1, "queue": "true"},
        ],
    )
    def test_invalid_client_config(self, data):
        with pytest.raises(ValidationError):
            ClientConfig.model_validate(data)


class TestProtocol:
    def test_connect_headers(self):
        headers = build_connect_headers("pw", 3, "123", "FastLink")

        assert headers == {
            "Authorization": "pw",
            "Num-Shards": "3",
            "User-Id": "123",
            "Client-Name": "FastLink",
        }

    def test_connect_headers_with_resume_session(self):
        headers = build_connect_headers("pw", 1, "123", session_id="abc")

        assert headers["Session-Id"] == "abc"

    def test_voice_join_payload(self):
        payload = VoiceJoin(guild_id="1", channel_id="2", self_deaf=True).to_dict()

        assert payload == {
            "op": 4,
            "d": {"guild_id": "1", "channel_id": "2", "self_mute": False, "self_deaf": True},
        }

    def test_parse_frame(self):
        op, data = parse_frame('{"op": "ready", "sessionId": "abc"}')

        assert op == "ready"
        assert Ready.from_dict(data).session_id == "abc"

    def test_parse_frame_rejects_non_objects(self):
        with pytest.raises(ValueError):
            parse_frame("[1, 2]")

    def test_ready_requires_session_id(self):
        with pytest.raises(ValueError):
            Ready.from_dict({"op": "ready"})

    def test_stats_nested_layout(self):
        stats = NodeStats.from_dict(
            {
                "op": "stats",
                "players": 3,
                "playingPlayers": 1,
                "uptime": 1000,
                "memory": {"free": 1, "used": 2, "allocated": 3, "reservable": 4},
                "cpu": {"cores": 4, "systemLoad": 0.5, "lavalinkLoad": 0.1},
            }
        )

        assert stats.players == 3
        assert stats.playing_players == 1
        assert stats.cores == 4
        assert stats.load_score == pytest.approx(12.5)

    def test_stats_flat_layout(self):
        stats = NodeStats.from_dict({"systemLoad": 1.0, "cores": 2})

        assert stats.load_score == pytest.approx(50.0)

    def test_stats_zero_cores_does_not_divide_by_zero(self):
        stats = NodeStats(cores=0, system_load=0.5)

        assert stats.load_score == pytest.approx(50.0)
