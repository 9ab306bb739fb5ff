"""Typed configuration for nodes and the client.

Both models are frozen pydantic models validated once, when the client is
constructed. Camel-case aliases (``botId``, ``shards``, ``queue``) are
accepted so configuration written for other Lavalink clients loads as-is.
"""

from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, SecretStr, field_validator

from .protocol import API_VERSION, CLIENT_NAME, DEFAULT_PORT


class NodeConfig(BaseModel):
    """Connection details for one audio node."""

    model_config = ConfigDict(frozen=True, strict=True, populate_by_name=True)

    hostname: str = Field(validation_alias=AliasChoices("hostname", "host"))
    password: SecretStr
    secure: bool = False
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    name: Optional[str] = None

    @field_validator("hostname")
    @classmethod
    def validate_hostname(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("hostname cannot be empty")
        return v.strip()

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value():
            raise ValueError("password cannot be empty")
        return v

    @property
    def identifier(self) -> str:
        """Registry key for the node, the configured name or the hostname."""
        return self.name or self.hostname

    @property
    def ws_url(self) -> str:
        scheme = "wss" if self.secure else "ws"
        return f"{scheme}://{self.hostname}:{self.port}/{API_VERSION}/websocket"

    @property
    def rest_url(self) -> str:
        scheme = "https" if self.secure else "http"
        return f"{scheme}://{self.hostname}:{self.port}"


class ClientConfig(BaseModel):
    """Process-wide client options."""

    model_config = ConfigDict(frozen=True, strict=True, populate_by_name=True)

    bot_id: str = Field(min_length=1, validation_alias=AliasChoices("bot_id", "botId"))
    shard_count: int = Field(
        ge=1, validation_alias=AliasChoices("shard_count", "shards", "shardCount")
    )
    queue_enabled: bool = Field(
        default=False,
        validation_alias=AliasChoices("queue_enabled", "queue", "queueEnabled"),
    )
    debug: bool = Field(
        default=False, validation_alias=AliasChoices("debug", "debugLogging")
    )
    client_name: str = Field(default=CLIENT_NAME, min_length=1)
    reconnect_delay: float = Field(default=1.0, gt=0)
    max_reconnect_delay: float = Field(default=60.0, gt=0)
    request_timeout: Optional[float] = Field(default=None, gt=0)

    @field_validator("bot_id", mode="before")
    @classmethod
    def coerce_snowflake(cls, v: Any) -> Any:
        """Accept integer snowflakes as well as strings."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v
