"""Exception hierarchy and argument validation helpers for FastLink.

Every public entry point validates its arguments with the ``require_*``
helpers before touching any state or issuing any request, so a bad call
never leaves a player half-updated.
"""

from typing import Any, List, Mapping, Optional


class FastLinkError(Exception):
    """Base exception for all FastLink errors."""

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__


class InvalidArgumentError(FastLinkError, ValueError):
    """Raised when a public call receives a missing or mistyped argument."""

    def __init__(self, message: str, argument: Optional[str] = None) -> None:
        super().__init__(message, code="INVALID_ARGUMENT")
        self.argument = argument


class NodeNotFoundError(FastLinkError):
    """Raised when a node name is not registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Node '{name}' does not exist.", code="NODE_NOT_FOUND")
        self.name = name


class NoNodeAvailableError(FastLinkError):
    """Raised when no registered node is connected."""

    def __init__(self) -> None:
        super().__init__("No node connected.", code="NO_NODE_AVAILABLE")


class NodeNotConnectedError(FastLinkError):
    """Raised when a session-scoped request targets a node without a session."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Node '{name}' is not connected.", code="NODE_NOT_CONNECTED")
        self.name = name


class PlayerNotFoundError(FastLinkError):
    """Raised when a command targets a guild without a player."""

    def __init__(self, guild_id: str) -> None:
        super().__init__(
            f"No player exists for guild '{guild_id}'.", code="PLAYER_NOT_FOUND"
        )
        self.guild_id = guild_id


class PlayerExistsError(FastLinkError):
    """Raised when creating a player for a guild that already has one."""

    def __init__(self, guild_id: str) -> None:
        super().__init__(
            f"Player already exists for guild '{guild_id}'.", code="PLAYER_EXISTS"
        )
        self.guild_id = guild_id


class QueueDisabledError(FastLinkError):
    """Raised by queue operations when queueing is disabled."""

    def __init__(self) -> None:
        super().__init__(
            "Queue is disabled. (queue_enabled = False)", code="QUEUE_DISABLED"
        )


class RestError(FastLinkError):
    """Raised when a node answers an awaited REST call with an error status."""

    def __init__(self, status: int, body: Any, method: str, path: str) -> None:
        super().__init__(
            f"{method} {path} failed with status {status}: {body}", code="REST_ERROR"
        )
        self.status = status
        self.body = body
        self.method = method
        self.path = path


def require_str(value: Any, name: str) -> str:
    """Validate that ``value`` is a non-empty string.

    Args:
        value: The argument to check.
        name: Argument name used in the error message.

    Returns:
        The validated string.

    Raises:
        InvalidArgumentError: If the value is missing or not a string.
    """
    if value is None or value == "":
        raise InvalidArgumentError(f"No {name} provided.", argument=name)
    if not isinstance(value, str):
        raise InvalidArgumentError(f"{name} must be a string.", argument=name)
    return value


def require_mapping(value: Any, name: str) -> Mapping[str, Any]:
    """Validate that ``value`` is a non-empty mapping."""
    if not value:
        raise InvalidArgumentError(f"No {name} provided.", argument=name)
    if not isinstance(value, Mapping):
        raise InvalidArgumentError(f"{name} must be a mapping.", argument=name)
    return value


def require_str_list(value: Any, name: str) -> List[str]:
    """Validate that ``value`` is a non-empty list of strings."""
    if not value:
        raise InvalidArgumentError(f"No {name} provided.", argument=name)
    if not isinstance(value, (list, tuple)):
        raise InvalidArgumentError(f"{name} must be a list.", argument=name)
    if not all(isinstance(item, str) and item for item in value):
        raise InvalidArgumentError(
            f"{name} must only contain non-empty strings.", argument=name
        )
    return list(value)


def require_callable(value: Any, name: str) -> Any:
    if value is None:
        raise InvalidArgumentError(f"No {name} provided.", argument=name)
    if not callable(value):
        raise InvalidArgumentError(f"{name} must be callable.", argument=name)
    return value
