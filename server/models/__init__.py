"""Protocol models for the expedition game server."""

from .commands import (
    COMMAND_MODELS,
    COMMAND_TYPES,
    Command,
    CreateGame,
    DiscardCard,
    DrawCard,
    JoinGame,
    PlayCard,
    ReconnectGame,
    command_type,
    parse_command,
)
from .events import EventType

__all__ = [
    "COMMAND_MODELS",
    "COMMAND_TYPES",
    "Command",
    "CreateGame",
    "DiscardCard",
    "DrawCard",
    "JoinGame",
    "PlayCard",
    "ReconnectGame",
    "command_type",
    "parse_command",
    "EventType",
]
