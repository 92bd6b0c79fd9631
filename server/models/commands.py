"""
Inbound WebSocket command schemas.

Every client message is a JSON object whose "type" field names the
command. The Command union is discriminated on that field, so parsing
either yields exactly one of the models below or raises a
pydantic.ValidationError.

Field names follow the client protocol (camelCase aliases).
"""

from typing import Annotated, Literal, Optional, Union, get_args

from pydantic import BaseModel, ConfigDict, Field, StrictInt, TypeAdapter

NAME_MAX_LENGTH = 40


class _Command(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class CreateGame(_Command):
    """Create a new session and wait for an opponent."""

    type: Literal["createGame"]
    player_name: Optional[str] = Field(default=None, alias="playerName", max_length=NAME_MAX_LENGTH)


class JoinGame(_Command):
    """Join the first session that is waiting for a player."""

    type: Literal["joinGame"]
    player_name: Optional[str] = Field(default=None, alias="playerName", max_length=NAME_MAX_LENGTH)


class PlayCard(_Command):
    type: Literal["playCard"]
    card_index: StrictInt = Field(alias="cardIndex")
    target: str


class DiscardCard(_Command):
    type: Literal["discardCard"]
    card_index: StrictInt = Field(alias="cardIndex")
    color: Optional[str] = None


class DrawCard(_Command):
    type: Literal["drawCard"]
    source: str
    color: Optional[str] = None


class ReconnectGame(_Command):
    """Re-attach a new connection to a durable player slot."""

    type: Literal["reconnectGame"]
    game_id: str = Field(alias="gameId")
    player_id: str = Field(alias="playerId")
    player_name: Optional[str] = Field(default=None, alias="playerName", max_length=NAME_MAX_LENGTH)


COMMAND_MODELS = (CreateGame, JoinGame, PlayCard, DiscardCard, DrawCard, ReconnectGame)

Command = Annotated[
    Union[CreateGame, JoinGame, PlayCard, DiscardCard, DrawCard, ReconnectGame],
    Field(discriminator="type"),
]

_command_adapter: TypeAdapter = TypeAdapter(Command)


def command_type(model: type[BaseModel]) -> str:
    """Return the "type" tag a command model is parsed from."""
    return get_args(model.model_fields["type"].annotation)[0]


COMMAND_TYPES: frozenset[str] = frozenset(command_type(m) for m in COMMAND_MODELS)


def parse_command(data: dict) -> Command:
    """
    Validate a raw client message into a Command.

    Raises:
        pydantic.ValidationError: If the type is unknown or fields are invalid.
    """
    return _command_adapter.validate_python(data)
