"""WebSocket message handlers for the expedition card game.

Each handler corresponds to a single command type from the client.
Raw messages go through dispatch(), which validates them into a command
model and routes them via the HANDLERS dict. Any GameError raised by a
handler becomes an "error" reply to the sending connection only.

Handlers that touch a game hold that session's game_lock from validation
through the last broadcast. Registry updates (create, join, disconnect,
reconnect) hold the registry lock. The two locks are never nested.
"""

from dataclasses import dataclass
from typing import Any

from fastapi import WebSocket
from pydantic import ValidationError

from config import ServerConfig
from errors import AlreadyInSession, GameError, InvalidMessage, ReconnectRejected
from game import DrawSource, GamePhase
from logging_config import connection_id_var, get_logger, set_log_context
from models import (
    COMMAND_TYPES,
    CreateGame,
    DiscardCard,
    DrawCard,
    EventType,
    JoinGame,
    PlayCard,
    ReconnectGame,
    parse_command,
)
from session import Session, SessionRegistry
from transport import ConnectionHub

logger = get_logger(__name__)


@dataclass
class ConnectionContext:
    """State tracked per WebSocket connection."""

    websocket: WebSocket
    connection_id: str


# ---------------------------------------------------------------------------
# State broadcast helpers
# ---------------------------------------------------------------------------

async def send_game_state(session: Session, player_id: str, hub: ConnectionHub) -> None:
    """Send one player their own view of the game."""
    player = session.get_player(player_id)
    state = session.game.get_state(player_id)
    if player and player.connection_id and state is not None:
        await hub.send_to(player.connection_id, EventType.GAME_STATE, state)


async def broadcast_game_state(session: Session, hub: ConnectionHub) -> None:
    """Send every connected player their own view of the game."""
    for player_id in session.players:
        await send_game_state(session, player_id, hub)


def close_session(session: Session, registry: SessionRegistry, hub: ConnectionHub) -> None:
    """Destroy a session and its broadcast group."""
    registry.remove_session(session.id)
    hub.discard_group(session.id)


def _ensure_unbound(ctx: ConnectionContext, registry: SessionRegistry) -> None:
    if registry.get_binding(ctx.connection_id) is not None:
        raise AlreadyInSession()


# ---------------------------------------------------------------------------
# Lobby handlers
# ---------------------------------------------------------------------------

async def handle_create_game(
    cmd: CreateGame, ctx: ConnectionContext, *,
    registry: SessionRegistry, hub: ConnectionHub, settings: ServerConfig, **kw,
) -> None:
    player_name = cmd.player_name or settings.DEFAULT_HOST_NAME
    async with registry.lock:
        _ensure_unbound(ctx, registry)
        session, player = registry.create_session(player_name, ctx.connection_id)
        set_log_context(session.id, player.id)
        hub.join_group(session.id, ctx.connection_id)

    await hub.send_to(ctx.connection_id, EventType.GAME_CREATED, {
        "gameId": session.id,
        "playerId": player.id,
    })


async def handle_join_game(
    cmd: JoinGame, ctx: ConnectionContext, *,
    registry: SessionRegistry, hub: ConnectionHub, settings: ServerConfig, **kw,
) -> None:
    player_name = cmd.player_name or settings.DEFAULT_GUEST_NAME
    async with registry.lock:
        _ensure_unbound(ctx, registry)
        session, player = registry.join_session(player_name, ctx.connection_id)
        set_log_context(session.id, player.id)
        hub.join_group(session.id, ctx.connection_id)

    async with session.game_lock:
        host = session.get_player(session.host_player_id)
        await hub.send_to(ctx.connection_id, EventType.GAME_JOINED, {
            "gameId": session.id,
            "playerId": player.id,
            "hostName": host.name if host else settings.DEFAULT_HOST_NAME,
        })
        if host and host.connection_id:
            await hub.send_to(host.connection_id, EventType.PLAYER_JOINED, {
                "playerId": player.id,
                "playerName": player.name,
            })

        if session.game.is_full() and session.game.phase == GamePhase.WAITING:
            session.game.start_game(seed=settings.SHUFFLE_SEED, hand_size=settings.HAND_SIZE)
            logger.info(f"Game started, first turn {session.game.current_turn}")
            await hub.send_to_session(session.id, EventType.GAME_STARTED, {
                "currentTurn": session.game.current_turn,
            })
            await broadcast_game_state(session, hub)


# ---------------------------------------------------------------------------
# Turn action handlers
# ---------------------------------------------------------------------------

async def handle_play_card(
    cmd: PlayCard, ctx: ConnectionContext, *,
    registry: SessionRegistry, hub: ConnectionHub, **kw,
) -> None:
    session, player = registry.resolve(ctx.connection_id)
    set_log_context(session.id, player.id)
    async with session.game_lock:
        card = session.game.play_card(player.id, cmd.card_index, cmd.target)
        logger.debug(f"Played {card.color.value} {card.value}")

        await hub.send_to_session(session.id, EventType.CARD_PLAYED, {
            "playerId": player.id,
            "card": card.to_dict(),
            "target": card.color.value,
        })
        await broadcast_game_state(session, hub)


async def handle_discard_card(
    cmd: DiscardCard, ctx: ConnectionContext, *,
    registry: SessionRegistry, hub: ConnectionHub, **kw,
) -> None:
    session, player = registry.resolve(ctx.connection_id)
    set_log_context(session.id, player.id)
    async with session.game_lock:
        card = session.game.discard_card(player.id, cmd.card_index, cmd.color)
        logger.debug(f"Discarded {card.color.value} {card.value}")

        await hub.send_to_session(session.id, EventType.CARD_DISCARDED, {
            "playerId": player.id,
            "card": card.to_dict(),
            "color": card.color.value,
        })
        await broadcast_game_state(session, hub)


async def handle_draw_card(
    cmd: DrawCard, ctx: ConnectionContext, *,
    registry: SessionRegistry, hub: ConnectionHub, **kw,
) -> None:
    session, player = registry.resolve(ctx.connection_id)
    set_log_context(session.id, player.id)
    async with session.game_lock:
        game = session.game
        game.draw_card(player.id, cmd.source, cmd.color)

        await hub.send_to_session(session.id, EventType.CARD_DRAWN, {
            "playerId": player.id,
            "source": cmd.source,
            "color": cmd.color if cmd.source == DrawSource.DISCARD.value else None,
        })

        if game.is_over():
            scores = {pid: summary.to_dict() for pid, summary in game.final_scores().items()}
            await hub.send_to_session(session.id, EventType.GAME_OVER, {"scores": scores})
            close_session(session, registry, hub)
            totals = ", ".join(f"{pid}={summary['total']}" for pid, summary in scores.items())
            logger.info(f"Game ended: {totals}")
            return

        await hub.send_to_session(session.id, EventType.TURN_CHANGED, {
            "currentTurn": game.current_turn,
            "gamePhase": game.phase.value,
        })
        await broadcast_game_state(session, hub)


# ---------------------------------------------------------------------------
# Connection lifecycle
# ---------------------------------------------------------------------------

async def handle_reconnect_game(
    cmd: ReconnectGame, ctx: ConnectionContext, *,
    registry: SessionRegistry, hub: ConnectionHub, **kw,
) -> None:
    async with registry.lock:
        session = registry.get_session(cmd.game_id)
        if session is None:
            raise ReconnectRejected("Game not found")
        player = session.get_player(cmd.player_id)
        if player is None:
            raise ReconnectRejected("Player not found in that game")
        if player.connection_id is not None and player.connection_id != ctx.connection_id:
            raise ReconnectRejected("That player is already connected")

        existing = registry.get_binding(ctx.connection_id)
        if existing and (existing.session_id, existing.player_id) != (session.id, player.id):
            raise ReconnectRejected("This connection is already in another game")

        for stale_connection in registry.unbind_player(session.id, player.id):
            hub.leave_group(session.id, stale_connection)
        registry.bind_connection(ctx.connection_id, session.id, player.id)
        player.connection_id = ctx.connection_id
        hub.join_group(session.id, ctx.connection_id)
        if cmd.player_name:
            session.rename_player(player.id, cmd.player_name)
        opponent = session.opponent_of(player.id)

    set_log_context(session.id, player.id)
    logger.info("Player reconnected")

    async with session.game_lock:
        await hub.send_to(ctx.connection_id, EventType.RECONNECTED, {
            "gameId": session.id,
            "playerId": player.id,
            "message": "Reconnected to game",
        })
        await send_game_state(session, player.id, hub)
        if opponent and opponent.connection_id:
            await hub.send_to(opponent.connection_id, EventType.PLAYER_RECONNECTED, {
                "playerId": player.id,
                "playerName": player.name,
            })


async def handle_disconnect(
    ctx: ConnectionContext, *,
    registry: SessionRegistry, hub: ConnectionHub, **kw,
) -> None:
    """
    Soft-disconnect the player bound to a closed connection.

    Game state is left intact so the player can reconnect. The session is
    destroyed only once no player in it has a live connection.
    """
    hub.unregister(ctx.connection_id)

    async with registry.lock:
        binding = registry.unbind_connection(ctx.connection_id)
        if binding is None:
            return
        session = registry.get_session(binding.session_id)
        if session is None:
            return

        player = session.get_player(binding.player_id)
        if player is None:
            return
        if player.connection_id == ctx.connection_id:
            player.connection_id = None

        log = logger.with_context(game_id=session.id, player_id=player.id)
        if session.all_disconnected():
            close_session(session, registry, hub)
            log.info("All players disconnected, session removed")
            return

        log.info("Player disconnected, waiting for reconnect")
        opponent = session.opponent_of(player.id)

    if opponent and opponent.connection_id:
        await hub.send_to(opponent.connection_id, EventType.OPPONENT_DISCONNECTED, {
            "playerId": player.id,
            "playerName": player.name,
            "message": f"{player.name} has disconnected. Waiting for them to reconnect.",
        })


# ---------------------------------------------------------------------------
# Handler dispatch table
# ---------------------------------------------------------------------------

HANDLERS = {
    "createGame": handle_create_game,
    "joinGame": handle_join_game,
    "playCard": handle_play_card,
    "discardCard": handle_discard_card,
    "drawCard": handle_draw_card,
    "reconnectGame": handle_reconnect_game,
}

if set(HANDLERS) != COMMAND_TYPES:
    raise RuntimeError(
        f"Handler table out of sync with commands: {sorted(set(HANDLERS) ^ COMMAND_TYPES)}"
    )


def _describe_validation_error(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part)
    return f"Invalid {location}: {first.get('msg')}" if location else first.get("msg", "Malformed message")


async def dispatch(data: Any, ctx: ConnectionContext, *, hub: ConnectionHub, **deps) -> None:
    """
    Validate one raw client message and run its handler.

    Rejections are reported to the sending connection only.
    """
    connection_id_var.set(ctx.connection_id)
    set_log_context(None, None)
    try:
        if not isinstance(data, dict):
            raise InvalidMessage()
        msg_type = data.get("type")
        if not isinstance(msg_type, str) or msg_type not in HANDLERS:
            raise InvalidMessage(f"Unknown message type: {msg_type}")
        try:
            command = parse_command(data)
        except ValidationError as e:
            raise InvalidMessage(_describe_validation_error(e)) from None

        await HANDLERS[msg_type](command, ctx, hub=hub, **deps)
    except GameError as e:
        logger.info(f"Rejected {data.get('type') if isinstance(data, dict) else '?'}: {e.code} ({e.message})")
        await hub.send_to(ctx.connection_id, EventType.ERROR, e.to_payload())
