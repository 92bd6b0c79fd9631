"""
Test suite for WebSocket message handlers.

Tests handler flows and validation using mock WebSockets registered in
a real ConnectionHub and SessionRegistry.

Run with: pytest test_handlers.py -v
"""

import pytest

from config import ServerConfig
from game import GamePhase, score_session
from handlers import ConnectionContext, dispatch, handle_disconnect
from logging_config import connection_id_var, game_id_var, player_id_var
from session import SessionRegistry
from transport import ConnectionHub


# =============================================================================
# Mock helpers
# =============================================================================

class MockWebSocket:
    """Mock WebSocket that collects sent messages."""

    def __init__(self):
        self.messages: list[dict] = []
        self.closed_with = None

    async def send_json(self, data: dict):
        self.messages.append(data)

    async def close(self, code: int = 1000, reason: str = ""):
        self.closed_with = code

    def last_message(self) -> dict:
        return self.messages[-1] if self.messages else {}

    def messages_of_type(self, msg_type: str) -> list[dict]:
        return [m for m in self.messages if m.get("type") == msg_type]

    def last_of_type(self, msg_type: str) -> dict:
        matching = self.messages_of_type(msg_type)
        return matching[-1] if matching else {}


class Server:
    """A registry, hub and settings wired together the way main.py does."""

    def __init__(self, seed: int = 42):
        self.registry = SessionRegistry()
        self.hub = ConnectionHub()
        self.settings = ServerConfig(SHUFFLE_SEED=seed)
        self._next_id = 0

    def connect(self) -> ConnectionContext:
        self._next_id += 1
        ws = MockWebSocket()
        ctx = ConnectionContext(websocket=ws, connection_id=f"conn_{self._next_id}")
        self.hub.register(ctx.connection_id, ws)
        return ctx

    async def send(self, ctx: ConnectionContext, data):
        await dispatch(data, ctx, hub=self.hub, registry=self.registry, settings=self.settings)

    async def disconnect(self, ctx: ConnectionContext):
        await handle_disconnect(ctx, registry=self.registry, hub=self.hub)


async def start_game(server: Server):
    """Create and join a game; return (session, host_ctx, guest_ctx, ctx_by_player)."""
    host = server.connect()
    guest = server.connect()
    await server.send(host, {"type": "createGame", "playerName": "Alice"})
    await server.send(guest, {"type": "joinGame", "playerName": "Bob"})

    session, _ = server.registry.resolve(host.connection_id)
    ctx_by_player = {
        host.websocket.last_of_type("gameCreated")["playerId"]: host,
        guest.websocket.last_of_type("gameJoined")["playerId"]: guest,
    }
    return session, host, guest, ctx_by_player


async def take_turn(server: Server, session, ctx_by_player):
    """Current player discards their first card and draws from the deck."""
    ctx = ctx_by_player[session.game.current_turn]
    await server.send(ctx, {"type": "discardCard", "cardIndex": 0})
    await server.send(ctx, {"type": "drawCard", "source": "deck"})


# =============================================================================
# Lobby handlers
# =============================================================================

class TestCreateGame:

    @pytest.mark.asyncio
    async def test_create_replies_with_ids(self):
        server = Server()
        host = server.connect()
        await server.send(host, {"type": "createGame", "playerName": "Alice"})

        msg = host.websocket.last_message()
        assert msg["type"] == "gameCreated"
        assert msg["gameId"].startswith("game_")
        assert msg["playerId"] != host.connection_id

        session = server.registry.get_session(msg["gameId"])
        assert session.get_player(msg["playerId"]).name == "Alice"

    @pytest.mark.asyncio
    async def test_default_host_name(self):
        server = Server()
        host = server.connect()
        await server.send(host, {"type": "createGame"})
        _, player = server.registry.resolve(host.connection_id)
        assert player.name == "Player 1"

    @pytest.mark.asyncio
    async def test_create_twice_rejected(self):
        server = Server()
        host = server.connect()
        await server.send(host, {"type": "createGame"})
        await server.send(host, {"type": "createGame"})

        error = host.websocket.last_message()
        assert error["type"] == "error"
        assert error["code"] == "already_in_session"
        assert len(server.registry.sessions) == 1


class TestJoinGame:

    @pytest.mark.asyncio
    async def test_join_starts_game(self):
        server = Server()
        session, host, guest, _ = await start_game(server)

        joined = guest.websocket.last_of_type("gameJoined")
        assert joined["gameId"] == session.id
        assert joined["hostName"] == "Alice"

        player_joined = host.websocket.last_of_type("playerJoined")
        assert player_joined["playerName"] == "Bob"
        assert player_joined["playerId"] == joined["playerId"]

        assert session.game.phase == GamePhase.SELECT_CARD
        for ws in (host.websocket, guest.websocket):
            assert len(ws.messages_of_type("gameStarted")) == 1
            state = ws.last_of_type("gameState")
            assert len(state["hand"]) == 8
            assert state["deckCount"] == 44
            assert state["gamePhase"] == "selectCard"
            assert state["currentTurn"] == session.game.current_turn

    @pytest.mark.asyncio
    async def test_default_guest_name(self):
        server = Server()
        host = server.connect()
        guest = server.connect()
        await server.send(host, {"type": "createGame"})
        await server.send(guest, {"type": "joinGame"})
        assert host.websocket.last_of_type("playerJoined")["playerName"] == "Player 2"

    @pytest.mark.asyncio
    async def test_states_are_perspective_specific(self):
        server = Server()
        session, host, guest, _ = await start_game(server)
        host_state = host.websocket.last_of_type("gameState")
        guest_state = guest.websocket.last_of_type("gameState")
        assert host_state["playerName"] == "Alice"
        assert host_state["opponentName"] == "Bob"
        assert guest_state["playerName"] == "Bob"
        assert host_state["hand"] != guest_state["hand"]

    @pytest.mark.asyncio
    async def test_join_without_open_session(self):
        server = Server()
        guest = server.connect()
        await server.send(guest, {"type": "joinGame"})

        error = guest.websocket.last_message()
        assert error["type"] == "error"
        assert error["code"] == "no_available_session"

    @pytest.mark.asyncio
    async def test_third_player_rejected(self):
        server = Server()
        await start_game(server)
        third = server.connect()
        await server.send(third, {"type": "joinGame"})
        assert third.websocket.last_message()["code"] == "no_available_session"


# =============================================================================
# Turn actions
# =============================================================================

class TestPlayCard:

    @pytest.mark.asyncio
    async def test_play_broadcasts_and_advances_phase(self):
        server = Server()
        session, host, guest, ctx_by_player = await start_game(server)
        pid = session.game.current_turn
        ctx = ctx_by_player[pid]
        card = session.game.get_player(pid).hand[0]

        await server.send(ctx, {"type": "playCard", "cardIndex": 0, "target": card.color.value})

        for ws in (host.websocket, guest.websocket):
            played = ws.last_of_type("cardPlayed")
            assert played["playerId"] == pid
            assert played["card"] == card.to_dict()
            assert played["target"] == card.color.value
            assert ws.last_of_type("gameState")["gamePhase"] == "drawCard"

        state = ctx.websocket.last_of_type("gameState")
        assert state["playerExpeditions"][card.color.value] == [card.to_dict()]

    @pytest.mark.asyncio
    async def test_wrong_color_error_to_sender_only(self):
        server = Server()
        session, host, guest, ctx_by_player = await start_game(server)
        pid = session.game.current_turn
        ctx = ctx_by_player[pid]
        other = guest if ctx is host else host
        card = session.game.get_player(pid).hand[0]
        wrong = next(color for color in ("red", "green") if color != card.color.value)
        before = len(other.websocket.messages)

        await server.send(ctx, {"type": "playCard", "cardIndex": 0, "target": wrong})

        assert ctx.websocket.last_message()["code"] == "color_mismatch"
        assert len(other.websocket.messages) == before
        assert session.game.phase == GamePhase.SELECT_CARD

    @pytest.mark.asyncio
    async def test_not_your_turn(self):
        server = Server()
        session, _, _, ctx_by_player = await start_game(server)
        waiting_pid = session.game.opponent_of(session.game.current_turn).id
        ctx = ctx_by_player[waiting_pid]

        await server.send(ctx, {"type": "playCard", "cardIndex": 0, "target": "red"})

        error = ctx.websocket.last_message()
        assert error["type"] == "error"
        assert error["code"] == "not_your_turn"

    @pytest.mark.asyncio
    async def test_invalid_index(self):
        server = Server()
        session, _, _, ctx_by_player = await start_game(server)
        ctx = ctx_by_player[session.game.current_turn]
        await server.send(ctx, {"type": "playCard", "cardIndex": 8, "target": "red"})
        assert ctx.websocket.last_message()["code"] == "invalid_index"


class TestDiscardAndDraw:

    @pytest.mark.asyncio
    async def test_discard_then_draw_passes_turn(self):
        server = Server()
        session, host, guest, ctx_by_player = await start_game(server)
        pid = session.game.current_turn
        ctx = ctx_by_player[pid]
        card = session.game.get_player(pid).hand[0]

        await server.send(ctx, {"type": "discardCard", "cardIndex": 0, "color": card.color.value})
        discarded = host.websocket.last_of_type("cardDiscarded")
        assert discarded["card"] == card.to_dict()
        assert discarded["color"] == card.color.value

        await server.send(ctx, {"type": "drawCard", "source": "deck"})
        for ws in (host.websocket, guest.websocket):
            drawn = ws.last_of_type("cardDrawn")
            assert drawn == {"type": "cardDrawn", "playerId": pid, "source": "deck", "color": None}
            changed = ws.last_of_type("turnChanged")
            assert changed["currentTurn"] != pid
            assert changed["gamePhase"] == "selectCard"
            assert ws.last_of_type("gameState")["deckCount"] == 43

    @pytest.mark.asyncio
    async def test_cannot_redraw_own_discard(self):
        server = Server()
        session, _, _, ctx_by_player = await start_game(server)
        pid = session.game.current_turn
        ctx = ctx_by_player[pid]
        color = session.game.get_player(pid).hand[0].color.value

        await server.send(ctx, {"type": "discardCard", "cardIndex": 0, "color": color})
        await server.send(ctx, {"type": "drawCard", "source": "discard", "color": color})

        assert ctx.websocket.last_message()["code"] == "replay_own_discard"
        assert session.game.phase == GamePhase.DRAW_CARD
        assert session.game.current_turn == pid

    @pytest.mark.asyncio
    async def test_draw_opponent_discard(self):
        server = Server()
        session, _, _, ctx_by_player = await start_game(server)
        first = session.game.current_turn
        card = session.game.get_player(first).hand[0]
        await take_turn(server, session, ctx_by_player)

        second = session.game.current_turn
        ctx = ctx_by_player[second]
        # Play rather than discard so the first player's card stays on top
        own = session.game.get_player(second).hand[0]
        await server.send(ctx, {"type": "playCard", "cardIndex": 0, "target": own.color.value})
        await server.send(ctx, {"type": "drawCard", "source": "discard", "color": card.color.value})

        drawn = ctx.websocket.last_of_type("cardDrawn")
        assert drawn["source"] == "discard"
        assert drawn["color"] == card.color.value
        assert card in session.game.get_player(second).hand

    @pytest.mark.asyncio
    async def test_draw_before_select(self):
        server = Server()
        session, _, _, ctx_by_player = await start_game(server)
        ctx = ctx_by_player[session.game.current_turn]
        await server.send(ctx, {"type": "drawCard", "source": "deck"})
        assert ctx.websocket.last_message()["code"] == "wrong_phase"

    @pytest.mark.asyncio
    async def test_invalid_source(self):
        server = Server()
        session, _, _, ctx_by_player = await start_game(server)
        ctx = ctx_by_player[session.game.current_turn]
        await server.send(ctx, {"type": "discardCard", "cardIndex": 0})
        await server.send(ctx, {"type": "drawCard", "source": "hand"})
        assert ctx.websocket.last_message()["code"] == "invalid_draw_source"


# =============================================================================
# Dispatch validation
# =============================================================================

class TestDispatch:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("data", [
        None,
        [],
        "createGame",
        {"noType": True},
        {"type": "flipCard"},
        {"type": []},
        {"type": {}},
        {"type": {"a": 1}},
        {"type": "playCard", "target": "red"},
        {"type": "playCard", "cardIndex": "1", "target": "red"},
        {"type": "playCard", "cardIndex": True, "target": "red"},
        {"type": "reconnectGame", "gameId": "game_x"},
        {"type": "createGame", "playerName": "x" * 41},
    ])
    async def test_invalid_messages(self, data):
        server = Server()
        ctx = server.connect()
        await server.send(ctx, data)

        error = ctx.websocket.last_message()
        assert error["type"] == "error"
        assert error["code"] == "invalid_message"
        assert error["message"]

    @pytest.mark.asyncio
    async def test_action_before_joining(self):
        server = Server()
        ctx = server.connect()
        await server.send(ctx, {"type": "playCard", "cardIndex": 0, "target": "red"})

        error = ctx.websocket.last_message()
        assert error == {"type": "error", "message": "Player not recognized.", "code": "unknown_connection"}

    @pytest.mark.asyncio
    async def test_action_while_waiting_for_opponent(self):
        server = Server()
        host = server.connect()
        await server.send(host, {"type": "createGame"})
        await server.send(host, {"type": "drawCard", "source": "deck"})
        assert host.websocket.last_message()["code"] == "wrong_phase"

    @pytest.mark.asyncio
    async def test_malformed_type_keeps_player_seated(self):
        server = Server()
        session, host, _, _ = await start_game(server)
        await server.send(host, {"type": ["playCard"], "cardIndex": 0})

        assert host.websocket.last_message()["code"] == "invalid_message"
        resolved, _ = server.registry.resolve(host.connection_id)
        assert resolved is session
        assert session.game.phase == GamePhase.SELECT_CARD

    @pytest.mark.asyncio
    async def test_log_context_follows_message(self):
        server = Server()
        session, _, _, ctx_by_player = await start_game(server)
        pid = session.game.current_turn
        ctx = ctx_by_player[pid]

        await server.send(ctx, {"type": "discardCard", "cardIndex": 0})
        assert connection_id_var.get() == ctx.connection_id
        assert game_id_var.get() == session.id
        assert player_id_var.get() == pid

        stranger = server.connect()
        await server.send(stranger, {"type": "flipCard"})
        assert connection_id_var.get() == stranger.connection_id
        assert game_id_var.get() is None
        assert player_id_var.get() is None


# =============================================================================
# Full game
# =============================================================================

class TestFullGame:

    @pytest.mark.asyncio
    async def test_game_over_once_with_scores(self):
        server = Server(seed=7)
        session, host, guest, ctx_by_player = await start_game(server)

        turns = 0
        while session.game.phase != GamePhase.TERMINAL:
            await take_turn(server, session, ctx_by_player)
            turns += 1
            assert session.game.card_count() == 60

        assert turns == 44
        expected = {pid: summary.to_dict() for pid, summary in score_session(session.game.players).items()}
        for ws in (host.websocket, guest.websocket):
            over = ws.messages_of_type("gameOver")
            assert len(over) == 1
            assert over[0]["scores"] == expected

        assert server.registry.get_session(session.id) is None

    @pytest.mark.asyncio
    async def test_actions_after_game_over_unknown(self):
        server = Server(seed=7)
        session, host, _, ctx_by_player = await start_game(server)
        while session.game.phase != GamePhase.TERMINAL:
            await take_turn(server, session, ctx_by_player)

        await server.send(host, {"type": "playCard", "cardIndex": 0, "target": "red"})
        assert host.websocket.last_message()["code"] == "unknown_connection"

    @pytest.mark.asyncio
    async def test_new_game_after_game_over(self):
        server = Server(seed=7)
        session, host, _, ctx_by_player = await start_game(server)
        while session.game.phase != GamePhase.TERMINAL:
            await take_turn(server, session, ctx_by_player)

        await server.send(host, {"type": "createGame"})
        assert host.websocket.last_message()["type"] == "gameCreated"


# =============================================================================
# Disconnect and reconnect
# =============================================================================

class TestDisconnect:

    @pytest.mark.asyncio
    async def test_soft_disconnect_notifies_opponent(self):
        server = Server()
        session, host, guest, _ = await start_game(server)
        await server.disconnect(host)

        notice = guest.websocket.last_message()
        assert notice["type"] == "opponentDisconnected"
        assert notice["playerName"] == "Alice"
        assert server.registry.get_session(session.id) is session
        assert session.game.phase == GamePhase.SELECT_CARD

    @pytest.mark.asyncio
    async def test_last_disconnect_removes_session(self):
        server = Server()
        session, host, guest, _ = await start_game(server)
        await server.disconnect(host)
        await server.disconnect(guest)
        assert server.registry.get_session(session.id) is None
        assert server.registry.bindings == {}

    @pytest.mark.asyncio
    async def test_lone_host_disconnect_removes_waiting_session(self):
        server = Server()
        host = server.connect()
        await server.send(host, {"type": "createGame"})
        await server.disconnect(host)
        assert server.registry.sessions == {}

    @pytest.mark.asyncio
    async def test_unbound_disconnect_is_noop(self):
        server = Server()
        ctx = server.connect()
        await server.disconnect(ctx)
        assert ctx.connection_id not in server.hub.connections

    @pytest.mark.asyncio
    async def test_opponent_can_act_while_other_disconnected(self):
        server = Server()
        session, host, guest, ctx_by_player = await start_game(server)
        current = ctx_by_player[session.game.current_turn]
        other = guest if current is host else host
        await server.disconnect(other)

        await take_turn(server, session, ctx_by_player)

        assert current.websocket.last_of_type("turnChanged")
        assert session.game.phase == GamePhase.SELECT_CARD


class TestReconnect:

    @pytest.mark.asyncio
    async def test_reconnect_restores_identical_state(self):
        server = Server()
        session, host, guest, _ = await start_game(server)
        created = host.websocket.last_of_type("gameCreated")
        state_before = host.websocket.last_of_type("gameState")
        await server.disconnect(host)

        new_host = server.connect()
        await server.send(new_host, {
            "type": "reconnectGame",
            "gameId": created["gameId"],
            "playerId": created["playerId"],
        })

        reconnected = new_host.websocket.messages_of_type("reconnected")
        assert reconnected[0]["gameId"] == session.id
        assert reconnected[0]["playerId"] == created["playerId"]
        assert new_host.websocket.last_of_type("gameState") == state_before

        notice = guest.websocket.last_of_type("playerReconnected")
        assert notice["playerId"] == created["playerId"]

    @pytest.mark.asyncio
    async def test_reconnected_player_receives_broadcasts(self):
        server = Server()
        session, host, guest, ctx_by_player = await start_game(server)
        created = host.websocket.last_of_type("gameCreated")
        await server.disconnect(host)

        new_host = server.connect()
        await server.send(new_host, {
            "type": "reconnectGame",
            "gameId": created["gameId"],
            "playerId": created["playerId"],
            "playerName": "Alicia",
        })
        ctx_by_player[created["playerId"]] = new_host

        await take_turn(server, session, ctx_by_player)

        assert new_host.websocket.last_of_type("turnChanged")
        assert guest.websocket.last_of_type("gameState")["opponentName"] == "Alicia"

    @pytest.mark.asyncio
    async def test_unknown_game(self):
        server = Server()
        ctx = server.connect()
        await server.send(ctx, {"type": "reconnectGame", "gameId": "game_missing", "playerId": "p"})
        assert ctx.websocket.last_message()["code"] == "reconnect_rejected"

    @pytest.mark.asyncio
    async def test_unknown_player(self):
        server = Server()
        session, host, _, _ = await start_game(server)
        await server.disconnect(host)
        ctx = server.connect()
        await server.send(ctx, {"type": "reconnectGame", "gameId": session.id, "playerId": "nobody"})
        assert ctx.websocket.last_message()["code"] == "reconnect_rejected"

    @pytest.mark.asyncio
    async def test_slot_already_connected(self):
        server = Server()
        session, _, guest, _ = await start_game(server)
        guest_id = guest.websocket.last_of_type("gameJoined")["playerId"]

        intruder = server.connect()
        await server.send(intruder, {"type": "reconnectGame", "gameId": session.id, "playerId": guest_id})

        assert intruder.websocket.last_message()["code"] == "reconnect_rejected"
        assert session.get_player(guest_id).connection_id == guest.connection_id

    @pytest.mark.asyncio
    async def test_session_gone_after_everyone_left(self):
        server = Server()
        session, host, guest, _ = await start_game(server)
        created = host.websocket.last_of_type("gameCreated")
        await server.disconnect(host)
        await server.disconnect(guest)

        ctx = server.connect()
        await server.send(ctx, {
            "type": "reconnectGame",
            "gameId": created["gameId"],
            "playerId": created["playerId"],
        })
        assert ctx.websocket.last_message()["code"] == "reconnect_rejected"


class TestShutdown:

    @pytest.mark.asyncio
    async def test_close_all_uses_going_away(self):
        server = Server()
        _, host, guest, _ = await start_game(server)
        await server.hub.close_all()
        assert host.websocket.closed_with == 1001
        assert guest.websocket.closed_with == 1001
        assert server.hub.connections == {}
