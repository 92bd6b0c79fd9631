"""
Session management for two-player expedition games.

This module owns the process-wide registry of sessions and of live
connection bindings. Handlers never touch the underlying dicts; they go
through SessionRegistry.

A Session contains:
    - A unique session ID (the gameId clients see)
    - Up to two SessionPlayers, each with a durable player ID
    - A Game instance with the actual game state
    - An asyncio.Lock serializing every mutation of that game

Durable player IDs are minted here and never change. The connection a
player is reachable on is tracked separately and may be None while the
player is disconnected.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional

from constants import MAX_PLAYERS
from errors import NoAvailableSession, UnknownConnection
from game import Game, GamePhase, Player

logger = logging.getLogger(__name__)


@dataclass
class SessionPlayer:
    """
    A participant in a session (lobby-level representation).

    This is separate from game.Player - SessionPlayer tracks identity and
    connection info, while game.Player tracks cards and expeditions.

    Attributes:
        id: Durable player ID, stable across reconnects.
        name: Display name.
        connection_id: Current transport connection, None while disconnected.
        is_host: Whether this player created the session.
    """

    id: str
    name: str
    connection_id: Optional[str] = None
    is_host: bool = False

    @property
    def is_connected(self) -> bool:
        return self.connection_id is not None


@dataclass
class ConnectionBinding:
    """Where a live connection points: a session and a durable player."""

    session_id: str
    player_id: str


@dataclass
class Session:
    """
    One complete two-player game instance.

    Attributes:
        id: Session ID sent to clients as gameId.
        host_player_id: Durable ID of the creating player.
        players: Dict mapping durable player IDs to SessionPlayer objects.
        game: The Game instance containing actual game state.
        game_lock: asyncio.Lock for serializing game mutations.
    """

    id: str
    host_player_id: str = ""
    players: dict[str, SessionPlayer] = field(default_factory=dict)
    game: Game = field(default_factory=Game)
    game_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def add_player(self, player_id: str, name: str, connection_id: Optional[str]) -> SessionPlayer:
        """
        Add a player to the session.

        The first player to join becomes the host.

        Returns:
            The created SessionPlayer.
        """
        is_host = len(self.players) == 0
        session_player = SessionPlayer(
            id=player_id,
            name=name,
            connection_id=connection_id,
            is_host=is_host,
        )
        self.players[player_id] = session_player
        if is_host:
            self.host_player_id = player_id

        self.game.add_player(Player(id=player_id, name=name))
        return session_player

    def get_player(self, player_id: str) -> Optional[SessionPlayer]:
        return self.players.get(player_id)

    def opponent_of(self, player_id: str) -> Optional[SessionPlayer]:
        for pid, player in self.players.items():
            if pid != player_id:
                return player
        return None

    def rename_player(self, player_id: str, name: str) -> None:
        """Update the display name in both the lobby and game views."""
        session_player = self.players.get(player_id)
        if session_player:
            session_player.name = name
        game_player = self.game.get_player(player_id)
        if game_player:
            game_player.name = name

    def is_open(self) -> bool:
        """Whether a new player may still join."""
        return len(self.players) < MAX_PLAYERS and self.game.phase == GamePhase.WAITING

    def connected_players(self) -> list[SessionPlayer]:
        return [p for p in self.players.values() if p.is_connected]

    def all_disconnected(self) -> bool:
        return not self.connected_players()


class SessionRegistry:
    """
    Manages all active sessions and live connection bindings.

    A single SessionRegistry instance is created at process start.
    The lock guards multi-step registry updates (create, join,
    disconnect, reconnect); individual games are guarded by their
    own Session.game_lock.
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self.sessions: dict[str, Session] = {}
        self.bindings: dict[str, ConnectionBinding] = {}
        self.lock = asyncio.Lock()

    def _generate_session_id(self, max_attempts: int = 100) -> str:
        """Generate a unique session ID."""
        for _ in range(max_attempts):
            session_id = f"game_{uuid.uuid4().hex[:12]}"
            if session_id not in self.sessions:
                return session_id
        raise RuntimeError("Could not generate unique session ID")

    @staticmethod
    def _mint_player_id() -> str:
        return uuid.uuid4().hex

    # -------------------------------------------------------------------------
    # Session lifecycle
    # -------------------------------------------------------------------------

    def create_session(self, host_name: str, connection_id: str) -> tuple[Session, SessionPlayer]:
        """
        Create a waiting session with the caller as host.

        Args:
            host_name: Display name of the host.
            connection_id: Connection the host is on.

        Returns:
            Tuple of (session, host player).
        """
        session = Session(id=self._generate_session_id())
        player = session.add_player(self._mint_player_id(), host_name, connection_id)
        self.sessions[session.id] = session
        self.bind_connection(connection_id, session.id, player.id)
        logger.info(f"Session {session.id} created by {player.id}")
        return session, player

    def find_open_session(self) -> Optional[Session]:
        """Return the first session (in creation order) still waiting for a player."""
        for session in self.sessions.values():
            if session.is_open():
                return session
        return None

    def join_session(self, name: str, connection_id: str) -> tuple[Session, SessionPlayer]:
        """
        Join the first open session.

        Returns:
            Tuple of (session, joining player).

        Raises:
            NoAvailableSession: If no session is waiting for a player.
        """
        session = self.find_open_session()
        if session is None:
            raise NoAvailableSession()

        player = session.add_player(self._mint_player_id(), name, connection_id)
        self.bind_connection(connection_id, session.id, player.id)
        logger.info(f"Player {player.id} joined session {session.id}")
        return session, player

    def get_session(self, session_id: str) -> Optional[Session]:
        return self.sessions.get(session_id)

    def remove_session(self, session_id: str) -> Optional[Session]:
        """
        Delete a session and every connection binding pointing into it.

        Returns:
            The removed Session, or None if not found.
        """
        session = self.sessions.pop(session_id, None)
        if session is None:
            return None

        stale = [cid for cid, binding in self.bindings.items() if binding.session_id == session_id]
        for connection_id in stale:
            del self.bindings[connection_id]
        logger.info(f"Session {session_id} removed ({len(stale)} bindings dropped)")
        return session

    # -------------------------------------------------------------------------
    # Connection bindings
    # -------------------------------------------------------------------------

    def bind_connection(self, connection_id: str, session_id: str, player_id: str) -> None:
        self.bindings[connection_id] = ConnectionBinding(session_id=session_id, player_id=player_id)

    def unbind_connection(self, connection_id: str) -> Optional[ConnectionBinding]:
        return self.bindings.pop(connection_id, None)

    def unbind_player(self, session_id: str, player_id: str) -> list[str]:
        """
        Drop every binding that points at a durable player.

        Returns:
            The connection IDs that were unbound.
        """
        stale = [
            cid for cid, binding in self.bindings.items()
            if binding.session_id == session_id and binding.player_id == player_id
        ]
        for connection_id in stale:
            del self.bindings[connection_id]
        return stale

    def get_binding(self, connection_id: str) -> Optional[ConnectionBinding]:
        return self.bindings.get(connection_id)

    def resolve(self, connection_id: str) -> tuple[Session, SessionPlayer]:
        """
        Resolve a connection to its session and player.

        Raises:
            UnknownConnection: If the connection is unbound or its session is gone.
        """
        binding = self.bindings.get(connection_id)
        if binding is None:
            raise UnknownConnection()
        session = self.sessions.get(binding.session_id)
        if session is None:
            raise UnknownConnection()
        player = session.get_player(binding.player_id)
        if player is None:
            raise UnknownConnection()
        return session, player
