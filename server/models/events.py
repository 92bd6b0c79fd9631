"""
Outbound event names for the expedition game protocol.

Every message the server sends is ``{"type": <EventType>, ...fields}``.
Field sets per event:

    gameCreated           {gameId, playerId}
    gameJoined            {gameId, playerId, hostName}
    playerJoined          {playerId, playerName}
    gameStarted           {currentTurn}
    gameState             per-player view, see Game.get_state
    cardPlayed            {playerId, card, target}
    cardDiscarded         {playerId, card, color}
    cardDrawn             {playerId, source, color}
    turnChanged           {currentTurn, gamePhase}
    gameOver              {scores}
    reconnected           {gameId, playerId, message}
    playerReconnected     {playerId, playerName}
    opponentDisconnected  {playerId, playerName, message}
    error                 {message, code}
"""

from enum import Enum


class EventType(str, Enum):
    """All outbound event types."""

    # Lobby events
    GAME_CREATED = "gameCreated"
    GAME_JOINED = "gameJoined"
    PLAYER_JOINED = "playerJoined"
    GAME_STARTED = "gameStarted"

    # Gameplay events
    GAME_STATE = "gameState"
    CARD_PLAYED = "cardPlayed"
    CARD_DISCARDED = "cardDiscarded"
    CARD_DRAWN = "cardDrawn"
    TURN_CHANGED = "turnChanged"
    GAME_OVER = "gameOver"

    # Connection lifecycle events
    RECONNECTED = "reconnected"
    PLAYER_RECONNECTED = "playerReconnected"
    OPPONENT_DISCONNECTED = "opponentDisconnected"

    ERROR = "error"
