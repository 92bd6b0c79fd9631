"""
Error taxonomy for rejected client requests.

Every error here is recoverable and local to a single inbound message:
the dispatcher replies to the sender with ``{"type": "error", "message",
"code"}`` and no shared state is touched.
"""


class GameError(Exception):
    """Base class for all rejected requests."""

    code: str = "game_error"
    default_message: str = "Invalid request"

    def __init__(self, message: str = "") -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_payload(self) -> dict:
        """Build the error event payload sent back to the client."""
        return {"message": self.message, "code": self.code}


class InvalidMessage(GameError):
    code = "invalid_message"
    default_message = "Malformed message"


class UnknownConnection(GameError):
    code = "unknown_connection"
    default_message = "Player not recognized."


class AlreadyInSession(GameError):
    code = "already_in_session"
    default_message = "This connection is already in a game"


class NotYourTurn(GameError):
    code = "not_your_turn"
    default_message = "Invalid move (not your turn)."


class WrongPhase(GameError):
    code = "wrong_phase"
    default_message = "Invalid move (wrong game phase)."


class InvalidIndex(GameError):
    code = "invalid_index"
    default_message = "Invalid card index"


class ColorMismatch(GameError):
    code = "color_mismatch"
    default_message = "Card color does not match the expedition"


class DescendingValue(GameError):
    code = "descending_value"
    default_message = "Card value must be higher than the last card"


class InvalidPile(GameError):
    code = "invalid_pile"
    default_message = "Invalid or empty discard pile"


class InvalidDrawSource(GameError):
    code = "invalid_draw_source"
    default_message = "Invalid draw source"


class EmptyDeck(GameError):
    code = "empty_deck"
    default_message = "Deck is empty"


class ReplayOwnDiscard(GameError):
    code = "replay_own_discard"
    default_message = "You cannot draw the card you just discarded this turn."


class NoAvailableSession(GameError):
    code = "no_available_session"
    default_message = "No available games to join"


class ReconnectRejected(GameError):
    code = "reconnect_rejected"
    default_message = "Unable to reconnect to that game"
