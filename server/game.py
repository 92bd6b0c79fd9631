"""
Game logic for the two-player expedition card game.

This module implements the core mechanics: card/deck management, hand
sorting, expedition scoring, the per-turn phase machine, move validation
and the opponent-redacted state view sent to each player.

Rules Summary:
    - 60 cards: five colors, each with 3 wagers and numbers 2-10
    - Each player holds 8 cards
    - A turn is two steps: play or discard one card, then draw one card
    - Cards played to an expedition must ascend; wagers only go first
    - Draws come from the end of the deck or the top of a discard pile
    - You may not take back the card you just discarded in the same turn
    - The game ends as soon as the last deck card is drawn

Turn Flow:
    WAITING -> SELECT_CARD -> DRAW_CARD -> SELECT_CARD (next player) ...
    DRAW_CARD -> TERMINAL once the deck is empty
"""

import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Sequence, Sized, Union

from constants import (
    COLOR_ORDER,
    DECK_SIZE,
    EXPEDITION_COST,
    HAND_SIZE,
    LONG_EXPEDITION_BONUS,
    LONG_EXPEDITION_LENGTH,
    MAX_CARD_VALUE,
    MAX_PLAYERS,
    MIN_CARD_VALUE,
    WAGER_VALUE,
    WAGERS_PER_COLOR,
)
from errors import (
    ColorMismatch,
    DescendingValue,
    EmptyDeck,
    InvalidDrawSource,
    InvalidIndex,
    InvalidPile,
    NotYourTurn,
    ReplayOwnDiscard,
    WrongPhase,
)

logger = logging.getLogger(__name__)


class Color(str, Enum):
    """Expedition colors, declared in hand-sorting precedence."""

    RED = "red"
    GREEN = "green"
    BLUE = "blue"
    WHITE = "white"
    YELLOW = "yellow"


COLOR_RANK: dict[Color, int] = {Color(name): idx for idx, name in enumerate(COLOR_ORDER)}


def parse_color(value: Union[str, Color, None]) -> Optional[Color]:
    """Convert a protocol color name to a Color, or None if unknown."""
    if value is None:
        return None
    try:
        return Color(value)
    except ValueError:
        return None


class DrawSource(str, Enum):
    """Where a player may draw from in the DRAW_CARD phase."""

    DECK = "deck"
    DISCARD = "discard"


@dataclass(frozen=True)
class Card:
    """
    An immutable expedition card.

    Attributes:
        color: Expedition color.
        value: 0 for a wager card, otherwise 2-10.
    """

    color: Color
    value: int

    @property
    def is_wager(self) -> bool:
        return self.value == WAGER_VALUE

    def to_dict(self) -> dict:
        """Convert card to the {color, value} shape clients expect."""
        return {"color": self.color.value, "value": self.value}


# -----------------------------------------------------------------------------
# Deck & Scoring Engine
# -----------------------------------------------------------------------------

def build_ordered_deck() -> list[Card]:
    """Return all 60 cards in color order, wagers first."""
    cards: list[Card] = []
    for color in Color:
        cards.extend(Card(color, WAGER_VALUE) for _ in range(WAGERS_PER_COLOR))
        cards.extend(Card(color, value) for value in range(MIN_CARD_VALUE, MAX_CARD_VALUE + 1))
    return cards


def shuffle_deck(cards: Sequence[Card], rng: Optional[random.Random] = None) -> list[Card]:
    """
    Return a uniformly shuffled copy of the given cards.

    random.shuffle is a Fisher-Yates shuffle, so every permutation is
    equally likely. The input sequence is left untouched.

    Args:
        cards: Cards to shuffle.
        rng: Optional random source (for reproducible deals).

    Returns:
        A new list holding the same cards in shuffled order.
    """
    shuffled = list(cards)
    (rng or random).shuffle(shuffled)
    return shuffled


def build_deck(rng: Optional[random.Random] = None) -> list[Card]:
    """Build and shuffle a full 60-card deck."""
    return shuffle_deck(build_ordered_deck(), rng)


def deal_hand(cards: Sequence[Card], num_cards: int = HAND_SIZE) -> tuple[list[Card], list[Card]]:
    """
    Deal cards from the front of a deck.

    Args:
        cards: The deck to deal from.
        num_cards: How many cards to deal.

    Returns:
        Tuple of (hand, remaining deck).

    Raises:
        ValueError: If the deck holds fewer than num_cards cards.
    """
    if num_cards > len(cards):
        raise ValueError(f"Cannot deal {num_cards} cards from a deck of {len(cards)}")
    return list(cards[:num_cards]), list(cards[num_cards:])


def card_sort_key(card: Card) -> tuple[int, int, int]:
    return (COLOR_RANK[card.color], 0 if card.is_wager else 1, card.value)


def sort_hand(hand: Iterable[Card]) -> list[Card]:
    """Sort by color precedence, then wagers before numbers, then value."""
    return sorted(hand, key=card_sort_key)


def score_expedition(cards: Sequence[Card]) -> int:
    """
    Score a single expedition.

    Scoring rules:
        - Empty expedition: 0
        - Otherwise: -20 plus the sum of numbered cards
        - Eight or more cards: +20 bonus
        - The result is multiplied by 1 + number of wagers

    Negative results are expected; a lone wager scores -40.
    """
    if not cards:
        return 0

    total = -EXPEDITION_COST
    multiplier = 1
    for card in cards:
        if card.is_wager:
            multiplier += 1
        else:
            total += card.value

    if len(cards) >= LONG_EXPEDITION_LENGTH:
        total += LONG_EXPEDITION_BONUS

    return total * multiplier


@dataclass
class ScoreSummary:
    """A player's total score with its per-color breakdown."""

    total: int
    details: dict[str, int]

    def to_dict(self) -> dict:
        return {"total": self.total, "details": dict(self.details)}


def score_expeditions(expeditions: dict[Color, list[Card]]) -> ScoreSummary:
    """Score all five expeditions of one player."""
    details = {color.value: score_expedition(expeditions.get(color, [])) for color in Color}
    return ScoreSummary(total=sum(details.values()), details=details)


def score_session(players: Iterable["Player"]) -> dict[str, ScoreSummary]:
    """Score every player, keyed by durable player ID."""
    return {player.id: score_expeditions(player.expeditions) for player in players}


def is_terminal(deck: Sized) -> bool:
    """The game is over exactly when the draw deck is empty."""
    return len(deck) == 0


class Deck:
    """
    The shared draw pile.

    Cards are dealt from the front and drawn from the end. The deck is
    shuffled once at construction and never reshuffled.

    The seed is stored so a deal can be reproduced while debugging.
    """

    def __init__(self, seed: Optional[int] = None) -> None:
        """
        Initialize and shuffle a new 60-card deck.

        Args:
            seed: Optional random seed for deterministic shuffle.
                  If None, a random seed is generated and stored.
        """
        self.seed: int = seed if seed is not None else random.randint(0, 2**31 - 1)
        self.cards: list[Card] = build_deck(random.Random(self.seed))

    def __len__(self) -> int:
        return len(self.cards)

    def deal(self, num_cards: int = HAND_SIZE) -> list[Card]:
        """Remove and return num_cards from the front of the deck."""
        hand, self.cards = deal_hand(self.cards, num_cards)
        return hand

    def draw(self) -> Optional[Card]:
        """
        Draw the last card of the deck.

        Returns:
            The drawn Card, or None if deck is empty.
        """
        if self.cards:
            return self.cards.pop()
        return None


def empty_expeditions() -> dict[Color, list[Card]]:
    return {color: [] for color in Color}


def expeditions_to_dict(expeditions: dict[Color, list[Card]]) -> dict[str, list[dict]]:
    return {color.value: [card.to_dict() for card in cards] for color, cards in expeditions.items()}


@dataclass
class Player:
    """
    In-game state for one participant.

    Connection details live on session.SessionPlayer; this class only
    tracks what the rules care about.

    Attributes:
        id: Durable player ID (stable across reconnects).
        name: Display name.
        hand: Cards held privately, kept sorted.
        expeditions: Cards committed to each color.
    """

    id: str
    name: str
    hand: list[Card] = field(default_factory=list)
    expeditions: dict[Color, list[Card]] = field(default_factory=empty_expeditions)

    def hand_to_dict(self) -> list[dict]:
        return [card.to_dict() for card in self.hand]

    def score(self) -> ScoreSummary:
        return score_expeditions(self.expeditions)


class GamePhase(Enum):
    """
    Phases of an expedition game.

    Flow: WAITING -> SELECT_CARD <-> DRAW_CARD -> TERMINAL
    """

    WAITING = "waiting"            # Lobby, fewer than two players
    SELECT_CARD = "selectCard"     # Current player must play or discard
    DRAW_CARD = "drawCard"         # Current player must draw
    TERMINAL = "terminal"          # Deck exhausted, scores final


@dataclass(frozen=True)
class DiscardInfo:
    """The discard made earlier in the current turn."""

    player_id: str
    card: Card
    pile_color: Color


@dataclass
class Game:
    """
    Main game state and rule enforcement for one session.

    Every move method validates fully before mutating anything, so a
    rejected move (any GameError) leaves the game exactly as it was.

    Attributes:
        players: Players in join order (max 2); turn order follows it.
        deck: The draw pile (None until the game starts).
        discard_piles: One shared stack per color, last element on top.
        current_turn: Durable ID of the player to act.
        phase: Current phase of the turn machine.
        last_discard: Discard made this turn, cleared by the next draw.
    """

    players: list[Player] = field(default_factory=list)
    deck: Optional[Deck] = None
    discard_piles: dict[Color, list[Card]] = field(default_factory=empty_expeditions)
    current_turn: Optional[str] = None
    phase: GamePhase = GamePhase.WAITING
    last_discard: Optional[DiscardInfo] = None

    # -------------------------------------------------------------------------
    # Player Management
    # -------------------------------------------------------------------------

    def add_player(self, player: Player) -> bool:
        """
        Add a player to the game.

        Returns:
            True if added, False if the table is full.
        """
        if len(self.players) >= MAX_PLAYERS:
            return False
        self.players.append(player)
        return True

    def get_player(self, player_id: str) -> Optional[Player]:
        for player in self.players:
            if player.id == player_id:
                return player
        return None

    def opponent_of(self, player_id: str) -> Optional[Player]:
        for player in self.players:
            if player.id != player_id:
                return player
        return None

    def is_full(self) -> bool:
        return len(self.players) >= MAX_PLAYERS

    # -------------------------------------------------------------------------
    # Game Lifecycle
    # -------------------------------------------------------------------------

    def start_game(self, seed: Optional[int] = None, hand_size: int = HAND_SIZE) -> None:
        """
        Deal and hand the first turn to a random player.

        Args:
            seed: Optional seed making the shuffle and first player reproducible.
            hand_size: Cards dealt to each player.

        Raises:
            ValueError: If the hands would not leave a card in the deck.
        """
        if hand_size < 1 or hand_size * len(self.players) >= DECK_SIZE:
            raise ValueError(f"Cannot deal {hand_size} cards to {len(self.players)} players")

        self.deck = Deck(seed)
        self.discard_piles = empty_expeditions()
        self.last_discard = None

        for player in self.players:
            player.hand = sort_hand(self.deck.deal(hand_size))
            player.expeditions = empty_expeditions()

        chooser = random.Random(self.deck.seed)
        self.current_turn = chooser.choice([p.id for p in self.players])
        self.phase = GamePhase.SELECT_CARD

        logger.debug(
            f"Game started: deck_seed={self.deck.seed}, first={self.current_turn}, "
            f"deck_remaining={len(self.deck)}"
        )

    def is_over(self) -> bool:
        return self.phase == GamePhase.TERMINAL

    def deck_count(self) -> int:
        return len(self.deck) if self.deck else 0

    def card_count(self) -> int:
        """Count every card in play (deck, hands, expeditions, piles)."""
        total = self.deck_count()
        total += sum(len(pile) for pile in self.discard_piles.values())
        for player in self.players:
            total += len(player.hand)
            total += sum(len(cards) for cards in player.expeditions.values())
        return total

    def final_scores(self) -> dict[str, ScoreSummary]:
        return score_session(self.players)

    # -------------------------------------------------------------------------
    # Turn Actions
    # -------------------------------------------------------------------------

    def _require_turn(self, player_id: str, phase: GamePhase) -> Player:
        """Check the actor may act in the given phase and return them."""
        if self.phase in (GamePhase.WAITING, GamePhase.TERMINAL):
            raise WrongPhase()
        if self.current_turn != player_id:
            raise NotYourTurn()
        if self.phase != phase:
            raise WrongPhase()
        player = self.get_player(player_id)
        if player is None:
            raise NotYourTurn()
        return player

    @staticmethod
    def _card_index(player: Player, card_index: int) -> int:
        if isinstance(card_index, bool) or not isinstance(card_index, int):
            raise InvalidIndex()
        if not 0 <= card_index < len(player.hand):
            raise InvalidIndex()
        return card_index

    def play_card(self, player_id: str, card_index: int, target: Union[str, Color]) -> Card:
        """
        Play a hand card onto the actor's own expedition.

        Args:
            player_id: Durable ID of the acting player.
            card_index: Index into the actor's sorted hand.
            target: Expedition color; must equal the card's color.

        Returns:
            The played Card.

        Raises:
            NotYourTurn, WrongPhase, InvalidIndex, ColorMismatch, DescendingValue
        """
        player = self._require_turn(player_id, GamePhase.SELECT_CARD)
        index = self._card_index(player, card_index)
        card = player.hand[index]

        if parse_color(target) != card.color:
            raise ColorMismatch(
                f"Can only play {card.color.value} cards on the {card.color.value} expedition"
            )

        numbered = [c for c in player.expeditions[card.color] if not c.is_wager]
        if numbered:
            last_value = numbered[-1].value
            if card.is_wager:
                raise DescendingValue("Wager cards must be played before any numbered card")
            if card.value <= last_value:
                raise DescendingValue(f"Card value must be higher than the last card ({last_value})")

        player.hand.pop(index)
        player.expeditions[card.color].append(card)
        self.phase = GamePhase.DRAW_CARD
        return card

    def discard_card(
        self,
        player_id: str,
        card_index: int,
        pile_color: Union[str, Color, None] = None,
    ) -> Card:
        """
        Discard a hand card onto the shared pile of its color.

        The pile named by the client is only checked for being a real
        color; the card always lands on the pile matching its own color.

        Returns:
            The discarded Card.

        Raises:
            NotYourTurn, WrongPhase, InvalidIndex, InvalidPile
        """
        player = self._require_turn(player_id, GamePhase.SELECT_CARD)
        index = self._card_index(player, card_index)
        if pile_color is not None and parse_color(pile_color) is None:
            raise InvalidPile(f"Unknown discard pile: {pile_color}")

        card = player.hand.pop(index)
        if pile_color is not None and parse_color(pile_color) != card.color:
            logger.debug(f"Discard of {card.color.value} card named pile {pile_color}, using own color")
        self.discard_piles[card.color].append(card)
        self.last_discard = DiscardInfo(player_id=player_id, card=card, pile_color=card.color)
        self.phase = GamePhase.DRAW_CARD
        return card

    def draw_card(
        self,
        player_id: str,
        source: Union[str, DrawSource],
        pile_color: Union[str, Color, None] = None,
    ) -> Card:
        """
        Draw from the deck or a discard pile and finish the turn.

        On success the replay restriction is lifted, the hand is re-sorted,
        and either the game ends (deck empty) or the turn passes.

        Args:
            player_id: Durable ID of the acting player.
            source: "deck" or "discard".
            pile_color: Pile to draw from when source is "discard".

        Returns:
            The drawn Card.

        Raises:
            NotYourTurn, WrongPhase, InvalidDrawSource, EmptyDeck,
            InvalidPile, ReplayOwnDiscard
        """
        player = self._require_turn(player_id, GamePhase.DRAW_CARD)

        try:
            draw_source = DrawSource(source)
        except ValueError:
            raise InvalidDrawSource() from None

        if draw_source == DrawSource.DECK:
            card = self.deck.draw() if self.deck else None
            if card is None:
                raise EmptyDeck()
        else:
            color = parse_color(pile_color)
            if color is None or not self.discard_piles[color]:
                raise InvalidPile()
            pile = self.discard_piles[color]
            info = self.last_discard
            if (
                info is not None
                and info.player_id == player_id
                and info.pile_color == color
                and pile[-1] == info.card
            ):
                raise ReplayOwnDiscard()
            card = pile.pop()

        player.hand.append(card)
        player.hand = sort_hand(player.hand)
        self.last_discard = None

        if is_terminal(self.deck):
            self.phase = GamePhase.TERMINAL
        else:
            self._advance_turn()
        return card

    def _advance_turn(self) -> None:
        """Pass the turn to the next player (two-player round robin)."""
        ids = [p.id for p in self.players]
        current_index = ids.index(self.current_turn)
        self.current_turn = ids[(current_index + 1) % len(ids)]
        self.phase = GamePhase.SELECT_CARD

    # -------------------------------------------------------------------------
    # State Projection
    # -------------------------------------------------------------------------

    def get_state(self, player_id: str) -> Optional[dict]:
        """
        Build the game state from one player's perspective.

        The opponent's hand is never included; only its expeditions,
        which are public, and its score.

        Args:
            player_id: Durable ID of the viewing player.

        Returns:
            The gameState payload, or None if the player is not in this game.
        """
        player = self.get_player(player_id)
        if player is None:
            return None

        opponent = self.opponent_of(player_id)
        player_score = player.score()
        opponent_score = opponent.score() if opponent else score_expeditions({})

        return {
            "currentTurn": self.current_turn,
            "gamePhase": self.phase.value,
            "hand": player.hand_to_dict(),
            "playerExpeditions": expeditions_to_dict(player.expeditions),
            "opponentExpeditions": expeditions_to_dict(opponent.expeditions) if opponent else {},
            "discardPiles": expeditions_to_dict(self.discard_piles),
            "deckCount": self.deck_count(),
            "playerScore": player_score.total,
            "playerScoreDetails": player_score.details,
            "opponentScore": opponent_score.total,
            "opponentScoreDetails": opponent_score.details,
            "playerName": player.name,
            "opponentName": opponent.name if opponent else "Opponent",
        }
