"""
Game constants for the expedition card game.

This module is the single source of truth for deck composition and
scoring numbers. Rule logic lives in game.py.

Expedition Scoring:
    - An empty expedition scores 0
    - Starting an expedition costs 20 points
    - Numbered cards add their face value
    - Eight or more cards earn a 20 point bonus
    - Each wager card adds one to the multiplier (1 + wagers)
"""

# =============================================================================
# Deck Composition
# =============================================================================

# Color precedence for sorting hands and laying out piles
COLOR_ORDER: list[str] = ["red", "green", "blue", "white", "yellow"]

WAGER_VALUE: int = 0
WAGERS_PER_COLOR: int = 3
MIN_CARD_VALUE: int = 2
MAX_CARD_VALUE: int = 10

CARDS_PER_COLOR: int = WAGERS_PER_COLOR + (MAX_CARD_VALUE - MIN_CARD_VALUE + 1)
DECK_SIZE: int = CARDS_PER_COLOR * len(COLOR_ORDER)


# =============================================================================
# Scoring
# =============================================================================

EXPEDITION_COST: int = 20
LONG_EXPEDITION_LENGTH: int = 8
LONG_EXPEDITION_BONUS: int = 20


# =============================================================================
# Table Constants
# =============================================================================

MAX_PLAYERS: int = 2
HAND_SIZE: int = 8
