"""
Game constants for Exploding Kittens.

Values that operators may tune come from config.py (environment-aware);
the rest are fixed rules of the game.

Deck summary:
    - Action cards: attack, skip, favor, shuffle, see_future, nope
    - Five cat variants, only useful in matching sets for stealing
    - Defuse and exploding kitten cards are added per game by Deck.setup_for_players
"""

from config import config


# =============================================================================
# Card Types
# =============================================================================

CAT_CARD_TYPES: tuple[str, ...] = (
    "tacocat",
    "rainbow_cat",
    "potato_cat",
    "beard_cat",
    "cattermelon",
)

CARD_DESCRIPTIONS: dict[str, str] = {
    "attack": "End your turn without drawing. Next player takes 2 turns.",
    "skip": "End your turn without drawing a card.",
    "favor": "Force another player to give you a card.",
    "shuffle": "Shuffle the deck.",
    "see_future": "See the top 3 cards of the deck.",
    "nope": "Stop any action except Exploding Kitten or Defuse.",
    "defuse": "Use to defuse an Exploding Kitten.",
    "exploding_kitten": "You explode! Game over unless you defuse.",
    **{cat: "Cat card - collect pairs to steal cards." for cat in CAT_CARD_TYPES},
}

# Base deck (before defuse / exploding kitten setup)
BASE_DECK_COUNTS: dict[str, int] = {
    **config.deck.to_dict(),
    **{cat: config.deck.CAT_COPIES for cat in CAT_CARD_TYPES},
}


# =============================================================================
# Game Constants
# =============================================================================

MIN_PLAYERS = config.MIN_PLAYERS
MAX_PLAYERS = config.MAX_PLAYERS_PER_ROOM
ROOM_CODE_LENGTH = config.ROOM_CODE_LENGTH
ROOM_CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
FINISHED_ROOM_RETENTION_SECONDS = config.FINISHED_ROOM_RETENTION_MINUTES * 60

NOPE_WINDOW_SECONDS = config.NOPE_WINDOW_SECONDS
NOPE_CHAIN_SECONDS = config.NOPE_CHAIN_SECONDS

INITIAL_HAND_SIZE = 4       # plus one guaranteed defuse
SEE_FUTURE_COUNT = 3
EXTRA_DEFUSE_CARDS = 2      # defuses in the deck beyond one per player
MAX_STEAL_CARDS = 3

GAME_LOG_MAX_ENTRIES = 50
GAME_LOG_VISIBLE_ENTRIES = 10

MAX_PLAYER_NAME_LENGTH = 24
MAX_CHAT_MESSAGE_LENGTH = 500
