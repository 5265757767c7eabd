"""
Cards and the draw/discard piles for Exploding Kittens.

A Card never changes once created. Cards move between the draw pile, the
discard pile and player hands by ownership transfer; the Deck owns the two
piles and knows nothing about hands.

Pile orientation:
    cards[0]  ... cards[-1]
    bottom         top      <- draw() pops from the top
"""

import random
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from constants import (
    BASE_DECK_COUNTS,
    CARD_DESCRIPTIONS,
    CAT_CARD_TYPES,
    EXTRA_DEFUSE_CARDS,
    INITIAL_HAND_SIZE,
)


class CardType(str, Enum):
    """Every kind of card in the game."""

    ATTACK = "attack"
    SKIP = "skip"
    FAVOR = "favor"
    SHUFFLE = "shuffle"
    SEE_FUTURE = "see_future"
    NOPE = "nope"
    DEFUSE = "defuse"
    EXPLODING_KITTEN = "exploding_kitten"
    TACOCAT = "tacocat"
    RAINBOW_CAT = "rainbow_cat"
    POTATO_CAT = "potato_cat"
    BEARD_CAT = "beard_cat"
    CATTERMELON = "cattermelon"

    @property
    def is_cat(self) -> bool:
        return self.value in CAT_CARD_TYPES

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["CardType"]:
        """Look up a card type by its wire name, or None if unknown."""
        try:
            return cls(value)
        except ValueError:
            return None


def generate_card_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(frozen=True)
class Card:
    """
    A single card.

    Attributes:
        type: What kind of card this is.
        id: Unique identifier used by clients to refer to this card.
    """

    type: CardType
    id: str = field(default_factory=generate_card_id)

    @property
    def is_cat(self) -> bool:
        return self.type.is_cat

    @property
    def description(self) -> str:
        return CARD_DESCRIPTIONS[self.type.value]

    def to_dict(self) -> dict:
        """Convert card to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "type": self.type.value,
            "description": self.description,
            "isCat": self.is_cat,
        }


class Deck:
    """
    The draw pile plus the discard pile.

    An injected ``random.Random`` makes shuffles deterministic in tests;
    otherwise a private generator is created.
    """

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self.rng = rng or random.Random()
        self.cards: list[Card] = []
        self.discard_pile: list[Card] = []

        for type_name, count in BASE_DECK_COUNTS.items():
            card_type = CardType(type_name)
            self.cards.extend(Card(card_type) for _ in range(count))

        self.shuffle()

    def shuffle(self) -> None:
        """Uniformly permute the draw pile (Fisher-Yates via Random.shuffle)."""
        self.rng.shuffle(self.cards)

    def draw(self) -> Optional[Card]:
        """
        Draw the top card.

        When the draw pile is empty the discard pile is shuffled back in
        first. Returns None only if both piles are empty.
        """
        if not self.cards:
            if not self.discard_pile:
                return None
            self.cards = self.discard_pile
            self.discard_pile = []
            self.shuffle()
        return self.cards.pop()

    def draw_many(self, count: int) -> list[Card]:
        """Draw up to ``count`` cards, stopping early when both piles run out."""
        drawn = []
        for _ in range(count):
            card = self.draw()
            if card is None:
                break
            drawn.append(card)
        return drawn

    def peek_top(self, count: int = 1) -> list[Card]:
        """Return the top ``count`` cards, top first, without removing them."""
        if count <= 0:
            return []
        return list(reversed(self.cards[-count:]))

    def insert(self, card: Card, position: Optional[int] = None) -> None:
        """
        Insert a card at an index of the draw pile.

        Index 0 is the bottom. None or an index past the end puts the card
        on top; negative indexes clamp to the bottom.
        """
        if position is None or position >= len(self.cards):
            self.cards.append(card)
        else:
            self.cards.insert(max(0, position), card)

    def discard(self, card: Card) -> None:
        self.discard_pile.append(card)

    def discard_many(self, cards: list[Card]) -> None:
        self.discard_pile.extend(cards)

    def top_discard(self) -> Optional[Card]:
        return self.discard_pile[-1] if self.discard_pile else None

    def cards_remaining(self) -> int:
        """Return the number of cards left in the draw pile."""
        return len(self.cards)

    def total_cards(self) -> int:
        return len(self.cards) + len(self.discard_pile)

    def count_type(self, card_type: CardType) -> int:
        return sum(1 for c in self.cards if c.type == card_type)

    # -------------------------------------------------------------------------
    # Game setup
    # -------------------------------------------------------------------------

    def setup_for_players(self, player_count: int) -> None:
        """
        Seed the draw pile with defuse and exploding kitten cards.

        Any existing defuse/kitten cards are stripped first, then
        ``player_count + 2`` defuses and ``player_count - 1`` kittens are
        added and the pile is shuffled.
        """
        self.cards = [
            c for c in self.cards
            if c.type not in (CardType.DEFUSE, CardType.EXPLODING_KITTEN)
        ]
        self.cards.extend(
            Card(CardType.DEFUSE) for _ in range(player_count + EXTRA_DEFUSE_CARDS)
        )
        self.cards.extend(
            Card(CardType.EXPLODING_KITTEN) for _ in range(max(0, player_count - 1))
        )
        self.shuffle()

    def deal_initial_hands(self, player_count: int) -> list[list[Card]]:
        """
        Deal starting hands: four cards plus exactly one defuse each.

        Exploding kittens drawn while dealing are put back at a random
        position, so nobody starts with one.
        """
        hands: list[list[Card]] = []

        for _ in range(player_count):
            hand: list[Card] = []
            while len(hand) < INITIAL_HAND_SIZE and self._has_dealable_card():
                card = self.cards.pop()
                if card.type == CardType.EXPLODING_KITTEN:
                    self.insert(card, self.rng.randrange(len(self.cards) + 1))
                else:
                    hand.append(card)

            defuse = next((c for c in self.cards if c.type == CardType.DEFUSE), None)
            if defuse is not None:
                self.cards.remove(defuse)
                hand.append(defuse)

            hands.append(hand)

        self.shuffle()
        return hands

    def _has_dealable_card(self) -> bool:
        return any(c.type != CardType.EXPLODING_KITTEN for c in self.cards)
