"""Shared fixtures: a controllable Nope timer and game builders."""

import random
from typing import Callable, Optional

import pytest

from deck import Card, CardType
from game import Game


class FakeTimer:
    """Stands in for an asyncio task; fired explicitly by the test."""

    def __init__(self, delay: float, callback: Callable[[], None]):
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeTimers:
    """Timer factory that records every timer it creates."""

    def __init__(self):
        self.timers: list[FakeTimer] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def active(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def fire(self) -> int:
        """Fire every live timer, as if their delays elapsed. Returns how many fired."""
        fired = 0
        for timer in self.active:
            timer.fired = True
            timer.callback()
            fired += 1
        return fired


@pytest.fixture
def timers() -> FakeTimers:
    return FakeTimers()


@pytest.fixture
def make_game(timers):
    """Build a game with ``num_players`` players, started unless told otherwise."""

    def _make(num_players: int = 2, start: bool = True, seed: int = 1) -> Game:
        game = Game(room_id="TEST01", rng=random.Random(seed), timer_factory=timers)
        for i in range(num_players):
            game.add_player(f"p{i + 1}", f"Player {i + 1}")
        if start:
            game.start_game()
        return game

    return _make


def give(game: Game, player_id: str, *card_types: CardType) -> list[Card]:
    """Put new cards of the given types into a player's hand."""
    cards = [Card(t) for t in card_types]
    game.get_player(player_id).hand.extend(cards)
    return cards


def set_hand(game: Game, player_id: str, *card_types: CardType) -> list[Card]:
    game.get_player(player_id).hand = []
    return give(game, player_id, *card_types)


def stack_deck(game: Game, *card_types: CardType, discard: Optional[list[CardType]] = None) -> None:
    """Replace the draw pile; the first type given ends up on top."""
    game.deck.cards = [Card(t) for t in reversed(card_types)]
    game.deck.discard_pile = [Card(t) for t in (discard or [])]
