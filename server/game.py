"""
Game logic for Exploding Kittens.

This module implements the per-room rules engine: player management, the
turn pointer, card effects, the steal sub-protocol, pending actions that wait
on a specific player, and the timed Nope interrupt.

Exploding Kittens Rules Summary:
    - On your turn play any number of cards, then draw one card to end it
    - Drawing an Exploding Kitten eliminates you unless you hold a Defuse,
      in which case you put the kitten back anywhere in the deck
    - Any action card can be cancelled by a Nope, and a Nope by another Nope
    - Two matching cards steal a random card; three steal a named card
    - Last player alive wins

Nope windows:
    play card ──> window open ──(timer)──> resolve
                      │  ^                   │
                 nope │  │ timer re-armed    ├─ even nopes: effect runs
                      v  │                   └─ odd nopes: cancelled
                   nope_count += 1
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Any, Callable, ClassVar, Optional, Union

import errors
from constants import (
    GAME_LOG_MAX_ENTRIES,
    GAME_LOG_VISIBLE_ENTRIES,
    MAX_PLAYERS,
    MAX_STEAL_CARDS,
    MIN_PLAYERS,
    NOPE_CHAIN_SECONDS,
    NOPE_WINDOW_SECONDS,
    SEE_FUTURE_COUNT,
)
from deck import Card, CardType, Deck
from errors import GameError, raise_error
from models.events import EventType, GameEvent

logger = logging.getLogger(__name__)


class GameState(str, Enum):
    """Lifecycle of a room's game."""

    WAITING = "waiting"
    PLAYING = "playing"
    FINISHED = "finished"


@dataclass
class Player:
    """
    A player in the game.

    Attributes:
        id: Persistent player identifier (survives reconnection).
        name: Display name.
        hand: Cards held, in the order they were received.
        is_alive: False once exploded or after leaving mid-game.
        is_ready: Lobby flag, not used to gate the game start.
        has_left: Left the room mid-game; dropped when the game is reset.
    """

    id: str
    name: str
    hand: list[Card] = field(default_factory=list)
    is_alive: bool = True
    is_ready: bool = False
    has_left: bool = False

    def find_card(self, card_id: Optional[str]) -> Optional[Card]:
        for card in self.hand:
            if card.id == card_id:
                return card
        return None

    def first_of_type(self, card_type: CardType) -> Optional[Card]:
        return next((c for c in self.hand if c.type == card_type), None)

    def cards_of_type(self, card_type: CardType) -> list[Card]:
        return [c for c in self.hand if c.type == card_type]

    def remove_card(self, card: Card) -> None:
        self.hand.remove(card)

    def to_public_dict(self, is_current: bool) -> dict:
        """What every player in the room may see about this player."""
        return {
            "id": self.id,
            "name": self.name,
            "handSize": len(self.hand),
            "isAlive": self.is_alive,
            "isCurrentPlayer": is_current,
        }


# -----------------------------------------------------------------------------
# Pending actions: a named player must respond before play continues
# -----------------------------------------------------------------------------

@dataclass
class FavorRequest:
    """The target of a Favor must hand over a card of their choice."""

    from_player_id: str
    to_player_id: str
    message: str

    type: ClassVar[str] = "favor"

    def involves(self, player_id: str) -> bool:
        return player_id in (self.from_player_id, self.to_player_id)

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "fromPlayer": self.from_player_id,
            "toPlayer": self.to_player_id,
            "message": self.message,
        }


@dataclass
class PlaceExplodingKitten:
    """A player who defused a kitten must choose where it goes back."""

    player_id: str
    card: Card
    message: str = "Choose where to place the Exploding Kitten in the deck"

    type: ClassVar[str] = "place_exploding_kitten"

    def involves(self, player_id: str) -> bool:
        return player_id == self.player_id

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "player": self.player_id,
            "card": self.card.to_dict(),
            "message": self.message,
        }


PendingAction = Union[FavorRequest, PlaceExplodingKitten]


# -----------------------------------------------------------------------------
# Nope windows
# -----------------------------------------------------------------------------

class ActionKind(str, Enum):
    """Effects that wait behind a Nope window."""

    SKIP = "skip"
    ATTACK = "attack"
    SEE_FUTURE = "see_future"
    SHUFFLE = "shuffle"
    FAVOR = "favor"
    RANDOM_STEAL = "random_steal"
    NAMED_STEAL = "named_steal"

    @property
    def label(self) -> str:
        return ACTION_LABELS[self]


ACTION_LABELS: dict[ActionKind, str] = {
    ActionKind.SKIP: "Skip",
    ActionKind.ATTACK: "Attack",
    ActionKind.SEE_FUTURE: "See Future",
    ActionKind.SHUFFLE: "Shuffle",
    ActionKind.FAVOR: "Favor",
    ActionKind.RANDOM_STEAL: "Random Steal",
    ActionKind.NAMED_STEAL: "Named Steal",
}

SINGLE_EFFECT_TYPES = frozenset({
    CardType.SKIP,
    CardType.ATTACK,
    CardType.SEE_FUTURE,
    CardType.SHUFFLE,
    CardType.FAVOR,
})


@dataclass(frozen=True)
class DeferredEffect:
    """Everything needed to apply an action once its Nope window closes."""

    kind: ActionKind
    actor_id: str
    target_id: Optional[str] = None
    card_type: Optional[CardType] = None


@dataclass
class NopeWindow:
    """
    An action waiting out its grace period.

    Attributes:
        window_id: Identifies this window; stale timers compare against it.
        effect: The deferred state change.
        exclude_player_id: Player who may not Nope (the actor).
        nope_count: Nopes played so far; even means the action will run.
        timer: Cancellable handle for the pending resolution.
    """

    window_id: int
    effect: DeferredEffect
    exclude_player_id: Optional[str]
    nope_count: int = 0
    timer: Optional[Any] = field(default=None, repr=False, compare=False)

    @property
    def action(self) -> str:
        return self.effect.kind.label

    @property
    def will_execute(self) -> bool:
        return self.nope_count % 2 == 0

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "excludePlayerId": self.exclude_player_id,
            "nopeCount": self.nope_count,
            "willExecute": self.will_execute,
        }


TimerFactory = Callable[[float, Callable[[], None]], Any]


def asyncio_timer(delay: float, callback: Callable[[], None]) -> asyncio.Task:
    """Run ``callback`` after ``delay`` seconds; cancel the returned task to abort."""

    async def _fire() -> None:
        await asyncio.sleep(delay)
        callback()

    return asyncio.get_running_loop().create_task(_fire())


@dataclass
class LogEntry:
    timestamp: float
    message: str

    def to_dict(self) -> dict:
        return {"timestamp": self.timestamp, "message": self.message}


@dataclass
class ActionResult:
    """Outcome of a successful command; failures raise GameError instead."""

    message: str
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"success": True, "message": self.message, "data": self.data}


@dataclass
class Game:
    """
    Main game state and logic controller for one room.

    Attributes:
        room_id: Code of the room that owns this game.
        players: Players in turn order (shuffled when the game starts).
        deck: Draw and discard piles.
        current_player_index: Index of the player whose turn it is.
        turns_remaining: Turns the current player still owes (attacks stack).
        state: waiting, playing or finished.
        pending_action: A response awaited from one specific player.
        nope_window: The action currently open to Nopes.
        game_log: Recent human-readable history, capped at 50 entries.
        winner: Last player standing once finished.
        timer_factory: Schedules Nope window resolution; swapped out in tests.
    """

    room_id: str = ""
    players: list[Player] = field(default_factory=list)
    deck: Optional[Deck] = None
    current_player_index: int = 0
    turns_remaining: int = 1
    state: GameState = GameState.WAITING
    pending_action: Optional[PendingAction] = None
    nope_window: Optional[NopeWindow] = None
    game_log: list[LogEntry] = field(default_factory=list)
    winner: Optional[Player] = None
    min_players: int = MIN_PLAYERS
    max_players: int = MAX_PLAYERS
    nope_window_seconds: float = NOPE_WINDOW_SECONDS
    nope_chain_seconds: float = NOPE_CHAIN_SECONDS
    rng: random.Random = field(default_factory=random.Random, repr=False, compare=False)
    timer_factory: TimerFactory = field(default=asyncio_timer, repr=False, compare=False)

    _event_emitter: Optional[Callable[[GameEvent], None]] = field(
        default=None, repr=False, compare=False
    )
    _sequence_num: int = field(default=0, repr=False, compare=False)
    _window_seq: int = field(default=0, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.deck is None:
            self.deck = Deck(self.rng)

    # -------------------------------------------------------------------------
    # Events & log
    # -------------------------------------------------------------------------

    def set_event_emitter(self, emitter: Optional[Callable[[GameEvent], None]]) -> None:
        """
        Set callback for event emission.

        The emitter is called synchronously with each GameEvent.

        Args:
            emitter: Callback receiving GameEvent objects, or None to detach.
        """
        self._event_emitter = emitter

    def _emit(
        self,
        event_type: EventType,
        player_id: Optional[str] = None,
        **data: Any,
    ) -> None:
        if self._event_emitter is None:
            return

        self._sequence_num += 1
        event = GameEvent(
            event_type=event_type,
            room_id=self.room_id,
            sequence_num=self._sequence_num,
            player_id=player_id,
            data=data,
        )
        self._event_emitter(event)

    def add_to_log(self, message: str) -> None:
        """Append to the player-visible log, keeping the most recent entries."""
        self.game_log.append(LogEntry(timestamp=time.time(), message=message))
        if len(self.game_log) > GAME_LOG_MAX_ENTRIES:
            self.game_log = self.game_log[-GAME_LOG_MAX_ENTRIES:]
        logger.debug(message, extra={"room_code": self.room_id})

    @property
    def last_activity(self) -> Optional[float]:
        return self.game_log[-1].timestamp if self.game_log else None

    # -------------------------------------------------------------------------
    # Player Management
    # -------------------------------------------------------------------------

    def check_can_join(self, player_id: str) -> None:
        """
        Raise unless ``player_id`` could be seated right now.

        Raises:
            GameError: If the room is full, a game is running, or the
                player is already seated.
        """
        if len(self.players) >= self.max_players:
            raise_error(errors.ROOM_FULL, "Game is full")
        if self.state == GameState.PLAYING:
            raise_error(errors.GAME_IN_PROGRESS, "Game already in progress")
        if self.get_player(player_id):
            raise_error(errors.ALREADY_IN_GAME, "Player already in game")

    def add_player(self, player_id: str, name: str) -> Player:
        """Add a player. Only allowed while waiting or after the game finished."""
        self.check_can_join(player_id)

        player = Player(id=player_id, name=name)
        self.players.append(player)
        self.add_to_log(f"{name} joined the game")
        self._emit(EventType.PLAYER_JOINED, player_id=player_id, player_name=name)
        return player

    def remove_player(self, player_id: str) -> bool:
        """
        Remove a player by ID.

        Mid-game the player stays in the turn order but is eliminated, so
        index-based turn math keeps working.

        Returns:
            True if the player was found.
        """
        player = self.get_player(player_id)
        if player is None:
            return False

        self.add_to_log(f"{player.name} left the game")
        self._emit(EventType.PLAYER_LEFT, player_id=player_id)

        if self.state == GameState.PLAYING:
            player.has_left = True
            if player.is_alive:
                self._eliminate(player)
        else:
            self.players.remove(player)
        return True

    def get_player(self, player_id: Optional[str]) -> Optional[Player]:
        for player in self.players:
            if player.id == player_id:
                return player
        return None

    def current_player(self) -> Optional[Player]:
        """Get the player whose turn it currently is."""
        if self.players:
            return self.players[self.current_player_index]
        return None

    def living_players(self) -> list[Player]:
        return [p for p in self.players if p.is_alive]

    def total_cards(self) -> int:
        """Cards in play: both piles, every hand, and a kitten awaiting placement."""
        total = self.deck.total_cards() + sum(len(p.hand) for p in self.players)
        if isinstance(self.pending_action, PlaceExplodingKitten):
            total += 1
        return total

    # -------------------------------------------------------------------------
    # Game Lifecycle
    # -------------------------------------------------------------------------

    def start_game(self) -> None:
        """
        Deal hands, shuffle the seating order and start play.

        Raises:
            GameError: With fewer than min_players, or if not waiting.
        """
        if len(self.players) < self.min_players:
            raise_error(errors.NOT_ENOUGH_PLAYERS, f"Need at least {self.min_players} players")
        if self.state != GameState.WAITING:
            raise_error(errors.GAME_IN_PROGRESS, "Game already started")

        player_count = len(self.players)
        self.deck.setup_for_players(player_count)
        hands = self.deck.deal_initial_hands(player_count)
        for player, hand in zip(self.players, hands):
            player.hand = hand
            player.is_alive = True

        self.rng.shuffle(self.players)
        self.current_player_index = 0
        self.turns_remaining = 1
        self.pending_action = None
        self.winner = None
        self.state = GameState.PLAYING

        self.add_to_log("Game started!")
        self.add_to_log(f"{self.current_player().name}'s turn")
        self._emit(EventType.GAME_STARTED, player_count=player_count)
        logger.info(
            f"Game started with {player_count} players",
            extra={"room_code": self.room_id},
        )

    def check_game_end(self) -> bool:
        """Finish the game once at most one player is alive."""
        if self.state == GameState.FINISHED:
            return True
        if self.state != GameState.PLAYING:
            return False

        alive = self.living_players()
        if len(alive) > 1:
            return False

        self.state = GameState.FINISHED
        self.winner = alive[0] if alive else None
        if self.winner is not None:
            self.current_player_index = self.players.index(self.winner)
        self.pending_action = None
        self._close_nope_window()

        if self.winner:
            self.add_to_log(f"{self.winner.name} wins!")
        else:
            self.add_to_log("Game ended with no winner")
        self._emit(
            EventType.GAME_ENDED,
            player_id=self.winner.id if self.winner else None,
            message=self.game_log[-1].message,
        )
        logger.info("Game finished", extra={"room_code": self.room_id})
        return True

    def reset_game(self) -> None:
        """Return a finished game to the waiting room with a fresh deck."""
        if self.state != GameState.FINISHED:
            raise_error(errors.RESET_NOT_ALLOWED, "Can only reset finished games")

        self._close_nope_window()
        self.state = GameState.WAITING
        self.current_player_index = 0
        self.turns_remaining = 1
        self.pending_action = None
        self.winner = None

        self.players = [p for p in self.players if not p.has_left]
        for player in self.players:
            player.hand = []
            player.is_alive = True
            player.is_ready = False

        self.deck = Deck(self.rng)
        self.game_log = []
        self.add_to_log("Game has been reset - waiting for players to start a new game")
        self._emit(EventType.GAME_RESET)

    def shutdown(self) -> None:
        """Cancel outstanding timers before the room is discarded."""
        self._close_nope_window()
        self._event_emitter = None

    # -------------------------------------------------------------------------
    # Turn Flow
    # -------------------------------------------------------------------------

    def end_turn(self) -> None:
        """Use up one owed turn, passing play on when none are left."""
        self.turns_remaining -= 1
        if self.turns_remaining <= 0:
            self._advance_turn()

    def _advance_turn(self) -> None:
        """Move to the next living player with a single turn owed."""
        if not self.living_players():
            return

        index = self.current_player_index
        for _ in range(len(self.players)):
            index = (index + 1) % len(self.players)
            if self.players[index].is_alive:
                break

        self.current_player_index = index
        self.turns_remaining = 1
        current = self.players[index]
        self.add_to_log(f"{current.name}'s turn")
        self._emit(EventType.TURN_STARTED, player_id=current.id)

    def _eliminate(self, player: Player) -> None:
        """Knock a player out, untangling anything that was waiting on them."""
        was_current = self.current_player() is player
        player.is_alive = False

        pending = self.pending_action
        if pending is not None and pending.involves(player.id):
            self.pending_action = None
            if isinstance(pending, PlaceExplodingKitten):
                self.deck.insert(pending.card, self.rng.randrange(self.deck.cards_remaining() + 1))

        window = self.nope_window
        if window is not None and window.effect.actor_id == player.id:
            self._close_nope_window()
            self.add_to_log(f"{window.action} was cancelled")

        if self.check_game_end():
            return
        if was_current:
            self._advance_turn()

    def _require_playing(self) -> None:
        if self.state != GameState.PLAYING:
            raise_error(errors.GAME_NOT_IN_PROGRESS, "Game not in progress")

    def _require_living_player(self, player_id: str) -> Player:
        player = self.get_player(player_id)
        if player is None or not player.is_alive:
            raise_error(errors.PLAYER_NOT_FOUND, "Player not found or eliminated")
        return player

    def _require_turn(self, player: Player) -> None:
        current = self.current_player()
        if current is None or current.id != player.id:
            raise_error(errors.NOT_YOUR_TURN, "Not your turn")
        if self.pending_action is not None:
            raise_error(errors.ACTION_PENDING, "Waiting for response to previous action")
        if self.nope_window is not None:
            raise_error(
                errors.NOPE_WINDOW_OPEN,
                f"Waiting for {self.nope_window.action} to resolve",
            )

    def _require_target(
        self,
        player: Player,
        target_player_id: Optional[str],
        missing_message: str = "Must select a target player",
    ) -> Player:
        if not target_player_id:
            raise_error(errors.INVALID_TARGET, missing_message)
        target = self.get_player(target_player_id)
        if target is None or not target.is_alive or target.id == player.id:
            raise_error(errors.INVALID_TARGET, "Invalid target player")
        if not target.hand:
            raise_error(errors.INVALID_TARGET, "Target player has no cards")
        return target

    # -------------------------------------------------------------------------
    # Card Play
    # -------------------------------------------------------------------------

    def play_card(
        self,
        player_id: str,
        card_id: str,
        target_player_id: Optional[str] = None,
        additional_data: Optional[dict] = None,
    ) -> ActionResult:
        """
        Play a single card from hand.

        Nope may be played by anyone (except the actor) while a window is
        open. Everything else needs the current player, no pending action
        and no open window. Cat and defuse cards played alone use the
        matching copies in hand for a steal.

        Raises:
            GameError: On any validation failure, before state changes.
        """
        self._require_playing()
        player = self._require_living_player(player_id)
        card = player.find_card(card_id)
        if card is None:
            raise_error(errors.CARD_NOT_FOUND, "Card not found in hand")

        if card.type == CardType.NOPE:
            return self._play_nope(player, card)

        self._require_turn(player)

        if card.type in SINGLE_EFFECT_TYPES:
            return self._play_action_card(player, card, target_player_id)

        if card.type == CardType.EXPLODING_KITTEN:
            raise_error(errors.INVALID_PLAY, "Exploding Kittens cannot be played")

        matching = [card] + [
            c for c in player.cards_of_type(card.type) if c.id != card.id
        ]
        if len(matching) < 2:
            if card.type == CardType.DEFUSE:
                raise_error(errors.INVALID_PLAY, "Defuse is only used against an Exploding Kitten")
            raise_error(errors.INVALID_PLAY, "Need at least 2 matching cards to steal")

        count = 3 if self._wants_named_steal(additional_data) and len(matching) >= 3 else 2
        return self._play_steal(player, matching[:count], target_player_id, additional_data)

    def play_multiple_cards(
        self,
        player_id: str,
        card_ids: list[str],
        primary_card_id: Optional[str] = None,
        target_player_id: Optional[str] = None,
        additional_data: Optional[dict] = None,
    ) -> ActionResult:
        """
        Play a set of matching cards as a steal.

        A lone Nope is played as a Nope. A Nope mixed with other cards is
        rejected like any mixed set. A single action card falls back to its
        normal effect.
        """
        self._require_playing()
        player = self._require_living_player(player_id)
        if not card_ids:
            raise_error(errors.INVALID_PLAY, "No cards selected")

        if len(card_ids) == 1:
            only = player.find_card(card_ids[0])
            if only is not None and only.type == CardType.NOPE:
                return self.play_card(player_id, only.id, target_player_id, additional_data)

        self._require_turn(player)

        if len(set(card_ids)) != len(card_ids):
            raise_error(errors.INVALID_PLAY, "Each card can only be played once")

        cards = []
        for card_id in card_ids:
            card = player.find_card(card_id)
            if card is None:
                raise_error(errors.CARD_NOT_FOUND, f"Card {card_id} not found in hand")
            cards.append(card)

        if len({c.type for c in cards}) > 1:
            raise_error(errors.INVALID_PLAY, "All cards must be of the same type")

        primary_id = primary_card_id or cards[0].id
        primary = next((c for c in cards if c.id == primary_id), None)
        if primary is None:
            raise_error(errors.INVALID_PLAY, "Primary card not found in selection")

        if len(cards) == 1:
            if primary.type in SINGLE_EFFECT_TYPES:
                return self.play_card(player_id, primary.id, target_player_id, additional_data)
            raise_error(errors.INVALID_PLAY, "Need at least 2 matching cards to steal")

        if len(cards) > MAX_STEAL_CARDS:
            raise_error(errors.INVALID_PLAY, f"Cannot play more than {MAX_STEAL_CARDS} cards at once")
        if primary.type == CardType.EXPLODING_KITTEN:
            raise_error(errors.INVALID_PLAY, "Exploding Kittens cannot be played")

        return self._play_steal(player, cards, target_player_id, additional_data)

    def _play_action_card(
        self,
        player: Player,
        card: Card,
        target_player_id: Optional[str],
    ) -> ActionResult:
        kind = ActionKind(card.type.value)
        target = None
        if kind == ActionKind.FAVOR:
            target = self._require_target(player, target_player_id)

        data: dict = {"nopeable": True, "action": kind.value}
        if kind == ActionKind.SEE_FUTURE:
            data["topCards"] = [c.to_dict() for c in self.deck.peek_top(SEE_FUTURE_COUNT)]

        player.remove_card(card)
        self.deck.discard(card)
        self.add_to_log(f"{player.name} played {card.type.value}")
        self._emit(EventType.CARD_PLAYED, player_id=player.id, card_type=card.type.value)

        self._open_nope_window(DeferredEffect(
            kind=kind,
            actor_id=player.id,
            target_id=target.id if target else None,
        ))

        messages = {
            ActionKind.SKIP: f"{player.name} played Skip card",
            ActionKind.ATTACK: f"{player.name} played Attack card, next player takes 2 turns",
            ActionKind.SEE_FUTURE: f"{player.name} played See Future card",
            ActionKind.SHUFFLE: f"{player.name} played Shuffle card",
            ActionKind.FAVOR: f"{player.name} played Favor card on {target.name if target else ''}",
        }
        if target:
            data["targetPlayer"] = target.name
        return ActionResult(messages[kind], data)

    @staticmethod
    def _wants_named_steal(additional_data: Optional[dict]) -> bool:
        return isinstance(additional_data, dict) and bool(additional_data.get("namedSteal"))

    def _play_steal(
        self,
        player: Player,
        cards: list[Card],
        target_player_id: Optional[str],
        additional_data: Optional[dict],
    ) -> ActionResult:
        """
        Spend 2 or 3 matching cards to steal from another player.

        2 cards: random card. 3 cards with a named request: the first card
        of that type, if the target has one. 3 cards without a request
        resolve as a random steal; the third card is still spent and the
        result says so.
        """
        target = self._require_target(
            player, target_player_id, "Must select a target player to steal from"
        )
        card_type = cards[0].type
        named = self._wants_named_steal(additional_data) and len(cards) == 3

        if named:
            requested = CardType.parse(additional_data.get("cardName"))
            if requested is None:
                raise_error(errors.INVALID_PLAY, "Must name a valid card type to steal")
            effect = DeferredEffect(ActionKind.NAMED_STEAL, player.id, target.id, requested)
        else:
            effect = DeferredEffect(ActionKind.RANDOM_STEAL, player.id, target.id)

        if any(player.find_card(c.id) is None for c in cards):
            logger.error(
                "Matching card vanished before steal",
                extra={"room_code": self.room_id, "player_id": player.id},
            )
            raise_error(errors.INTERNAL_ERROR, "Internal error: matching card not found for steal")

        for card in cards:
            player.remove_card(card)
        self.deck.discard_many(cards)

        extra_spent = len(cards) == 3 and not named
        if extra_spent:
            logger.warning(
                "Three-card steal without a named card resolved as random steal",
                extra={"room_code": self.room_id, "player_id": player.id},
            )

        self.add_to_log(
            f"{player.name} played {len(cards)} {card_type.value} cards to steal from {target.name}"
        )
        self._emit(
            EventType.STEAL_ATTEMPTED,
            player_id=player.id,
            target_id=target.id,
            action=effect.kind.value,
            message=f"{player.name} is attempting to play Steal on {target.name}",
        )
        self._open_nope_window(effect)

        data = {
            "nopeable": True,
            "action": effect.kind.value,
            "cardsSpent": len(cards),
            "targetPlayer": target.name,
        }
        if named:
            data["cardName"] = effect.card_type.value
            message = "Named steal in progress"
        else:
            message = "Random steal in progress"
        if extra_spent:
            data["extraCardSpent"] = True
        return ActionResult(message, data)

    # -------------------------------------------------------------------------
    # Nope
    # -------------------------------------------------------------------------

    def can_play_nope(self, player_id: str) -> bool:
        window = self.nope_window
        if window is None or window.exclude_player_id == player_id:
            return False
        player = self.get_player(player_id)
        if player is None or not player.is_alive:
            return False
        return player.first_of_type(CardType.NOPE) is not None

    def _play_nope(self, player: Player, card: Card) -> ActionResult:
        window = self.nope_window
        if window is None:
            raise_error(errors.NOPE_NOT_ALLOWED, "Nope can only be played in response to other cards")
        if window.exclude_player_id == player.id:
            raise_error(errors.NOPE_NOT_ALLOWED, "You cannot nope your own action")

        player.remove_card(card)
        self.deck.discard(card)
        window.nope_count += 1
        self._arm_nope_timer(window, self.nope_chain_seconds)

        if window.will_execute:
            message = f"{player.name} played Nope on the Nope! (Yup)"
        else:
            message = f"{player.name} played Nope! {window.action} is currently cancelled."
        self.add_to_log(message)
        self._emit(EventType.NOPE_PLAYED, player_id=player.id, message=message, action=window.action)

        return ActionResult(
            "Yup! Action will proceed unless noped again."
            if window.will_execute
            else "Noped! Action cancelled unless noped again.",
            {
                "noped": True,
                "nopeCount": window.nope_count,
                "isYup": window.will_execute,
                "action": window.action,
            },
        )

    def _open_nope_window(self, effect: DeferredEffect) -> NopeWindow:
        # Turn commands are refused while a window is open, so there is never
        # an older window to replace here.
        self._window_seq += 1
        window = NopeWindow(
            window_id=self._window_seq,
            effect=effect,
            exclude_player_id=effect.actor_id,
        )
        self.nope_window = window
        self._arm_nope_timer(window, self.nope_window_seconds)
        self._emit(
            EventType.NOPE_WINDOW_OPENED,
            player_id=effect.actor_id,
            action=window.action,
            message=f"{window.action} can be noped now",
        )
        return window

    def _arm_nope_timer(self, window: NopeWindow, delay: float) -> None:
        self._cancel_timer(window)
        window.timer = self.timer_factory(delay, partial(self._on_nope_timer, window.window_id))

    @staticmethod
    def _cancel_timer(window: NopeWindow) -> None:
        if window.timer is not None:
            window.timer.cancel()
            window.timer = None

    def _close_nope_window(self) -> None:
        """Drop the open window without running its effect."""
        if self.nope_window is not None:
            self._cancel_timer(self.nope_window)
            self.nope_window = None

    def _on_nope_timer(self, window_id: int) -> None:
        window = self.nope_window
        if window is not None and window.window_id == window_id:
            # The firing timer is done; it must not be cancelled from inside itself.
            window.timer = None
        self.resolve_nope_window(window_id)

    def resolve_nope_window(self, window_id: Optional[int] = None) -> Optional[ActionResult]:
        """
        Close the open Nope window and apply or discard its effect.

        Idempotent: a stale ``window_id`` or an already closed window is a
        no-op returning None.
        """
        window = self.nope_window
        if window is None or (window_id is not None and window.window_id != window_id):
            return None

        self._close_nope_window()
        if self.state != GameState.PLAYING:
            return None

        effect = window.effect
        if window.will_execute:
            message = self._execute_effect(effect)
            if window.nope_count:
                self.add_to_log(f"{window.action} resolved ({window.nope_count} nopes played)")
            else:
                self.add_to_log(f"{window.action} resolved")
            event_type = EventType.ACTION_RESOLVED
        else:
            message = f"{window.action} was noped and cancelled ({window.nope_count} nopes played)"
            self.add_to_log(message)
            event_type = EventType.ACTION_CANCELLED

        self._emit(event_type, player_id=effect.actor_id, action=effect.kind.value, message=message)
        return ActionResult(message, {
            "action": effect.kind.value,
            "executed": window.will_execute,
            "nopeCount": window.nope_count,
        })

    # -------------------------------------------------------------------------
    # Deferred effects
    # -------------------------------------------------------------------------

    def _execute_effect(self, effect: DeferredEffect) -> str:
        handlers = {
            ActionKind.SKIP: self._execute_skip,
            ActionKind.ATTACK: self._execute_attack,
            ActionKind.SEE_FUTURE: self._execute_see_future,
            ActionKind.SHUFFLE: self._execute_shuffle,
            ActionKind.FAVOR: self._execute_favor,
            ActionKind.RANDOM_STEAL: self._execute_random_steal,
            ActionKind.NAMED_STEAL: self._execute_named_steal,
        }
        return handlers[effect.kind](effect)

    def _execute_skip(self, effect: DeferredEffect) -> str:
        actor = self.get_player(effect.actor_id)
        self.end_turn()
        return f"{actor.name} skipped their turn"

    def _execute_attack(self, effect: DeferredEffect) -> str:
        owed = self.turns_remaining
        self._advance_turn()
        # An attacked player who attacks passes their owed turns on too.
        self.turns_remaining = owed + 2 if owed > 1 else 2
        victim = self.current_player()
        return f"{victim.name} must take {self.turns_remaining} turns"

    def _execute_see_future(self, effect: DeferredEffect) -> str:
        actor = self.get_player(effect.actor_id)
        return f"{actor.name} saw the future"

    def _execute_shuffle(self, effect: DeferredEffect) -> str:
        self.deck.shuffle()
        return "Deck shuffled"

    def _steal_parties(self, effect: DeferredEffect) -> tuple[Player, Player]:
        return self.get_player(effect.actor_id), self.get_player(effect.target_id)

    def _execute_favor(self, effect: DeferredEffect) -> str:
        actor, target = self._steal_parties(effect)
        if not target.is_alive or not target.hand:
            self.add_to_log(f"{target.name} has no cards to give")
            return f"{target.name} has no cards to give"

        self.pending_action = FavorRequest(
            from_player_id=actor.id,
            to_player_id=target.id,
            message=f"{actor.name} is asking for a card",
        )
        self.add_to_log(f"{actor.name} played Favor targeting {target.name}")
        return f"Asking {target.name} for a card"

    def _execute_random_steal(self, effect: DeferredEffect) -> str:
        actor, target = self._steal_parties(effect)
        if not target.is_alive or not target.hand:
            self.add_to_log(f"{target.name} had no cards to steal")
            return f"{target.name} has no cards to steal"

        stolen = target.hand.pop(self.rng.randrange(len(target.hand)))
        actor.hand.append(stolen)
        self.add_to_log(f"{actor.name} stole a random card from {target.name}")
        return f"Stole a random card from {target.name}"

    def _execute_named_steal(self, effect: DeferredEffect) -> str:
        actor, target = self._steal_parties(effect)
        wanted = effect.card_type
        stolen = target.first_of_type(wanted) if target.is_alive else None
        if stolen is None:
            self.add_to_log(
                f"{actor.name} tried to steal {wanted.value} from {target.name} but they don't have it"
            )
            return f"{target.name} doesn't have a {wanted.value}"

        target.remove_card(stolen)
        actor.hand.append(stolen)
        self.add_to_log(f"{actor.name} stole {stolen.type.value} from {target.name}")
        return f"Stole {stolen.type.value} from {target.name}"

    # -------------------------------------------------------------------------
    # Drawing
    # -------------------------------------------------------------------------

    def draw_card(self, player_id: str) -> ActionResult:
        """
        Draw the top card, ending one owed turn.

        An Exploding Kitten is defused automatically when the player holds a
        Defuse (they must then place it back); otherwise the player explodes.
        """
        self._require_playing()
        player = self._require_living_player(player_id)
        self._require_turn(player)

        card = self.deck.draw()
        if card is None:
            raise_error(errors.NO_CARDS_LEFT, "No cards left in deck")

        self._emit(EventType.CARD_DRAWN, player_id=player.id)

        if card.type == CardType.EXPLODING_KITTEN:
            return self._handle_exploding_kitten(player, card)

        player.hand.append(card)
        self.add_to_log(f"{player.name} drew a card")
        self.end_turn()
        return ActionResult("Card drawn", {"drawnCard": card.to_dict()})

    def _handle_exploding_kitten(self, player: Player, kitten: Card) -> ActionResult:
        defuse = player.first_of_type(CardType.DEFUSE)
        if defuse is not None:
            player.remove_card(defuse)
            self.deck.discard(defuse)
            self.pending_action = PlaceExplodingKitten(player_id=player.id, card=kitten)
            self.add_to_log(f"{player.name} defused an Exploding Kitten!")
            self._emit(EventType.KITTEN_DEFUSED, player_id=player.id)
            return ActionResult(
                "Exploding Kitten defused! Choose where to place it back in the deck.",
                {
                    "defused": True,
                    "explodingKitten": kitten.to_dict(),
                    "requiresResponse": True,
                    "deckSize": self.deck.cards_remaining(),
                },
            )

        self.deck.discard(kitten)
        self.add_to_log(f"{player.name} exploded!")
        self._emit(EventType.PLAYER_EXPLODED, player_id=player.id, message=f"{player.name} exploded!")
        self._eliminate(player)
        return ActionResult(
            "You exploded!",
            {"exploded": True, "gameEnded": self.state == GameState.FINISHED},
        )

    # -------------------------------------------------------------------------
    # Pending action responses
    # -------------------------------------------------------------------------

    def respond_to_pending_action(self, player_id: str, response: Optional[dict]) -> ActionResult:
        """
        Answer the outstanding pending action.

        Favor: the target names ``cardId`` to hand over. Exploding kitten:
        the defusing player names ``position`` in the draw pile (0 = bottom).
        A rejected response leaves the pending action in place.
        """
        action = self.pending_action
        if action is None:
            raise_error(errors.NO_PENDING_ACTION, "No pending action")
        response = response or {}

        if isinstance(action, FavorRequest):
            return self._give_favor(action, player_id, response)
        if isinstance(action, PlaceExplodingKitten):
            return self._place_exploding_kitten(action, player_id, response)

        logger.error(f"Unknown pending action {action!r}", extra={"room_code": self.room_id})
        raise GameError(errors.INTERNAL_ERROR, "Unknown action type")

    def _give_favor(self, action: FavorRequest, player_id: str, response: dict) -> ActionResult:
        if player_id != action.to_player_id:
            raise_error(errors.NOT_YOUR_ACTION, "Not your action to respond to")

        giver = self.get_player(player_id)
        requester = self.get_player(action.from_player_id)
        card_id = response.get("cardId")
        if not card_id:
            raise_error(errors.INVALID_PLAY, "Must specify card to give")
        card = giver.find_card(card_id)
        if card is None:
            raise_error(errors.CARD_NOT_FOUND, "Card not found")

        giver.remove_card(card)
        requester.hand.append(card)
        self.pending_action = None
        self.add_to_log(f"{giver.name} gave a card to {requester.name}")
        self._emit(EventType.PENDING_ACTION_RESOLVED, player_id=player_id, action=action.type)
        return ActionResult("Card given", {"action": action.type})

    def _place_exploding_kitten(
        self,
        action: PlaceExplodingKitten,
        player_id: str,
        response: dict,
    ) -> ActionResult:
        if player_id != action.player_id:
            raise_error(errors.NOT_YOUR_ACTION, "Not your action")

        raw_position = response.get("position")
        try:
            position = int(raw_position) if raw_position is not None else 0
        except (TypeError, ValueError):
            raise GameError(errors.INVALID_PLAY, "Position must be a number")

        self.deck.insert(action.card, position)
        self.pending_action = None
        player = self.get_player(player_id)
        self.add_to_log(f"{player.name} placed the Exploding Kitten back in the deck")
        self._emit(EventType.PENDING_ACTION_RESOLVED, player_id=player_id, action=action.type)
        self.end_turn()
        return ActionResult("Exploding Kitten placed back in deck", {"action": action.type})

    # -------------------------------------------------------------------------
    # State projection
    # -------------------------------------------------------------------------

    def get_state(self, for_player_id: Optional[str] = None) -> dict:
        """
        Get the game state as seen by one player.

        Everyone sees hand sizes only; ``for_player_id`` additionally gets
        their own hand, whether it is their turn and whether they can Nope.

        Returns:
            Dict suitable for JSON serialization.
        """
        playing = self.state == GameState.PLAYING
        if playing:
            current = self.current_player()
        else:
            # A finished game points at its winner.
            current = self.winner if self.state == GameState.FINISHED else None
        top_discard = self.deck.top_discard()

        state = {
            "roomId": self.room_id,
            "gameState": self.state.value,
            "players": [
                p.to_public_dict(is_current=current is not None and p.id == current.id)
                for p in self.players
            ],
            "currentPlayer": current.name if current else None,
            "currentPlayerId": current.id if current else None,
            "turnsRemaining": self.turns_remaining,
            "deckSize": self.deck.cards_remaining(),
            "topDiscardCard": top_discard.to_dict() if top_discard else None,
            "pendingAction": self.pending_action.to_dict() if self.pending_action else None,
            "gameLog": [entry.to_dict() for entry in self.game_log[-GAME_LOG_VISIBLE_ENTRIES:]],
            "winner": self.winner.name if self.winner else None,
            "nopeWindow": self.nope_window.to_dict() if self.nope_window else None,
        }

        player = self.get_player(for_player_id)
        if player is not None:
            state["playerHand"] = [c.to_dict() for c in player.hand]
            state["isMyTurn"] = playing and current is not None and current.id == player.id
            state["canNope"] = self.can_play_nope(player.id)

        return state
