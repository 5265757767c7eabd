"""
Test suite for Exploding Kittens game logic.

Covers the game lifecycle, turn flow, single-card effects, drawing and
exploding, pending actions, and the per-player state projection.

Run with: pytest test_game.py -v
"""

import random

import pytest

import errors
from conftest import give, set_hand, stack_deck
from deck import CardType
from errors import GameError
from game import FavorRequest, Game, GameState, PlaceExplodingKitten
from models.events import EventType


def order(game: Game) -> list[str]:
    """Player ids in turn order."""
    return [p.id for p in game.players]


# =============================================================================
# Lifecycle
# =============================================================================

class TestLifecycle:

    def test_start_needs_two_players(self, make_game):
        game = make_game(num_players=1, start=False)
        with pytest.raises(GameError) as exc:
            game.start_game()
        assert exc.value.code == errors.NOT_ENOUGH_PLAYERS
        assert "at least 2 players" in exc.value.message
        assert game.state == GameState.WAITING

    def test_start_with_two_players(self, make_game):
        game = make_game(num_players=2)
        assert game.state == GameState.PLAYING
        assert game.turns_remaining == 1
        assert game.current_player() is game.players[0]
        for player in game.players:
            assert len(player.hand) == 5
            assert any(c.type == CardType.DEFUSE for c in player.hand)
        assert game.deck.count_type(CardType.EXPLODING_KITTEN) == 1

    def test_cannot_start_twice(self, make_game):
        game = make_game()
        with pytest.raises(GameError) as exc:
            game.start_game()
        assert exc.value.code == errors.GAME_IN_PROGRESS

    def test_room_full(self, make_game):
        game = make_game(num_players=5, start=False)
        with pytest.raises(GameError) as exc:
            game.add_player("p6", "Player 6")
        assert exc.value.code == errors.ROOM_FULL

    def test_no_joining_mid_game(self, make_game):
        game = make_game()
        with pytest.raises(GameError) as exc:
            game.add_player("late", "Late")
        assert exc.value.code == errors.GAME_IN_PROGRESS

    def test_duplicate_player(self, make_game):
        game = make_game(start=False)
        with pytest.raises(GameError) as exc:
            game.add_player("p1", "Again")
        assert exc.value.code == errors.ALREADY_IN_GAME

    def test_remove_player_while_waiting(self, make_game):
        game = make_game(num_players=3, start=False)
        assert game.remove_player("p2") is True
        assert order(game) == ["p1", "p3"]
        assert game.remove_player("ghost") is False

    def test_reset_requires_finished(self, make_game):
        game = make_game()
        with pytest.raises(GameError) as exc:
            game.reset_game()
        assert exc.value.code == errors.RESET_NOT_ALLOWED

    def test_reset_after_finish(self, make_game):
        game = make_game()
        loser = game.current_player()
        game.remove_player(loser.id)
        assert game.state == GameState.FINISHED

        game.reset_game()

        assert game.state == GameState.WAITING
        assert game.winner is None
        assert game.pending_action is None
        assert game.nope_window is None
        assert all(p.hand == [] and p.is_alive for p in game.players)
        assert game.get_player(loser.id) is None
        assert game.deck.count_type(CardType.EXPLODING_KITTEN) == 0
        assert game.deck.discard_pile == []
        assert [e.message for e in game.game_log] == [
            "Game has been reset - waiting for players to start a new game"
        ]

    def test_can_play_again_after_reset(self, make_game):
        game = make_game(num_players=3)
        game.remove_player(game.players[0].id)
        game.remove_player(game.players[1].id)
        game.reset_game()
        game.add_player("p4", "Player 4")
        game.start_game()
        assert game.state == GameState.PLAYING
        assert len(game.players) == 2

    def test_log_is_capped(self, make_game):
        game = make_game(start=False)
        for i in range(80):
            game.add_to_log(f"entry {i}")
        assert len(game.game_log) == 50
        assert game.game_log[-1].message == "entry 79"
        assert len(game.get_state()["gameLog"]) == 10


# =============================================================================
# Turn flow
# =============================================================================

class TestTurns:

    def test_end_turn_advances(self, make_game):
        game = make_game(num_players=3)
        first, second, _ = order(game)
        game.end_turn()
        assert game.current_player().id == second
        assert game.turns_remaining == 1

    def test_end_turn_skips_eliminated(self, make_game):
        game = make_game(num_players=3)
        first, second, third = order(game)
        game.get_player(second).is_alive = False
        game.end_turn()
        assert game.current_player().id == third
        game.end_turn()
        assert game.current_player().id == first

    def test_owed_turns_are_used_up_first(self, make_game):
        game = make_game()
        first = game.current_player().id
        game.turns_remaining = 2
        game.end_turn()
        assert game.current_player().id == first
        assert game.turns_remaining == 1

    def test_wrong_player_cannot_act(self, make_game):
        game = make_game()
        other = game.players[1]
        skip = give(game, other.id, CardType.SKIP)[0]
        with pytest.raises(GameError) as exc:
            game.play_card(other.id, skip.id)
        assert exc.value.code == errors.NOT_YOUR_TURN
        with pytest.raises(GameError) as exc:
            game.draw_card(other.id)
        assert exc.value.code == errors.NOT_YOUR_TURN

    def test_unknown_card(self, make_game):
        game = make_game()
        with pytest.raises(GameError) as exc:
            game.play_card(game.current_player().id, "nope-not-a-card")
        assert exc.value.code == errors.CARD_NOT_FOUND

    def test_eliminated_player_cannot_act(self, make_game):
        game = make_game(num_players=3)
        gone = game.players[1]
        game.remove_player(gone.id)
        with pytest.raises(GameError) as exc:
            game.draw_card(gone.id)
        assert exc.value.code == errors.PLAYER_NOT_FOUND

    def test_nothing_happens_outside_a_game(self, make_game):
        game = make_game(start=False)
        with pytest.raises(GameError) as exc:
            game.draw_card("p1")
        assert exc.value.code == errors.GAME_NOT_IN_PROGRESS


# =============================================================================
# Single-card effects
# =============================================================================

class TestActionCards:

    def test_skip_ends_turn_after_window(self, make_game, timers):
        game = make_game()
        first, second = order(game)
        skip = give(game, first, CardType.SKIP)[0]

        result = game.play_card(first, skip.id)

        assert result.data["nopeable"] is True
        assert game.nope_window is not None
        assert game.current_player().id == first
        assert game.deck.top_discard() is skip

        timers.fire()

        assert game.nope_window is None
        assert game.current_player().id == second

    def test_skip_with_two_owed_turns(self, make_game, timers):
        game = make_game()
        first = game.current_player().id
        game.turns_remaining = 2
        skip = give(game, first, CardType.SKIP)[0]
        game.play_card(first, skip.id)
        timers.fire()
        assert game.current_player().id == first
        assert game.turns_remaining == 1

    def test_attack_two_players(self, make_game, timers):
        game = make_game()
        first, second = order(game)
        stack_deck(game, CardType.TACOCAT, CardType.TACOCAT, CardType.TACOCAT)
        attack = give(game, first, CardType.ATTACK)[0]

        game.play_card(first, attack.id)
        timers.fire()

        assert game.current_player().id == second
        assert game.turns_remaining == 2
        game.draw_card(second)
        assert game.current_player().id == second
        game.draw_card(second)
        assert game.current_player().id == first

    def test_attack_three_players_returns_to_next_not_attacker(self, make_game, timers):
        game = make_game(num_players=3)
        first, second, third = order(game)
        stack_deck(game, CardType.SKIP, CardType.SKIP, CardType.SKIP)
        attack = give(game, first, CardType.ATTACK)[0]

        game.play_card(first, attack.id)
        timers.fire()
        game.draw_card(second)
        game.draw_card(second)

        assert game.current_player().id == third
        assert game.turns_remaining == 1

    def test_attacked_player_can_pass_turns_on(self, make_game, timers):
        game = make_game(num_players=3)
        first, second, third = order(game)
        give(game, first, CardType.ATTACK)
        give(game, second, CardType.ATTACK)

        game.play_card(first, game.get_player(first).first_of_type(CardType.ATTACK).id)
        timers.fire()
        game.play_card(second, game.get_player(second).first_of_type(CardType.ATTACK).id)
        timers.fire()

        assert game.current_player().id == third
        assert game.turns_remaining == 4

    def test_see_future_reveals_top_three(self, make_game, timers):
        game = make_game()
        first = game.current_player().id
        stack_deck(game, CardType.NOPE, CardType.FAVOR, CardType.EXPLODING_KITTEN, CardType.SKIP)
        before = list(game.deck.cards)
        card = give(game, first, CardType.SEE_FUTURE)[0]

        result = game.play_card(first, card.id)

        assert [c["type"] for c in result.data["topCards"]] == ["nope", "favor", "exploding_kitten"]
        assert game.deck.cards == before
        timers.fire()
        assert game.current_player().id == first

    def test_shuffle_keeps_cards(self, make_game, timers):
        game = make_game()
        first = game.current_player().id
        before = sorted(c.id for c in game.deck.cards)
        card = give(game, first, CardType.SHUFFLE)[0]
        game.play_card(first, card.id)
        timers.fire()
        assert sorted(c.id for c in game.deck.cards) == before
        assert game.current_player().id == first

    def test_cannot_play_while_window_open(self, make_game):
        game = make_game()
        first = game.current_player().id
        skip, attack = give(game, first, CardType.SKIP, CardType.ATTACK)
        game.play_card(first, skip.id)

        with pytest.raises(GameError) as exc:
            game.play_card(first, attack.id)
        assert exc.value.code == errors.NOPE_WINDOW_OPEN
        with pytest.raises(GameError) as exc:
            game.draw_card(first)
        assert exc.value.code == errors.NOPE_WINDOW_OPEN
        assert game.get_player(first).find_card(attack.id) is attack

    def test_single_cat_rejected(self, make_game):
        game = make_game()
        first, second = order(game)
        set_hand(game, first, CardType.TACOCAT, CardType.SKIP)
        cat = game.get_player(first).hand[0]
        with pytest.raises(GameError) as exc:
            game.play_card(first, cat.id, second)
        assert exc.value.code == errors.INVALID_PLAY
        assert "2 matching" in exc.value.message
        assert len(game.get_player(first).hand) == 2


# =============================================================================
# Favor
# =============================================================================

class TestFavor:

    def _play_favor(self, game, timers):
        first, second = order(game)[:2]
        favor = give(game, first, CardType.FAVOR)[0]
        game.play_card(first, favor.id, second)
        timers.fire()
        return first, second

    def test_favor_requires_target(self, make_game):
        game = make_game()
        first = game.current_player().id
        favor = give(game, first, CardType.FAVOR)[0]
        for target in (None, first, "ghost"):
            with pytest.raises(GameError) as exc:
                game.play_card(first, favor.id, target)
            assert exc.value.code == errors.INVALID_TARGET
        assert game.get_player(first).find_card(favor.id) is favor

    def test_favor_target_with_no_cards(self, make_game):
        game = make_game()
        first, second = order(game)
        game.get_player(second).hand = []
        favor = give(game, first, CardType.FAVOR)[0]
        with pytest.raises(GameError) as exc:
            game.play_card(first, favor.id, second)
        assert exc.value.code == errors.INVALID_TARGET

    def test_favor_opens_pending_action(self, make_game, timers):
        game = make_game()
        first, second = self._play_favor(game, timers)
        assert isinstance(game.pending_action, FavorRequest)
        assert game.pending_action.to_player_id == second
        assert game.get_state(second)["pendingAction"]["type"] == "favor"

    def test_favor_response_moves_card(self, make_game, timers):
        game = make_game()
        first, second = self._play_favor(game, timers)
        gift = game.get_player(second).hand[0]

        game.respond_to_pending_action(second, {"cardId": gift.id})

        assert game.pending_action is None
        assert game.get_player(first).find_card(gift.id) is gift
        assert game.get_player(second).find_card(gift.id) is None
        assert game.current_player().id == first

    def test_only_target_may_respond(self, make_game, timers):
        game = make_game()
        first, second = self._play_favor(game, timers)
        with pytest.raises(GameError) as exc:
            game.respond_to_pending_action(first, {"cardId": game.get_player(first).hand[0].id})
        assert exc.value.code == errors.NOT_YOUR_ACTION
        assert isinstance(game.pending_action, FavorRequest)

    def test_bad_response_keeps_pending(self, make_game, timers):
        game = make_game()
        first, second = self._play_favor(game, timers)
        with pytest.raises(GameError) as exc:
            game.respond_to_pending_action(second, {"cardId": "missing"})
        assert exc.value.code == errors.CARD_NOT_FOUND
        with pytest.raises(GameError) as exc:
            game.respond_to_pending_action(second, {})
        assert exc.value.code == errors.INVALID_PLAY
        assert isinstance(game.pending_action, FavorRequest)

    def test_pending_blocks_plays(self, make_game, timers):
        game = make_game()
        first, second = self._play_favor(game, timers)
        with pytest.raises(GameError) as exc:
            game.draw_card(first)
        assert exc.value.code == errors.ACTION_PENDING

    def test_no_pending_action(self, make_game):
        game = make_game()
        with pytest.raises(GameError) as exc:
            game.respond_to_pending_action(game.players[0].id, {"cardId": "x"})
        assert exc.value.code == errors.NO_PENDING_ACTION


# =============================================================================
# Drawing
# =============================================================================

class TestDrawing:

    def test_draw_safe_card(self, make_game):
        game = make_game()
        first, second = order(game)
        stack_deck(game, CardType.BEARD_CAT, CardType.SKIP)
        result = game.draw_card(first)
        assert result.data["drawnCard"]["type"] == "beard_cat"
        assert game.get_player(first).hand[-1].type == CardType.BEARD_CAT
        assert game.current_player().id == second

    def test_defuse_and_replace_at_bottom(self, make_game):
        game = make_game()
        first, second = order(game)
        set_hand(game, first, CardType.DEFUSE)
        stack_deck(game, CardType.EXPLODING_KITTEN, CardType.SKIP, CardType.NOPE)

        result = game.draw_card(first)

        assert result.data["defused"] is True
        assert isinstance(game.pending_action, PlaceExplodingKitten)
        assert game.get_player(first).hand == []
        assert game.deck.top_discard().type == CardType.DEFUSE
        assert game.current_player().id == first

        game.respond_to_pending_action(first, {"position": 0})

        assert game.state == GameState.PLAYING
        assert game.deck.cards[0].type == CardType.EXPLODING_KITTEN
        assert game.get_player(first).is_alive
        assert game.current_player().id == second
        assert game.pending_action is None

    def test_kitten_position_past_end_goes_on_top(self, make_game):
        game = make_game()
        first = game.current_player().id
        set_hand(game, first, CardType.DEFUSE)
        stack_deck(game, CardType.EXPLODING_KITTEN, CardType.SKIP)
        game.draw_card(first)
        game.respond_to_pending_action(first, {"position": 99})
        assert game.deck.peek_top(1)[0].type == CardType.EXPLODING_KITTEN

    def test_kitten_position_must_be_numeric(self, make_game):
        game = make_game()
        first = game.current_player().id
        set_hand(game, first, CardType.DEFUSE)
        stack_deck(game, CardType.EXPLODING_KITTEN)
        game.draw_card(first)
        with pytest.raises(GameError):
            game.respond_to_pending_action(first, {"position": "deep"})
        assert isinstance(game.pending_action, PlaceExplodingKitten)

    def test_only_defuser_places_kitten(self, make_game):
        game = make_game()
        first, second = order(game)
        set_hand(game, first, CardType.DEFUSE)
        stack_deck(game, CardType.EXPLODING_KITTEN)
        game.draw_card(first)
        with pytest.raises(GameError) as exc:
            game.respond_to_pending_action(second, {"position": 0})
        assert exc.value.code == errors.NOT_YOUR_ACTION

    def test_explode_ends_two_player_game(self, make_game):
        game = make_game()
        first, second = order(game)
        set_hand(game, first, CardType.SKIP)
        stack_deck(game, CardType.EXPLODING_KITTEN)

        result = game.draw_card(first)

        assert result.data == {"exploded": True, "gameEnded": True}
        assert not game.get_player(first).is_alive
        assert game.state == GameState.FINISHED
        assert game.winner.id == second
        assert game.deck.top_discard().type == CardType.EXPLODING_KITTEN

    def test_explode_passes_turn_in_bigger_game(self, make_game):
        game = make_game(num_players=3)
        first, second, third = order(game)
        set_hand(game, first)
        stack_deck(game, CardType.EXPLODING_KITTEN, CardType.SKIP, CardType.SKIP)
        game.turns_remaining = 2

        result = game.draw_card(first)

        assert result.data["gameEnded"] is False
        assert game.state == GameState.PLAYING
        assert game.current_player().id == second
        assert game.turns_remaining == 1
        game.draw_card(second)
        game.draw_card(third)
        assert game.current_player().id == second

    def test_draw_reshuffles_discard(self, make_game):
        game = make_game()
        first = game.current_player().id
        stack_deck(game, discard=[CardType.TACOCAT])
        result = game.draw_card(first)
        assert result.data["drawnCard"]["type"] == "tacocat"
        assert game.deck.discard_pile == []

    def test_draw_with_nothing_left(self, make_game):
        game = make_game()
        first = game.current_player().id
        stack_deck(game)
        hand_before = list(game.get_player(first).hand)
        with pytest.raises(GameError) as exc:
            game.draw_card(first)
        assert exc.value.code == errors.NO_CARDS_LEFT
        assert "No cards left" in exc.value.message
        assert game.get_player(first).hand == hand_before
        assert game.current_player().id == first


# =============================================================================
# Leaving mid-game
# =============================================================================

class TestLeaving:

    def test_current_player_leaving_passes_turn(self, make_game):
        game = make_game(num_players=3)
        first, second, third = order(game)
        game.remove_player(first)
        assert order(game) == [first, second, third]
        assert not game.get_player(first).is_alive
        assert game.current_player().id == second

    def test_last_survivor_wins(self, make_game):
        game = make_game(num_players=3)
        first, second, third = order(game)
        game.remove_player(second)
        game.remove_player(first)
        assert game.state == GameState.FINISHED
        assert game.winner.id == third

    def test_leaving_clears_favor(self, make_game, timers):
        game = make_game(num_players=3)
        first, second, third = order(game)
        favor = give(game, first, CardType.FAVOR)[0]
        game.play_card(first, favor.id, second)
        timers.fire()
        game.remove_player(second)
        assert game.pending_action is None
        assert game.current_player().id == first

    def test_leaving_with_kitten_in_hand_returns_it(self, make_game):
        game = make_game(num_players=3)
        first = game.current_player().id
        set_hand(game, first, CardType.DEFUSE)
        stack_deck(game, CardType.EXPLODING_KITTEN, CardType.SKIP)
        total = game.total_cards()
        game.draw_card(first)
        game.remove_player(first)
        assert game.pending_action is None
        assert game.deck.count_type(CardType.EXPLODING_KITTEN) == 1
        assert game.total_cards() == total

    def test_leaving_cancels_own_nope_window(self, make_game, timers):
        game = make_game(num_players=3)
        first, second, _ = order(game)
        skip = give(game, first, CardType.SKIP)[0]
        game.play_card(first, skip.id)
        game.remove_player(first)
        assert game.nope_window is None
        assert timers.active == []
        assert game.current_player().id == second


# =============================================================================
# State projection
# =============================================================================

class TestProjection:

    def test_owner_sees_only_own_hand(self, make_game):
        game = make_game(num_players=3)
        first, second, _ = order(game)
        state = game.get_state(first)

        assert [c["id"] for c in state["playerHand"]] == [c.id for c in game.get_player(first).hand]
        assert state["isMyTurn"] is True
        assert state["canNope"] is False
        assert game.get_state(second)["isMyTurn"] is False
        for entry in state["players"]:
            assert set(entry) == {"id", "name", "handSize", "isAlive", "isCurrentPlayer"}
        assert "playerHand" not in game.get_state()

    def test_projection_fields(self, make_game):
        game = make_game()
        state = game.get_state(game.players[0].id)
        for key in (
            "roomId", "gameState", "players", "currentPlayer", "currentPlayerId",
            "turnsRemaining", "deckSize", "topDiscardCard", "pendingAction",
            "gameLog", "winner", "nopeWindow",
        ):
            assert key in state
        assert state["roomId"] == "TEST01"
        assert state["gameState"] == "playing"
        assert state["currentPlayer"] == game.players[0].name

    def test_waiting_room_has_no_current_player(self, make_game):
        game = make_game(start=False)
        state = game.get_state("p1")
        assert state["currentPlayer"] is None
        assert state["isMyTurn"] is False

    def test_finished_game_points_at_winner(self, make_game):
        game = make_game()
        loser, survivor = order(game)
        set_hand(game, loser, CardType.SKIP)
        stack_deck(game, CardType.EXPLODING_KITTEN)

        game.draw_card(loser)

        assert game.state == GameState.FINISHED
        assert game.current_player() is game.winner
        assert game.winner.id == survivor
        state = game.get_state(survivor)
        assert state["currentPlayerId"] == survivor
        assert state["winner"] == game.winner.name
        assert state["isMyTurn"] is False

    def test_winner_by_leaving_is_current(self, make_game):
        game = make_game(num_players=3)
        first, second, third = order(game)
        game.remove_player(first)
        game.remove_player(second)
        assert game.current_player().id == third
        assert game.get_state()["currentPlayer"] == game.winner.name


# =============================================================================
# Events
# =============================================================================

class TestEvents:

    def test_events_are_sequenced(self, make_game, timers):
        game = make_game()
        events = []
        game.set_event_emitter(events.append)
        first = game.current_player().id
        skip = give(game, first, CardType.SKIP)[0]

        game.play_card(first, skip.id)
        timers.fire()

        types = [e.event_type for e in events]
        assert types[:2] == [EventType.CARD_PLAYED, EventType.NOPE_WINDOW_OPENED]
        assert EventType.ACTION_RESOLVED in types
        assert [e.sequence_num for e in events] == list(range(1, len(events) + 1))
        resolved = next(e for e in events if e.event_type == EventType.ACTION_RESOLVED)
        assert resolved.is_timer_event
        assert resolved.to_action()["action"] == "skip"


# =============================================================================
# Whole-game properties
# =============================================================================

def play_randomly(game: Game, timers, rng: random.Random, steps: int = 500) -> None:
    """Drive a game with random legal moves, checking invariants after each."""
    total = game.total_cards()
    plain = (CardType.SKIP, CardType.ATTACK, CardType.SHUFFLE, CardType.SEE_FUTURE)

    for _ in range(steps):
        if game.state != GameState.PLAYING:
            break

        pending = game.pending_action
        if isinstance(pending, FavorRequest):
            giver = game.get_player(pending.to_player_id)
            game.respond_to_pending_action(giver.id, {"cardId": rng.choice(giver.hand).id})
        elif isinstance(pending, PlaceExplodingKitten):
            position = rng.randrange(game.deck.cards_remaining() + 1)
            game.respond_to_pending_action(pending.player_id, {"position": position})
        elif game.nope_window is not None:
            nopers = [p for p in game.living_players() if game.can_play_nope(p.id)]
            if nopers and rng.random() < 0.5:
                noper = rng.choice(nopers)
                game.play_card(noper.id, noper.first_of_type(CardType.NOPE).id)
            else:
                timers.fire()
        else:
            player = game.current_player()
            targets = [p for p in game.living_players() if p is not player and p.hand]
            playable = [c for c in player.hand if c.type in plain]
            favors = player.cards_of_type(CardType.FAVOR)
            roll = rng.random()
            if playable and roll < 0.35:
                game.play_card(player.id, rng.choice(playable).id)
            elif favors and targets and roll < 0.5:
                game.play_card(player.id, favors[0].id, rng.choice(targets).id)
            else:
                try:
                    game.draw_card(player.id)
                except GameError as e:
                    assert e.code == errors.NO_CARDS_LEFT
                    break

        assert game.total_cards() == total
        if game.state == GameState.PLAYING:
            assert game.current_player().is_alive


class TestProperties:

    @pytest.mark.parametrize("seed", range(8))
    def test_card_conservation_and_turn_monotonicity(self, make_game, timers, seed):
        game = make_game(num_players=2 + seed % 4, seed=seed)
        play_randomly(game, timers, random.Random(seed))

    def test_games_finish_with_one_survivor(self, make_game, timers):
        finished = 0
        for seed in range(10):
            game = make_game(num_players=3, seed=100 + seed)
            play_randomly(game, timers, random.Random(seed), steps=3000)
            if game.state != GameState.FINISHED:
                continue
            finished += 1
            assert len(game.living_players()) == 1
            assert game.winner is game.living_players()[0]
            assert game.current_player() is game.winner
        assert finished > 0
