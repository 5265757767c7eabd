"""
Event definitions emitted by a running game.

The Game emits one GameEvent per noteworthy transition through an optional
emitter callback. The room layer listens to these to push state to clients
when something happens outside a client command, e.g. a Nope window timer
firing.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class EventType(str, Enum):
    """All possible event types in a game."""

    # Lifecycle events
    PLAYER_JOINED = "player_joined"
    PLAYER_LEFT = "player_left"
    GAME_STARTED = "game_started"
    GAME_ENDED = "game_ended"
    GAME_RESET = "game_reset"

    # Gameplay events
    CARD_PLAYED = "card_played"
    CARD_DRAWN = "card_drawn"
    STEAL_ATTEMPTED = "steal_attempted"
    NOPE_WINDOW_OPENED = "nope_window_opened"
    NOPE_PLAYED = "nope_played"
    ACTION_RESOLVED = "action_resolved"
    ACTION_CANCELLED = "action_cancelled"
    PENDING_ACTION_RESOLVED = "pending_action_resolved"
    KITTEN_DEFUSED = "kitten_defused"
    PLAYER_EXPLODED = "player_exploded"
    TURN_STARTED = "turn_started"


# Events produced by a Nope window timer rather than by a client command.
TIMER_EVENTS = frozenset({EventType.ACTION_RESOLVED, EventType.ACTION_CANCELLED})


@dataclass
class GameEvent:
    """
    A record of something that happened in a room's game.

    Attributes:
        event_type: The type of event (from EventType enum).
        room_id: Room the game belongs to.
        sequence_num: Monotonically increasing sequence number within the game.
        timestamp: When the event occurred (UTC).
        player_id: ID of player who triggered the event (if applicable).
        data: Event-specific payload data.
    """

    event_type: EventType
    room_id: str
    sequence_num: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    player_id: Optional[str] = None
    data: dict = field(default_factory=dict)

    @property
    def is_timer_event(self) -> bool:
        return self.event_type in TIMER_EVENTS

    def to_dict(self) -> dict:
        """Serialize event to dictionary."""
        return {
            "event_type": self.event_type.value,
            "room_id": self.room_id,
            "sequence_num": self.sequence_num,
            "timestamp": self.timestamp.isoformat(),
            "player_id": self.player_id,
            "data": self.data,
        }

    def to_action(self) -> dict:
        """Describe the event as the ``action`` field of a game-updated message."""
        action = {"type": self.event_type.value}
        if self.player_id:
            action["playerId"] = self.player_id
        if "message" in self.data:
            action["message"] = self.data["message"]
        if "action" in self.data:
            action["action"] = self.data["action"]
        return action
