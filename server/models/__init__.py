"""Models package for the Exploding Kittens server."""

from .events import EventType, GameEvent, TIMER_EVENTS

__all__ = [
    "EventType",
    "GameEvent",
    "TIMER_EVENTS",
]
