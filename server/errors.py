"""Error taxonomy for game and room operations.

Every rejected command raises GameError before touching any state. Handlers
turn it into an ``error`` message for the originating connection only.
"""


class GameError(Exception):
    """Base exception for game-related errors."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"[{code}] {message}")

    def to_dict(self) -> dict:
        return {"type": "error", "code": self.code, "message": self.message}


# Validation errors (user-recoverable)
NOT_IDENTIFIED = "NOT_IDENTIFIED"
NOT_IN_ROOM = "NOT_IN_ROOM"
ROOM_NOT_FOUND = "ROOM_NOT_FOUND"
ROOM_FULL = "ROOM_FULL"
GAME_IN_PROGRESS = "GAME_IN_PROGRESS"
GAME_NOT_IN_PROGRESS = "GAME_NOT_IN_PROGRESS"
NOT_ENOUGH_PLAYERS = "NOT_ENOUGH_PLAYERS"
ALREADY_IN_GAME = "ALREADY_IN_GAME"
PLAYER_NOT_FOUND = "PLAYER_NOT_FOUND"
NOT_YOUR_TURN = "NOT_YOUR_TURN"
CARD_NOT_FOUND = "CARD_NOT_FOUND"
INVALID_TARGET = "INVALID_TARGET"
INVALID_PLAY = "INVALID_PLAY"
ACTION_PENDING = "ACTION_PENDING"
NOPE_WINDOW_OPEN = "NOPE_WINDOW_OPEN"
NOPE_NOT_ALLOWED = "NOPE_NOT_ALLOWED"
NO_PENDING_ACTION = "NO_PENDING_ACTION"
NOT_YOUR_ACTION = "NOT_YOUR_ACTION"
NO_CARDS_LEFT = "NO_CARDS_LEFT"
RESET_NOT_ALLOWED = "RESET_NOT_ALLOWED"
INVALID_REQUEST = "INVALID_REQUEST"
UNKNOWN_MESSAGE = "UNKNOWN_MESSAGE"

# Precondition bugs: an earlier check should have made these impossible
INTERNAL_ERROR = "INTERNAL_ERROR"


def raise_error(code: str, message: str):
    raise GameError(code, message)
