"""
Centralized configuration for the Exploding Kittens game server.

Configuration is loaded from (in order of precedence):
1. Environment variables
2. .env file (if exists)
3. Default values

Usage:
    from config import config
    print(config.PORT)
    print(config.NOPE_WINDOW_SECONDS)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


def get_env(key: str, default: str = "") -> str:
    """Get environment variable with default."""
    return os.environ.get(key, default)


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable."""
    val = os.environ.get(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    if val in ("false", "0", "no", "off"):
        return False
    return default


def get_env_int(key: str, default: int = 0) -> int:
    """Get integer environment variable."""
    try:
        return int(os.environ.get(key, str(default)))
    except ValueError:
        return default


def get_env_float(key: str, default: float = 0.0) -> float:
    """Get float environment variable."""
    try:
        return float(os.environ.get(key, str(default)))
    except ValueError:
        return default


@dataclass
class DeckComposition:
    """How many copies of each base card go into a fresh deck."""
    ATTACK: int = 4
    SKIP: int = 4
    FAVOR: int = 4
    SHUFFLE: int = 4
    SEE_FUTURE: int = 5
    NOPE: int = 5
    CAT_COPIES: int = 4  # per cat variant

    def to_dict(self) -> dict[str, int]:
        """Card counts keyed by card type value (cats expanded by constants.py)."""
        return {
            "attack": self.ATTACK,
            "skip": self.SKIP,
            "favor": self.FAVOR,
            "shuffle": self.SHUFFLE,
            "see_future": self.SEE_FUTURE,
            "nope": self.NOPE,
        }


@dataclass
class ServerConfig:
    """Server configuration."""
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    # Room settings
    MIN_PLAYERS: int = 2
    MAX_PLAYERS_PER_ROOM: int = 5
    ROOM_CODE_LENGTH: int = 6
    FINISHED_ROOM_RETENTION_MINUTES: int = 60
    ROOM_CLEANUP_INTERVAL_SECONDS: int = 300

    # Nope windows
    NOPE_WINDOW_SECONDS: float = 10.0
    NOPE_CHAIN_SECONDS: float = 5.0

    deck: DeckComposition = field(default_factory=DeckComposition)

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Load configuration from environment variables."""
        return cls(
            HOST=get_env("HOST", "0.0.0.0"),
            PORT=get_env_int("PORT", 3000),
            DEBUG=get_env_bool("DEBUG", False),
            LOG_LEVEL=get_env("LOG_LEVEL", "INFO"),
            ENVIRONMENT=get_env("ENVIRONMENT", "development"),
            MIN_PLAYERS=get_env_int("MIN_PLAYERS", 2),
            MAX_PLAYERS_PER_ROOM=get_env_int("MAX_PLAYERS_PER_ROOM", 5),
            ROOM_CODE_LENGTH=get_env_int("ROOM_CODE_LENGTH", 6),
            FINISHED_ROOM_RETENTION_MINUTES=get_env_int("FINISHED_ROOM_RETENTION_MINUTES", 60),
            ROOM_CLEANUP_INTERVAL_SECONDS=get_env_int("ROOM_CLEANUP_INTERVAL_SECONDS", 300),
            NOPE_WINDOW_SECONDS=get_env_float("NOPE_WINDOW_SECONDS", 10.0),
            NOPE_CHAIN_SECONDS=get_env_float("NOPE_CHAIN_SECONDS", 5.0),
            deck=DeckComposition(
                ATTACK=get_env_int("DECK_ATTACK", 4),
                SKIP=get_env_int("DECK_SKIP", 4),
                FAVOR=get_env_int("DECK_FAVOR", 4),
                SHUFFLE=get_env_int("DECK_SHUFFLE", 4),
                SEE_FUTURE=get_env_int("DECK_SEE_FUTURE", 5),
                NOPE=get_env_int("DECK_NOPE", 5),
                CAT_COPIES=get_env_int("DECK_CAT_COPIES", 4),
            ),
        )


# Global config instance - loaded once at module import
config = ServerConfig.from_env()


def reload_config() -> ServerConfig:
    """Reload configuration from environment (useful for testing)."""
    global config
    config = ServerConfig.from_env()
    return config
