"""
Centralized configuration for the expedition game server.

Configuration is loaded from (in order of precedence):
1. Environment variables
2. .env file (if exists)
3. Default values

Usage:
    from config import config
    print(config.PORT)
    print(config.HAND_SIZE)
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from constants import DECK_SIZE, HAND_SIZE, MAX_PLAYERS

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


def get_env_optional_int(key: str) -> Optional[int]:
    """Get integer environment variable, or None when unset or malformed."""
    raw = os.environ.get(key, "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def get_hand_size(key: str) -> int:
    """Get the per-player hand size, falling back to the default if it cannot be dealt."""
    size = get_env_int(key, HAND_SIZE)
    if size < 1 or size * MAX_PLAYERS >= DECK_SIZE:
        return HAND_SIZE
    return size


@dataclass
class ServerConfig:
    """Server configuration."""
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    # Table settings
    HAND_SIZE: int = 8
    DEFAULT_HOST_NAME: str = "Player 1"
    DEFAULT_GUEST_NAME: str = "Player 2"

    # Fixed seed for reproducible deals (debugging only)
    SHUFFLE_SEED: Optional[int] = None

    # Inbound WebSocket messages larger than this are rejected
    MAX_MESSAGE_BYTES: int = 16384

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Load configuration from environment variables."""
        return cls(
            HOST=get_env("HOST", "0.0.0.0"),
            PORT=get_env_int("PORT", 3000),
            DEBUG=get_env_bool("DEBUG", False),
            LOG_LEVEL=get_env("LOG_LEVEL", "INFO"),
            ENVIRONMENT=get_env("ENVIRONMENT", "development"),
            HAND_SIZE=get_hand_size("HAND_SIZE"),
            DEFAULT_HOST_NAME=get_env("DEFAULT_HOST_NAME", "Player 1"),
            DEFAULT_GUEST_NAME=get_env("DEFAULT_GUEST_NAME", "Player 2"),
            SHUFFLE_SEED=get_env_optional_int("SHUFFLE_SEED"),
            MAX_MESSAGE_BYTES=get_env_int("MAX_MESSAGE_BYTES", 16384),
        )


# Global config instance - loaded once at module import
config = ServerConfig.from_env()


def reload_config() -> ServerConfig:
    """Reload configuration from environment (useful for testing)."""
    global config
    config = ServerConfig.from_env()
    return config
