import os
from typing import Optional

from dotenv import load_dotenv


def _get_int_env(
    name: str,
    default: int,
    min_val: Optional[int] = None,
) -> int:
    """Parse an integer from an environment variable with validation.

    Args:
        name: Environment variable name.
        default: Default value if env var is not set.
        min_val: Minimum allowed value (inclusive), or None for no minimum.

    Returns:
        The parsed and validated integer value.

    Raises:
        ValueError: If the value cannot be parsed as an integer or is out of range.
    """
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default

    try:
        value = int(raw)
    except ValueError:
        raise ValueError(
            f"Invalid value for {name}: '{raw}' is not a valid integer"
        )

    if min_val is not None and value < min_val:
        raise ValueError(
            f"Invalid value for {name}: {value} must be >= {min_val}"
        )

    return value


def _get_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.lower() in ("1", "true", "yes")


class Config:
    def __init__(self, env_file=None):
        """
        Initialize configuration by loading environment variables and setting default attributes.

        Loads environment variables from the provided .env file path when `env_file` is given;
        otherwise loads from the default environment. After loading, sets the database,
        feed-fetching, refresh policy, lifecycle and scheduler settings.

        Parameters:
            env_file (str | None): Optional path to a .env file to load environment variables from.
        """
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv()

        # Database configuration
        self.DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./podtracker.db")
        self.DB_POOL_SIZE = _get_int_env("DB_POOL_SIZE", 5, min_val=1)
        self.DB_MAX_OVERFLOW = _get_int_env("DB_MAX_OVERFLOW", 10, min_val=0)
        self.DB_ECHO = _get_bool_env("DB_ECHO", False)

        # Feed fetching
        self.FEED_CONNECT_TIMEOUT = _get_int_env("FEED_CONNECT_TIMEOUT", 15, min_val=1)
        self.FEED_READ_TIMEOUT = _get_int_env("FEED_READ_TIMEOUT", 15, min_val=1)
        self.FEED_MAX_REDIRECTS = _get_int_env("FEED_MAX_REDIRECTS", 5, min_val=0)
        self.FEED_USER_AGENT = os.getenv("FEED_USER_AGENT", "Podtracker/1.0")

        # Refresh policy
        self.REFRESH_INTERVAL_MINUTES = _get_int_env("REFRESH_INTERVAL_MINUTES", 60, min_val=0)
        self.REFRESH_MAX_WORKERS = _get_int_env("REFRESH_MAX_WORKERS", 4, min_val=1)

        # Episode lifecycle
        self.DECAY_WINDOW_DAYS = _get_int_env("DECAY_WINDOW_DAYS", 7, min_val=0)
        # Reject state changes outside the transition table instead of logging them
        self.STRICT_TRANSITIONS = _get_bool_env("STRICT_TRANSITIONS", False)

        # Scheduler
        self.SCHEDULER_INTERVAL_SECONDS = _get_int_env(
            "SCHEDULER_INTERVAL_SECONDS", 3600, min_val=1
        )

    @property
    def refresh_interval_ms(self) -> int:
        """Minimum time between two refreshes of the same podcast, in milliseconds."""
        return self.REFRESH_INTERVAL_MINUTES * 60 * 1000

    @property
    def decay_window_ms(self) -> int:
        """Age after which a NEW episode decays to AVAILABLE, in milliseconds."""
        return self.DECAY_WINDOW_DAYS * 24 * 60 * 60 * 1000
