"""Episode lifecycle module.

Provides:
- EpisodeState and the explicit transition table
- LifecycleEngine (podtracker.lifecycle.engine) for state changes and decay
"""

from .states import (
    STATE_TIMESTAMP_FIELDS,
    TRANSITIONS,
    EpisodeState,
    is_allowed_transition,
)

__all__ = [
    "EpisodeState",
    "TRANSITIONS",
    "STATE_TIMESTAMP_FIELDS",
    "is_allowed_transition",
]
