"""Episode lifecycle states and the transition table.

NEW is the initial state for episodes discovered on refresh; episodes
backfilled at subscription time start in AVAILABLE. LISTENED is terminal by
convention only.
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional


class EpisodeState(str, Enum):
    """Episode lifecycle state.

    - NEW: discovered since the user last looked, surfaced prominently
    - AVAILABLE: seen or decayed, browsable but not pressing
    - BACKLOG: saved for later
    - LISTENED: played through
    """

    NEW = "NEW"
    AVAILABLE = "AVAILABLE"
    BACKLOG = "BACKLOG"
    LISTENED = "LISTENED"

    @classmethod
    def from_string(cls, value: Optional[str]) -> "EpisodeState":
        """Parse a state name case-insensitively, falling back to NEW."""
        if not value:
            return cls.NEW
        try:
            return cls(value.strip().upper())
        except ValueError:
            return cls.NEW


TRANSITIONS: Dict[EpisodeState, FrozenSet[EpisodeState]] = {
    EpisodeState.NEW: frozenset({EpisodeState.AVAILABLE, EpisodeState.BACKLOG}),
    EpisodeState.AVAILABLE: frozenset({EpisodeState.BACKLOG, EpisodeState.LISTENED}),
    EpisodeState.BACKLOG: frozenset({EpisodeState.LISTENED}),
    EpisodeState.LISTENED: frozenset(),
}


def is_allowed_transition(current: EpisodeState, target: EpisodeState) -> bool:
    """Return True if `target` is a forward edge from `current` in the table.

    Re-entering the current state is treated as allowed (it only refreshes the
    state timestamp).
    """
    if current == target:
        return True
    return target in TRANSITIONS.get(current, frozenset())


# Timestamp column stamped when an episode enters a given state
STATE_TIMESTAMP_FIELDS: Dict[EpisodeState, str] = {
    EpisodeState.AVAILABLE: "viewed_at",
    EpisodeState.BACKLOG: "saved_at",
    EpisodeState.LISTENED: "played_at",
}
