"""Episode lifecycle engine.

Applies explicit state changes requested by the user and the periodic decay
of NEW episodes to AVAILABLE.
"""

import logging
from typing import Callable, Dict, List, Optional

from ..db.models import Episode, now_millis
from ..db.repository import PodcastRepositoryInterface
from ..errors import EpisodeNotFoundError, InvalidTransitionError
from .states import EpisodeState, is_allowed_transition

logger = logging.getLogger(__name__)

SEVEN_DAYS_MS = 7 * 24 * 60 * 60 * 1000


class LifecycleEngine:
    """Moves episodes through NEW, AVAILABLE, BACKLOG and LISTENED.

    `set_state` is permissive by default: a change outside the transition
    table is applied and logged as a warning. With `strict=True` it raises
    InvalidTransitionError instead.

    Example:
        engine = LifecycleEngine(repository)
        engine.run_decay_sweep()
        engine.set_state(episode_id, EpisodeState.BACKLOG)
    """

    def __init__(
        self,
        repository: PodcastRepositoryInterface,
        clock: Callable[[], int] = now_millis,
        decay_window_ms: int = SEVEN_DAYS_MS,
        strict: bool = False,
    ):
        self.repository = repository
        self.clock = clock
        self.decay_window_ms = decay_window_ms
        self.strict = strict

    def set_state(self, episode_id: str, new_state: EpisodeState) -> Episode:
        """
        Set an episode's lifecycle state.

        Entering BACKLOG stamps `saved_at`, LISTENED stamps `played_at` and AVAILABLE
        stamps `viewed_at`.

        Parameters:
            episode_id (str): Episode to update.
            new_state (EpisodeState): Target state; a state name string is accepted too.

        Returns:
            Episode: The updated episode.

        Raises:
            EpisodeNotFoundError: If no episode has `episode_id`.
            InvalidTransitionError: In strict mode, if the change is not in the table.
        """
        if not isinstance(new_state, EpisodeState):
            new_state = EpisodeState(str(new_state).strip().upper())

        episode = self.repository.get_episode(episode_id)
        if not episode:
            raise EpisodeNotFoundError(f"Episode not found: {episode_id}")

        current = episode.episode_state
        if not is_allowed_transition(current, new_state):
            message = f"Transition {current.value} -> {new_state.value} for episode {episode_id} is outside the transition table"
            if self.strict:
                raise InvalidTransitionError(message)
            logger.warning(message)

        updated = self.repository.update_episode_state(episode_id, new_state, self.clock())
        if not updated:
            raise EpisodeNotFoundError(f"Episode not found: {episode_id}")

        logger.info(f"Episode {episode_id}: {current.value} -> {new_state.value}")
        return updated

    def run_decay_sweep(self) -> int:
        """
        Demote stale NEW episodes to AVAILABLE.

        A NEW episode decays when its `session_grace` flag is set or it was fetched at
        least `decay_window_ms` ago. The flag is cleared on decayed episodes. BACKLOG and
        LISTENED episodes are never touched.

        Returns:
            int: Number of episodes decayed.
        """
        cutoff = self.clock() - self.decay_window_ms
        decayed = self.repository.decay_new_episodes(cutoff)
        if decayed:
            logger.info(f"Decayed {decayed} NEW episodes to AVAILABLE")
        else:
            logger.debug("Decay sweep found no NEW episodes to demote")
        return decayed

    def get_episodes_by_state(self, state: EpisodeState) -> List[Episode]:
        """Episodes in `state`, newest published first."""
        return self.repository.list_episodes(state=state)

    def get_episodes_by_podcast(
        self, podcast_id: str, reverse_order: Optional[bool] = None
    ) -> List[Episode]:
        """Episodes of a podcast, newest published first (oldest first if `reverse_order`).

        When `reverse_order` is None the podcast's stored preference decides.
        """
        if reverse_order is None:
            podcast = self.repository.get_podcast(podcast_id)
            reverse_order = bool(podcast and podcast.reverse_order)
        return self.repository.list_episodes(
            podcast_id=podcast_id, reverse_order=reverse_order
        )

    def get_episodes_by_podcast_and_state(
        self, podcast_id: str, state: EpisodeState
    ) -> List[Episode]:
        return self.repository.list_episodes(podcast_id=podcast_id, state=state)

    def count_by_state(self) -> Dict[str, int]:
        return {
            state.value: self.repository.count_episodes(state=state)
            for state in EpisodeState
        }
