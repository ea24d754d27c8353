"""Conversion of parsed feed items into persisted episodes.

Decides which items of a feed are genuinely new for a podcast, builds
Episode records for them, and stores the whole batch in one transaction. Text longer than its column is
clipped; guids are stored whole since they are the dedup key.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Set

from ..db.models import (
    MIME_TYPE_MAX_LENGTH,
    TITLE_MAX_LENGTH,
    URL_MAX_LENGTH,
    Episode,
    clip,
    now_millis,
)
from ..db.repository import PodcastRepositoryInterface
from ..errors import PodcastNotFoundError
from ..lifecycle.states import EpisodeState
from .feed_parser import Feed, FeedItem

logger = logging.getLogger(__name__)

SEVEN_DAYS_MS = 7 * 24 * 60 * 60 * 1000

# Prefix of the dedup key synthesized for items without a <guid>
TITLE_GUID_PREFIX = "title:"


@dataclass
class IngestResult:
    """Outcome of ingesting one feed for one podcast."""

    podcast_id: str
    inserted: int = 0
    skipped_old: int = 0
    skipped_invalid: int = 0
    skipped_duplicate: int = 0

    @property
    def processed(self) -> int:
        return self.inserted + self.skipped_old + self.skipped_invalid + self.skipped_duplicate


class EpisodeIngestor:
    """Turns feed items into new Episode rows.

    For a refresh of a podcast that has been refreshed before, items without a
    publish date or published before the previous refresh are dropped before
    any database lookup. Remaining items need a non-blank title; a missing
    guid is replaced by one derived from the title. Items whose
    (podcast_id, guid) already exists, or repeats within the same feed, are
    skipped.

    Example:
        ingestor = EpisodeIngestor(repository)
        inserted = ingestor.ingest(podcast.id, feed, is_initial_subscription=False)
    """

    def __init__(
        self,
        repository: PodcastRepositoryInterface,
        clock: Callable[[], int] = now_millis,
        grace_window_ms: int = SEVEN_DAYS_MS,
    ):
        """
        Parameters:
            repository (PodcastRepositoryInterface): Store the episodes are written to.
            clock (Callable[[], int]): Returns the current time in epoch milliseconds.
            grace_window_ms (int): Episodes published longer ago than this are flagged
                with `session_grace` so the next decay sweep demotes them.
        """
        self.repository = repository
        self.clock = clock
        self.grace_window_ms = grace_window_ms

    def ingest(
        self,
        podcast_id: str,
        feed: Feed,
        is_initial_subscription: bool,
        max_new_episodes: int = 0,
    ) -> int:
        """Ingest a feed and return the number of episodes inserted."""
        return self.ingest_detailed(
            podcast_id, feed, is_initial_subscription, max_new_episodes
        ).inserted

    def ingest_detailed(
        self,
        podcast_id: str,
        feed: Feed,
        is_initial_subscription: bool,
        max_new_episodes: int = 0,
    ) -> IngestResult:
        """
        Ingest a feed and report what happened to each item.

        Parameters:
            podcast_id (str): Podcast the feed belongs to.
            feed (Feed): Parsed feed.
            is_initial_subscription (bool): True for the first fetch after subscribing;
                disables the publish-date filter and stores episodes as AVAILABLE.
            max_new_episodes (int): Cap on inserted episodes, 0 for no cap.

        Returns:
            IngestResult: Inserted and skipped counts.

        Raises:
            PodcastNotFoundError: If no podcast has `podcast_id`.
            RepositoryError: If the batch could not be committed; nothing is stored.
        """
        podcast = self.repository.get_podcast(podcast_id)
        if not podcast:
            raise PodcastNotFoundError(f"Podcast not found: {podcast_id}")

        last_refresh_at = 0 if is_initial_subscription else podcast.last_refresh_at
        now = self.clock()
        result = IngestResult(podcast_id=podcast_id)

        logger.debug(
            f"Processing {len(feed.items)} items for podcast {podcast_id} "
            f"(initial={is_initial_subscription}, last_refresh_at={last_refresh_at}, "
            f"max_new={max_new_episodes})"
        )

        batch: List[Episode] = []
        seen_guids: Set[str] = set()

        for item in feed.items:
            if max_new_episodes > 0 and len(batch) >= max_new_episodes:
                logger.debug(f"Reached limit of {max_new_episodes} new episodes")
                break

            if last_refresh_at > 0 and (
                item.published_at == 0 or item.published_at < last_refresh_at
            ):
                result.skipped_old += 1
                continue

            title = (item.title or "").strip()
            if not title:
                logger.warning(f"Skipping item without title in podcast {podcast_id}")
                result.skipped_invalid += 1
                continue

            guid = self._resolve_guid(item, title)

            if guid in seen_guids or self.repository.episode_exists(podcast_id, guid):
                result.skipped_duplicate += 1
                continue
            seen_guids.add(guid)

            batch.append(
                self._build_episode(podcast_id, item, title, guid, now, is_initial_subscription)
            )

        result.inserted = self.repository.insert_episodes(batch)
        # Rows stored by a concurrent ingest since the existence check
        result.skipped_duplicate += len(batch) - result.inserted

        logger.info(
            f"Ingested podcast {podcast_id}: {result.inserted} new, "
            f"{result.skipped_duplicate} duplicate, {result.skipped_old} old, "
            f"{result.skipped_invalid} invalid (of {result.processed} items)"
        )
        return result

    def _resolve_guid(self, item: FeedItem, title: str) -> str:
        """Return the item's guid, or one derived from its title.

        Two guid-less items with the same title collapse into one episode.
        """
        guid = (item.guid or "").strip()
        if guid:
            return guid
        return f"{TITLE_GUID_PREFIX}{title}"

    def _build_episode(
        self,
        podcast_id: str,
        item: FeedItem,
        title: str,
        guid: str,
        now: int,
        is_initial_subscription: bool,
    ) -> Episode:
        state = EpisodeState.AVAILABLE if is_initial_subscription else EpisodeState.NEW

        return Episode(
            podcast_id=podcast_id,
            guid=guid,
            title=clip(title, TITLE_MAX_LENGTH),
            description=item.best_description,
            link=clip(item.link, URL_MAX_LENGTH),
            published_at=item.published_at,
            fetched_at=now,
            duration_seconds=item.duration,
            chapters_url=clip(item.chapters_url, URL_MAX_LENGTH),
            artwork_url=clip(item.image_url, URL_MAX_LENGTH),
            enclosure_url=clip(item.enclosure_url, URL_MAX_LENGTH),
            enclosure_type=clip(item.enclosure_type, MIME_TYPE_MAX_LENGTH),
            enclosure_length=item.enclosure_length,
            state=state.value,
            session_grace=self._has_session_grace(item.published_at, now),
        )

    def _has_session_grace(self, published_at: int, now: int) -> bool:
        return published_at > 0 and now - published_at > self.grace_window_ms

