"""Feed synchronization service for podcast updates.

Decides when a podcast may be refreshed, runs the fetch, parse and ingest
pipeline for it, and keeps podcast metadata and the refresh timestamp current.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Optional

from ..db.models import TITLE_MAX_LENGTH, URL_MAX_LENGTH, Podcast, clip, now_millis
from ..db.repository import PodcastRepositoryInterface
from ..errors import PodcastNotFoundError
from .feed_fetcher import FeedFetcher
from .feed_parser import Feed, FeedParser
from .ingestion import EpisodeIngestor, IngestResult

logger = logging.getLogger(__name__)

ONE_HOUR_MS = 60 * 60 * 1000

# How long a refresh claim holds before another caller may take it over
REFRESH_LEASE_MS = 10 * 60 * 1000

# Episodes stored when subscribing to a podcast
INITIAL_EPISODE_LIMIT = 10


class RefreshState(str, Enum):
    """Rate-limit state of a podcast at a point in time."""

    NEVER_REFRESHED = "never_refreshed"
    COOLING = "cooling"
    ELIGIBLE = "eligible"


@dataclass
class RefreshResult:
    """Result of refreshing one podcast."""

    podcast_id: str
    state: RefreshState
    refreshed: bool = False
    new_episodes: int = 0
    metadata_updated: bool = False
    ingest: Optional[IngestResult] = None


@dataclass
class SubscribeResult:
    """Result of subscribing to a feed."""

    podcast_id: str
    title: str
    episodes: int = 0
    already_subscribed: bool = False


@dataclass
class RefreshAllResult:
    """Aggregated result of refreshing every podcast."""

    refreshed: int = 0
    skipped: int = 0
    new_episodes: int = 0
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def failed(self) -> int:
        return len(self.failures)


class FeedSyncService:
    """Service for synchronizing podcast feeds with the database.

    A podcast is refreshed at most once per `refresh_interval_ms`; inside that
    window `refresh_podcast` is a silent no-op. Only one refresh of a given
    podcast runs at a time, across threads and processes: a refresh first wins
    a claim in the store, which is released when `last_refresh_at` is written
    or the pipeline fails. A concurrent caller that loses the claim sees the
    podcast as cooling. A claim left by a crashed process expires after
    `lease_ms`.

    Example:
        sync_service = FeedSyncService(repository)
        result = sync_service.refresh_podcast(podcast_id)
        print(f"New episodes: {result.new_episodes}")
    """

    def __init__(
        self,
        repository: PodcastRepositoryInterface,
        fetcher: Optional[FeedFetcher] = None,
        parser: Optional[FeedParser] = None,
        ingestor: Optional[EpisodeIngestor] = None,
        clock: Callable[[], int] = now_millis,
        refresh_interval_ms: int = ONE_HOUR_MS,
        max_workers: int = 4,
        lease_ms: int = REFRESH_LEASE_MS,
    ):
        """
        Create a FeedSyncService over the given repository.

        Parameters:
            repository (PodcastRepositoryInterface): Store for podcasts and episodes.
            fetcher (Optional[FeedFetcher]): HTTP fetcher; a default one is created if omitted.
            parser (Optional[FeedParser]): Feed parser; a default one is created if omitted.
            ingestor (Optional[EpisodeIngestor]): Ingestion pipeline; built from `repository`
                and `clock` if omitted.
            clock (Callable[[], int]): Returns the current time in epoch milliseconds.
            refresh_interval_ms (int): Minimum time between two refreshes of a podcast.
            max_workers (int): Default thread count for `refresh_all_podcasts`.
            lease_ms (int): Lifetime of a refresh claim.
        """
        self.repository = repository
        self.fetcher = fetcher or FeedFetcher()
        self.feed_parser = parser or FeedParser()
        self.clock = clock
        self.ingestor = ingestor or EpisodeIngestor(repository, clock=clock)
        self.refresh_interval_ms = refresh_interval_ms
        self.max_workers = max_workers
        self.lease_ms = lease_ms

    def refresh_state(self, podcast: Podcast, now: int) -> RefreshState:
        """
        Classify a podcast against the refresh rate limit.

        Returns:
            RefreshState: NEVER_REFRESHED if `last_refresh_at` is 0, ELIGIBLE if more than
            `refresh_interval_ms` has passed since then, COOLING otherwise. Only COOLING
            blocks a refresh.
        """
        if not podcast.last_refresh_at:
            return RefreshState.NEVER_REFRESHED
        if now - podcast.last_refresh_at > self.refresh_interval_ms:
            return RefreshState.ELIGIBLE
        return RefreshState.COOLING

    def refresh_podcast(self, podcast_id: str, max_new_episodes: int = 0) -> RefreshResult:
        """
        Refresh a single podcast if the rate limit allows it.

        Fetches and parses the feed, updates podcast metadata, ingests new episodes as NEW,
        then stamps `last_refresh_at`. A cooling podcast is left untouched, as is one
        whose refresh claim another caller already holds.

        Parameters:
            podcast_id (str): Identifier of the podcast to refresh.
            max_new_episodes (int): Cap on inserted episodes, 0 for no cap.

        Returns:
            RefreshResult: Outcome of the refresh; `refreshed` is False when cooling.

        Raises:
            PodcastNotFoundError: If no podcast has `podcast_id`.
            FeedError: If the feed could not be fetched or parsed; `last_refresh_at`
                is left unchanged so the next call retries.
            RepositoryError: If the new episodes could not be stored.
        """
        podcast = self._require_podcast(podcast_id)
        now = self.clock()
        state = self.refresh_state(podcast, now)

        if state == RefreshState.COOLING:
            logger.debug(
                f"Skipping refresh for '{podcast.title}' "
                f"(last refresh less than {self.refresh_interval_ms // 60000} minutes ago)"
            )
            return RefreshResult(podcast_id=podcast_id, state=state)

        if not self.repository.claim_refresh(
            podcast_id, now, self.lease_ms, min_interval_ms=self.refresh_interval_ms
        ):
            logger.debug(f"Skipping refresh for '{podcast.title}' (already being refreshed)")
            return RefreshResult(podcast_id=podcast_id, state=RefreshState.COOLING)

        logger.info(f"Refreshing podcast: {podcast.title}")
        result = self._run_claimed_pipeline(podcast, now, max_new_episodes)
        result.state = state
        return result

    def load_more_episodes(self, podcast_id: str, max_new_episodes: int) -> RefreshResult:
        """
        Refresh a podcast on explicit user request, ignoring the rate limit.

        Runs the same pipeline as `refresh_podcast` with a cap on inserted episodes.
        It still waits its turn behind a refresh in flight: if another caller holds the
        claim, nothing is fetched and `refreshed` is False.

        Raises:
            PodcastNotFoundError: If no podcast has `podcast_id`.
            FeedError: If the feed could not be fetched or parsed.
        """
        podcast = self._require_podcast(podcast_id)
        now = self.clock()
        state = self.refresh_state(podcast, now)

        if not self.repository.claim_refresh(podcast_id, now, self.lease_ms):
            logger.info(f"Not loading episodes for '{podcast.title}': refresh in progress")
            return RefreshResult(podcast_id=podcast_id, state=state)

        logger.info(f"Loading up to {max_new_episodes} episodes for: {podcast.title}")
        result = self._run_claimed_pipeline(podcast, now, max_new_episodes)
        result.state = state
        return result

    def subscribe(
        self,
        feed_url: str,
        catalog_id: Optional[str] = None,
        max_episodes: int = INITIAL_EPISODE_LIMIT,
    ) -> SubscribeResult:
        """
        Subscribe to a feed and backfill its most recent episodes.

        Backfilled episodes are stored as AVAILABLE so a new subscription does not flood
        the NEW list. Subscribing to an already-known feed URL is reported, not repeated.

        Parameters:
            feed_url (str): URL of the podcast feed.
            catalog_id (Optional[str]): Identifier in an external podcast catalog.
            max_episodes (int): Cap on backfilled episodes, 0 for no cap.

        Returns:
            SubscribeResult: The podcast id and title and the number of episodes stored.

        Raises:
            FeedError: If the feed could not be fetched or parsed; nothing is stored.
        """
        existing = self.repository.get_podcast_by_feed_url(feed_url)
        if existing:
            logger.info(f"Podcast already exists: {existing.title}")
            return SubscribeResult(
                podcast_id=existing.id, title=existing.title, already_subscribed=True
            )

        feed = self._fetch_feed(feed_url)

        # Created already claimed so no refresh races the backfill
        now = self.clock()
        podcast = self.repository.create_podcast(
            feed_url=feed_url,
            title=clip(feed.title or feed_url, TITLE_MAX_LENGTH),
            description=feed.description,
            artwork_url=clip(feed.image_url, URL_MAX_LENGTH),
            catalog_id=catalog_id,
            refresh_claimed_until=now + self.lease_ms,
        )

        try:
            ingested = self.ingestor.ingest_detailed(
                podcast.id, feed, is_initial_subscription=True, max_new_episodes=max_episodes
            )
        except Exception:
            self.repository.release_refresh(podcast.id)
            raise
        self.repository.set_last_refresh(podcast.id, now)

        logger.info(f"Subscribed to '{podcast.title}' with {ingested.inserted} episodes")
        return SubscribeResult(
            podcast_id=podcast.id, title=podcast.title, episodes=ingested.inserted
        )

    def refresh_all_podcasts(self, max_workers: Optional[int] = None) -> RefreshAllResult:
        """
        Refresh every eligible podcast concurrently.

        A podcast whose refresh fails is logged and recorded in `failures`; it never
        stops the other podcasts. Cooling podcasts are counted as skipped.

        Parameters:
            max_workers (Optional[int]): Thread count; defaults to the service setting.

        Returns:
            RefreshAllResult: Aggregated counts and per-podcast failure messages.
        """
        podcasts = self.repository.list_podcasts()
        overall = RefreshAllResult()

        if not podcasts:
            logger.info("No podcasts to refresh")
            return overall

        workers = max_workers or self.max_workers
        logger.info(f"Refreshing {len(podcasts)} podcasts with {workers} workers")

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(self.refresh_podcast, podcast.id): podcast
                for podcast in podcasts
            }

            for future in as_completed(futures):
                podcast = futures[future]
                try:
                    result = future.result()
                except Exception as e:
                    logger.error(f"Failed to refresh podcast '{podcast.title}': {e}")
                    overall.failures[podcast.id] = str(e)
                    continue

                if result.refreshed:
                    overall.refreshed += 1
                    overall.new_episodes += result.new_episodes
                else:
                    overall.skipped += 1

        logger.info(
            f"Refresh complete: {overall.refreshed} refreshed, "
            f"{overall.skipped} skipped, {overall.failed} failed, "
            f"{overall.new_episodes} new episodes"
        )
        return overall

    def _require_podcast(self, podcast_id: str) -> Podcast:
        podcast = self.repository.get_podcast(podcast_id)
        if not podcast:
            raise PodcastNotFoundError(f"Podcast not found: {podcast_id}")
        return podcast

    def _fetch_feed(self, feed_url: str) -> Feed:
        content = self.fetcher.fetch(feed_url)
        return self.feed_parser.parse_bytes(content)

    def _run_claimed_pipeline(
        self, podcast: Podcast, now: int, max_new_episodes: int
    ) -> RefreshResult:
        """Run the pipeline under a held claim, releasing it if the pipeline fails."""
        try:
            return self._run_pipeline(podcast, now, False, max_new_episodes)
        except Exception:
            self.repository.release_refresh(podcast.id)
            raise

    def _run_pipeline(
        self,
        podcast: Podcast,
        now: int,
        is_initial_subscription: bool,
        max_new_episodes: int,
    ) -> RefreshResult:
        """Fetch, parse, update metadata, ingest, then stamp `last_refresh_at`.

        Any exception before the final stamp leaves `last_refresh_at` untouched.
        """
        feed = self._fetch_feed(podcast.feed_url)
        metadata_updated = self._update_podcast_metadata(podcast, feed)

        ingested = self.ingestor.ingest_detailed(
            podcast.id,
            feed,
            is_initial_subscription=is_initial_subscription,
            max_new_episodes=max_new_episodes,
        )

        self.repository.set_last_refresh(podcast.id, now)

        logger.info(
            f"Refresh complete for '{podcast.title}': {ingested.inserted} new episodes"
        )
        return RefreshResult(
            podcast_id=podcast.id,
            state=RefreshState.ELIGIBLE,
            refreshed=True,
            new_episodes=ingested.inserted,
            metadata_updated=metadata_updated,
            ingest=ingested,
        )

    def _update_podcast_metadata(self, podcast: Podcast, feed: Feed) -> bool:
        """
        Update a podcast's stored metadata using values from a parsed feed.

        Only non-empty feed values that differ from the stored ones are applied, so a
        feed that drops a field never blanks it out.

        Returns:
            bool: True if any field was updated.
        """
        updates = {}

        if feed.title and feed.title != podcast.title:
            updates["title"] = clip(feed.title, TITLE_MAX_LENGTH)
        if feed.description and feed.description != podcast.description:
            updates["description"] = feed.description
        if feed.image_url and feed.image_url != podcast.artwork_url:
            updates["artwork_url"] = clip(feed.image_url, URL_MAX_LENGTH)

        if updates:
            self.repository.update_podcast(podcast.id, **updates)
            logger.debug(f"Updated podcast metadata: {list(updates.keys())}")
            return True
        return False
