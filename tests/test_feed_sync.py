"""Tests for the feed sync service."""

import threading
import time
from unittest.mock import Mock

import pytest

from podtracker.db.factory import create_repository
from podtracker.db.models import TITLE_MAX_LENGTH
from podtracker.errors import NetworkError, ParseError, PodcastNotFoundError
from podtracker.lifecycle.states import EpisodeState
from podtracker.podcast.feed_sync import FeedSyncService, RefreshState

HOUR_MS = 60 * 60 * 1000
MINUTE_MS = 60 * 1000


@pytest.fixture
def mock_fetcher():
    return Mock()


@pytest.fixture
def sync_service(repository, mock_fetcher, clock):
    return FeedSyncService(repository=repository, fetcher=mock_fetcher, clock=clock)


def recent_items(clock, count, prefix="ep", offset_ms=HOUR_MS):
    return [
        {"guid": f"{prefix}-{i}", "title": f"{prefix} {i}", "pub_date": clock.now - offset_ms - i * 1000 * 60}
        for i in range(count)
    ]


class TestRefreshState:
    def test_never_refreshed(self, sync_service, sample_podcast, clock):
        assert sync_service.refresh_state(sample_podcast, clock.now) == RefreshState.NEVER_REFRESHED

    def test_cooling_within_an_hour(self, sync_service, repository, sample_podcast, clock):
        repository.set_last_refresh(sample_podcast.id, clock.now - 59 * MINUTE_MS)
        podcast = repository.get_podcast(sample_podcast.id)
        assert sync_service.refresh_state(podcast, clock.now) == RefreshState.COOLING

    def test_exactly_one_hour_is_cooling(self, sync_service, repository, sample_podcast, clock):
        repository.set_last_refresh(sample_podcast.id, clock.now - HOUR_MS)
        podcast = repository.get_podcast(sample_podcast.id)
        assert sync_service.refresh_state(podcast, clock.now) == RefreshState.COOLING

    def test_eligible_after_an_hour(self, sync_service, repository, sample_podcast, clock):
        repository.set_last_refresh(sample_podcast.id, clock.now - HOUR_MS - 1)
        podcast = repository.get_podcast(sample_podcast.id)
        assert sync_service.refresh_state(podcast, clock.now) == RefreshState.ELIGIBLE


class TestRefreshPodcast:
    def test_refresh_inserts_new_episodes_and_stamps(
        self, sync_service, repository, sample_podcast, mock_fetcher, rss_builder, clock
    ):
        mock_fetcher.fetch.return_value = rss_builder(recent_items(clock, 3))

        result = sync_service.refresh_podcast(sample_podcast.id)

        assert result.refreshed is True
        assert result.state == RefreshState.NEVER_REFRESHED
        assert result.new_episodes == 3
        assert repository.count_episodes(podcast_id=sample_podcast.id, state=EpisodeState.NEW) == 3
        assert repository.get_podcast(sample_podcast.id).last_refresh_at == clock.now
        mock_fetcher.fetch.assert_called_once_with("https://example.com/feed.xml")

    def test_cooling_refresh_is_noop(self, sync_service, repository, sample_podcast, mock_fetcher, clock):
        repository.set_last_refresh(sample_podcast.id, clock.now - 10 * MINUTE_MS)

        result = sync_service.refresh_podcast(sample_podcast.id)

        assert result.refreshed is False
        assert result.state == RefreshState.COOLING
        mock_fetcher.fetch.assert_not_called()
        assert repository.get_podcast(sample_podcast.id).last_refresh_at == clock.now - 10 * MINUTE_MS

    def test_second_refresh_within_hour_skipped(
        self, sync_service, sample_podcast, mock_fetcher, rss_builder, clock
    ):
        mock_fetcher.fetch.return_value = rss_builder(recent_items(clock, 1))

        sync_service.refresh_podcast(sample_podcast.id)
        clock.advance(30 * MINUTE_MS)
        second = sync_service.refresh_podcast(sample_podcast.id)

        assert second.refreshed is False
        assert mock_fetcher.fetch.call_count == 1

    def test_network_error_leaves_last_refresh_unchanged(
        self, sync_service, repository, sample_podcast, mock_fetcher
    ):
        mock_fetcher.fetch.side_effect = NetworkError("Timed out")

        with pytest.raises(NetworkError):
            sync_service.refresh_podcast(sample_podcast.id)

        assert repository.get_podcast(sample_podcast.id).last_refresh_at == 0

    def test_parse_error_leaves_last_refresh_unchanged(
        self, sync_service, repository, sample_podcast, mock_fetcher
    ):
        mock_fetcher.fetch.return_value = b"<rss><channel>"

        with pytest.raises(ParseError):
            sync_service.refresh_podcast(sample_podcast.id)

        assert repository.get_podcast(sample_podcast.id).last_refresh_at == 0

    def test_stamp_even_when_items_are_invalid(
        self, sync_service, repository, sample_podcast, mock_fetcher, rss_builder, clock
    ):
        mock_fetcher.fetch.return_value = rss_builder([{"guid": "no-title"}])

        result = sync_service.refresh_podcast(sample_podcast.id)

        assert result.new_episodes == 0
        assert result.ingest.skipped_invalid == 1
        assert repository.get_podcast(sample_podcast.id).last_refresh_at == clock.now

    def test_metadata_updated_only_with_non_empty_values(
        self, sync_service, repository, sample_podcast, mock_fetcher, rss_builder
    ):
        mock_fetcher.fetch.return_value = rss_builder(
            [], title="New Title", description="", image="https://example.com/art.jpg"
        )

        result = sync_service.refresh_podcast(sample_podcast.id)

        podcast = repository.get_podcast(sample_podcast.id)
        assert result.metadata_updated is True
        assert podcast.title == "New Title"
        assert podcast.description == "A test podcast"
        assert podcast.artwork_url == "https://example.com/art.jpg"

    def test_refresh_filters_items_older_than_last_refresh(
        self, sync_service, repository, sample_podcast, mock_fetcher, rss_builder, clock
    ):
        last_refresh = clock.now - 2 * HOUR_MS
        repository.set_last_refresh(sample_podcast.id, last_refresh)
        mock_fetcher.fetch.return_value = rss_builder([
            {"guid": "fresh", "title": "Fresh", "pub_date": clock.now - HOUR_MS},
            {"guid": "stale", "title": "Stale", "pub_date": clock.now - 3 * HOUR_MS},
            {"guid": "undated", "title": "Undated"},
        ])

        result = sync_service.refresh_podcast(sample_podcast.id)

        assert result.new_episodes == 1
        assert repository.episode_exists(sample_podcast.id, "fresh")

    def test_unknown_podcast(self, sync_service):
        with pytest.raises(PodcastNotFoundError):
            sync_service.refresh_podcast("missing")

    def test_concurrent_refreshes_fetch_once(
        self, repository, sample_podcast, rss_builder, clock
    ):
        fetcher = Mock()

        def slow_fetch(url):
            time.sleep(0.2)
            return rss_builder(recent_items(clock, 2))

        fetcher.fetch.side_effect = slow_fetch
        service = FeedSyncService(repository=repository, fetcher=fetcher, clock=clock)

        results = []
        threads = [
            threading.Thread(target=lambda: results.append(service.refresh_podcast(sample_podcast.id)))
            for _ in range(2)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert fetcher.fetch.call_count == 1
        assert sorted(r.refreshed for r in results) == [False, True]
        assert repository.count_episodes(podcast_id=sample_podcast.id) == 2

    def test_two_services_on_separate_handles_fetch_once(
        self, tmp_path, repository, sample_podcast, rss_builder, clock
    ):
        # Each service has its own repository handle, as separate processes would
        other_repository = create_repository(f"sqlite:///{tmp_path / 'test.db'}")
        fetcher = Mock()

        def slow_fetch(url):
            time.sleep(0.2)
            return rss_builder(recent_items(clock, 2))

        fetcher.fetch.side_effect = slow_fetch
        services = [
            FeedSyncService(repository=repository, fetcher=fetcher, clock=clock),
            FeedSyncService(repository=other_repository, fetcher=fetcher, clock=clock),
        ]

        results = []
        errors = []

        def run(service):
            try:
                results.append(service.refresh_podcast(sample_podcast.id))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=run, args=(service,)) for service in services]
        try:
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()
        finally:
            other_repository.close()

        assert errors == []
        assert fetcher.fetch.call_count == 1
        assert sorted(r.refreshed for r in results) == [False, True]
        assert repository.count_episodes(podcast_id=sample_podcast.id) == 2

    def test_held_claim_skips_refresh(self, sync_service, repository, sample_podcast, mock_fetcher, clock):
        assert repository.claim_refresh(sample_podcast.id, clock.now, 10 * MINUTE_MS)

        result = sync_service.refresh_podcast(sample_podcast.id)

        assert result.refreshed is False
        assert result.state == RefreshState.COOLING
        mock_fetcher.fetch.assert_not_called()

    def test_expired_claim_is_taken_over(
        self, sync_service, repository, sample_podcast, mock_fetcher, rss_builder, clock
    ):
        repository.claim_refresh(sample_podcast.id, clock.now, 10 * MINUTE_MS)
        clock.advance(10 * MINUTE_MS)
        mock_fetcher.fetch.return_value = rss_builder(recent_items(clock, 1))

        result = sync_service.refresh_podcast(sample_podcast.id)

        assert result.refreshed is True
        assert repository.get_podcast(sample_podcast.id).refresh_claimed_until == 0

    def test_failed_refresh_releases_claim(
        self, sync_service, repository, sample_podcast, mock_fetcher, rss_builder, clock
    ):
        mock_fetcher.fetch.side_effect = [NetworkError("Timed out"), rss_builder(recent_items(clock, 1))]

        with pytest.raises(NetworkError):
            sync_service.refresh_podcast(sample_podcast.id)
        assert repository.get_podcast(sample_podcast.id).refresh_claimed_until == 0

        result = sync_service.refresh_podcast(sample_podcast.id)

        assert result.refreshed is True
        assert result.new_episodes == 1

    def test_oversized_numbers_do_not_sink_batch(
        self, sync_service, repository, sample_podcast, mock_fetcher, rss_builder, clock
    ):
        mock_fetcher.fetch.return_value = rss_builder([
            {
                "guid": "huge",
                "title": "Huge",
                "pub_date": clock.now - HOUR_MS,
                "duration": "99999999999",
                "enclosure_url": "https://example.com/huge.mp3",
                "enclosure_length": "9" * 40,
            },
            {
                "guid": "good",
                "title": "Good",
                "pub_date": clock.now - HOUR_MS,
                "enclosure_url": "https://example.com/good.mp3",
            },
        ])

        result = sync_service.refresh_podcast(sample_podcast.id)

        assert result.new_episodes == 2
        huge = repository.get_episode_by_guid(sample_podcast.id, "huge")
        assert huge.enclosure_length is None
        assert huge.duration_seconds == 0
        assert repository.get_episode_by_guid(sample_podcast.id, "good").enclosure_length == 1000

    def test_long_feed_title_is_clipped(self, sync_service, repository, sample_podcast, mock_fetcher, rss_builder):
        mock_fetcher.fetch.return_value = rss_builder([], title="T" * 600)

        sync_service.refresh_podcast(sample_podcast.id)

        assert repository.get_podcast(sample_podcast.id).title == "T" * TITLE_MAX_LENGTH


class TestLoadMore:
    def test_load_more_ignores_rate_limit(
        self, sync_service, repository, sample_podcast, mock_fetcher, rss_builder, clock
    ):
        repository.set_last_refresh(sample_podcast.id, clock.now - 5 * MINUTE_MS)
        mock_fetcher.fetch.return_value = rss_builder(
            recent_items(clock, 5, offset_ms=-HOUR_MS)
        )

        result = sync_service.load_more_episodes(sample_podcast.id, max_new_episodes=2)

        assert result.refreshed is True
        assert result.new_episodes == 2
        assert repository.get_podcast(sample_podcast.id).last_refresh_at == clock.now

    def test_load_more_waits_for_refresh_in_flight(
        self, sync_service, repository, sample_podcast, mock_fetcher, clock
    ):
        repository.claim_refresh(sample_podcast.id, clock.now, 10 * MINUTE_MS)

        result = sync_service.load_more_episodes(sample_podcast.id, max_new_episodes=2)

        assert result.refreshed is False
        mock_fetcher.fetch.assert_not_called()


class TestSubscribe:
    def test_subscribe_backfills_available_episodes(
        self, sync_service, repository, mock_fetcher, rss_builder, clock
    ):
        mock_fetcher.fetch.return_value = rss_builder(
            recent_items(clock, 12), title="Brand New Show", image="https://example.com/art.jpg"
        )

        result = sync_service.subscribe("https://new.example.com/feed.xml", catalog_id="920")

        podcast = repository.get_podcast(result.podcast_id)
        assert result.already_subscribed is False
        assert result.title == "Brand New Show"
        assert result.episodes == 10
        assert podcast.catalog_id == "920"
        assert podcast.artwork_url == "https://example.com/art.jpg"
        assert podcast.last_refresh_at == clock.now
        assert podcast.refresh_claimed_until == 0
        assert repository.count_episodes(podcast_id=podcast.id, state=EpisodeState.AVAILABLE) == 10
        assert repository.count_episodes(podcast_id=podcast.id, state=EpisodeState.NEW) == 0

    def test_subscribe_then_refresh_same_feed_adds_nothing(
        self, sync_service, repository, mock_fetcher, rss_builder, clock
    ):
        mock_fetcher.fetch.return_value = rss_builder(recent_items(clock, 10, offset_ms=2 * HOUR_MS))
        podcast_id = sync_service.subscribe("https://new.example.com/feed.xml").podcast_id

        clock.advance(2 * HOUR_MS)
        result = sync_service.refresh_podcast(podcast_id)

        assert result.refreshed is True
        assert result.new_episodes == 0
        assert repository.count_episodes(podcast_id=podcast_id) == 10

    def test_subscribe_existing_feed(self, sync_service, sample_podcast, mock_fetcher):
        result = sync_service.subscribe(sample_podcast.feed_url)

        assert result.already_subscribed is True
        assert result.podcast_id == sample_podcast.id
        mock_fetcher.fetch.assert_not_called()

    def test_subscribe_fetch_failure_stores_nothing(self, sync_service, repository, mock_fetcher):
        mock_fetcher.fetch.side_effect = NetworkError("HTTP error code 500", status_code=500)

        with pytest.raises(NetworkError):
            sync_service.subscribe("https://broken.example.com/feed.xml")

        assert repository.get_podcast_by_feed_url("https://broken.example.com/feed.xml") is None


class TestRefreshAll:
    def test_failures_are_isolated(self, repository, rss_builder, clock):
        good = repository.create_podcast(feed_url="https://good.example.com/feed.xml", title="Good")
        bad = repository.create_podcast(feed_url="https://bad.example.com/feed.xml", title="Bad")
        cooling = repository.create_podcast(feed_url="https://cool.example.com/feed.xml", title="Cool")
        repository.set_last_refresh(cooling.id, clock.now - MINUTE_MS)

        def fetch(url):
            if url == bad.feed_url:
                raise NetworkError("connection refused", url=url)
            return rss_builder(recent_items(clock, 2))

        fetcher = Mock()
        fetcher.fetch.side_effect = fetch
        service = FeedSyncService(repository=repository, fetcher=fetcher, clock=clock)

        result = service.refresh_all_podcasts(max_workers=2)

        assert result.refreshed == 1
        assert result.skipped == 1
        assert result.failed == 1
        assert result.new_episodes == 2
        assert "connection refused" in result.failures[bad.id]
        assert repository.get_podcast(good.id).last_refresh_at == clock.now
        assert repository.get_podcast(bad.id).last_refresh_at == 0

    def test_no_podcasts(self, sync_service):
        result = sync_service.refresh_all_podcasts()
        assert result.refreshed == 0
        assert result.failures == {}
