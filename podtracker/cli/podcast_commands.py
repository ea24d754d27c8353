"""CLI commands for podcast tracking.

Provides commands for:
- Subscribing to and unsubscribing from feeds
- Refreshing feeds and loading more episodes
- Running the decay sweep and changing episode states
- Listing podcasts and episodes, viewing statistics
- Choosing a podcast's episode listing order
- Running the periodic scheduler
"""

import argparse
import logging
import sys

from ..config import Config
from ..db.factory import create_repository_from_config
from ..errors import PodtrackerError
from ..lifecycle.engine import LifecycleEngine
from ..lifecycle.states import EpisodeState
from ..podcast.feed_fetcher import FeedFetcher
from ..podcast.feed_sync import FeedSyncService
from ..scheduler import FeedScheduler

logger = logging.getLogger(__name__)

STATE_CHOICES = [s.value for s in EpisodeState] + [s.value.lower() for s in EpisodeState]


def _open_repository(config: Config):
    return create_repository_from_config(config, create_tables=True)


def _build_sync_service(repository, config: Config) -> FeedSyncService:
    return FeedSyncService(
        repository=repository,
        fetcher=FeedFetcher.from_config(config),
        refresh_interval_ms=config.refresh_interval_ms,
        max_workers=config.REFRESH_MAX_WORKERS,
    )


def _build_lifecycle(repository, config: Config) -> LifecycleEngine:
    return LifecycleEngine(
        repository=repository,
        decay_window_ms=config.decay_window_ms,
        strict=config.STRICT_TRANSITIONS,
    )


def subscribe(args, config: Config):
    """
    Subscribe to the feed at `args.url` and backfill its most recent episodes.

    Prints the podcast title, ID and number of stored episodes. An already-subscribed
    feed is reported without fetching it again.
    """
    logger.info(f"Subscribing to: {args.url}")

    repository = _open_repository(config)
    try:
        sync_service = _build_sync_service(repository, config)
        result = sync_service.subscribe(
            args.url, catalog_id=args.catalog_id, max_episodes=args.limit
        )

        if result.already_subscribed:
            print(f"Already subscribed: {result.title}")
            print(f"  ID: {result.podcast_id}")
            return

        print(f"\nSubscribed to: {result.title}")
        print(f"  ID: {result.podcast_id}")
        print(f"  Episodes: {result.episodes}")

    finally:
        repository.close()


def unsubscribe(args, config: Config):
    """Delete a podcast and all of its episodes."""
    repository = _open_repository(config)
    try:
        if not repository.delete_podcast(args.podcast_id):
            print(f"Podcast not found: {args.podcast_id}")
            sys.exit(1)
        print(f"Unsubscribed: {args.podcast_id}")
    finally:
        repository.close()


def refresh_feeds(args, config: Config):
    """Refresh one podcast (`--podcast-id`) or every eligible podcast."""
    repository = _open_repository(config)
    try:
        sync_service = _build_sync_service(repository, config)

        if args.podcast_id:
            logger.info(f"Refreshing podcast: {args.podcast_id}")
            result = sync_service.refresh_podcast(args.podcast_id)

            if not result.refreshed:
                print(
                    f"Skipped: podcast was refreshed less than "
                    f"{config.REFRESH_INTERVAL_MINUTES} minutes ago"
                )
                return

            print(f"\nRefresh complete:")
            print(f"  New episodes: {result.new_episodes}")
            print(f"  Metadata updated: {result.metadata_updated}")
        else:
            logger.info("Refreshing all podcasts")
            result = sync_service.refresh_all_podcasts()

            print(f"\nRefresh complete:")
            print(f"  Podcasts refreshed: {result.refreshed}")
            print(f"  Podcasts skipped: {result.skipped}")
            print(f"  Podcasts failed: {result.failed}")
            print(f"  New episodes: {result.new_episodes}")

            if result.failures:
                print(f"\nFailed refreshes:")
                for podcast_id, error in list(result.failures.items())[:10]:
                    print(f"  - {podcast_id}: {error}")

    finally:
        repository.close()


def load_more(args, config: Config):
    """Refresh a podcast immediately with a cap on new episodes."""
    repository = _open_repository(config)
    try:
        sync_service = _build_sync_service(repository, config)
        result = sync_service.load_more_episodes(args.podcast_id, args.limit)
        print(f"Loaded {result.new_episodes} new episodes")
    finally:
        repository.close()


def run_decay(args, config: Config):
    """Run one decay sweep over NEW episodes."""
    repository = _open_repository(config)
    try:
        decayed = _build_lifecycle(repository, config).run_decay_sweep()
        print(f"Decayed {decayed} episodes to AVAILABLE")
    finally:
        repository.close()


def set_state(args, config: Config):
    """Move an episode to the state named by `args.state`."""
    repository = _open_repository(config)
    try:
        lifecycle = _build_lifecycle(repository, config)
        episode = lifecycle.set_state(args.episode_id, EpisodeState(args.state.upper()))
        print(f"{episode.title}: {episode.state}")
    finally:
        repository.close()


def list_episodes(args, config: Config):
    """
    Print a table of episodes, filtered by `--state` and/or `--podcast-id`.

    Episodes are shown newest published first, at most `--limit` rows. A single
    podcast's episodes follow its stored listing order.
    """
    repository = _open_repository(config)
    try:
        state = EpisodeState(args.state.upper()) if args.state else None
        reverse_order = False
        if args.podcast_id:
            podcast = repository.get_podcast(args.podcast_id)
            reverse_order = bool(podcast and podcast.reverse_order)
        episodes = repository.list_episodes(
            podcast_id=args.podcast_id,
            state=state,
            reverse_order=reverse_order,
            limit=args.limit,
        )

        if not episodes:
            print("No episodes found")
            return

        print(f"\n{'ID':<36}  {'State':<10}  {'Title'}")
        print("-" * 100)

        for episode in episodes:
            print(f"{episode.id:<36}  {episode.state:<10}  {episode.title[:50]}")

    finally:
        repository.close()


def toggle_reverse_order(args, config: Config):
    """Flip whether a podcast's episodes are listed oldest first."""
    repository = _open_repository(config)
    try:
        reverse_order = repository.toggle_reverse_order(args.podcast_id)
        if reverse_order is None:
            print(f"Podcast not found: {args.podcast_id}")
            sys.exit(1)
        print(f"Episodes listed {'oldest' if reverse_order else 'newest'} first: {args.podcast_id}")
    finally:
        repository.close()


def list_podcasts(args, config: Config):
    """
    Prints a table of podcasts to stdout.

    Displays ID, title (truncated to 40 characters), episode count and NEW episode count
    for at most `args.limit` podcasts.
    """
    repository = _open_repository(config)
    try:
        podcasts = repository.list_podcasts(limit=args.limit)

        if not podcasts:
            print("No podcasts found")
            return

        print(f"\n{'ID':<36}  {'Title':<40}  {'Episodes':<10}  {'New'}")
        print("-" * 100)

        for podcast in podcasts:
            total = repository.count_episodes(podcast_id=podcast.id)
            new = repository.count_episodes(podcast_id=podcast.id, state=EpisodeState.NEW)
            print(
                f"{podcast.id:<36}  "
                f"{podcast.title[:40]:<40}  "
                f"{total:<10}  "
                f"{new}"
            )

    finally:
        repository.close()


def show_status(args, config: Config):
    """Display podcast and per-state episode counts."""
    repository = _open_repository(config)
    try:
        stats = repository.get_overall_stats()

        print(f"\nOverall Statistics:")
        print(f"  Total podcasts: {stats['total_podcasts']}")
        print(f"  Total episodes: {stats['total_episodes']}")
        print(f"\n  Episode States:")
        for state in EpisodeState:
            print(f"    {state.value.capitalize()}: {stats['by_state'][state.value]}")

    finally:
        repository.close()


def run_scheduler(args, config: Config):
    """Run the decay and refresh loop until interrupted."""
    repository = _open_repository(config)
    try:
        scheduler = FeedScheduler(
            sync_service=_build_sync_service(repository, config),
            lifecycle=_build_lifecycle(repository, config),
            interval_seconds=args.interval or config.SCHEDULER_INTERVAL_SECONDS,
        )
        stats = scheduler.run(max_cycles=args.cycles)

        print(f"\nScheduler complete:")
        print(f"  Cycles: {stats.cycles}")
        print(f"  Episodes decayed: {stats.episodes_decayed}")
        print(f"  New episodes: {stats.new_episodes}")
        print(f"  Refresh failures: {stats.refresh_failures}")

    finally:
        repository.close()


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        description="Podcast episode tracker CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--env-file",
        help="Path to .env file",
        default=None,
    )
    parser.add_argument(
        "-l",
        "--log-level",
        help="Set log level (DEBUG, INFO, WARNING, ERROR)",
        default="INFO",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # subscribe command
    subscribe_parser = subparsers.add_parser(
        "subscribe",
        help="Subscribe to a podcast feed",
    )
    subscribe_parser.add_argument("url", help="RSS feed URL")
    subscribe_parser.add_argument(
        "--catalog-id",
        help="Identifier of the podcast in an external catalog",
    )
    subscribe_parser.add_argument(
        "--limit",
        type=int,
        default=10,
        help="Maximum number of episodes to backfill (0 for all)",
    )

    # unsubscribe command
    unsubscribe_parser = subparsers.add_parser(
        "unsubscribe",
        help="Delete a podcast and its episodes",
    )
    unsubscribe_parser.add_argument("podcast_id", help="Podcast ID")

    # refresh command
    refresh_parser = subparsers.add_parser(
        "refresh",
        help="Refresh podcast feeds",
    )
    refresh_parser.add_argument(
        "--podcast-id",
        help="Refresh specific podcast by ID",
    )

    # load-more command
    load_more_parser = subparsers.add_parser(
        "load-more",
        help="Refresh a podcast now, ignoring the hourly limit",
    )
    load_more_parser.add_argument("podcast_id", help="Podcast ID")
    load_more_parser.add_argument(
        "--limit",
        type=int,
        default=10,
        help="Maximum number of new episodes to store",
    )

    # decay command
    subparsers.add_parser(
        "decay",
        help="Move stale NEW episodes to AVAILABLE",
    )

    # set-state command
    set_state_parser = subparsers.add_parser(
        "set-state",
        help="Change an episode's state",
    )
    set_state_parser.add_argument("episode_id", help="Episode ID")
    set_state_parser.add_argument(
        "state",
        choices=STATE_CHOICES,
        help="Target state",
    )

    # episodes command
    episodes_parser = subparsers.add_parser(
        "episodes",
        help="List episodes",
    )
    episodes_parser.add_argument(
        "--state",
        choices=STATE_CHOICES,
        help="Only episodes in this state",
    )
    episodes_parser.add_argument(
        "--podcast-id",
        help="Only episodes of this podcast",
    )
    episodes_parser.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Maximum number of episodes to show",
    )

    # reverse-order command
    reverse_order_parser = subparsers.add_parser(
        "reverse-order",
        help="Toggle oldest-first episode listing for a podcast",
    )
    reverse_order_parser.add_argument("podcast_id", help="Podcast ID")

    # list command
    list_parser = subparsers.add_parser(
        "list",
        help="List podcasts",
    )
    list_parser.add_argument(
        "--limit",
        type=int,
        help="Maximum number of podcasts to show",
    )

    # status command
    subparsers.add_parser(
        "status",
        help="Show statistics",
    )

    # run command
    run_parser = subparsers.add_parser(
        "run",
        help="Run the periodic decay and refresh loop",
    )
    run_parser.add_argument(
        "--interval",
        type=int,
        help="Seconds between cycles (defaults to SCHEDULER_INTERVAL_SECONDS)",
    )
    run_parser.add_argument(
        "--cycles",
        type=int,
        help="Stop after this many cycles",
    )

    return parser


def main():
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Load configuration
    config = Config(env_file=args.env_file)

    # Route to appropriate command
    commands = {
        "subscribe": subscribe,
        "unsubscribe": unsubscribe,
        "refresh": refresh_feeds,
        "load-more": load_more,
        "decay": run_decay,
        "set-state": set_state,
        "episodes": list_episodes,
        "reverse-order": toggle_reverse_order,
        "list": list_podcasts,
        "status": show_status,
        "run": run_scheduler,
    }

    command_func = commands.get(args.command)
    if command_func:
        try:
            command_func(args, config)
        except PodtrackerError as e:
            print(f"Error: {e}")
            sys.exit(1)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
