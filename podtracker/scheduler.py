"""Periodic refresh and decay loop.

Each cycle first decays stale NEW episodes, then refreshes every eligible
podcast. Decay runs before the refresh so episodes flagged with session
grace stay NEW until the following cycle.
"""

import logging
import signal
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Optional

from .lifecycle.engine import LifecycleEngine
from .podcast.feed_sync import FeedSyncService

logger = logging.getLogger(__name__)


@dataclass
class SchedulerStats:
    """Statistics for a scheduler run."""

    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    stopped_at: Optional[datetime] = None

    # Counters
    cycles: int = 0
    episodes_decayed: int = 0
    podcasts_refreshed: int = 0
    refresh_failures: int = 0
    new_episodes: int = 0

    @property
    def duration_seconds(self) -> float:
        """Duration of the run in seconds."""
        end = self.stopped_at or datetime.now(UTC)
        return (end - self.started_at).total_seconds()


class FeedScheduler:
    """Runs decay sweeps and bulk refreshes on a fixed interval.

    Example:
        scheduler = FeedScheduler(sync_service, lifecycle, interval_seconds=3600)

        # Run until interrupted
        scheduler.run()
    """

    def __init__(
        self,
        sync_service: FeedSyncService,
        lifecycle: LifecycleEngine,
        interval_seconds: int = 3600,
    ):
        """Initialize the scheduler.

        Args:
            sync_service: Refresh coordinator used for bulk refreshes.
            lifecycle: Lifecycle engine used for decay sweeps.
            interval_seconds: Pause between the end of one cycle and the next.
        """
        self.sync_service = sync_service
        self.lifecycle = lifecycle
        self.interval_seconds = interval_seconds

        self._stop_event = threading.Event()
        self._stats = SchedulerStats()

    def run(self, max_cycles: Optional[int] = None, install_signal_handlers: bool = True) -> SchedulerStats:
        """Run cycles until stopped, or until `max_cycles` have completed.

        Returns:
            SchedulerStats with run statistics.
        """
        logger.info(f"Starting scheduler (interval {self.interval_seconds}s)")
        self._stop_event.clear()
        self._stats = SchedulerStats()

        original_sigint = original_sigterm = None
        if install_signal_handlers:
            original_sigint = signal.signal(signal.SIGINT, self._handle_signal)
            original_sigterm = signal.signal(signal.SIGTERM, self._handle_signal)

        try:
            while not self._stop_event.is_set():
                self.run_cycle()

                if max_cycles is not None and self._stats.cycles >= max_cycles:
                    break

                logger.debug(f"Sleeping {self.interval_seconds}s until next cycle")
                self._stop_event.wait(self.interval_seconds)
        finally:
            if install_signal_handlers:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)

            self._stats.stopped_at = datetime.now(UTC)
            logger.info(
                f"Scheduler stopped. Stats: cycles={self._stats.cycles}, "
                f"decayed={self._stats.episodes_decayed}, "
                f"new_episodes={self._stats.new_episodes}, "
                f"duration={self._stats.duration_seconds:.1f}s"
            )

        return self._stats

    def run_cycle(self) -> None:
        """Run one decay sweep followed by one bulk refresh."""
        try:
            self._stats.episodes_decayed += self.lifecycle.run_decay_sweep()
        except Exception:
            logger.exception("Decay sweep failed")

        try:
            result = self.sync_service.refresh_all_podcasts()
            self._stats.podcasts_refreshed += result.refreshed
            self._stats.refresh_failures += result.failed
            self._stats.new_episodes += result.new_episodes
        except Exception:
            logger.exception("Refresh failed")

        self._stats.cycles += 1

    def stop(self) -> None:
        """Signal the scheduler to stop after the current cycle."""
        logger.info("Stopping scheduler...")
        self._stop_event.set()

    def _handle_signal(self, signum, frame) -> None:
        """Handle interrupt signals gracefully."""
        sig_name = signal.Signals(signum).name
        logger.info(f"Received {sig_name}, initiating graceful shutdown...")
        self.stop()

    @property
    def stats(self) -> SchedulerStats:
        return self._stats
