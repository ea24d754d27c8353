"""Repository pattern implementation for podcast data persistence.

Provides an abstract interface and SQLAlchemy implementation for database operations.
Supports both SQLite (local development) and PostgreSQL (production).

The repository is an explicitly constructed handle: callers create one with
`create_repository()` at process start, pass it to each service, and close it
at shutdown.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import create_engine, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..errors import RepositoryError
from ..lifecycle.states import STATE_TIMESTAMP_FIELDS, EpisodeState
from .models import Base, Episode, Podcast, now_millis

logger = logging.getLogger(__name__)


class PodcastRepositoryInterface(ABC):
    """Abstract interface for podcast data persistence.

    Implementations must support a multi-row insert that skips dedup key
    collisions, an atomic bulk conditional update for decay, and a conditional
    refresh claim that at most one caller wins across processes.
    """

    # --- Podcast Operations ---

    @abstractmethod
    def create_podcast(self, feed_url: str, title: str, **kwargs) -> Podcast:
        """
        Create and persist a new podcast for the given feed URL and title.

        Parameters:
            feed_url (str): RSS feed URL of the podcast (unique).
            title (str): Display title for the podcast.
            **kwargs: Additional Podcast attributes (description, artwork_url, catalog_id).

        Returns:
            Podcast: The persisted Podcast instance.
        """
        pass

    @abstractmethod
    def get_podcast(self, podcast_id: str) -> Optional[Podcast]:
        """Retrieve a podcast by its identifier, or `None`."""
        pass

    @abstractmethod
    def get_podcast_by_feed_url(self, feed_url: str) -> Optional[Podcast]:
        """Retrieve the podcast subscribed to `feed_url`, or `None`."""
        pass

    @abstractmethod
    def list_podcasts(self, limit: Optional[int] = None) -> List[Podcast]:
        """Return podcasts ordered by creation time, newest first."""
        pass

    @abstractmethod
    def update_podcast(self, podcast_id: str, **kwargs) -> Optional[Podcast]:
        """
        Update attributes of an existing podcast.

        Returns:
            Optional[Podcast]: The updated Podcast, or `None` if no podcast has `podcast_id`.
        """
        pass

    @abstractmethod
    def set_last_refresh(self, podcast_id: str, timestamp: int) -> None:
        """Stamp `last_refresh_at` for a podcast and release its refresh claim."""
        pass

    @abstractmethod
    def claim_refresh(
        self,
        podcast_id: str,
        now: int,
        lease_ms: int,
        min_interval_ms: Optional[int] = None,
    ) -> bool:
        """
        Take the refresh claim on a podcast in one conditional update.

        The claim succeeds only when no unexpired claim is held and, if
        `min_interval_ms` is given, the podcast was never refreshed or was last
        refreshed more than `min_interval_ms` before `now`. A won claim holds
        until `now + lease_ms` or until `set_last_refresh`/`release_refresh`.

        Returns:
            bool: True if this caller now holds the claim.
        """
        pass

    @abstractmethod
    def release_refresh(self, podcast_id: str) -> None:
        """Drop a refresh claim without stamping `last_refresh_at`."""
        pass

    @abstractmethod
    def toggle_reverse_order(self, podcast_id: str) -> Optional[bool]:
        """Flip a podcast's listing order. Returns the new value, or None if not found."""
        pass

    @abstractmethod
    def delete_podcast(self, podcast_id: str) -> bool:
        """Delete a podcast and, by cascade, its episodes. Returns False if not found."""
        pass

    # --- Episode Operations ---

    @abstractmethod
    def get_episode(self, episode_id: str) -> Optional[Episode]:
        """Retrieve an episode by its primary key, or `None`."""
        pass

    @abstractmethod
    def get_episode_by_guid(self, podcast_id: str, guid: str) -> Optional[Episode]:
        """Retrieve an episode by its dedup key (podcast_id, guid), or `None`."""
        pass

    @abstractmethod
    def episode_exists(self, podcast_id: str, guid: str) -> bool:
        """Return True if an episode with the dedup key (podcast_id, guid) exists."""
        pass

    @abstractmethod
    def list_episodes(
        self,
        podcast_id: Optional[str] = None,
        state: Optional[EpisodeState] = None,
        reverse_order: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Episode]:
        """
        List episodes, optionally filtered by podcast and lifecycle state.

        Parameters:
            podcast_id (Optional[str]): Only episodes belonging to this podcast.
            state (Optional[EpisodeState]): Only episodes in this state.
            reverse_order (bool): Oldest first instead of newest first.
            limit (Optional[int]): Maximum number of episodes to return.
            offset (int): Number of episodes to skip (for pagination).

        Returns:
            List[Episode]: Matching episodes ordered by published_at.
        """
        pass

    @abstractmethod
    def count_episodes(
        self, podcast_id: Optional[str] = None, state: Optional[EpisodeState] = None
    ) -> int:
        """Count episodes, optionally filtered by podcast and lifecycle state."""
        pass

    # --- Batch Operations ---

    @abstractmethod
    def insert_episodes(self, episodes: Sequence[Episode]) -> int:
        """
        Persist a batch of new episodes in a single transaction.

        Episodes whose dedup key (podcast_id, guid) is already stored are
        skipped, so a concurrent ingest of the same feed cannot fail the batch.
        Any other failure rolls the whole batch back.

        Returns:
            int: Number of episodes actually inserted.

        Raises:
            RepositoryError: If the batch could not be committed; nothing is
                persisted in that case.
        """
        pass

    @abstractmethod
    def decay_new_episodes(self, cutoff: int) -> int:
        """
        Demote NEW episodes to AVAILABLE in one bulk update.

        An episode decays when it is NEW and either has `session_grace` set or
        was fetched at or before `cutoff`. `session_grace` is cleared on every
        decayed row.

        Returns:
            int: Number of episodes updated.
        """
        pass

    @abstractmethod
    def update_episode_state(
        self, episode_id: str, state: EpisodeState, now: int
    ) -> Optional[Episode]:
        """
        Set an episode's state and stamp the state-specific timestamp.

        Returns:
            Optional[Episode]: The updated episode, or `None` if not found.
        """
        pass

    # --- Download / Playback Collaborators ---

    @abstractmethod
    def mark_download_complete(self, episode_id: str, download_path: str, downloaded_at: int) -> bool:
        """Record a finished download for an episode."""
        pass

    @abstractmethod
    def clear_download(self, episode_id: str, now: int) -> bool:
        """Forget an episode's download; BACKLOG episodes move back to AVAILABLE."""
        pass

    @abstractmethod
    def update_playback_position(self, episode_id: str, position_seconds: int) -> bool:
        """Store the playback position for an episode."""
        pass

    @abstractmethod
    def fix_downloaded_episode_states(self, now: int) -> int:
        """Move downloaded episodes that are not BACKLOG or LISTENED into BACKLOG."""
        pass

    # --- Statistics ---

    @abstractmethod
    def get_overall_stats(self) -> Dict[str, Any]:
        """Return podcast and per-state episode counts."""
        pass

    # --- Connection Management ---

    @abstractmethod
    def close(self) -> None:
        """Release all database connections held by the repository."""
        pass


# Dialects whose INSERT supports ON CONFLICT DO NOTHING
_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _episode_row(episode: Episode) -> Dict[str, Any]:
    """Column values for a pending Episode, with Python-side defaults applied."""
    row = {}
    for column in Episode.__table__.columns:
        value = getattr(episode, column.key)
        if value is None and column.default is not None:
            default = column.default
            value = default.arg(None) if default.is_callable else default.arg
            setattr(episode, column.key, value)
        row[column.key] = value
    return row


class SQLAlchemyPodcastRepository(PodcastRepositoryInterface):
    """SQLAlchemy-based implementation of the podcast repository.

    Supports SQLite for local development and PostgreSQL for production.
    """

    def __init__(
        self,
        database_url: str,
        pool_size: int = 5,
        max_overflow: int = 10,
        echo: bool = False,
        create_tables: bool = False,
    ):
        """
        Initialize the repository and configure its SQLAlchemy engine and session factory.

        Parameters:
            database_url (str): SQLAlchemy-compatible database URL.
            pool_size (int): Connection pool size for non-SQLite databases.
            max_overflow (int): Maximum overflow connections for non-SQLite databases.
            echo (bool): If true, enable SQLAlchemy SQL statement logging.
            create_tables (bool): Create missing tables directly instead of
                relying on Alembic migrations (tests and local use).
        """
        self.database_url = database_url

        # SQLite doesn't support connection pooling
        if database_url.startswith("sqlite"):
            self.engine = create_engine(
                database_url,
                echo=echo,
                connect_args={"check_same_thread": False},
            )
        else:
            self.engine = create_engine(
                database_url,
                pool_size=pool_size,
                max_overflow=max_overflow,
                echo=echo,
            )

        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

        if create_tables:
            Base.metadata.create_all(self.engine)

        logger.debug(f"Engine ready: {self.engine.url.render_as_string(hide_password=True)}")

    def _get_session(self) -> Session:
        """Obtain a new SQLAlchemy session from the repository's session factory."""
        return self.SessionLocal()

    # --- Podcast Operations ---

    def create_podcast(self, feed_url: str, title: str, **kwargs) -> Podcast:
        with self._get_session() as session:
            podcast = Podcast(feed_url=feed_url, title=title, **kwargs)
            session.add(podcast)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise RepositoryError(f"Podcast already exists for feed: {feed_url}") from e
            session.refresh(podcast)
            logger.info(f"Created podcast: {title} ({podcast.id})")
            return podcast

    def get_podcast(self, podcast_id: str) -> Optional[Podcast]:
        with self._get_session() as session:
            return session.get(Podcast, podcast_id)

    def get_podcast_by_feed_url(self, feed_url: str) -> Optional[Podcast]:
        with self._get_session() as session:
            stmt = select(Podcast).where(Podcast.feed_url == feed_url)
            return session.scalar(stmt)

    def list_podcasts(self, limit: Optional[int] = None) -> List[Podcast]:
        with self._get_session() as session:
            stmt = select(Podcast).order_by(Podcast.created_at.desc())
            if limit:
                stmt = stmt.limit(limit)
            return list(session.scalars(stmt).all())

    def update_podcast(self, podcast_id: str, **kwargs) -> Optional[Podcast]:
        """
        Update attributes of an existing podcast.

        Only attributes that exist on the Podcast model are set from `kwargs`.
        """
        with self._get_session() as session:
            podcast = session.get(Podcast, podcast_id)
            if podcast:
                for key, value in kwargs.items():
                    if hasattr(podcast, key):
                        setattr(podcast, key, value)
                session.commit()
                session.refresh(podcast)
                logger.debug(f"Updated podcast {podcast_id}: {list(kwargs.keys())}")
            return podcast

    def set_last_refresh(self, podcast_id: str, timestamp: int) -> None:
        with self._get_session() as session:
            session.execute(
                update(Podcast)
                .where(Podcast.id == podcast_id)
                .values(last_refresh_at=timestamp, refresh_claimed_until=0)
            )
            session.commit()

    def claim_refresh(
        self,
        podcast_id: str,
        now: int,
        lease_ms: int,
        min_interval_ms: Optional[int] = None,
    ) -> bool:
        with self._get_session() as session:
            stmt = update(Podcast).where(
                Podcast.id == podcast_id,
                Podcast.refresh_claimed_until <= now,
            )
            if min_interval_ms is not None:
                stmt = stmt.where(
                    or_(
                        Podcast.last_refresh_at == 0,
                        Podcast.last_refresh_at < now - min_interval_ms,
                    )
                )
            result = session.execute(
                stmt.values(refresh_claimed_until=now + lease_ms)
                .execution_options(synchronize_session=False)
            )
            session.commit()
            claimed = result.rowcount == 1
            logger.debug(f"Refresh claim on podcast {podcast_id}: {'won' if claimed else 'lost'}")
            return claimed

    def release_refresh(self, podcast_id: str) -> None:
        with self._get_session() as session:
            session.execute(
                update(Podcast)
                .where(Podcast.id == podcast_id)
                .values(refresh_claimed_until=0)
            )
            session.commit()

    def toggle_reverse_order(self, podcast_id: str) -> Optional[bool]:
        with self._get_session() as session:
            podcast = session.get(Podcast, podcast_id)
            if not podcast:
                return None
            podcast.reverse_order = not podcast.reverse_order
            session.commit()
            logger.info(f"Podcast {podcast_id} reverse_order={podcast.reverse_order}")
            return podcast.reverse_order

    def delete_podcast(self, podcast_id: str) -> bool:
        with self._get_session() as session:
            podcast = session.get(Podcast, podcast_id)
            if not podcast:
                return False

            session.delete(podcast)
            session.commit()
            logger.info(f"Deleted podcast: {podcast.title} ({podcast_id})")
            return True

    # --- Episode Operations ---

    def get_episode(self, episode_id: str) -> Optional[Episode]:
        with self._get_session() as session:
            return session.get(Episode, episode_id)

    def get_episode_by_guid(self, podcast_id: str, guid: str) -> Optional[Episode]:
        with self._get_session() as session:
            stmt = select(Episode).where(
                Episode.podcast_id == podcast_id, Episode.guid == guid
            )
            return session.scalar(stmt)

    def episode_exists(self, podcast_id: str, guid: str) -> bool:
        if not guid:
            return False
        with self._get_session() as session:
            stmt = select(Episode.id).where(
                Episode.podcast_id == podcast_id, Episode.guid == guid
            )
            return session.scalar(stmt) is not None

    def list_episodes(
        self,
        podcast_id: Optional[str] = None,
        state: Optional[EpisodeState] = None,
        reverse_order: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Episode]:
        with self._get_session() as session:
            stmt = select(Episode)

            if podcast_id:
                stmt = stmt.where(Episode.podcast_id == podcast_id)
            if state:
                stmt = stmt.where(Episode.state == EpisodeState(state).value)

            if reverse_order:
                stmt = stmt.order_by(Episode.published_at.asc())
            else:
                stmt = stmt.order_by(Episode.published_at.desc())
            stmt = stmt.offset(offset)
            if limit:
                stmt = stmt.limit(limit)

            return list(session.scalars(stmt).all())

    def count_episodes(
        self, podcast_id: Optional[str] = None, state: Optional[EpisodeState] = None
    ) -> int:
        with self._get_session() as session:
            stmt = select(func.count(Episode.id))
            if podcast_id:
                stmt = stmt.where(Episode.podcast_id == podcast_id)
            if state:
                stmt = stmt.where(Episode.state == EpisodeState(state).value)
            return session.scalar(stmt) or 0

    # --- Batch Operations ---

    def insert_episodes(self, episodes: Sequence[Episode]) -> int:
        if not episodes:
            return 0

        dialect_insert = _DIALECT_INSERTS.get(self.engine.dialect.name)
        if dialect_insert is None:
            raise RepositoryError(
                f"Batch insert is not supported on {self.engine.dialect.name}"
            )

        stmt = (
            dialect_insert(Episode.__table__)
            .on_conflict_do_nothing(index_elements=["podcast_id", "guid"])
            .returning(Episode.__table__.c.id)
        )
        rows = [_episode_row(episode) for episode in episodes]

        with self._get_session() as session:
            try:
                inserted = len(session.execute(stmt, rows).all())
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"Episode batch of {len(episodes)} rolled back: {e}")
                raise RepositoryError(f"Failed to insert episode batch: {e}") from e

        if inserted < len(episodes):
            logger.debug(f"Skipped {len(episodes) - inserted} episodes already stored")
        logger.debug(f"Inserted {inserted} episodes")
        return inserted

    def decay_new_episodes(self, cutoff: int) -> int:
        with self._get_session() as session:
            stmt = (
                update(Episode)
                .where(
                    Episode.state == EpisodeState.NEW.value,
                    or_(Episode.session_grace.is_(True), Episode.fetched_at <= cutoff),
                )
                .values(state=EpisodeState.AVAILABLE.value, session_grace=False)
                .execution_options(synchronize_session=False)
            )
            result = session.execute(stmt)
            session.commit()
            return result.rowcount or 0

    def update_episode_state(
        self, episode_id: str, state: EpisodeState, now: int
    ) -> Optional[Episode]:
        state = EpisodeState(state)
        with self._get_session() as session:
            episode = session.get(Episode, episode_id)
            if episode:
                episode.state = state.value
                timestamp_field = STATE_TIMESTAMP_FIELDS.get(state)
                if timestamp_field:
                    setattr(episode, timestamp_field, now)
                session.commit()
                session.refresh(episode)
                logger.debug(f"Episode {episode_id} -> {state.value}")
            return episode

    # --- Download / Playback Collaborators ---

    def mark_download_complete(self, episode_id: str, download_path: str, downloaded_at: int) -> bool:
        with self._get_session() as session:
            result = session.execute(
                update(Episode)
                .where(Episode.id == episode_id)
                .values(download_path=download_path, downloaded_at=downloaded_at)
            )
            session.commit()
            return (result.rowcount or 0) > 0

    def clear_download(self, episode_id: str, now: int) -> bool:
        with self._get_session() as session:
            episode = session.get(Episode, episode_id)
            if not episode:
                logger.warning(f"Cannot clear download: episode not found ({episode_id})")
                return False

            episode.download_path = None
            episode.downloaded_at = None

            # A deleted download no longer belongs in the backlog
            if episode.state == EpisodeState.BACKLOG.value:
                episode.state = EpisodeState.AVAILABLE.value
                episode.viewed_at = now
                logger.debug(f"Moved episode {episode_id} from BACKLOG to AVAILABLE after download removal")

            session.commit()
            return True

    def update_playback_position(self, episode_id: str, position_seconds: int) -> bool:
        with self._get_session() as session:
            result = session.execute(
                update(Episode)
                .where(Episode.id == episode_id)
                .values(playback_position=position_seconds)
            )
            session.commit()
            return (result.rowcount or 0) > 0

    def fix_downloaded_episode_states(self, now: int) -> int:
        with self._get_session() as session:
            stmt = (
                update(Episode)
                .where(
                    Episode.download_path.isnot(None),
                    Episode.state.notin_(
                        [EpisodeState.BACKLOG.value, EpisodeState.LISTENED.value]
                    ),
                )
                .values(state=EpisodeState.BACKLOG.value, saved_at=now)
                .execution_options(synchronize_session=False)
            )
            result = session.execute(stmt)
            session.commit()
            updated = result.rowcount or 0
            logger.debug(f"Fixed state for {updated} downloaded episodes")
            return updated

    # --- Statistics ---

    def get_overall_stats(self) -> Dict[str, Any]:
        with self._get_session() as session:
            total_podcasts = session.scalar(select(func.count(Podcast.id))) or 0
            rows = session.execute(
                select(Episode.state, func.count(Episode.id)).group_by(Episode.state)
            ).all()

        by_state = {state.value: 0 for state in EpisodeState}
        for state_value, count in rows:
            by_state[EpisodeState.from_string(state_value).value] += count

        return {
            "total_podcasts": total_podcasts,
            "total_episodes": sum(by_state.values()),
            "by_state": by_state,
            "generated_at": now_millis(),
        }

    # --- Connection Management ---

    def close(self) -> None:
        """Dispose the SQLAlchemy engine and release pooled connections."""
        self.engine.dispose()
