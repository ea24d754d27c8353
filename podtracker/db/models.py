"""SQLAlchemy ORM models for podcast and episode data.

All timestamps are integer epoch milliseconds. Zero means "never" for
`Podcast.last_refresh_at` and "unknown" for `Episode.published_at`.
"""

import time
import uuid
from typing import List, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from ..lifecycle.states import EpisodeState


def now_millis() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


# Column limits for feed-supplied text
TITLE_MAX_LENGTH = 512
URL_MAX_LENGTH = 2048
MIME_TYPE_MAX_LENGTH = 64


def clip(value: Optional[str], max_length: int) -> Optional[str]:
    """Truncate `value` to `max_length` characters, passing None through."""
    if value is None or len(value) <= max_length:
        return value
    return value[:max_length]


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class Podcast(Base):
    """Podcast subscription model.

    Stores podcast-level metadata from RSS feeds and the refresh bookkeeping
    used for rate limiting and new-item filtering.
    """

    __tablename__ = "podcasts"

    # Primary key
    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    # Core identifiers
    feed_url: Mapped[str] = mapped_column(String(URL_MAX_LENGTH), unique=True, nullable=False)
    catalog_id: Mapped[Optional[str]] = mapped_column(String(64))

    # Metadata from RSS feed
    title: Mapped[str] = mapped_column(String(TITLE_MAX_LENGTH), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    artwork_url: Mapped[Optional[str]] = mapped_column(String(URL_MAX_LENGTH))

    # Refresh bookkeeping
    last_refresh_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    # A refresh holding a claim until this time owns the podcast; 0 when unclaimed
    refresh_claimed_until: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Episodic shows are listed oldest first
    reverse_order: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Timestamps
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=now_millis)

    # Relationships
    episodes: Mapped[List["Episode"]] = relationship(
        "Episode", back_populates="podcast", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("ix_podcasts_feed_url", "feed_url"),)

    def __repr__(self) -> str:
        return f"<Podcast(id={self.id}, title={self.title!r})>"


class Episode(Base):
    """Episode model.

    Created once by ingestion and keyed by (podcast_id, guid). The download
    and playback fields belong to external collaborators; ingestion and decay
    never write them.
    """

    __tablename__ = "episodes"

    # Primary key
    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    podcast_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("podcasts.id", ondelete="CASCADE"), nullable=False
    )

    # Core identifiers - GUID is unique per podcast
    guid: Mapped[str] = mapped_column(Text, nullable=False)

    # Metadata from RSS feed
    title: Mapped[str] = mapped_column(String(TITLE_MAX_LENGTH), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    link: Mapped[Optional[str]] = mapped_column(String(URL_MAX_LENGTH))
    published_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    fetched_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    duration_seconds: Mapped[int] = mapped_column(Integer, default=0)
    chapters_url: Mapped[Optional[str]] = mapped_column(String(URL_MAX_LENGTH))
    artwork_url: Mapped[Optional[str]] = mapped_column(String(URL_MAX_LENGTH))

    # Audio file info (from enclosure)
    enclosure_url: Mapped[Optional[str]] = mapped_column(String(URL_MAX_LENGTH))
    enclosure_type: Mapped[Optional[str]] = mapped_column(String(MIME_TYPE_MAX_LENGTH))
    enclosure_length: Mapped[Optional[int]] = mapped_column(BigInteger)

    # Lifecycle
    state: Mapped[str] = mapped_column(
        String(16), nullable=False, default=EpisodeState.NEW.value
    )
    session_grace: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    viewed_at: Mapped[Optional[int]] = mapped_column(BigInteger)
    saved_at: Mapped[Optional[int]] = mapped_column(BigInteger)
    played_at: Mapped[Optional[int]] = mapped_column(BigInteger)

    # Download / playback collaborators
    playback_position: Mapped[int] = mapped_column(Integer, default=0)
    download_path: Mapped[Optional[str]] = mapped_column(String(1024))
    downloaded_at: Mapped[Optional[int]] = mapped_column(BigInteger)

    # Relationships
    podcast: Mapped["Podcast"] = relationship("Podcast", back_populates="episodes")

    __table_args__ = (
        UniqueConstraint("podcast_id", "guid", name="uq_episode_podcast_guid"),
        Index("ix_episodes_state", "state"),
        Index("ix_episodes_podcast_state", "podcast_id", "state"),
        Index("ix_episodes_fetched_at", "fetched_at"),
        Index("ix_episodes_published_at", "published_at"),
    )

    def __repr__(self) -> str:
        return f"<Episode(id={self.id}, title={self.title!r}, state={self.state})>"

    @property
    def episode_state(self) -> EpisodeState:
        """The lifecycle state as an EpisodeState."""
        return EpisodeState.from_string(self.state)

    @property
    def is_downloaded(self) -> bool:
        """True when a download collaborator has recorded a local file."""
        return self.download_path is not None
