"""Database module for podcast and episode persistence.

Provides:
- SQLAlchemy ORM models (Podcast, Episode)
- Repository interface and implementation
- Factory function for creating repositories
"""

from .factory import (
    create_repository,
    create_repository_from_config,
    get_database_url_from_config,
)
from .models import Base, Episode, Podcast, now_millis
from .repository import PodcastRepositoryInterface, SQLAlchemyPodcastRepository

__all__ = [
    "Base",
    "Podcast",
    "Episode",
    "now_millis",
    "PodcastRepositoryInterface",
    "SQLAlchemyPodcastRepository",
    "create_repository",
    "create_repository_from_config",
    "get_database_url_from_config",
]
