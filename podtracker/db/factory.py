"""Construction of repository handles from a URL or a Config.

SQLite is the default for local use; any other SQLAlchemy URL (PostgreSQL in
production) gets a pooled engine.
"""

import logging
import os
from typing import Optional

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from .repository import PodcastRepositoryInterface, SQLAlchemyPodcastRepository

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./podtracker.db"


def _safe_url(database_url: str) -> str:
    """Render a URL for logging with any password masked."""
    try:
        return make_url(database_url).render_as_string(hide_password=True)
    except ArgumentError:
        return "<unparseable database URL>"


def create_repository(
    database_url: Optional[str] = None,
    pool_size: int = 5,
    max_overflow: int = 10,
    echo: bool = False,
    create_tables: bool = False,
) -> PodcastRepositoryInterface:
    """
    Open a repository on `database_url`.

    Parameters:
        database_url (Optional[str]): SQLAlchemy URL; defaults to $DATABASE_URL, then a
            local SQLite file.
        pool_size (int): Pooled connections (non-SQLite only).
        max_overflow (int): Extra connections beyond the pool (non-SQLite only).
        echo (bool): Log every SQL statement.
        create_tables (bool): Create missing tables instead of relying on migrations.

    Returns:
        PodcastRepositoryInterface: An open repository; call `close()` when done.
    """
    if database_url is None:
        database_url = os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)

    logger.info(f"Opening repository at {_safe_url(database_url)}")

    return SQLAlchemyPodcastRepository(
        database_url=database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        echo=echo,
        create_tables=create_tables,
    )


def create_repository_from_config(config, create_tables: bool = True) -> PodcastRepositoryInterface:
    """Open a repository using the database settings of a Config."""
    return create_repository(
        database_url=get_database_url_from_config(config),
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW,
        echo=config.DB_ECHO,
        create_tables=create_tables,
    )


def get_database_url_from_config(config) -> str:
    """`config.DATABASE_URL` if set, else $DATABASE_URL, else the SQLite default."""
    return getattr(config, "DATABASE_URL", None) or os.getenv(
        "DATABASE_URL", DEFAULT_DATABASE_URL
    )
