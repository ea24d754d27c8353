"""
Pytest configuration and fixtures for podtracker tests.

Environment variables that Config reads are cleared so tests behave the same
regardless of the developer's shell or .env file.
"""

import os
from email.utils import format_datetime
from datetime import datetime, timezone

import pytest

from podtracker.db.factory import create_repository

for _name in (
    "DATABASE_URL",
    "REFRESH_INTERVAL_MINUTES",
    "DECAY_WINDOW_DAYS",
    "STRICT_TRANSITIONS",
    "FEED_MAX_REDIRECTS",
):
    os.environ.pop(_name, None)

# Fixed reference time for tests: 2023-11-14T22:13:20Z
BASE_TIME_MS = 1_700_000_000_000
HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS


class FakeClock:
    """Controllable epoch-millisecond clock."""

    def __init__(self, now: int = BASE_TIME_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, millis: int) -> None:
        self.now += millis


@pytest.fixture
def clock():
    """Provide a FakeClock starting at BASE_TIME_MS."""
    return FakeClock()


@pytest.fixture
def repository(tmp_path):
    """
    Create a temporary SQLite-backed repository for tests.

    Yields a repository using a SQLite file under the provided temporary path and closes
    it when the fixture is torn down.
    """
    db_path = tmp_path / "test.db"
    repo = create_repository(f"sqlite:///{db_path}", create_tables=True)
    yield repo
    repo.close()


@pytest.fixture
def sample_podcast(repository):
    """Create and persist a podcast that has never been refreshed."""
    return repository.create_podcast(
        feed_url="https://example.com/feed.xml",
        title="Test Podcast",
        description="A test podcast",
    )


def rfc822(millis: int) -> str:
    """Format epoch milliseconds as an RSS pubDate."""
    return format_datetime(datetime.fromtimestamp(millis / 1000, tz=timezone.utc))


@pytest.fixture
def rss_builder():
    """
    Provide a function that renders an RSS document from item dicts.

    Each item dict may contain `guid`, `title`, `pub_date` (epoch millis),
    `duration`, `enclosure_url` and `enclosure_length`; missing keys are left
    out of the XML.
    """

    def build(items, title="Test Podcast", description="A podcast for testing", image=None):
        parts = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<rss version="2.0" xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd">',
            "<channel>",
            f"<title>{title}</title>",
            f"<description>{description}</description>",
        ]
        if image:
            parts.append(f'<itunes:image href="{image}"/>')
        for item in items:
            parts.append("<item>")
            if "title" in item:
                parts.append(f"<title>{item['title']}</title>")
            if "guid" in item:
                parts.append(f"<guid>{item['guid']}</guid>")
            if "pub_date" in item:
                parts.append(f"<pubDate>{rfc822(item['pub_date'])}</pubDate>")
            if "duration" in item:
                parts.append(f"<itunes:duration>{item['duration']}</itunes:duration>")
            if "enclosure_url" in item:
                parts.append(
                    f'<enclosure url="{item["enclosure_url"]}" '
                    f'length="{item.get("enclosure_length", 1000)}" type="audio/mpeg"/>'
                )
            parts.append("</item>")
        parts.append("</channel></rss>")
        return "\n".join(parts).encode("utf-8")

    return build
