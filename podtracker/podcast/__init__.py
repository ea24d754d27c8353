"""Podcast feed module.

Provides functionality for:
- RSS feed fetching and parsing
- Episode ingestion
- Feed synchronization
"""

from .feed_fetcher import FeedFetcher
from .feed_parser import Feed, FeedItem, FeedParser
from .feed_sync import (
    FeedSyncService,
    RefreshAllResult,
    RefreshResult,
    RefreshState,
    SubscribeResult,
)
from .ingestion import EpisodeIngestor, IngestResult

__all__ = [
    "FeedFetcher",
    "FeedParser",
    "Feed",
    "FeedItem",
    "EpisodeIngestor",
    "IngestResult",
    "FeedSyncService",
    "RefreshAllResult",
    "RefreshResult",
    "RefreshState",
    "SubscribeResult",
]
