"""Exceptions raised by podtracker.

Feed errors are split by how a caller should react:
- NetworkError: transient, retry on the next eligible refresh
- ProtocolError: the server answered but the exchange is unusable
- ParseError: the feed document itself cannot be read
"""

from typing import List, Optional


class PodtrackerError(Exception):
    """Base exception for all podtracker errors."""

    pass


class FeedError(PodtrackerError):
    """Feed retrieval or parsing errors."""

    pass


class NetworkError(FeedError):
    """Connection failure, timeout, or non-2xx HTTP status."""

    def __init__(self, message: str, url: str = "", status_code: int = 0):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class ProtocolError(FeedError):
    """Malformed HTTP exchange, e.g. a redirect with no Location header."""

    pass


class TooManyRedirectsError(ProtocolError):
    """Redirect chain exceeded the configured bound."""

    def __init__(self, message: str, chain: Optional[List[str]] = None):
        super().__init__(message)
        self.chain = chain or []


class ParseError(FeedError):
    """Feed document is not well-formed XML or has no RSS root."""

    pass


class RepositoryError(PodtrackerError):
    """Persistence failure."""

    pass


class PodcastNotFoundError(PodtrackerError):
    """No podcast with the requested id."""

    pass


class EpisodeNotFoundError(PodtrackerError):
    """No episode with the requested id."""

    pass


class InvalidTransitionError(PodtrackerError):
    """Episode state change outside the allowed transition table."""

    pass
