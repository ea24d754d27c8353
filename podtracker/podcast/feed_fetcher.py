"""HTTP retrieval of podcast feeds.

Redirects are followed by hand so each hop can be logged and bounded, and a
redirect without a Location header is reported instead of silently dropped.
"""

import logging
import threading
from typing import List, Optional
from urllib.parse import urljoin

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..errors import NetworkError, ProtocolError, TooManyRedirectsError

logger = logging.getLogger(__name__)


class FeedFetcher:
    """Fetches feed documents over HTTP(S).

    Example:
        fetcher = FeedFetcher(connect_timeout=15, read_timeout=15)
        content = fetcher.fetch("https://example.com/feed.xml")
    """

    DEFAULT_USER_AGENT = "Podtracker/1.0"
    DEFAULT_TIMEOUT = 15  # seconds, applied to connect and read separately
    DEFAULT_MAX_REDIRECTS = 5

    def __init__(
        self,
        connect_timeout: int = DEFAULT_TIMEOUT,
        read_timeout: int = DEFAULT_TIMEOUT,
        max_redirects: int = DEFAULT_MAX_REDIRECTS,
        user_agent: Optional[str] = None,
        retry_attempts: int = 2,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the feed fetcher.

        Args:
            connect_timeout: Connection timeout in seconds
            read_timeout: Read timeout in seconds
            max_redirects: Maximum number of redirects followed per fetch
            user_agent: Custom user agent string
            retry_attempts: Retries for connection errors and 429/5xx responses
            session: Pre-built requests session (mainly for tests)
        """
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.max_redirects = max_redirects
        self.user_agent = user_agent or self.DEFAULT_USER_AGENT
        self.retry_attempts = retry_attempts
        self._session = session or self._create_session()
        self._local = threading.local()

    @classmethod
    def from_config(cls, config) -> "FeedFetcher":
        """Build a fetcher from a Config instance."""
        return cls(
            connect_timeout=config.FEED_CONNECT_TIMEOUT,
            read_timeout=config.FEED_READ_TIMEOUT,
            max_redirects=config.FEED_MAX_REDIRECTS,
            user_agent=config.FEED_USER_AGENT,
        )

    def _create_session(self) -> requests.Session:
        """Create a requests session with retry logic."""
        session = requests.Session()

        retry_strategy = Retry(
            total=self.retry_attempts,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
            redirect=False,
            raise_on_status=False,
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        session.headers.update({"User-Agent": self.user_agent})

        return session

    @property
    def last_redirect_chain(self) -> List[str]:
        """URLs visited by the most recent fetch on the calling thread."""
        return list(getattr(self._local, "chain", []))

    def fetch(self, url: str) -> bytes:
        """Fetch a feed document, following redirects.

        Args:
            url: Feed URL

        Returns:
            Response body of the final 2xx response

        Raises:
            NetworkError: Connection failure, timeout, or non-2xx final status
            ProtocolError: Redirect response without a Location header
            TooManyRedirectsError: More than `max_redirects` redirects
        """
        chain = [url]
        self._local.chain = chain
        current_url = url
        redirects = 0

        while True:
            try:
                response = self._session.get(
                    current_url,
                    timeout=(self.connect_timeout, self.read_timeout),
                    allow_redirects=False,
                )
            except requests.Timeout as e:
                raise NetworkError(f"Timed out fetching {current_url}: {e}", url=current_url) from e
            except requests.RequestException as e:
                raise NetworkError(f"Failed to fetch {current_url}: {e}", url=current_url) from e

            status = response.status_code

            if 300 <= status < 400:
                location = response.headers.get("Location")
                response.close()
                if not location:
                    raise ProtocolError(
                        f"Redirect with no Location header: HTTP {status} from {current_url}"
                    )
                if redirects >= self.max_redirects:
                    raise TooManyRedirectsError(
                        f"Too many redirects (>{self.max_redirects}) fetching {url}",
                        chain=list(chain),
                    )

                next_url = urljoin(current_url, location)
                redirects += 1
                logger.info(f"Redirect {redirects} (HTTP {status}): {current_url} -> {next_url}")
                chain.append(next_url)
                current_url = next_url
                continue

            if not 200 <= status < 300:
                response.close()
                raise NetworkError(
                    f"HTTP error code {status} fetching {current_url}",
                    url=current_url,
                    status_code=status,
                )

            content = response.content
            logger.debug(f"Fetched {len(content)} bytes from {current_url}")
            return content
