"""Tests for the HTTP feed fetcher."""

from unittest.mock import Mock

import pytest
import requests

from podtracker.config import Config
from podtracker.errors import NetworkError, ProtocolError, TooManyRedirectsError
from podtracker.podcast.feed_fetcher import FeedFetcher


def make_response(status_code, content=b"", headers=None):
    """Build a mock requests response."""
    response = Mock()
    response.status_code = status_code
    response.content = content
    response.headers = headers or {}
    return response


@pytest.fixture
def mock_session():
    return Mock()


@pytest.fixture
def fetcher(mock_session):
    return FeedFetcher(session=mock_session)


class TestFeedFetcher:
    """Tests for FeedFetcher.fetch."""

    def test_fetch_success(self, fetcher, mock_session):
        mock_session.get.return_value = make_response(200, b"<rss/>")

        content = fetcher.fetch("https://example.com/feed.xml")

        assert content == b"<rss/>"
        mock_session.get.assert_called_once_with(
            "https://example.com/feed.xml",
            timeout=(15, 15),
            allow_redirects=False,
        )
        assert fetcher.last_redirect_chain == ["https://example.com/feed.xml"]

    def test_follows_redirects(self, fetcher, mock_session):
        mock_session.get.side_effect = [
            make_response(301, headers={"Location": "https://example.com/feed.xml"}),
            make_response(302, headers={"Location": "https://cdn.example.com/feed.xml"}),
            make_response(200, b"<rss/>"),
        ]

        content = fetcher.fetch("http://example.com/feed.xml")

        assert content == b"<rss/>"
        assert fetcher.last_redirect_chain == [
            "http://example.com/feed.xml",
            "https://example.com/feed.xml",
            "https://cdn.example.com/feed.xml",
        ]

    def test_relative_location_resolved(self, fetcher, mock_session):
        mock_session.get.side_effect = [
            make_response(307, headers={"Location": "/new/feed.xml"}),
            make_response(200, b"<rss/>"),
        ]

        fetcher.fetch("https://example.com/old/feed.xml")

        second_url = mock_session.get.call_args_list[1][0][0]
        assert second_url == "https://example.com/new/feed.xml"

    def test_max_redirects_allowed(self, mock_session):
        fetcher = FeedFetcher(max_redirects=2, session=mock_session)
        mock_session.get.side_effect = [
            make_response(302, headers={"Location": "https://example.com/a"}),
            make_response(302, headers={"Location": "https://example.com/b"}),
            make_response(200, b"ok"),
        ]

        assert fetcher.fetch("https://example.com/start") == b"ok"

    def test_too_many_redirects(self, mock_session):
        fetcher = FeedFetcher(max_redirects=2, session=mock_session)
        mock_session.get.return_value = make_response(
            302, headers={"Location": "https://example.com/loop"}
        )

        with pytest.raises(TooManyRedirectsError) as exc_info:
            fetcher.fetch("https://example.com/start")

        assert mock_session.get.call_count == 3
        assert exc_info.value.chain[0] == "https://example.com/start"
        assert isinstance(exc_info.value, ProtocolError)

    def test_redirect_without_location(self, fetcher, mock_session):
        mock_session.get.return_value = make_response(302)

        with pytest.raises(ProtocolError) as exc_info:
            fetcher.fetch("https://example.com/feed.xml")

        assert "no Location header" in str(exc_info.value)

    def test_http_error_status(self, fetcher, mock_session):
        mock_session.get.return_value = make_response(404)

        with pytest.raises(NetworkError) as exc_info:
            fetcher.fetch("https://example.com/feed.xml")

        assert exc_info.value.status_code == 404
        assert exc_info.value.url == "https://example.com/feed.xml"

    def test_timeout(self, fetcher, mock_session):
        mock_session.get.side_effect = requests.Timeout("read timed out")

        with pytest.raises(NetworkError, match="Timed out"):
            fetcher.fetch("https://example.com/feed.xml")

    def test_connection_error(self, fetcher, mock_session):
        mock_session.get.side_effect = requests.ConnectionError("refused")

        with pytest.raises(NetworkError):
            fetcher.fetch("https://example.com/feed.xml")


class TestFeedFetcherConfig:
    def test_default_session_sets_user_agent(self):
        fetcher = FeedFetcher()
        assert fetcher._session.headers["User-Agent"] == "Podtracker/1.0"

    def test_from_config(self, monkeypatch):
        monkeypatch.setenv("FEED_CONNECT_TIMEOUT", "5")
        monkeypatch.setenv("FEED_READ_TIMEOUT", "30")
        monkeypatch.setenv("FEED_MAX_REDIRECTS", "3")
        monkeypatch.setenv("FEED_USER_AGENT", "TestAgent/2.0")

        fetcher = FeedFetcher.from_config(Config())

        assert fetcher.connect_timeout == 5
        assert fetcher.read_timeout == 30
        assert fetcher.max_redirects == 3
        assert fetcher.user_agent == "TestAgent/2.0"
