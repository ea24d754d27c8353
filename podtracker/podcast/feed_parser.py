"""Streaming RSS feed parser for podcast metadata and episodes.

Reads the document incrementally with a pull parser so large feeds are never
held as a full DOM. Extension elements (iTunes, Podcasting 2.0, content
module) are matched by local name, so any namespace prefix works.
"""

import io
import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import BinaryIO, List, Optional, Tuple, Union

from ..errors import ParseError

logger = logging.getLogger(__name__)

# Bytes read from the input stream per pull-parser feed
CHUNK_SIZE = 64 * 1024

_DURATION_RE = re.compile(r"(?:(\d+):)?(\d+):(\d+)|(\d+)")

# Largest values the Integer and BigInteger columns hold
MAX_DURATION_SECONDS = 2**31 - 1
MAX_ENCLOSURE_LENGTH = 2**63 - 1

ISO_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

# Core RSS elements, only matched without a namespace
CHANNEL_FIELDS = {"title", "description", "link"}
ITEM_FIELDS = {"guid", "title", "description", "link", "pubDate", "enclosure"}

# Extension elements, matched by local name under any namespace
ITEM_EXTENSION_FIELDS = {"duration", "image", "chapters", "encoded", "summary"}


@dataclass
class FeedItem:
    """One `<item>` of a feed, normalized.

    `published_at` is epoch milliseconds, 0 when the feed gives no usable
    date. `duration` is whole seconds, 0 when absent or unreadable.
    """

    guid: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    content_encoded: Optional[str] = None
    itunes_summary: Optional[str] = None
    link: Optional[str] = None

    # Enclosure details
    enclosure_url: Optional[str] = None
    enclosure_type: Optional[str] = None
    enclosure_length: Optional[int] = None

    published_at: int = 0
    duration: int = 0
    image_url: Optional[str] = None
    chapters_url: Optional[str] = None

    @property
    def best_description(self) -> Optional[str]:
        """Richest non-blank show notes: embedded content, then summary, then description."""
        for candidate in (self.content_encoded, self.itunes_summary, self.description):
            if candidate and candidate.strip():
                return candidate
        return None


@dataclass
class Feed:
    """Parsed channel metadata plus its items in document order."""

    title: Optional[str] = None
    description: Optional[str] = None
    link: Optional[str] = None
    image_url: Optional[str] = None
    items: List[FeedItem] = field(default_factory=list)


def _split_tag(tag: str) -> Tuple[Optional[str], str]:
    """Split an ElementTree tag into (namespace, local name)."""
    if tag.startswith("{"):
        namespace, _, local = tag[1:].partition("}")
        return namespace, local
    return None, tag


def _element_text(elem: ET.Element) -> Optional[str]:
    text = "".join(elem.itertext()).strip()
    return text or None


def parse_duration(value: Optional[str]) -> int:
    """Parse an `SS`, `MM:SS` or `HH:MM:SS` duration into seconds.

    Anything else, or a total too large to store, yields 0.
    """
    if not value:
        return 0

    match = _DURATION_RE.fullmatch(value.strip())
    if not match:
        return 0

    hours, minutes, seconds, plain = match.groups()
    try:
        if plain is not None:
            total = int(plain)
        else:
            total = int(hours or 0) * 3600 + int(minutes) * 60 + int(seconds)
    except ValueError:
        # Digit strings past the interpreter's int conversion limit
        return 0
    return total if total <= MAX_DURATION_SECONDS else 0


def parse_pub_date(value: Optional[str]) -> int:
    """Parse a publish date into epoch milliseconds.

    Tries the RFC-822 format used by RSS, then a compact ISO-8601 timestamp
    read as UTC. Returns 0 when neither matches.
    """
    if not value:
        return 0

    text = value.strip()

    try:
        published = parsedate_to_datetime(text)
        if published.tzinfo is None:
            published = published.replace(tzinfo=timezone.utc)
        return int(published.timestamp() * 1000)
    except (TypeError, ValueError, IndexError, OverflowError):
        pass

    try:
        published = datetime.strptime(text[:19], ISO_DATE_FORMAT).replace(tzinfo=timezone.utc)
        return int(published.timestamp() * 1000)
    except ValueError:
        pass

    logger.debug(f"Unparseable publish date: {text!r}")
    return 0


def parse_length(value: Optional[str]) -> Optional[int]:
    """Parse an enclosure length attribute.

    Returns None unless the value is an integer in 0..MAX_ENCLOSURE_LENGTH.
    """
    if value is None:
        return None
    try:
        length = int(value.strip())
    except ValueError:
        return None
    if length < 0 or length > MAX_ENCLOSURE_LENGTH:
        return None
    return length


class _FeedHandler:
    """Consumes pull-parser events and assembles a Feed.

    Tracks the open element path. Elements the parser does not recognize are
    skipped with a depth counter so none of their descendants are read.
    """

    def __init__(self):
        self.feed = Feed()
        self._path: List[str] = []
        self._skip_depth = 0
        self._item: Optional[FeedItem] = None
        self._plain_image_url: Optional[str] = None
        self._itunes_image_url: Optional[str] = None

    def handle(self, event: str, elem: ET.Element) -> None:
        namespace, name = _split_tag(elem.tag)
        if event == "start":
            self._start(namespace, name, elem)
        else:
            self._end(namespace, name, elem)

    def _start(self, namespace: Optional[str], name: str, elem: ET.Element) -> None:
        if self._skip_depth:
            self._skip_depth += 1
            return

        depth = len(self._path)

        if depth == 0:
            if name != "rss":
                raise ParseError(f"Not an RSS document: root element is '{name}'")
        elif depth == 1:
            if name != "channel":
                self._skip_depth = 1
                return
        elif depth == 2:
            if namespace is None and name == "item":
                self._item = FeedItem()
            elif name == "image":
                # itunes:image carries the URL as an attribute, plain RSS <image> nests <url>
                href = elem.get("href")
                if href:
                    self._itunes_image_url = self._itunes_image_url or href.strip()
                    self._skip_depth = 1
                    return
                if namespace is not None:
                    self._skip_depth = 1
                    return
            elif namespace is not None or name not in CHANNEL_FIELDS:
                self._skip_depth = 1
                return
        elif depth == 3:
            parent = self._path[-1]
            if parent == "item":
                if namespace is None and name in ITEM_FIELDS:
                    pass
                elif name in ITEM_EXTENSION_FIELDS:
                    pass
                else:
                    self._skip_depth = 1
                    return
            elif not (parent == "image" and name == "url"):
                self._skip_depth = 1
                return
        else:
            self._skip_depth = 1
            return

        self._path.append(name)

    def _end(self, namespace: Optional[str], name: str, elem: ET.Element) -> None:
        if self._skip_depth:
            self._skip_depth -= 1
            return

        self._path.pop()
        depth = len(self._path)

        if depth == 0:
            self.feed.image_url = self._plain_image_url or self._itunes_image_url
        elif depth == 2:
            if name == "item" and self._item is not None:
                self.feed.items.append(self._item)
                self._item = None
                elem.clear()
            elif name in CHANNEL_FIELDS:
                setattr(self.feed, name, _element_text(elem))
        elif depth == 3:
            if self._path[-1] == "image":
                self._plain_image_url = _element_text(elem)
            elif self._item is not None:
                self._read_item_field(namespace, name, elem)

    def _read_item_field(self, namespace: Optional[str], name: str, elem: ET.Element) -> None:
        item = self._item

        if namespace is None and name == "guid":
            item.guid = _element_text(elem)
        elif namespace is None and name == "title":
            item.title = _element_text(elem)
        elif namespace is None and name == "description":
            item.description = _element_text(elem)
        elif namespace is None and name == "link":
            item.link = _element_text(elem)
        elif namespace is None and name == "pubDate":
            item.published_at = parse_pub_date(_element_text(elem))
        elif namespace is None and name == "enclosure":
            url = elem.get("url")
            item.enclosure_url = url.strip() if url else None
            item.enclosure_type = elem.get("type")
            item.enclosure_length = parse_length(elem.get("length"))
        elif name == "duration":
            item.duration = parse_duration(_element_text(elem))
        elif name == "image":
            href = elem.get("href")
            item.image_url = href.strip() if href else _element_text(elem)
        elif name == "chapters":
            url = elem.get("url")
            item.chapters_url = url.strip() if url else None
        elif name == "encoded":
            item.content_encoded = _element_text(elem)
        elif name == "summary":
            item.itunes_summary = _element_text(elem)


class FeedParser:
    """Parser for podcast RSS feeds.

    Tolerates the usual feed sloppiness: missing or unparseable dates become
    0, bad durations become 0, bad enclosure lengths become None. Only a
    document that is not well-formed XML, or not RSS, is an error.

    Example:
        parser = FeedParser()
        feed = parser.parse_bytes(content)
        for item in feed.items:
            print(f"  - {item.title}")
    """

    def __init__(self, chunk_size: int = CHUNK_SIZE):
        self.chunk_size = chunk_size

    def parse(self, stream: Union[BinaryIO, io.TextIOBase]) -> Feed:
        """Parse a feed from a readable stream.

        The whole stream is consumed before returning.

        Args:
            stream: Binary or text file-like object

        Returns:
            Feed with channel metadata and items

        Raises:
            ParseError: If the input is empty, not well-formed, or not RSS
        """
        pull_parser = ET.XMLPullParser(events=("start", "end"))
        handler = _FeedHandler()

        try:
            while True:
                chunk = stream.read(self.chunk_size)
                if not chunk:
                    break
                pull_parser.feed(chunk)
                for event, elem in pull_parser.read_events():
                    handler.handle(event, elem)

            pull_parser.close()
            for event, elem in pull_parser.read_events():
                handler.handle(event, elem)
        except ET.ParseError as e:
            raise ParseError(f"Malformed feed XML: {e}") from e

        feed = handler.feed
        logger.info(f"Parsed feed '{feed.title}' with {len(feed.items)} items")
        return feed

    def parse_bytes(self, data: bytes) -> Feed:
        """Parse a feed from raw bytes (encoding taken from the XML declaration)."""
        return self.parse(io.BytesIO(data))

    def parse_string(self, content: str) -> Feed:
        """Parse a feed from already-decoded text."""
        return self.parse(io.StringIO(content))
