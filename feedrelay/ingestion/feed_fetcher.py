"""
Feed Fetcher
============

Downloads a feed document over HTTPS and parses it with feedparser into
raw entry mappings keyed by the external field names the rest of the
system understands (``title, link, guid, pubDate, isoDate, summary,
content, content:encoded, description, author, categories`` ...).

Transport problems raise :class:`FetchError`, documents that are not a
feed raise :class:`ParseError`.
"""

import asyncio
import calendar
import ssl
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Dict, Optional, Any

import aiohttp
import certifi
import feedparser

from ..config.settings import get_settings
from ..utils.logging import get_logger_for_component
from ..utils.exceptions import FetchError, ParseError, ErrorCode
from ..utils.validators import URLValidator

DOWNLOAD_CHUNK_BYTES = 64 * 1024


@dataclass
class FetchedFeed:
    """Result of one successful fetch+parse."""

    url: str
    title: Optional[str]
    items: List[Dict[str, Any]] = field(default_factory=list)
    bytes_transferred: int = 0
    fetch_time: Optional[datetime] = None

    def __post_init__(self):
        if not self.fetch_time:
            self.fetch_time = datetime.now(timezone.utc)


def _struct_to_iso(value: Any) -> Optional[str]:
    if not value:
        return None
    try:
        timestamp = calendar.timegm(value)
        return (
            datetime.fromtimestamp(timestamp, tz=timezone.utc)
            .isoformat()
            .replace("+00:00", "Z")
        )
    except (TypeError, ValueError, OverflowError):
        return None


def entry_to_raw(entry: Any, version: str = "") -> Dict[str, Any]:
    """Map a feedparser entry onto the raw item shape.

    Args:
        entry: feedparser entry (a dict subclass)
        version: feedparser's detected format (``rss20``, ``atom10`` ...)

    Returns:
        Raw item mapping. Absent fields are simply not present.
    """
    raw: Dict[str, Any] = {}

    for key in ("title", "link"):
        if entry.get(key):
            raw[key] = entry[key]

    # feedparser folds RSS <guid> and Atom <id> into "id"
    if entry.get("id"):
        raw["guid"] = entry["id"]

    pub_date = entry.get("published") or entry.get("updated")
    if pub_date:
        raw["pubDate"] = pub_date
    iso_date = _struct_to_iso(entry.get("published_parsed") or entry.get("updated_parsed"))
    if iso_date:
        raw["isoDate"] = iso_date

    summary = entry.get("summary")
    contents = entry.get("content") or []
    encoded = contents[0].get("value") if contents else None

    if version.startswith("rss"):
        if summary:
            raw["description"] = summary
            raw["content"] = summary
        if encoded:
            raw["content:encoded"] = encoded
    else:
        if summary:
            raw["summary"] = summary
        if encoded:
            raw["content"] = encoded
        elif summary:
            raw["content"] = summary

    if entry.get("author"):
        raw["author"] = entry["author"]
        raw["creator"] = entry["author"]

    tags = entry.get("tags") or []
    categories = [tag.get("term") for tag in tags if tag.get("term")]
    if categories:
        raw["categories"] = categories

    enclosures = entry.get("enclosures") or []
    if enclosures:
        first = enclosures[0]
        raw["enclosure"] = {
            "url": first.get("href") or first.get("url"),
            "type": first.get("type"),
            "length": first.get("length"),
        }
    if entry.get("comments"):
        raw["comments"] = entry["comments"]

    return raw


class FeedFetcher:
    """Async feed fetcher with timeout and size limits."""

    def __init__(self, timeout: Optional[int] = None, max_feed_bytes: Optional[int] = None):
        """Initialize feed fetcher.

        Args:
            timeout: Request timeout in seconds (default from config)
            max_feed_bytes: Largest accepted document (default from config)
        """
        settings = get_settings()
        self.timeout = timeout or settings.limits.request_timeout
        self.max_feed_bytes = max_feed_bytes or settings.limits.max_feed_bytes
        self.logger = get_logger_for_component("feed_fetcher")

        self.ssl_context = ssl.create_default_context(cafile=certifi.where())

    @asynccontextmanager
    async def get_session(self):
        """Get configured aiohttp session."""
        connector = aiohttp.TCPConnector(ssl=self.ssl_context, limit_per_host=5)
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        headers = {
            "User-Agent": "FeedRelay/1.0",
            "Accept": "application/rss+xml, application/atom+xml, application/xml, text/xml, */*",
        }

        async with aiohttp.ClientSession(
            connector=connector, timeout=timeout, headers=headers
        ) as session:
            yield session

    async def fetch(self, url: str) -> FetchedFeed:
        """Fetch and parse one feed.

        Raises:
            FetchError: On invalid URL, transport failure, non-200 or timeout
            ParseError: When the body is not a recognizable feed
        """
        async with self.get_session() as session:
            content = await self._download(url, session)
        return self.parse(url, content)

    async def _download(self, url: str, session: aiohttp.ClientSession) -> bytes:
        if not URLValidator.is_valid_feed_url(url):
            raise FetchError(
                f"Invalid feed URL: {url}",
                feed_url=url,
                error_code=ErrorCode.FEED_INVALID_URL,
                recoverable=False,
            )

        self.logger.debug(f"Fetching feed: {url}")
        try:
            async with session.get(url) as response:
                if response.status != 200:
                    raise FetchError(
                        f"HTTP {response.status}: {response.reason}",
                        feed_url=url,
                        error_code=ErrorCode.FEED_HTTP_ERROR,
                        context={"status": response.status},
                    )

                if response.content_length and response.content_length > self.max_feed_bytes:
                    raise FetchError(
                        f"Feed too large: {response.content_length} bytes",
                        feed_url=url,
                    )

                content = bytearray()
                async for chunk in response.content.iter_chunked(DOWNLOAD_CHUNK_BYTES):
                    content.extend(chunk)
                    if len(content) > self.max_feed_bytes:
                        raise FetchError(
                            f"Feed too large: more than {self.max_feed_bytes} bytes",
                            feed_url=url,
                        )

        except asyncio.TimeoutError as e:
            raise FetchError(
                f"Request timeout after {self.timeout}s",
                feed_url=url,
                error_code=ErrorCode.FEED_FETCH_TIMEOUT,
            ) from e
        except aiohttp.ClientError as e:
            raise FetchError(f"{type(e).__name__}: {e}", feed_url=url) from e

        return bytes(content)

    def parse(self, url: str, content: bytes) -> FetchedFeed:
        """Parse a downloaded document.

        Raises:
            ParseError: When feedparser cannot recognize a feed
        """
        feed_data = feedparser.parse(content)
        entries = feed_data.get("entries") or []
        version = feed_data.get("version") or ""

        if feed_data.get("bozo") and not entries:
            error = feed_data.get("bozo_exception")
            message = f"Feed parse error: {error}" if error else "Feed parse error: invalid XML structure"
            raise ParseError(message, feed_url=url)

        if not version and not entries:
            raise ParseError("Document is not an RSS or Atom feed", feed_url=url)

        if feed_data.get("bozo"):
            self.logger.info(f"Feed has parse warnings but contains entries: {url}")

        items = [entry_to_raw(entry, version) for entry in entries]
        title = (feed_data.get("feed") or {}).get("title")

        self.logger.info(f"Fetched {len(items)} items ({len(content)} bytes) from {url}")

        return FetchedFeed(
            url=url,
            title=title,
            items=items,
            bytes_transferred=len(content),
        )
