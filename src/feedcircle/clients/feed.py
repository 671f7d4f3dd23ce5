"""RSS/Atom feed fetcher for feedcircle."""

import asyncio
import time
import xml.etree.ElementTree as ET
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import feedparser
import httpx

from feedcircle.errors import FetchError, ParseError, TransportError, UpstreamStatusError
from feedcircle.models import Article, Source
from feedcircle.services.sanitizer import sanitize
from feedcircle.utils.clock import Clock
from feedcircle.utils.logging import get_logger

logger = get_logger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36 "
    "feedcircle/1.0 (+friend-circle feed aggregator)"
)

DEFAULT_TIMEOUT = 30.0
DEFAULT_RETRIES = 2
DEFAULT_RETRY_DELAY = 2.0

RSS1_NS = "http://purl.org/rss/1.0/"
ATOM_NS = "http://www.w3.org/2005/Atom"
CONTENT_NS = "http://purl.org/rss/1.0/modules/content/"
ITUNES_NS = "http://www.itunes.com/dtds/podcast-1.0.dtd"
ITUNES_NS_LEGACY = "http://www.itunes.com/DTDs/Podcast-1.0.dtd"
MEDIA_NS = "http://search.yahoo.com/mrss/"

ITEM_TAGS = frozenset({"item", f"{{{RSS1_NS}}}item", f"{{{ATOM_NS}}}entry"})


def find_raw_items(body: bytes) -> list[ET.Element]:
    """Return the feed's item/entry elements in document order.

    feedparser folds ``description``, ``itunes:summary`` and
    ``media:description`` into a single summary slot (the last one wins), so
    item bodies are read from the raw elements. Returns an empty list when the
    body is not well-formed XML.
    """
    try:
        root = ET.fromstring(body)
    except ET.ParseError as e:
        logger.debug("Feed is not well-formed XML", error=str(e))
        return []
    return [element for element in root.iter() if element.tag in ITEM_TAGS]


def element_markup(element: ET.Element) -> str:
    """Inner text of an element plus any child markup."""
    parts = [element.text or ""]
    for child in element:
        parts.append(ET.tostring(child, encoding="unicode"))
    return "".join(parts).strip()


def _child_element(*tags: str) -> Callable[[ET.Element], str]:
    def resolve(item: ET.Element) -> str:
        for tag in tags:
            element = item.find(tag)
            if element is not None:
                value = element_markup(element)
                if value:
                    return value
        return ""

    return resolve


def _extension_element(*tags: str) -> Callable[[ET.Element], str]:
    def resolve(item: ET.Element) -> str:
        for element in item.iter():
            if element.tag in tags:
                value = element_markup(element)
                if value:
                    return value
        return ""

    return resolve


# Where an item's body may live, most specific first. Atom entries have no
# description, so their summary is picked up by the atom_summary slot.
CONTENT_FIELDS: tuple[tuple[str, Callable[[ET.Element], str]], ...] = (
    ("content", _child_element(f"{{{CONTENT_NS}}}encoded", f"{{{ATOM_NS}}}content")),
    ("description", _child_element("description", f"{{{RSS1_NS}}}description")),
    ("atom_summary", _child_element(f"{{{ATOM_NS}}}summary")),
    ("itunes_summary", _extension_element(f"{{{ITUNES_NS}}}summary", f"{{{ITUNES_NS_LEGACY}}}summary")),
    ("media_description", _extension_element(f"{{{MEDIA_NS}}}description")),
)


def resolve_content(item: ET.Element) -> str:
    """Return the first non-empty body field of a raw feed item."""
    for _name, resolver in CONTENT_FIELDS:
        value = resolver(item)
        if value:
            return value
    return ""


def resolve_parsed_content(entry: Any) -> str:
    """Body of a feedparser entry, used when the raw item is unavailable."""
    contents = entry.get("content") or []
    if contents and contents[0].get("value"):
        return contents[0]["value"]
    return entry.get("summary") or ""


def resolve_author(entry: Any, fallback: str) -> str:
    detail = entry.get("author_detail") or {}
    name = detail.get("name") or entry.get("author") or ""
    return name.strip() or fallback


def resolve_published(entry: Any, clock: Clock) -> str:
    """Format the entry's published (or updated) time in the display zone."""
    for key in ("published_parsed", "updated_parsed"):
        parsed = entry.get(key)
        if parsed:
            return clock.format(datetime(*parsed[:6], tzinfo=UTC))
    return clock.format(clock.now())


class FeedFetcher:
    """Fetches a friend's feed and turns its newest items into articles."""

    def __init__(
        self,
        clock: Clock,
        timeout: float = DEFAULT_TIMEOUT,
        retries: int = DEFAULT_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._clock = clock
        self._retries = retries
        self._retry_delay = retry_delay
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "FeedFetcher":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def fetch(self, source: Source, max_items: int) -> list[Article]:
        """Fetch a source's feed and build up to ``max_items`` articles.

        Args:
            source: The friend whose feed is fetched.
            max_items: Number of leading feed items to keep.

        Returns:
            Articles in feed order.

        Raises:
            TransportError: If every attempt failed at the connection level.
            UpstreamStatusError: If the server answered with a non-2xx status.
            ParseError: If the body is not a feed.
        """
        start = time.monotonic()
        try:
            body = await self._download(source)
        finally:
            logger.info(
                "Feed request finished",
                source=source.name,
                duration_ms=round((time.monotonic() - start) * 1000),
            )

        feed = await asyncio.to_thread(feedparser.parse, body)
        if not feed.entries and not feed.get("version"):
            raise ParseError(f"invalid feed: {feed.get('bozo_exception', 'unknown format')}")
        if feed.bozo:
            logger.warning(
                "Feed parsed with warnings",
                source=source.name,
                error=str(feed.get("bozo_exception")),
            )

        entries = feed.entries[:max_items]
        raw_items = await asyncio.to_thread(find_raw_items, body)
        if len(raw_items) != len(feed.entries):
            logger.debug(
                "Raw items do not line up with parsed entries",
                source=source.name,
                raw=len(raw_items),
                parsed=len(feed.entries),
            )
            raw_items = []

        articles = [
            self._build_article(source, entry, raw_items[i] if raw_items else None)
            for i, entry in enumerate(entries)
        ]
        logger.info("Feed processed", source=source.name, articles=len(articles))
        return articles

    async def _download(self, source: Source) -> bytes:
        """GET the feed body, retrying only connection-level failures."""
        last_error: httpx.TransportError | None = None
        for attempt in range(self._retries + 1):
            if attempt:
                await asyncio.sleep(self._retry_delay)
            try:
                response = await self._client.get(source.feed_url)
            except httpx.TransportError as e:
                logger.warning(
                    "Feed request failed",
                    source=source.name,
                    url=source.feed_url,
                    attempt=attempt + 1,
                    error=repr(e),
                )
                last_error = e
                continue
            except httpx.InvalidURL as e:
                raise FetchError(f"invalid feed URL: {e}") from e

            if not response.is_success:
                logger.warning(
                    "Feed returned HTTP error",
                    source=source.name,
                    url=source.feed_url,
                    status=response.status_code,
                )
                raise UpstreamStatusError(response.status_code)
            return response.content

        raise TransportError(f"request error: {last_error!r}") from last_error

    def _build_article(self, source: Source, entry: Any, item: ET.Element | None) -> Article:
        content = resolve_content(item) if item is not None else resolve_parsed_content(entry)
        return Article(
            title=entry.get("title") or "",
            link=entry.get("link") or "",
            published=resolve_published(entry, self._clock),
            author=resolve_author(entry, source.name),
            avatar=source.avatar,
            content=sanitize(content) if content.strip() else "",
            url=source.url,
        )
