"""Friend directory client for feedcircle."""

from typing import Any

import httpx

from feedcircle.errors import DirectoryError
from feedcircle.models import Source
from feedcircle.utils.logging import get_logger

logger = get_logger(__name__)

FEED_KEYS = ("rss", "feed", "feed_url")
URL_KEYS = ("url", "link")


def _first(data: dict[str, Any], keys: tuple[str, ...]) -> str:
    for key in keys:
        value = data.get(key)
        if value:
            return str(value).strip()
    return ""


def parse_source(item: Any) -> Source | None:
    """Build a Source from one directory entry.

    Entries are either objects or ``[name, url, avatar, rss]`` lists.
    """
    if isinstance(item, dict):
        name = str(item.get("name") or "").strip()
        feed_url = _first(item, FEED_KEYS)
        avatar = str(item.get("avatar") or "").strip()
        url = _first(item, URL_KEYS)
    elif isinstance(item, list) and len(item) >= 4:
        name, url, avatar, feed_url = (str(v or "").strip() for v in item[:4])
    else:
        return None

    if not name or not feed_url:
        return None
    return Source(name=name, feed_url=feed_url, avatar=avatar, url=url)


def parse_directory(data: Any) -> list[Source]:
    """Extract sources from a directory document, keeping their order."""
    if isinstance(data, dict):
        data = data.get("friends")
    if not isinstance(data, list):
        raise DirectoryError("friend directory must be a list or contain a 'friends' list")

    sources: list[Source] = []
    for item in data:
        source = parse_source(item)
        if source is None:
            logger.warning("Skipping invalid friend entry", entry=str(item)[:200])
            continue
        sources.append(source)
    return sources


class FriendDirectory:
    """Loads the list of friends to crawl from a remote JSON document."""

    def __init__(self, timeout: float = 30.0, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "FriendDirectory":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def load_sources(self, url: str) -> list[Source]:
        """Download and parse the friend directory.

        Raises:
            DirectoryError: If the directory cannot be fetched or decoded.
        """
        logger.info("Loading friend directory", url=url)
        try:
            response = await self._client.get(url)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise DirectoryError(f"HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise DirectoryError(f"request error: {e!r}") from e
        except ValueError as e:
            raise DirectoryError(f"invalid JSON: {e}") from e

        sources = parse_directory(data)
        logger.info("Friend directory loaded", sources=len(sources))
        return sources
