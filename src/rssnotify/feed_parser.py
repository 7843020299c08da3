"""RSS/Atom feed fetching and parsing using httpx and feedparser."""

import logging
import xml.etree.ElementTree as ET
from datetime import datetime, timedelta, timezone
from urllib.parse import urlparse

import feedparser
import httpx

from rssnotify.diff import parse_timestamp
from rssnotify.models import FeedContent, Item

logger = logging.getLogger(__name__)

DC_NS = "{http://purl.org/dc/elements/1.1/}"
ITEM_TAGS = (
    "item",
    "{http://purl.org/rss/1.0/}item",
    "{http://www.w3.org/2005/Atom}entry",
)

DEFAULT_FRESHNESS = timedelta(minutes=55)


class FeedFetchError(Exception):
    """Raised when a feed cannot be downloaded or parsed."""


def fetch_and_parse(url: str, client: httpx.Client | None = None) -> FeedContent:
    """Download a feed and parse it.

    Args:
        url: The feed URL.
        client: Optional httpx client; a one-off request is made otherwise.

    Returns:
        FeedContent with the channel metadata and items, in document order.

    Raises:
        FeedFetchError: If the URL is invalid, unreachable, or not a feed.
    """
    _validate_url(url)
    try:
        if client is not None:
            response = client.get(url, follow_redirects=True)
        else:
            response = httpx.get(url, follow_redirects=True)
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise FeedFetchError(f"Could not reach URL: HTTP {e.response.status_code}") from e
    except httpx.HTTPError as e:
        raise FeedFetchError(f"Could not reach URL: {e}") from e

    return parse_feed(response.content)


def parse_feed(raw: bytes) -> FeedContent:
    """Parse a syndication document into FeedContent.

    Raises:
        FeedFetchError: If the document is not an RSS or Atom feed.
    """
    parsed = feedparser.parse(raw)

    if not parsed.feed.get("title") and not parsed.entries:
        raise FeedFetchError("Document is not a valid RSS or Atom feed")

    if parsed.bozo:
        logger.debug("Feed has formatting issues: %s", parsed.get("bozo_exception"))

    dublin_core = _dublin_core_fields(raw)
    if len(dublin_core) != len(parsed.entries):
        dublin_core = [None] * len(parsed.entries)

    items = [
        _entry_to_item(entry, dc)
        for entry, dc in zip(parsed.entries, dublin_core)
    ]

    return FeedContent(
        title=parsed.feed.get("title", ""),
        link=parsed.feed.get("link"),
        last_build_date=parsed.feed.get("updated"),
        items=items,
    )


def is_fresh(
    content: FeedContent,
    now: datetime | None = None,
    max_age: timedelta = DEFAULT_FRESHNESS,
) -> bool:
    """True if the feed's last build date is younger than ``max_age``."""
    built = parse_timestamp(content.last_build_date)
    if built is None:
        return False
    now = now or datetime.now(timezone.utc)
    return now - built < max_age


def _validate_url(url: str) -> None:
    """Validate that the URL has a valid format."""
    try:
        result = urlparse(url)
    except ValueError:
        raise FeedFetchError("Invalid URL format")
    if not result.scheme or not result.netloc:
        raise FeedFetchError("Invalid URL format")
    if result.scheme not in ("http", "https"):
        raise FeedFetchError("Invalid URL format: only http and https are supported")


def _entry_to_item(entry, dc: dict | None) -> Item:
    """Convert a feedparser entry into an Item."""
    if entry.get("content"):
        content = entry.content[0].get("value", "")
    else:
        content = entry.get("summary") or entry.get("description") or ""

    if dc is not None:
        identifiers = dc["identifiers"]
        sources = dc["sources"]
    else:
        identifiers = [entry["dc_identifier"]] if entry.get("dc_identifier") else []
        sources = [entry["dc_source"]] if entry.get("dc_source") else []

    return Item(
        guid=entry.get("id") or entry.get("guid") or entry.get("link"),
        title=entry.get("title", ""),
        content=content,
        published=entry.get("published") or entry.get("updated"),
        identifiers="\n".join(identifiers),
        sources=tuple(sources),
        link=entry.get("link"),
    )


def _dublin_core_fields(raw: bytes) -> list[dict]:
    """Collect repeated dc:identifier and dc:source values per item.

    feedparser keeps only the last value of a repeated unknown element, so
    these are read separately. Returns an empty list if the document is not
    well-formed XML.
    """
    try:
        root = ET.fromstring(raw)
    except ET.ParseError:
        return []

    fields = []
    for element in root.iter():
        if element.tag not in ITEM_TAGS:
            continue
        fields.append({
            "identifiers": [
                (e.text or "").strip() for e in element.findall(DC_NS + "identifier")
                if e.text and e.text.strip()
            ],
            "sources": [
                (e.text or "").strip() for e in element.findall(DC_NS + "source")
                if e.text and e.text.strip()
            ],
        })
    return fields
