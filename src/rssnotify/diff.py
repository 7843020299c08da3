"""Selection of the items that are new since the last distribution."""

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

from rssnotify.models import Item

logger = logging.getLogger(__name__)

GUID_PREFIX = "pubmed:"


def parse_guid(item: Item) -> int | None:
    """Numeric id of an item (``pubmed:40232416`` -> 40232416), or None."""
    if not item.guid:
        return None
    value = item.guid.strip()
    if value.startswith(GUID_PREFIX):
        value = value[len(GUID_PREFIX):]
    try:
        return int(value)
    except ValueError:
        return None


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an RFC 2822 date; naive results are taken as UTC."""
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def items_since(items: Sequence[Item], reference: datetime) -> list[Item]:
    """Items published strictly after ``reference``.

    Items whose publication date is missing or unparseable are skipped.
    """
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=timezone.utc)
    new_items = []
    for item in items:
        published = parse_timestamp(item.published)
        if published is not None and published > reference:
            new_items.append(item)
    return new_items


def items_after_cursor(items: Sequence[Item], cursor: int | None) -> list[Item]:
    """Leading run of items whose id is above the cursor, in feed order.

    Items are expected newest first; the scan stops at the first item at or
    below the cursor (an unparseable id counts as 0). Without a cursor there
    is nothing to compare against and no item is considered new.
    """
    if cursor is None:
        return []
    new_items = []
    for item in items:
        if (parse_guid(item) or 0) <= cursor:
            break
        new_items.append(item)
    return new_items


def newest_cursor(items: Sequence[Item]) -> int | None:
    """Cursor value for the newest item of a feed, or None if it has no usable id."""
    if not items:
        return None
    guid = parse_guid(items[0])
    if guid is None:
        logger.debug("Newest item %r has no numeric id", items[0].guid)
    return guid


def advance_cursor(items: Sequence[Item], cursor: int | None) -> int | None:
    """Cursor after a completed cycle; keeps the old one when the newest item has no id."""
    newest = newest_cursor(items)
    return newest if newest is not None else cursor
