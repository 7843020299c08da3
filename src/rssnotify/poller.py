"""Concurrent refresh of all tracked feeds."""

import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone

from rssnotify.database import Database
from rssnotify.feed_parser import DEFAULT_FRESHNESS, FeedFetchError, fetch_and_parse, is_fresh
from rssnotify.models import Feed, FeedContent

logger = logging.getLogger(__name__)


def _refresh_one(feed: Feed, now: datetime, freshness: timedelta) -> FeedContent:
    if is_fresh(feed.content, now=now, max_age=freshness):
        logger.debug("Feed '%s' is fresh, not refetching", feed.name)
        return feed.content
    return fetch_and_parse(feed.link)


async def refresh_feeds(
    db: Database,
    feeds: Sequence[Feed],
    freshness: timedelta = DEFAULT_FRESHNESS,
    now: datetime | None = None,
) -> dict[int, FeedContent]:
    """Fetch every feed concurrently and persist the new content.

    Returns the content of each feed that was refreshed, keyed by feed id.
    Feeds that failed are logged and left out; their stored content is not
    touched.
    """
    now = now or datetime.now(timezone.utc)
    results = await asyncio.gather(
        *(asyncio.to_thread(_refresh_one, feed, now, freshness) for feed in feeds),
        return_exceptions=True,
    )

    refreshed = {}
    for feed, result in zip(feeds, results):
        if isinstance(result, FeedFetchError):
            logger.warning("Feed '%s' error: %s", feed.name, result)
            continue
        if isinstance(result, Exception):
            logger.warning("Feed '%s' unexpected error: %s", feed.name, result)
            continue
        if result is not feed.content:
            db.update_feed_content(feed.id, result)
        refreshed[feed.id] = result

    logger.info("Refreshed %d of %d feeds", len(refreshed), len(feeds))
    return refreshed
