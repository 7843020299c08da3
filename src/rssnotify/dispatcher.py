"""Per-subscriber selection and delivery of new items."""

import logging
from collections.abc import Mapping, Sequence
from datetime import datetime

from rssnotify.database import Database
from rssnotify.diff import items_since
from rssnotify.filters import passes
from rssnotify.models import Item, Subscriber
from rssnotify.senders import Sender, SendResult

logger = logging.getLogger(__name__)


def collect_items(
    subscriber: Subscriber,
    new_items_by_feed: Mapping[int, Sequence[Item]],
) -> list[Item]:
    """Items a subscriber should receive, in collection then feed order.

    An item reachable through more than one collection or feed is included
    once, keyed by guid.
    """
    selected = []
    seen: set[str] = set()
    for collection in subscriber.collections:
        for feed_id in sorted(collection.feed_ids):
            for item in new_items_by_feed.get(feed_id, ()):
                key = item.guid or item.title
                if key in seen:
                    continue
                if not passes(item, collection.whitelist, collection.blacklist):
                    continue
                seen.add(key)
                selected.append(item)
    return selected


async def dispatch(
    subscriber: Subscriber,
    new_items_by_feed: Mapping[int, Sequence[Item]],
    sender: Sender,
) -> list[SendResult]:
    """Filter the cycle's new items for one subscriber and send them."""
    items = collect_items(subscriber, new_items_by_feed)
    if not items:
        logger.debug("Nothing new for subscriber %s", subscriber.id)
        return []
    logger.info("Sending %d item(s) to subscriber %s", len(items), subscriber.id)
    return await sender.send(subscriber, items)


def preview_since(db: Database, subscriber: Subscriber, since: datetime) -> list[Item]:
    """Stored items published after ``since`` that would pass the subscriber's rules.

    Works on the content already in the store and never moves a cursor.
    """
    by_feed = {}
    for feed_id in subscriber.feed_ids():
        feed = db.get_feed(feed_id)
        if feed is not None:
            by_feed[feed_id] = items_since(feed.content.items, since)
    return collect_items(subscriber, by_feed)
