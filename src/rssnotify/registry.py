"""Subscriber and feed registration operations.

Changes to a subscriber run as one read-modify-write transaction through
``Database.modify_subscriber``, so a concurrent cycle writing the same row is
never lost.
"""

import logging
from collections.abc import Iterable

from rssnotify.database import Database
from rssnotify.diff import newest_cursor
from rssnotify.feed_parser import fetch_and_parse
from rssnotify.models import Collection, Feed, Subscriber
from rssnotify.presets import (
    BLACKLIST,
    DEFAULT_FEEDS,
    FEEDS,
    NEW_COLLECTION_PRESETS,
    WHITELIST,
    available_presets,
    get_preset,
)

logger = logging.getLogger(__name__)


class RegistryError(ValueError):
    """Raised for requests that refer to missing collections, feeds or presets."""


class SubscriberRegistry:
    """Mutations of subscriber preferences and of the feed catalog."""

    def __init__(self, db: Database):
        self.db = db

    # --- Subscribers ---

    def get_or_create(self, chat_id: int) -> Subscriber:
        subscriber = self.db.get_subscriber(chat_id)
        if subscriber is None:
            subscriber = self.db.add_subscriber(Subscriber(id=chat_id))
            logger.info("New subscriber %s", chat_id)
        return subscriber

    def remove_subscriber(self, chat_id: int) -> bool:
        """Delete a subscriber and release its feed subscriptions."""
        if not self.db.delete_subscriber(chat_id):
            return False
        logger.info("Removed subscriber %s", chat_id)
        return True

    # --- Collections ---

    def new_collection(self, chat_id: int) -> int:
        """Append an empty collection and return its index.

        New collections start with the default blacklist applied.
        """
        collection = Collection()
        for name in NEW_COLLECTION_PRESETS:
            preset = get_preset(name)
            _keyword_set(collection, preset.target).update(preset.values)

        def append(subscriber: Subscriber) -> int:
            subscriber.collections.append(collection)
            return len(subscriber.collections) - 1

        return self.db.modify_subscriber(chat_id, append)

    def delete_collection(self, chat_id: int, index: int) -> Collection:
        def delete(subscriber: Subscriber) -> Collection:
            collection = _collection_at(subscriber, index)
            del subscriber.collections[index]
            return collection

        return self.db.modify_subscriber(chat_id, delete)

    def describe_collection(self, chat_id: int, index: int) -> dict:
        """Collection contents with feed names resolved."""
        subscriber = self.get_or_create(chat_id)
        collection = _collection_at(subscriber, index)
        feeds = []
        for feed_id in sorted(collection.feed_ids):
            feed = self.db.get_feed(feed_id)
            feeds.append({"id": feed_id, "name": feed.name if feed else None})
        return {
            "index": index,
            "feeds": feeds,
            "whitelist": sorted(collection.whitelist),
            "blacklist": sorted(collection.blacklist),
        }

    def describe(self, chat_id: int) -> list[dict]:
        subscriber = self.get_or_create(chat_id)
        return [
            self.describe_collection(chat_id, i)
            for i in range(len(subscriber.collections))
        ]

    # --- Feeds in a collection ---

    def add_feed(self, chat_id: int, index: int, feed_id: int) -> None:
        self.add_feeds(chat_id, index, [feed_id])

    def add_feeds(self, chat_id: int, index: int, feed_ids: Iterable[int]) -> list[int]:
        """Subscribe a collection to feeds. Returns the ids that were newly added.

        Subscriber counts are per subscriber, so a feed already in another of
        the subscriber's collections does not count twice.

        Raises:
            RegistryError: If the collection or any of the feeds does not exist.
        """
        feed_ids = list(feed_ids)
        missing = [f for f in feed_ids if self.db.get_feed(f) is None]
        if missing:
            raise RegistryError(f"Unknown feed id(s): {', '.join(map(str, missing))}")

        def add(subscriber: Subscriber) -> list[int]:
            collection = _collection_at(subscriber, index)
            added = [f for f in feed_ids if f not in collection.feed_ids]
            collection.feed_ids.update(feed_ids)
            return added

        return self.db.modify_subscriber(chat_id, add)

    def remove_feed(self, chat_id: int, index: int, feed_id: int) -> bool:
        def remove(subscriber: Subscriber) -> bool:
            collection = _collection_at(subscriber, index)
            if feed_id not in collection.feed_ids:
                return False
            collection.feed_ids.discard(feed_id)
            return True

        return self.db.modify_subscriber(chat_id, remove)

    # --- Keywords ---

    def add_keywords(self, chat_id: int, index: int, target: str, keywords: Iterable[str]) -> None:
        keywords = [k for k in keywords if k]

        def add(subscriber: Subscriber) -> None:
            _keyword_set(_collection_at(subscriber, index), target).update(keywords)

        self.db.modify_subscriber(chat_id, add)

    def remove_keywords(self, chat_id: int, index: int, target: str, keywords: Iterable[str]) -> None:
        keywords = list(keywords)

        def remove(subscriber: Subscriber) -> None:
            _keyword_set(_collection_at(subscriber, index), target).difference_update(keywords)

        self.db.modify_subscriber(chat_id, remove)

    def apply_preset(self, chat_id: int, index: int, name: str) -> str:
        """Merge a preset into a collection. Returns the preset's target."""
        preset = get_preset(name)
        if preset is None:
            raise RegistryError(
                f"Unknown preset '{name}'. Available: {', '.join(available_presets())}"
            )
        if preset.target == FEEDS:
            known = [f for f in preset.values if self.db.get_feed(f) is not None]
            self.add_feeds(chat_id, index, sorted(known))
        else:
            self.add_keywords(chat_id, index, preset.target, preset.values)
        return preset.target

    # --- Feed catalog ---

    def register_feed(self, name: str, link: str) -> Feed:
        """Start tracking a new feed.

        The feed is fetched once and its cursor set to the newest item, so
        subscribers only get items published from now on.

        Raises:
            RegistryError: If the link is invalid or already tracked.
            FeedFetchError: If the feed cannot be fetched.
        """
        try:
            feed = Feed.from_link(link, name)
        except ValueError as e:
            raise RegistryError(str(e)) from e
        if self.db.get_feed_by_link(link):
            raise RegistryError(f"A feed with link {link} already exists")
        if feed.id is not None and self.db.get_feed(feed.id):
            raise RegistryError(f"A feed with id {feed.id} already exists")

        feed.content = fetch_and_parse(link)
        feed.last_pushed_id = newest_cursor(feed.content.items)
        return self.db.add_feed(feed)

    def recount(self) -> dict[int, int]:
        return self.db.recount_subscribers()


def seed_default_feeds(db: Database) -> int:
    """Add the default feed catalog to a store that has no feeds yet.

    Seeded feeds have no content or cursor; the first cycle fills both in.
    """
    if db.get_all_feeds():
        return 0
    count = 0
    for name, link in DEFAULT_FEEDS:
        db.add_feed(Feed.from_link(link, name))
        count += 1
    logger.info("Seeded %d default feeds", count)
    return count


def _collection_at(subscriber: Subscriber, index: int) -> Collection:
    if index < 0 or index >= len(subscriber.collections):
        raise RegistryError(
            f"Collection {index} does not exist "
            f"(subscriber has {len(subscriber.collections)})"
        )
    return subscriber.collections[index]


def _keyword_set(collection: Collection, target: str) -> set[str]:
    if target == WHITELIST:
        return collection.whitelist
    if target == BLACKLIST:
        return collection.blacklist
    raise RegistryError(f"Unknown keyword list '{target}', use whitelist or blacklist")
