"""Agent tool implementations for managing a subscriber's collections."""

import json
from datetime import datetime, timezone

from langchain_core.tools import tool

from rssnotify.database import Database, StoreError
from rssnotify.dispatcher import preview_since
from rssnotify.feed_parser import FeedFetchError
from rssnotify.formatter import extract_identifiers
from rssnotify.presets import PRESETS
from rssnotify.registry import RegistryError, SubscriberRegistry

# Module-level context, set when the command session starts
_registry: SubscriberRegistry | None = None
_chat_id: int | None = None


def set_context(db: Database, chat_id: int) -> None:
    """Set the database and the subscriber that all tools act on."""
    global _registry, _chat_id
    _registry = SubscriberRegistry(db)
    _chat_id = chat_id


def _get_context() -> tuple[SubscriberRegistry, int]:
    """Get the registry and chat id, raising if not set."""
    if _registry is None or _chat_id is None:
        raise RuntimeError("Tool context not initialized. Call set_context() first.")
    return _registry, _chat_id


def _error(message: str) -> str:
    return json.dumps({"status": "error", "message": message})


def _split_keywords(keywords: str) -> list[str]:
    return [k.strip() for k in keywords.split(",") if k.strip()]


@tool
def list_feeds() -> str:
    """List all tracked feeds with their id, name, link and subscriber count."""
    registry, _ = _get_context()
    feeds = registry.db.get_all_feeds()
    return json.dumps({
        "feeds": [
            {
                "id": feed.id,
                "name": feed.name,
                "link": feed.link,
                "subscriber_count": feed.subscriber_count,
                "item_count": len(feed.content.items),
            }
            for feed in feeds
        ],
        "total": len(feeds),
    })


@tool
def show_collections() -> str:
    """Show all of the user's collections: their feeds, whitelist and blacklist.

    Collections are numbered from 0; other tools take this number as collection_index.
    """
    registry, chat_id = _get_context()
    return json.dumps({"collections": registry.describe(chat_id)})


@tool
def new_collection() -> str:
    """Create a new, empty collection. It starts with the default blacklist applied."""
    registry, chat_id = _get_context()
    index = registry.new_collection(chat_id)
    return json.dumps({
        "status": "created",
        "collection": registry.describe_collection(chat_id, index),
    })


@tool
def delete_collection(collection_index: int) -> str:
    """Delete one of the user's collections.

    Args:
        collection_index: Number of the collection, as shown by show_collections.
    """
    registry, chat_id = _get_context()
    try:
        registry.delete_collection(chat_id, collection_index)
    except RegistryError as e:
        return _error(str(e))
    return json.dumps({"status": "deleted", "collection_index": collection_index})


@tool
def add_feeds_to_collection(collection_index: int, feed_ids: list[int]) -> str:
    """Subscribe a collection to one or more feeds.

    Args:
        collection_index: Number of the collection, as shown by show_collections.
        feed_ids: Ids of the feeds to add, as shown by list_feeds.
    """
    registry, chat_id = _get_context()
    try:
        added = registry.add_feeds(chat_id, collection_index, feed_ids)
    except RegistryError as e:
        return _error(str(e))
    return json.dumps({"status": "success", "feeds_added": added})


@tool
def remove_feed_from_collection(collection_index: int, feed_id: int) -> str:
    """Unsubscribe a collection from a feed.

    Args:
        collection_index: Number of the collection, as shown by show_collections.
        feed_id: Id of the feed to remove.
    """
    registry, chat_id = _get_context()
    try:
        removed = registry.remove_feed(chat_id, collection_index, feed_id)
    except RegistryError as e:
        return _error(str(e))
    if not removed:
        return _error(f"Feed {feed_id} is not in collection {collection_index}")
    return json.dumps({"status": "removed", "feed_id": feed_id})


@tool
def add_keywords(collection_index: int, list_name: str, keywords: str) -> str:
    """Add keywords to a collection's whitelist or blacklist.

    Matching is by substring: keywords are compared against the lower-cased title
    and the body as written.

    Args:
        collection_index: Number of the collection, as shown by show_collections.
        list_name: Either "whitelist" or "blacklist".
        keywords: Comma-separated keywords.
    """
    registry, chat_id = _get_context()
    values = _split_keywords(keywords)
    if not values:
        return _error("No keywords given")
    try:
        registry.add_keywords(chat_id, collection_index, list_name, values)
    except RegistryError as e:
        return _error(str(e))
    return json.dumps({"status": "success", "list": list_name, "added": values})


@tool
def remove_keywords(collection_index: int, list_name: str, keywords: str) -> str:
    """Remove keywords from a collection's whitelist or blacklist.

    Args:
        collection_index: Number of the collection, as shown by show_collections.
        list_name: Either "whitelist" or "blacklist".
        keywords: Comma-separated keywords.
    """
    registry, chat_id = _get_context()
    values = _split_keywords(keywords)
    try:
        registry.remove_keywords(chat_id, collection_index, list_name, values)
    except RegistryError as e:
        return _error(str(e))
    return json.dumps({"status": "success", "list": list_name, "removed": values})


@tool
def list_presets() -> str:
    """List the available presets and what each one adds to a collection."""
    return json.dumps({
        "presets": [
            {"name": name, "target": preset.target, "values": sorted(preset.values)}
            for name, preset in sorted(PRESETS.items())
        ]
    })


@tool
def apply_preset(collection_index: int, preset_name: str) -> str:
    """Merge a preset's keywords or feeds into a collection.

    Args:
        collection_index: Number of the collection, as shown by show_collections.
        preset_name: Name of the preset, as shown by list_presets.
    """
    registry, chat_id = _get_context()
    try:
        target = registry.apply_preset(chat_id, collection_index, preset_name)
    except RegistryError as e:
        return _error(str(e))
    return json.dumps({
        "status": "success",
        "preset": preset_name,
        "target": target,
        "collection": registry.describe_collection(chat_id, collection_index),
    })


@tool
def register_feed(name: str, link: str) -> str:
    """Start tracking a new feed. Only items published after registration are sent.

    Args:
        name: Display name for the feed.
        link: The feed's http(s) URL.
    """
    registry, _ = _get_context()
    try:
        feed = registry.register_feed(name, link)
    except (RegistryError, FeedFetchError, StoreError) as e:
        return _error(str(e))
    return json.dumps({
        "status": "registered",
        "feed": {
            "id": feed.id,
            "name": feed.name,
            "link": feed.link,
            "item_count": len(feed.content.items),
        },
    })


@tool
def preview_new_since(since: str, limit: int = 20) -> str:
    """Show stored items published after a date that would pass the user's filters.

    This is a preview only; nothing is sent and no progress is recorded.

    Args:
        since: ISO 8601 date or datetime, e.g. "2025-04-14" or "2025-04-14T09:00".
        limit: Maximum number of items to return (default 20).
    """
    registry, chat_id = _get_context()
    since_dt = _parse_iso_date(since)
    if since_dt is None:
        return _error(f"Could not parse date '{since}'")
    subscriber = registry.get_or_create(chat_id)
    items = preview_since(registry.db, subscriber, since_dt)
    return json.dumps({
        "items": [
            {
                "title": item.title,
                "journal": item.sources[0] if item.sources else None,
                "published": item.published,
                "pmid": extract_identifiers(item.identifiers)[0],
                "link": item.link,
            }
            for item in items[:limit]
        ],
        "total": len(items),
        "has_more": len(items) > limit,
    })


def _parse_iso_date(date_str: str) -> datetime | None:
    """Parse an ISO 8601 date string as UTC, returning None on failure."""
    if not date_str:
        return None
    try:
        parsed = datetime.fromisoformat(date_str)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


TOOLS = [
    list_feeds,
    show_collections,
    new_collection,
    delete_collection,
    add_feeds_to_collection,
    remove_feed_from_collection,
    add_keywords,
    remove_keywords,
    list_presets,
    apply_preset,
    register_feed,
    preview_new_since,
]
