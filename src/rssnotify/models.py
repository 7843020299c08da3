"""Data models for rssnotify."""

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from urllib.parse import urlparse

PUBMED_JOURNAL_RE = re.compile(r"pubmed\.ncbi\.nlm\.nih\.gov/rss/journals/([0-9]+)/")


@dataclass(frozen=True)
class Item:
    """A single entry of a feed, as returned by the upstream document."""

    guid: str | None = None
    title: str = ""
    content: str = ""
    published: str | None = None
    identifiers: str = ""
    sources: tuple[str, ...] = ()
    link: str | None = None

    def to_dict(self) -> dict:
        return {
            "guid": self.guid,
            "title": self.title,
            "content": self.content,
            "published": self.published,
            "identifiers": self.identifiers,
            "sources": list(self.sources),
            "link": self.link,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Item":
        return cls(
            guid=data.get("guid"),
            title=data.get("title") or "",
            content=data.get("content") or "",
            published=data.get("published"),
            identifiers=data.get("identifiers") or "",
            sources=tuple(data.get("sources") or ()),
            link=data.get("link"),
        )


@dataclass
class FeedContent:
    """Last fetched state of a feed: channel metadata plus items, newest first."""

    title: str = ""
    link: str | None = None
    last_build_date: str | None = None
    items: list[Item] = field(default_factory=list)

    def to_json(self) -> str:
        return json.dumps({
            "title": self.title,
            "link": self.link,
            "last_build_date": self.last_build_date,
            "items": [item.to_dict() for item in self.items],
        })

    @classmethod
    def from_json(cls, raw: str | None) -> "FeedContent":
        if not raw:
            return cls()
        data = json.loads(raw)
        return cls(
            title=data.get("title") or "",
            link=data.get("link"),
            last_build_date=data.get("last_build_date"),
            items=[Item.from_dict(i) for i in data.get("items") or []],
        )


@dataclass
class Feed:
    """A tracked feed and its distribution cursor."""

    name: str
    link: str
    content: FeedContent = field(default_factory=FeedContent)
    last_pushed_id: int | None = None
    subscriber_count: int = 0
    id: int | None = None

    @classmethod
    def from_link(cls, link: str, name: str) -> "Feed":
        """Build a feed from a source link.

        PubMed journal feeds take the NLM journal id from the link as their id;
        any other http(s) link is left without id until it is stored.

        Raises:
            ValueError: If the link is not an http(s) URL.
        """
        parsed = urlparse(link)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Not a valid feed link: {link}")
        match = PUBMED_JOURNAL_RE.search(link)
        feed_id = int(match.group(1)) if match else None
        return cls(name=name, link=link, id=feed_id)


@dataclass
class Collection:
    """A subscriber's bundle of feeds with keyword rules."""

    feed_ids: set[int] = field(default_factory=set)
    whitelist: set[str] = field(default_factory=set)
    blacklist: set[str] = field(default_factory=set)

    def to_dict(self) -> dict:
        return {
            "feed_ids": sorted(self.feed_ids),
            "whitelist": sorted(self.whitelist),
            "blacklist": sorted(self.blacklist),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Collection":
        # Legacy rows stored the feed ids under "feeds"
        feed_ids = data.get("feed_ids", data.get("feeds")) or []
        return cls(
            feed_ids={int(f) for f in feed_ids},
            whitelist=set(data.get("whitelist") or []),
            blacklist=set(data.get("blacklist") or []),
        )


@dataclass
class Subscriber:
    """A chat that receives items."""

    id: int
    last_pushed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    collections: list[Collection] = field(default_factory=list)

    def collections_to_json(self) -> str:
        return json.dumps([c.to_dict() for c in self.collections])

    @staticmethod
    def collections_from_json(raw: str | None) -> list[Collection]:
        if not raw:
            return []
        return [Collection.from_dict(c) for c in json.loads(raw)]

    def feed_ids(self) -> set[int]:
        """All feed ids across the subscriber's collections."""
        ids: set[int] = set()
        for collection in self.collections:
            ids |= collection.feed_ids
        return ids
