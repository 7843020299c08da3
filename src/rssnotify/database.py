"""SQLite storage of feeds and subscribers for rssnotify."""

import logging
import sqlite3
import threading
from collections import Counter
from collections.abc import Callable
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import TypeVar

from rssnotify.models import Feed, FeedContent, Subscriber

T = TypeVar("T")

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS feeds (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    link TEXT UNIQUE NOT NULL,
    content TEXT NOT NULL DEFAULT '',
    last_pushed_id INTEGER,
    subscriber_count INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS subscribers (
    id INTEGER PRIMARY KEY,
    last_pushed_at TEXT NOT NULL,
    collections TEXT NOT NULL DEFAULT '[]'
);
"""


class StoreError(Exception):
    """Raised when a read or write against the store fails."""


class Database:
    """SQLite database manager for feeds and subscribers.

    Every write is a single committed transaction taken under a lock, so the
    scheduler and the command surface (which runs in a worker thread) never
    interleave writes.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    def connect(self) -> None:
        """Open database connection, then create or migrate the schema."""
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.row_factory = sqlite3.Row
            self._ensure_schema()
        except sqlite3.Error as e:
            raise StoreError(f"Could not open database {self.db_path}: {e}") from e

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    @contextmanager
    def _write(self):
        """Run a block of statements as one committed transaction."""
        with self._lock:
            try:
                yield self.conn
                self.conn.commit()
            except sqlite3.Error as e:
                self.conn.rollback()
                raise StoreError(str(e)) from e
            except BaseException:
                self.conn.rollback()
                raise

    @contextmanager
    def _read(self):
        with self._lock:
            try:
                yield self.conn
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e

    # --- Schema ---

    def schema_version(self) -> int:
        with self._read() as conn:
            return conn.execute("PRAGMA user_version").fetchone()[0]

    def _ensure_schema(self) -> None:
        has_feeds = self.conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'feeds'"
        ).fetchone()
        if not has_feeds:
            self.conn.executescript(SCHEMA_SQL)
            self.conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            self.conn.commit()
            return

        # Stores written before versioning report 0; they have the version 1 layout
        version = max(self.schema_version(), 1)
        if version == SCHEMA_VERSION:
            return
        if version > SCHEMA_VERSION:
            raise StoreError(
                f"Database version {version} is newer than supported ({SCHEMA_VERSION})"
            )
        logger.info(
            "Database is out of date (%d, should be %d). Updating.", version, SCHEMA_VERSION
        )
        self._backup(f"{self.db_path}.bak")
        if version < 2:
            self._migrate_to_2()
        self.conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        self.conn.commit()

    def _backup(self, path: str) -> None:
        target = sqlite3.connect(path)
        try:
            self.conn.backup(target)
        finally:
            target.close()
        logger.info("Backup written to %s", path)

    def _migrate_to_2(self) -> None:
        logger.info("Adding subscriber_count column")
        self.conn.execute(
            "ALTER TABLE feeds ADD COLUMN subscriber_count INTEGER NOT NULL DEFAULT 0"
        )
        self.conn.commit()
        self.recount_subscribers()

    # --- Feed operations ---

    def add_feed(self, feed: Feed) -> Feed:
        """Insert a new feed and return it with its assigned id.

        Raises:
            ValueError: If a feed with the same link is already stored.
        """
        if self.get_feed_by_link(feed.link):
            raise ValueError(f"A feed with link {feed.link} already exists")
        with self._write() as conn:
            cursor = conn.execute(
                """INSERT INTO feeds (id, name, link, content, last_pushed_id,
                   subscriber_count) VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    feed.id,
                    feed.name,
                    feed.link,
                    feed.content.to_json(),
                    feed.last_pushed_id,
                    feed.subscriber_count,
                ),
            )
        feed.id = cursor.lastrowid
        logger.info("Added feed %s (%s)", feed.name, feed.id)
        return feed

    def get_feed(self, feed_id: int) -> Feed | None:
        """Look up a feed by its id."""
        with self._read() as conn:
            row = conn.execute("SELECT * FROM feeds WHERE id = ?", (feed_id,)).fetchone()
        return _row_to_feed(row) if row else None

    def get_feed_by_link(self, link: str) -> Feed | None:
        """Look up a feed by its link."""
        with self._read() as conn:
            row = conn.execute("SELECT * FROM feeds WHERE link = ?", (link,)).fetchone()
        return _row_to_feed(row) if row else None

    def get_all_feeds(self) -> list[Feed]:
        """Return all feeds, ordered by id."""
        with self._read() as conn:
            rows = conn.execute("SELECT * FROM feeds ORDER BY id").fetchall()
        return [_row_to_feed(r) for r in rows]

    def update_feed_content(self, feed_id: int, content: FeedContent) -> None:
        """Replace the stored content of a feed."""
        with self._write() as conn:
            conn.execute(
                "UPDATE feeds SET content = ? WHERE id = ?",
                (content.to_json(), feed_id),
            )

    def update_feed_cursor(self, feed_id: int, last_pushed_id: int | None) -> None:
        """Store the id of the newest distributed item of a feed."""
        with self._write() as conn:
            conn.execute(
                "UPDATE feeds SET last_pushed_id = ? WHERE id = ?",
                (last_pushed_id, feed_id),
            )
        logger.debug("Updated last_pushed_id of feed %s to %s", feed_id, last_pushed_id)

    def recount_subscribers(self) -> dict[int, int]:
        """Recompute every feed's subscriber count from the subscribers' collections."""
        counts: Counter[int] = Counter()
        for subscriber in self.get_all_subscribers():
            for feed_id in subscriber.feed_ids():
                counts[feed_id] += 1
        with self._write() as conn:
            conn.execute("UPDATE feeds SET subscriber_count = 0")
            conn.executemany(
                "UPDATE feeds SET subscriber_count = ? WHERE id = ?",
                [(count, feed_id) for feed_id, count in counts.items()],
            )
        return dict(counts)

    # --- Subscriber operations ---

    def add_subscriber(self, subscriber: Subscriber) -> Subscriber:
        """Insert a subscriber; an existing row with the same id is kept."""
        with self._write() as conn:
            conn.execute(
                """INSERT OR IGNORE INTO subscribers (id, last_pushed_at, collections)
                   VALUES (?, ?, ?)""",
                (
                    subscriber.id,
                    _dt_to_str(subscriber.last_pushed_at),
                    subscriber.collections_to_json(),
                ),
            )
        return subscriber

    def get_subscriber(self, subscriber_id: int) -> Subscriber | None:
        """Look up a subscriber by chat id."""
        with self._read() as conn:
            row = conn.execute(
                "SELECT * FROM subscribers WHERE id = ?", (subscriber_id,)
            ).fetchone()
        return _row_to_subscriber(row) if row else None

    def get_all_subscribers(self) -> list[Subscriber]:
        """Return all subscribers."""
        with self._read() as conn:
            rows = conn.execute("SELECT * FROM subscribers ORDER BY id").fetchall()
        return [_row_to_subscriber(r) for r in rows]

    def modify_subscriber(self, subscriber_id: int, change: Callable[[Subscriber], T]) -> T:
        """Apply ``change`` to a subscriber's collections in one transaction.

        The subscriber is created if it does not exist. Only the collections
        are written back, together with the subscriber counts of the feeds
        that were added or dropped. An exception raised by ``change`` rolls the
        transaction back and propagates.
        """
        with self._write() as conn:
            conn.execute(
                """INSERT OR IGNORE INTO subscribers (id, last_pushed_at, collections)
                   VALUES (?, ?, '[]')""",
                (subscriber_id, _dt_to_str(datetime.now(timezone.utc))),
            )
            row = conn.execute(
                "SELECT * FROM subscribers WHERE id = ?", (subscriber_id,)
            ).fetchone()
            subscriber = _row_to_subscriber(row)
            before = subscriber.feed_ids()
            result = change(subscriber)
            after = subscriber.feed_ids()
            conn.execute(
                "UPDATE subscribers SET collections = ? WHERE id = ?",
                (subscriber.collections_to_json(), subscriber_id),
            )
            _shift_counts(conn, after - before, 1)
            _shift_counts(conn, before - after, -1)
        logger.debug("Updated collections of subscriber %s", subscriber_id)
        return result

    def set_last_pushed(self, subscriber_id: int, timestamp: datetime) -> None:
        """Update only the last distribution time of a subscriber."""
        with self._write() as conn:
            conn.execute(
                "UPDATE subscribers SET last_pushed_at = ? WHERE id = ?",
                (_dt_to_str(timestamp), subscriber_id),
            )

    def delete_subscriber(self, subscriber_id: int) -> bool:
        """Delete a subscriber with all its collections. Returns True if deleted.

        The subscriber counts of its feeds drop in the same transaction.
        """
        with self._write() as conn:
            row = conn.execute(
                "SELECT * FROM subscribers WHERE id = ?", (subscriber_id,)
            ).fetchone()
            if row is None:
                return False
            _shift_counts(conn, _row_to_subscriber(row).feed_ids(), -1)
            conn.execute("DELETE FROM subscribers WHERE id = ?", (subscriber_id,))
        return True


# --- Helper functions ---


def _shift_counts(conn: sqlite3.Connection, feed_ids: set[int], delta: int) -> None:
    conn.executemany(
        "UPDATE feeds SET subscriber_count = MAX(subscriber_count + ?, 0) WHERE id = ?",
        [(delta, feed_id) for feed_id in sorted(feed_ids)],
    )


def _dt_to_str(dt: datetime | None) -> str | None:
    """Convert datetime to ISO string for storage."""
    return dt.isoformat() if dt else None


def _str_to_dt(s: str | None) -> datetime | None:
    """Convert stored ISO string back to datetime."""
    if not s:
        return None
    return datetime.fromisoformat(s)


def _row_to_feed(row: sqlite3.Row) -> Feed:
    """Convert a database row to a Feed dataclass."""
    return Feed(
        id=row["id"],
        name=row["name"],
        link=row["link"],
        content=FeedContent.from_json(row["content"]),
        last_pushed_id=row["last_pushed_id"],
        subscriber_count=row["subscriber_count"] or 0,
    )


def _row_to_subscriber(row: sqlite3.Row) -> Subscriber:
    """Convert a database row to a Subscriber dataclass."""
    return Subscriber(
        id=row["id"],
        last_pushed_at=_str_to_dt(row["last_pushed_at"]) or datetime.now(timezone.utc),
        collections=Subscriber.collections_from_json(row["collections"]),
    )
