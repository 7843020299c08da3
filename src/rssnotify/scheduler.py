"""Cycle scheduling and the fetch, diff, dispatch cycle itself."""

import asyncio
import enum
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone

from croniter import croniter

from rssnotify.database import Database
from rssnotify.diff import advance_cursor, items_after_cursor
from rssnotify.dispatcher import dispatch
from rssnotify.feed_parser import DEFAULT_FRESHNESS
from rssnotify.poller import refresh_feeds
from rssnotify.senders import Sender

logger = logging.getLogger(__name__)

SLACK = timedelta(minutes=5)


def parse_update_times(spec: str) -> list[time]:
    """Expand an hour list such as ``"9-17"``, ``"8,12,17"`` or ``"7-9,18"``.

    Raises:
        ValueError: On a malformed part, a descending range, or an hour
            outside 0..23.
    """
    hours: set[int] = set()
    for part in spec.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            start_s, end_s = part.split("-", 1)
            start, end = int(start_s), int(end_s)
            if start > end:
                raise ValueError(f"Descending hour range: {part}")
            values = range(start, end + 1)
        else:
            values = [int(part)]
        for hour in values:
            if not 0 <= hour <= 23:
                raise ValueError(f"Hour out of range: {hour}")
            hours.add(hour)
    if not hours:
        raise ValueError(f"No update times in {spec!r}")
    return [time(hour=h) for h in sorted(hours)]


class DailySchedule:
    """Fixed times of day; nothing is due after the last one until midnight."""

    def __init__(self, times: Iterable[time]):
        self.times = sorted(times)

    def next_trigger(self, now: datetime, last_fired: datetime | None = None) -> datetime | None:
        candidates = [
            datetime.combine(now.date(), t, tzinfo=now.tzinfo) for t in self.times
        ]
        due = [
            c for c in candidates
            if c + SLACK >= now and (last_fired is None or c > last_fired)
        ]
        return min(due) if due else None

    def __repr__(self) -> str:
        return f"DailySchedule({', '.join(t.strftime('%H:%M') for t in self.times)})"


class CronSchedule:
    """Triggers from a cron expression."""

    def __init__(self, expression: str):
        if not croniter.is_valid(expression):
            raise ValueError(f"Invalid cron expression: {expression!r}")
        self.expression = expression

    def next_trigger(self, now: datetime, last_fired: datetime | None = None) -> datetime:
        base = now - SLACK
        if last_fired is not None and last_fired > base:
            base = last_fired
        return croniter(self.expression, base).get_next(datetime)

    def __repr__(self) -> str:
        return f"CronSchedule({self.expression!r})"


def build_schedule(update_times: str, cron: str | None = None):
    """A CronSchedule when a cron expression is given, a DailySchedule otherwise."""
    if cron:
        return CronSchedule(cron)
    return DailySchedule(parse_update_times(update_times))


@dataclass
class CycleReport:
    fetched: int = 0
    failed: int = 0
    new_items: int = 0
    sent: int = 0
    send_failures: int = 0


async def run_cycle(
    db: Database,
    sender: Sender,
    freshness: timedelta = DEFAULT_FRESHNESS,
    now: datetime | None = None,
) -> CycleReport:
    """Fetch all feeds, send each subscriber its new items, then advance cursors.

    New items are computed against the cursors as they stood before the
    cycle. Cursors advance even when sends fail; feeds whose fetch failed
    keep theirs.
    """
    now = now or datetime.now(timezone.utc)
    report = CycleReport()

    feeds = db.get_all_feeds()
    refreshed = await refresh_feeds(db, feeds, freshness, now=now)
    report.fetched = len(refreshed)
    report.failed = len(feeds) - len(refreshed)

    new_items_by_feed = {}
    for feed in feeds:
        if feed.id not in refreshed:
            continue
        new_items = items_after_cursor(refreshed[feed.id].items, feed.last_pushed_id)
        if new_items:
            logger.info("Feed '%s': %d new items", feed.name, len(new_items))
        new_items_by_feed[feed.id] = new_items
        report.new_items += len(new_items)

    subscribers = db.get_all_subscribers()
    results = await asyncio.gather(
        *(dispatch(s, new_items_by_feed, sender) for s in subscribers),
        return_exceptions=True,
    )
    for subscriber, result in zip(subscribers, results):
        if isinstance(result, Exception):
            logger.error("Dispatch to subscriber %s failed: %s", subscriber.id, result)
            continue
        report.sent += sum(1 for r in result if r.ok)
        report.send_failures += sum(1 for r in result if not r.ok)
        db.set_last_pushed(subscriber.id, now)

    for feed in feeds:
        if feed.id not in refreshed:
            continue
        cursor = advance_cursor(refreshed[feed.id].items, feed.last_pushed_id)
        if cursor != feed.last_pushed_id:
            db.update_feed_cursor(feed.id, cursor)

    logger.info(
        "Cycle complete: %d fetched, %d failed, %d new, %d sent, %d send failures",
        report.fetched, report.failed, report.new_items, report.sent, report.send_failures,
    )
    return report


class State(enum.Enum):
    WAITING = "waiting"
    RUNNING = "running"


class Scheduler:
    """Runs a cycle whenever the schedule's next trigger comes within SLACK.

    run_forever() has no stop condition; the loop ends when its task is
    cancelled or the process exits.
    """

    def __init__(
        self,
        db: Database,
        sender: Sender,
        schedule,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable = asyncio.sleep,
        freshness: timedelta = DEFAULT_FRESHNESS,
    ):
        self.db = db
        self.sender = sender
        self.schedule = schedule
        self.clock = clock
        self.sleep = sleep
        self.freshness = freshness
        self.state = State.WAITING
        self.last_fired: datetime | None = None

    async def step(self) -> None:
        """One pass of the state machine: run a due cycle or sleep towards the next one."""
        now = self.clock()
        trigger = self.schedule.next_trigger(now, self.last_fired)

        if trigger is None:
            midnight = datetime.combine(now.date() + timedelta(days=1), time(), tzinfo=now.tzinfo)
            logger.debug("No more triggers today, sleeping until midnight")
            await self.sleep((midnight - now).total_seconds())
            return

        delay = trigger - now
        if delay > SLACK:
            logger.debug("Next cycle at %s", trigger)
            await self.sleep((delay - SLACK).total_seconds())
            return

        self.state = State.RUNNING
        try:
            await run_cycle(self.db, self.sender, self.freshness)
        except Exception as e:
            logger.error("Cycle failed: %s", e)
        finally:
            self.last_fired = trigger
            self.state = State.WAITING

    async def run_forever(self) -> None:
        logger.info("Scheduler started (%s)", self.schedule)
        while True:
            await self.step()
