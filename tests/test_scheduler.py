"""Tests for trigger computation, the scheduler state machine and the cycle."""

import asyncio
from datetime import datetime, time, timezone

import pytest

from rssnotify import poller, scheduler as scheduler_module
from rssnotify.feed_parser import FeedFetchError
from rssnotify.models import Collection, Feed, FeedContent, Subscriber
from rssnotify.scheduler import (
    CronSchedule,
    DailySchedule,
    Scheduler,
    State,
    build_schedule,
    parse_update_times,
    run_cycle,
)
from rssnotify.senders import Sender, SendError


class RecordingSender(Sender):
    def __init__(self, fail=False):
        super().__init__()
        self.sent = []
        self.fail = fail

    async def send_message(self, chat_id, text):
        if self.fail:
            raise SendError("transport down")
        self.sent.append((chat_id, text))


def _at(hour, minute=0):
    return datetime(2025, 4, 14, hour, minute)


class TestParseUpdateTimes:
    def test_range(self):
        assert parse_update_times("9-17") == [time(h) for h in range(9, 18)]

    def test_list_and_mixed(self):
        assert parse_update_times("8,12,17") == [time(8), time(12), time(17)]
        assert parse_update_times("18, 7-9") == [time(7), time(8), time(9), time(18)]

    @pytest.mark.parametrize("spec", ["17-9", "24", "-1", "x", ""])
    def test_invalid(self, spec):
        with pytest.raises(ValueError):
            parse_update_times(spec)


class TestDailySchedule:
    def test_next_trigger(self):
        schedule = DailySchedule([time(9), time(17)])
        assert schedule.next_trigger(_at(8, 56)) == _at(9)
        assert schedule.next_trigger(_at(12)) == _at(17)

    def test_just_missed_trigger_still_due(self):
        schedule = DailySchedule([time(9), time(17)])
        assert schedule.next_trigger(_at(9, 2)) == _at(9)

    def test_fired_trigger_is_skipped(self):
        schedule = DailySchedule([time(9), time(17)])
        assert schedule.next_trigger(_at(9, 2), last_fired=_at(9)) == _at(17)

    def test_none_left_today(self):
        assert DailySchedule([time(9)]).next_trigger(_at(18)) is None


class TestCronSchedule:
    def test_next_trigger(self):
        schedule = CronSchedule("0 * * * *")
        assert schedule.next_trigger(_at(8, 56)) == _at(9)
        assert schedule.next_trigger(_at(9, 1), last_fired=_at(9)) == _at(10)

    def test_invalid_expression(self):
        with pytest.raises(ValueError):
            CronSchedule("every hour")

    def test_build_schedule(self):
        assert isinstance(build_schedule("9-17"), DailySchedule)
        assert isinstance(build_schedule("9-17", "30 8 * * 1-5"), CronSchedule)


class TestSchedulerStep:
    def _scheduler(self, monkeypatch, now, cycle=None):
        calls = []
        sleeps = []

        async def fake_cycle(db, sender, freshness):
            calls.append(sched.state)
            if cycle:
                await cycle()

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        monkeypatch.setattr(scheduler_module, "run_cycle", fake_cycle)
        sched = Scheduler(
            db=None,
            sender=None,
            schedule=DailySchedule([time(9), time(17)]),
            clock=lambda: now,
            sleep=fake_sleep,
        )
        return sched, calls, sleeps

    def test_runs_within_slack(self, monkeypatch):
        sched, calls, sleeps = self._scheduler(monkeypatch, _at(8, 56))

        asyncio.run(sched.step())

        assert calls == [State.RUNNING]
        assert sleeps == []
        assert sched.last_fired == _at(9)
        assert sched.state is State.WAITING

    def test_sleeps_until_slack_window(self, monkeypatch):
        sched, calls, sleeps = self._scheduler(monkeypatch, _at(8))

        asyncio.run(sched.step())

        assert calls == []
        assert sleeps == [55 * 60]

    def test_after_firing_waits_for_next_trigger(self, monkeypatch):
        sched, calls, sleeps = self._scheduler(monkeypatch, _at(8, 56))

        asyncio.run(sched.step())
        asyncio.run(sched.step())

        assert len(calls) == 1
        assert sleeps == [(_at(16, 55) - _at(8, 56)).total_seconds()]

    def test_sleeps_until_midnight_when_done(self, monkeypatch):
        sched, calls, sleeps = self._scheduler(monkeypatch, _at(23))

        asyncio.run(sched.step())

        assert sleeps == [3600]

    def test_cycle_error_is_contained(self, monkeypatch):
        async def boom():
            raise RuntimeError("store exploded")

        sched, calls, sleeps = self._scheduler(monkeypatch, _at(8, 58), cycle=boom)

        asyncio.run(sched.step())

        assert sched.state is State.WAITING
        assert sched.last_fired == _at(9)


class TestRunCycle:
    NOW = datetime(2025, 4, 14, 9, 0, tzinfo=timezone.utc)

    def _setup(self, db, cursor_a=100, cursor_b=100):
        a = db.add_feed(Feed(name="A", link="https://a.example/feed", last_pushed_id=cursor_a))
        b = db.add_feed(Feed(name="B", link="https://b.example/feed", last_pushed_id=cursor_b))
        db.add_subscriber(Subscriber(id=1, collections=[Collection(feed_ids={a.id, b.id})]))
        return a, b

    def test_failed_feed_does_not_block_others(self, db, monkeypatch, item_factory):
        a, b = self._setup(db)
        b_content = FeedContent(items=[item_factory(102), item_factory(101), item_factory(100)])

        def fake_fetch(link):
            if link == a.link:
                raise FeedFetchError("Could not reach URL: timed out")
            return b_content

        monkeypatch.setattr(poller, "fetch_and_parse", fake_fetch)
        sender = RecordingSender()

        report = asyncio.run(run_cycle(db, sender, now=self.NOW))

        assert report.fetched == 1
        assert report.failed == 1
        assert report.sent == 2
        assert [text for _, text in sender.sent] == ["Article 102", "Article 101"]
        assert db.get_feed(a.id).last_pushed_id == 100
        assert db.get_feed(b.id).last_pushed_id == 102
        assert len(db.get_feed(b.id).content.items) == 3
        assert db.get_subscriber(1).last_pushed_at == self.NOW

    def test_second_cycle_sends_nothing(self, db, monkeypatch, item_factory):
        self._setup(db)
        content = FeedContent(items=[item_factory(101), item_factory(100)])
        monkeypatch.setattr(poller, "fetch_and_parse", lambda link: content)
        sender = RecordingSender()

        asyncio.run(run_cycle(db, sender, now=self.NOW))
        asyncio.run(run_cycle(db, sender, now=self.NOW))

        # Both feeds carry the same items; each is sent once
        assert len(sender.sent) == 1

    def test_new_feed_sets_cursor_without_sending(self, db, monkeypatch, item_factory):
        a, b = self._setup(db, cursor_a=None, cursor_b=None)
        content = FeedContent(items=[item_factory(7), item_factory(6)])
        monkeypatch.setattr(poller, "fetch_and_parse", lambda link: content)
        sender = RecordingSender()

        report = asyncio.run(run_cycle(db, sender, now=self.NOW))

        assert report.new_items == 0
        assert sender.sent == []
        assert db.get_feed(a.id).last_pushed_id == 7

    def test_cursor_advances_when_sends_fail(self, db, monkeypatch, item_factory):
        a, _ = self._setup(db)
        content = FeedContent(items=[item_factory(101)])
        monkeypatch.setattr(poller, "fetch_and_parse", lambda link: content)

        report = asyncio.run(run_cycle(db, RecordingSender(fail=True), now=self.NOW))

        assert report.send_failures == 1
        assert db.get_feed(a.id).last_pushed_id == 101

    def test_fresh_feed_is_not_refetched(self, db, monkeypatch, item_factory):
        a, b = self._setup(db)
        fresh = FeedContent(
            last_build_date="Mon, 14 Apr 2025 08:50:00 +0000",
            items=[item_factory(101)],
        )
        db.update_feed_content(a.id, fresh)
        db.update_feed_content(b.id, fresh)
        fetched = []
        monkeypatch.setattr(poller, "fetch_and_parse", lambda link: fetched.append(link))

        report = asyncio.run(run_cycle(db, RecordingSender(), now=self.NOW))

        assert fetched == []
        assert report.fetched == 2
        assert report.new_items == 2
