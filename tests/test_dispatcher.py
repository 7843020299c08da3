"""Tests for per-subscriber item selection and dispatch."""

import asyncio
from datetime import datetime, timezone

from rssnotify.dispatcher import collect_items, dispatch, preview_since
from rssnotify.models import Collection, Feed, FeedContent, Item, Subscriber
from rssnotify.senders import Sender, SendError


class RecordingSender(Sender):
    def __init__(self, fail_on=()):
        super().__init__()
        self.sent = []
        self.fail_on = set(fail_on)

    async def send_message(self, chat_id, text):
        if any(marker in text for marker in self.fail_on):
            raise SendError("rejected")
        self.sent.append((chat_id, text))


def _subscriber(*collections):
    return Subscriber(id=1, collections=list(collections))


class TestCollectItems:
    def test_blacklist_beats_whitelist(self, item_factory):
        item = item_factory(1, title="Deep learning nomogram study")
        subscriber = _subscriber(
            Collection(feed_ids={10}, whitelist={"deep learning"}, blacklist={"nomogram"})
        )
        assert collect_items(subscriber, {10: [item]}) == []

    def test_only_subscribed_feeds(self, item_factory):
        subscriber = _subscriber(Collection(feed_ids={10}))
        new = {10: [item_factory(1)], 11: [item_factory(2)]}
        assert [i.guid for i in collect_items(subscriber, new)] == ["pubmed:1"]

    def test_keeps_feed_order(self, item_factory):
        subscriber = _subscriber(Collection(feed_ids={10}))
        new = {10: [item_factory(105), item_factory(104)]}
        assert [i.guid for i in collect_items(subscriber, new)] == ["pubmed:105", "pubmed:104"]

    def test_item_in_two_collections_sent_once(self, item_factory):
        item = item_factory(1, title="Renal MRI")
        subscriber = _subscriber(
            Collection(feed_ids={10}, whitelist={"renal"}),
            Collection(feed_ids={10, 11}),
        )
        new = {10: [item], 11: [item]}
        assert collect_items(subscriber, new) == [item]

    def test_each_collection_applies_its_own_rules(self, item_factory):
        renal = item_factory(1, title="Renal MRI")
        liver = item_factory(2, title="Liver MRI")
        subscriber = _subscriber(
            Collection(feed_ids={10}, whitelist={"renal"}),
            Collection(feed_ids={11}, whitelist={"liver"}),
        )
        new = {10: [renal, liver], 11: [renal, liver]}
        assert collect_items(subscriber, new) == [renal, liver]


class TestDispatch:
    def test_sends_surviving_items(self, item_factory):
        sender = RecordingSender()
        subscriber = _subscriber(Collection(feed_ids={10}, blacklist={"nomogram"}))
        new = {10: [item_factory(1, title="Kidney"), item_factory(2, title="A nomogram")]}

        results = asyncio.run(dispatch(subscriber, new, sender))

        assert [r.guid for r in results] == ["pubmed:1"]
        assert sender.sent == [(1, "Kidney")]

    def test_nothing_to_send(self):
        sender = RecordingSender()
        assert asyncio.run(dispatch(_subscriber(), {}, sender)) == []
        assert sender.sent == []

    def test_failed_item_does_not_block_the_rest(self, item_factory):
        sender = RecordingSender(fail_on={"Broken"})
        subscriber = _subscriber(Collection(feed_ids={10}))
        new = {10: [item_factory(1, title="Broken"), item_factory(2, title="Fine")]}

        results = asyncio.run(dispatch(subscriber, new, sender))

        assert [r.ok for r in results] == [False, True]
        assert sender.sent == [(1, "Fine")]


def test_preview_since_uses_stored_content(db):
    feed = db.add_feed(Feed(name="A", link="https://a.example/feed"))
    db.update_feed_content(feed.id, FeedContent(items=[
        Item(guid="pubmed:2", title="Renal new", published="Mon, 14 Apr 2025 10:00:00 +0000"),
        Item(guid="pubmed:1", title="Renal old", published="Mon, 07 Apr 2025 10:00:00 +0000"),
        Item(guid="pubmed:3", title="Liver new", published="Mon, 14 Apr 2025 11:00:00 +0000"),
    ]))
    db.update_feed_cursor(feed.id, 3)
    subscriber = _subscriber(Collection(feed_ids={feed.id}, whitelist={"renal"}))

    items = preview_since(db, subscriber, datetime(2025, 4, 10, tzinfo=timezone.utc))

    assert [i.guid for i in items] == ["pubmed:2"]
    assert db.get_feed(feed.id).last_pushed_id == 3
