"""Tests for the preset tables."""

from rssnotify.models import Feed
from rssnotify.presets import DEFAULT_FEEDS, FEEDS, PRESETS, available_presets, get_preset


def test_available_presets():
    assert available_presets() == ["abdomen", "default_blacklist", "radiology_journals", "uro"]


def test_lookup_ignores_case():
    assert get_preset(" Default_Blacklist ") is PRESETS["default_blacklist"]
    assert get_preset("missing") is None


def test_default_feeds_are_the_radiology_journals():
    ids = {Feed.from_link(link, name).id for name, link in DEFAULT_FEEDS}
    assert PRESETS["radiology_journals"].target == FEEDS
    assert ids == set(PRESETS["radiology_journals"].values)
