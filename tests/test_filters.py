"""Tests for keyword filtering."""

from rssnotify.filters import contains_keyword, passes
from rssnotify.models import Item


def _item(title="", content=""):
    return Item(guid="pubmed:1", title=title, content=content)


class TestContainsKeyword:
    def test_matches_substring_in_title(self):
        assert contains_keyword(_item(title="Prostate MRI"), ["prostat"])

    def test_title_is_lowercased(self):
        assert contains_keyword(_item(title="RENAL Cell Carcinoma"), ["renal"])

    def test_uppercase_keyword_misses_title(self):
        assert not contains_keyword(_item(title="hcc surveillance"), ["HCC"])

    def test_body_is_case_sensitive(self):
        item = _item(content="Patients with HCC were included.")
        assert contains_keyword(item, ["HCC"])
        assert not contains_keyword(item, ["hcc"])

    def test_no_keywords(self):
        assert not contains_keyword(_item(title="Anything"), [])

    def test_empty_item(self):
        assert not contains_keyword(_item(), ["renal"])


class TestPasses:
    def test_empty_lists_pass_everything(self):
        assert passes(_item(title="Anything"), set(), set())

    def test_empty_item_passes_empty_rules(self):
        assert passes(_item(), set(), set())

    def test_whitelist_required_when_not_empty(self):
        assert passes(_item(title="Kidney stones"), {"kidney"}, set())
        assert not passes(_item(title="Brain tumours"), {"kidney"}, set())

    def test_blacklist_rejects_regardless_of_whitelist(self):
        item = _item(title="Deep learning nomogram study")
        assert not passes(item, set(), {"nomogram"})
        assert not passes(item, {"deep learning"}, {"nomogram"})

    def test_blacklist_without_match_passes(self):
        assert passes(_item(title="Liver MRI"), set(), {"nomogram"})

    def test_blacklist_matches_body(self):
        item = _item(title="A study", content="We built a nomogram.")
        assert not passes(item, set(), {"nomogram"})
