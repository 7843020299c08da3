"""Shared test fixtures for rssnotify tests."""

import os
import tempfile

import pytest

from rssnotify.database import Database
from rssnotify.models import Item


SAMPLE_PUBMED_XML = """<?xml version="1.0" encoding="UTF-8"?>
<rss xmlns:dc="http://purl.org/dc/elements/1.1/" version="2.0">
  <channel>
    <title>pubmed: Radiology</title>
    <link>https://pubmed.ncbi.nlm.nih.gov/rss/journals/0401260/</link>
    <description>Radiology journal feed</description>
    <lastBuildDate>Mon, 14 Apr 2025 12:00:00 +0000</lastBuildDate>
    <item>
      <title>Prostate MRI in Active Surveillance</title>
      <link>https://pubmed.ncbi.nlm.nih.gov/105/</link>
      <description>&lt;p&gt;&lt;b&gt;ABSTRACT&lt;/b&gt;&lt;/p&gt;&lt;p&gt;Background Prostate MRI is used.&lt;/p&gt;&lt;p&gt;PMID:&lt;a href="https://pubmed.ncbi.nlm.nih.gov/105/"&gt;105&lt;/a&gt;&lt;/p&gt;</description>
      <guid isPermaLink="false">pubmed:105</guid>
      <pubDate>Mon, 14 Apr 2025 10:00:00 +0000</pubDate>
      <dc:source>Radiology</dc:source>
      <dc:identifier>pmid:105</dc:identifier>
      <dc:identifier>doi:10.1148/radiol.105</dc:identifier>
    </item>
    <item>
      <title>Renal Mass Characterization</title>
      <link>https://pubmed.ncbi.nlm.nih.gov/104/</link>
      <description>Renal masses were studied.</description>
      <guid isPermaLink="false">pubmed:104</guid>
      <pubDate>Sun, 13 Apr 2025 10:00:00 +0000</pubDate>
      <dc:source>Radiology</dc:source>
      <dc:identifier>pmid:104</dc:identifier>
      <dc:identifier>doi:10.1148/radiol.104</dc:identifier>
    </item>
    <item>
      <title>Liver Fat Quantification</title>
      <link>https://pubmed.ncbi.nlm.nih.gov/103/</link>
      <description>Liver fat was measured.</description>
      <guid isPermaLink="false">pubmed:103</guid>
      <pubDate>Sat, 12 Apr 2025 10:00:00 +0000</pubDate>
      <dc:source>Radiology</dc:source>
      <dc:identifier>pmid:103</dc:identifier>
    </item>
  </channel>
</rss>"""

SAMPLE_ATOM_XML = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Test Atom Feed</title>
  <link href="https://example.com"/>
  <updated>2026-02-13T10:00:00Z</updated>
  <entry>
    <title>Atom Entry 1</title>
    <link href="https://example.com/entry-1"/>
    <id>urn:uuid:entry-1</id>
    <summary>Summary of entry 1</summary>
    <updated>2026-02-13T10:00:00Z</updated>
  </entry>
</feed>"""

SAMPLE_NOT_A_FEED_XML = """<?xml version="1.0" encoding="UTF-8"?>
<html>
  <body>This is not a feed</body>
</html>"""


@pytest.fixture
def tmp_db_path():
    """Provide a temporary SQLite database path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        path = f.name
    os.unlink(path)
    yield path
    for suffix in ("", ".bak", "-wal", "-shm"):
        try:
            os.unlink(path + suffix)
        except OSError:
            pass


@pytest.fixture
def db(tmp_db_path):
    """A connected database on a fresh file."""
    database = Database(tmp_db_path)
    database.connect()
    yield database
    database.close()


@pytest.fixture
def sample_pubmed_xml():
    """PubMed-style RSS 2.0 with Dublin Core fields, items 105, 104, 103."""
    return SAMPLE_PUBMED_XML


@pytest.fixture
def sample_atom_xml():
    """Sample valid Atom XML."""
    return SAMPLE_ATOM_XML


@pytest.fixture
def sample_not_a_feed_xml():
    """Sample XML that is not a feed."""
    return SAMPLE_NOT_A_FEED_XML


def make_item(pmid: int, title: str = "", content: str = "", **kwargs) -> Item:
    """Build a PubMed-style item with a numeric guid."""
    return Item(
        guid=f"pubmed:{pmid}",
        title=title or f"Article {pmid}",
        content=content,
        identifiers=kwargs.pop("identifiers", f"pmid:{pmid}"),
        **kwargs,
    )


@pytest.fixture
def item_factory():
    return make_item
