"""Keyword whitelist/blacklist filtering of feed items."""

import logging
from collections.abc import Iterable

from rssnotify.models import Item

logger = logging.getLogger(__name__)


def contains_keyword(item: Item, keywords: Iterable[str]) -> bool:
    """Return True if any keyword is a substring of the item's title or body.

    The title is lower-cased before matching; the body and the keywords are
    compared as-is.
    """
    title = (item.title or "").lower()
    content = item.content or ""
    for keyword in keywords:
        if keyword in content or keyword in title:
            logger.debug("Keyword matched: %s", keyword)
            return True
    return False


def passes(item: Item, whitelist: Iterable[str], blacklist: Iterable[str]) -> bool:
    """Apply a collection's keyword rules to an item.

    An empty whitelist lets everything through; a blacklist hit always rejects.
    """
    whitelist = list(whitelist)
    if whitelist and not contains_keyword(item, whitelist):
        return False
    return not contains_keyword(item, blacklist)
