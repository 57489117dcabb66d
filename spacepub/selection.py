from __future__ import annotations

from typing import Iterable

from .config import PublishConfig
from .space import PageRecord

SHARE_MARKER = "pub"


def build_catalog(pages: Iterable[PageRecord]) -> dict[str, PageRecord]:
    """Index pages by name; a later record for a name replaces an earlier one."""
    return {page.name: page for page in pages}


def matches_tags(page: PageRecord, config: PublishConfig) -> bool:
    if not config.tags or not page.tags:
        return False
    return any(tag in config.tags for tag in page.tags)


def matches_prefixes(page: PageRecord, config: PublishConfig) -> bool:
    if not config.prefixes:
        return False
    return any(page.name.startswith(prefix) for prefix in config.prefixes)


def is_shared(page: PageRecord) -> bool:
    share = page.share
    if not share:
        return False
    if not isinstance(share, (list, tuple, set, frozenset)):
        share = [share]
    return SHARE_MARKER in share


def is_published(page: PageRecord, config: PublishConfig) -> bool:
    if isinstance(page.name, str) and (matches_tags(page, config) or matches_prefixes(page, config)):
        return True
    return is_shared(page)


def select_published_pages(pages: Iterable[PageRecord], config: PublishConfig) -> frozenset[str]:
    catalog = build_catalog(pages)
    if config.publish_all:
        return frozenset(catalog)
    return frozenset(name for name, page in catalog.items() if is_published(page, config))
