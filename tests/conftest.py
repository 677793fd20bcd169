"""
Shared fixtures: an in-memory page source and snapshot store.
"""

import json
from typing import Dict, Optional

import pytest

from imagecat.core.config import CatalogSettings
from imagecat.core.engine import CrawlEngine
from imagecat.core.errors import UpstreamFetchFailure
from imagecat.core.store import MemorySnapshotStore
from imagecat.crawler.fetcher import PageFetcher


def directory_page(*slugs: str) -> str:
    """Markup shaped like one upstream directory page listing ``slugs``"""
    cards = []
    for slug in slugs:
        cards.append(
            f'<div class="card">'
            f'<a href="/directory/image/{slug}/overview"><h3>{slug}</h3></a>'
            f'<a class="badge" href="/directory/image/{slug}/versions">latest</a>'
            f'<span class="tag">FIPS</span>'
            f'</div>'
        )
    return (
        '<html><body><nav><a href="/directory">Directory</a></nav>'
        + "".join(cards)
        + '<a href="/directory/2">Next</a></body></html>'
    )


class StaticPageFetcher(PageFetcher):
    """Pages from a dict; missing pages are empty, ``failing`` pages raise"""

    def __init__(self, pages: Optional[Dict[int, str]] = None, failing=()):
        self.pages = dict(pages or {})
        self.failing = set(failing)
        self.requested = []

    async def fetch(self, page: int) -> str:
        self.requested.append(page)
        if page in self.failing:
            raise UpstreamFetchFailure(page, status=503)
        return self.pages.get(page, "")


def snapshot_blob(**fields) -> str:
    return json.dumps(fields)


@pytest.fixture
def settings():
    return CatalogSettings(fetch_retries=0)


@pytest.fixture
def store():
    return MemorySnapshotStore()


@pytest.fixture
def make_engine(store, settings):
    def _make(pages=None, failing=(), **overrides):
        fetcher = StaticPageFetcher(pages, failing)
        engine_settings = settings.model_copy(update=overrides) if overrides else settings
        return CrawlEngine(store=store, fetcher=fetcher, settings=engine_settings)
    return _make
