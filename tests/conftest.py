"""
Shared fixtures: in-memory browser sessions, tabs and extractors.

The fakes mimic the BrowserSession/BrowserTab surface closely enough for the
pipeline to run end to end without Chrome.
"""
import asyncio
from typing import Callable, Dict, List, Optional

import pytest

from mapminer.config import ScraperConfig
from mapminer.errors import BrowserDisconnectedError
from mapminer.models import WorkItem
from mapminer.utils import search_url

END_MARKER = '<span class="HlvSq">You\'ve reached the end of the list.</span>'

RECORD_FIELDS = [
    'phone', 'rating', 'reviews', 'category', 'address', 'website',
    'plusCode', 'openingHours', 'businessStatus', 'priceLevel',
]


def place_links(prefix: str, count: int, start: int = 0) -> List[str]:
    """Distinct place URLs like https://www.google.com/maps/place/<prefix>+<n>/@30.1,-97.7,17z"""
    return [
        f"https://www.google.com/maps/place/{prefix}+{n}/@30.{n},-97.{n},17z"
        for n in range(start, start + count)
    ]


def make_record(link: str, name: str = "Cafe", missing: int = 0) -> dict:
    record = {'name': name, 'link': link, 'coordinates': None}
    for i, field in enumerate(RECORD_FIELDS):
        record[field] = 'Not found' if i < missing else f"{field}-value"
    return record


async def fast_sleep(seconds):
    # Yield so concurrent actors interleave, but never actually wait
    await asyncio.sleep(0)


class RecordingSleep:
    """Fake sleep that remembers every requested delay."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds):
        self.calls.append(seconds)
        await asyncio.sleep(0)


class FakeTab:
    """
    Tab double.

    ``feeds`` maps a search term to its scroll pages: each scroll reveals
    one more batch of links, and the end-of-list marker shows once all are out.
    """

    def __init__(self, session=None, index: int = 0, feeds: Optional[Dict[str, List[List[str]]]] = None,
                 container: bool = True):
        self.session = session
        self.index = index
        self.feeds = feeds or {}
        self.container = container
        self.url = "about:blank"
        self.scrolls = 0
        self.visited: List[str] = []
        self.storage_clears = 0
        self.commands = []
        self.busy = False
        self.overlaps = 0

    async def goto(self, url: str):
        if self.session is not None and not self.session.is_connected():
            raise BrowserDisconnectedError(f"{self.session.name} browser disconnected")
        self.url = url
        self.visited.append(url)
        self.scrolls = 0
        await asyncio.sleep(0)

    def _feed(self) -> Optional[List[List[str]]]:
        for term, feed in self.feeds.items():
            if search_url(term) == self.url:
                return feed
        return None

    async def content(self) -> str:
        feed = self._feed()
        if feed is None:
            return "<html><body></body></html>"
        anchors = ''.join(
            f'<a href="{link}">place</a>' for batch in feed[:self.scrolls] for link in batch
        )
        end = END_MARKER if self.scrolls >= len(feed) else ''
        return f'<html><body><div role="feed">{anchors}{end}</div></body></html>'

    async def current_url(self) -> str:
        return self.url

    async def evaluate(self, script: str):
        if 'scrollBy' in script:
            self.scrolls += 1
            return None
        if 'querySelector' in script:
            return self.container and 'feed' in script
        return None

    async def clear_storage(self):
        self.storage_clears += 1

    async def send(self, command):
        self.commands.append(command)


class FakeSession:
    """BrowserSession double that counts lifecycle calls."""

    def __init__(self, name: str = "workers", tab_factory: Optional[Callable] = None):
        self.name = name
        self.tab_factory = tab_factory or (lambda session, index: FakeTab(session, index))
        self.connected = False
        self.tabs: List[FakeTab] = []
        self.starts = 0
        self.closes = 0
        self.clears: List[str] = []

    async def start(self):
        self.starts += 1
        self.connected = True
        self.tabs = []

    async def new_tab(self):
        tab = self.tab_factory(self, len(self.tabs))
        self.tabs.append(tab)
        return tab

    async def open_tabs(self, count: int):
        return [await self.new_tab() for _ in range(count)]

    def is_connected(self) -> bool:
        return self.connected

    async def clear_data(self, mode: str = "full"):
        self.clears.append(mode)

    async def close(self):
        self.closes += 1
        self.connected = False
        self.tabs = []


class FakeExtractor:
    """
    Extractor double.

    ``behaviours`` maps a URL to a callable ``(item, attempt) -> record``;
    it may raise or return None. Unlisted URLs yield a complete record.
    """

    def __init__(self, behaviours: Optional[Dict[str, Callable]] = None, on_extract: Optional[Callable] = None):
        self.behaviours = behaviours or {}
        self.on_extract = on_extract
        self.calls: List[WorkItem] = []
        self.attempts: Dict[str, int] = {}
        self.overlaps = 0

    async def extract(self, tab, item: WorkItem):
        self.calls.append(item)
        self.attempts[item.url] = self.attempts.get(item.url, 0) + 1
        if tab.busy:
            self.overlaps += 1
        tab.busy = True
        try:
            if self.on_extract is not None:
                self.on_extract(item)
            await asyncio.sleep(0)
            behaviour = self.behaviours.get(item.url)
            if behaviour is None:
                return make_record(item.url, name=f"Place {len(self.calls)}")
            return behaviour(item, self.attempts[item.url])
        finally:
            tab.busy = False


@pytest.fixture
def config(tmp_path):
    """Config writing under tmp_path; delays are irrelevant with fast_sleep."""
    config = ScraperConfig(
        workers=3,
        link_workers=1,
        output_dir=str(tmp_path / "results"),
        state_dir=str(tmp_path / "state"),
    )
    config.scroll.idle_timeout = 5.0
    return config


@pytest.fixture
def worker_session():
    return FakeSession("workers")
