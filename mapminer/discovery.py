"""
Streaming link discovery for map-search result feeds.
Scrolls the results container and hands newly found place links to a
callback as soon as they appear.
"""

import asyncio
import inspect
import json
import logging
import time
from typing import Awaitable, Callable, List, Optional, Set, Union

from bs4 import BeautifulSoup
from urllib.parse import urljoin

from mapminer.config import ScrollConfig
from mapminer.errors import DiscoveryError
from mapminer.resilience.detection import BotDetector
from mapminer.utils import is_place_url, random_delay, search_url

logger = logging.getLogger(__name__)

BatchCallback = Callable[[List[str]], Union[None, Awaitable[None]]]
ProgressCallback = Callable[[str, int], None]


class LinkDiscovery:
    """Discovers place links for a search term by scrolling its results feed."""

    # Tried in order, first match wins
    SCROLL_CONTAINER_SELECTORS = [
        'div[role="feed"]',
        'div.m6QErb[aria-label]',
        'div.m6QErb',
        '[aria-label*="Results"]',
        'div[tabindex="-1"][role="region"]',
        'div.e07Vkf',
    ]
    END_OF_LIST_SELECTOR = 'span.HlvSq'
    END_OF_LIST_TEXT = "reached the end of the list"

    def __init__(
        self,
        config: Optional[ScrollConfig] = None,
        search_url_template: str = "https://www.google.com/maps/search/{query}",
        detector: Optional[BotDetector] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            config: ScrollConfig instance, uses defaults if None
            search_url_template: URL template with a ``{query}`` placeholder
            detector: Optional BotDetector checked on the search page
            sleep: Awaitable sleep, injectable for tests
            clock: Monotonic clock, injectable for tests
        """
        self.config = config or ScrollConfig()
        self.search_url_template = search_url_template
        self.detector = detector
        self._sleep = sleep
        self._clock = clock

    async def find_scroll_container(self, tab) -> Optional[str]:
        """
        Locate the scrollable results container.

        Returns:
            The first selector that matches, or None
        """
        for selector in self.SCROLL_CONTAINER_SELECTORS:
            try:
                found = await tab.evaluate(f"document.querySelector({json.dumps(selector)}) !== null")
            except Exception as e:
                logger.debug(f"Selector {selector} check failed: {e}")
                continue
            if found:
                logger.debug(f"Found scroll area: {selector}")
                return selector
        logger.warning("Could not find scroll area - results layout may have changed")
        return None

    def extract_links(self, html: str, base_url: str) -> List[str]:
        """Pull place links out of rendered HTML, in document order."""
        soup = BeautifulSoup(html, 'html.parser')
        links = []
        for anchor in soup.find_all('a', href=True):
            href = urljoin(base_url, anchor['href'])
            if is_place_url(href) and href not in links:
                links.append(href)
        return links

    def reached_end(self, html: str) -> bool:
        soup = BeautifulSoup(html, 'html.parser')
        marker = soup.select_one(self.END_OF_LIST_SELECTOR)
        return bool(marker and self.END_OF_LIST_TEXT in marker.get_text())

    async def stream_links(
        self,
        tab,
        term: str,
        on_batch: BatchCallback,
        on_progress: Optional[ProgressCallback] = None,
        should_stop: Optional[Callable[[], bool]] = None
    ) -> int:
        """
        Scroll the result feed for ``term`` and stream new links.

        Args:
            tab: Tab to drive (used exclusively by this call)
            term: Search term
            on_batch: Called with each non-empty list of newly seen links
            on_progress: Optional ``(term, links_found)`` callback
            should_stop: Optional poll; scrolling ends as soon as it returns True

        Returns:
            Total number of distinct links found

        Raises:
            DiscoveryError: if the search page cannot be loaded or is a bot challenge
        """
        url = search_url(term, self.search_url_template)
        logger.info(f"Searching for \"{term}\"")
        try:
            await tab.goto(url)
        except Exception as e:
            raise DiscoveryError(f"Could not load search page for \"{term}\": {e}") from e
        await self._sleep(self.config.page_load_wait)

        if self.detector is not None:
            html = await tab.content()
            if self.detector.detect(html, await tab.current_url()):
                raise DiscoveryError(f"Bot challenge on search page for \"{term}\"")

        selector = await self.find_scroll_container(tab)
        if selector is None:
            return 0
        scroll_js = (
            f"document.querySelector({json.dumps(selector)})"
            f".scrollBy({{top: {int(self.config.scroll_offset)}, behavior: 'smooth'}})"
        )

        seen: Set[str] = set()
        last_new_at = self._clock()
        scroll_count = 0
        consecutive_empty = 0
        max_empty = self.config.max_consecutive_empty if self.config.smart_scrolling else None

        while self._clock() - last_new_at < self.config.idle_timeout:
            if should_stop is not None and should_stop():
                logger.info(f"Discovery for \"{term}\" stopped early with {len(seen)} links")
                break
            if max_empty is not None and consecutive_empty >= max_empty:
                logger.debug(f"Smart scrolling: {consecutive_empty} empty scrolls, stopping")
                break
            scroll_count += 1
            try:
                await tab.evaluate(scroll_js)
                await self._sleep(random_delay(self.config.scroll_delay_min, self.config.scroll_delay_max))

                html = await tab.content()
                new_links = [link for link in self.extract_links(html, url) if link not in seen]

                if new_links:
                    seen.update(new_links)
                    last_new_at = self._clock()
                    consecutive_empty = 0
                    result = on_batch(new_links)
                    if inspect.isawaitable(result):
                        await result
                    if on_progress is not None:
                        on_progress(term, len(seen))
                else:
                    consecutive_empty += 1

                logger.debug(f"Scrolling... {len(seen)} places found (scroll {scroll_count})")

                if self.config.check_end_of_list and self.reached_end(html):
                    logger.info("End of list detected")
                    break
            except Exception as e:
                # Transient per-scroll failures never end discovery
                logger.warning(f"Scroll error at {scroll_count} ({type(e).__name__}): {e}")
                await self._sleep(self.config.scroll_delay_min)

        logger.info(f"Collected {len(seen)} place links for \"{term}\"")
        return len(seen)
