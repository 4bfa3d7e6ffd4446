"""
Chrome sessions driven through SeleniumBase CDP mode.

Two sessions live for a whole run: one for link discovery and one for data
extraction. Each tab is used by exactly one actor at a time.
"""

import asyncio
import inspect
import logging
import shutil
import tempfile
from typing import List, Optional

import mycdp
from seleniumbase import cdp_driver

from mapminer.config import BrowserConfig
from mapminer.errors import BrowserDisconnectedError, TransientItemError

logger = logging.getLogger(__name__)

CLEAR_PAGE_STORAGE_JS = """
(() => {
    try { localStorage.clear(); } catch (e) {}
    try { sessionStorage.clear(); } catch (e) {}
    document.cookie.split(';').forEach((c) => {
        document.cookie = c.replace(/^ +/, '').replace(/=.*/, '=;expires=' + new Date().toUTCString() + ';path=/');
    });
    return true;
})()
"""


class BrowserTab:
    """One tab of a BrowserSession."""

    def __init__(self, tab, session: "BrowserSession", index: int):
        self._tab = tab
        self.session = session
        self.index = index

    async def goto(self, url: str):
        """
        Navigate to ``url``.

        Raises:
            TransientItemError: on navigation timeout
            BrowserDisconnectedError: if the browser process is gone
        """
        if not self.session.is_connected():
            raise BrowserDisconnectedError(f"{self.session.name} browser disconnected")
        timeout = self.session.config.navigation_timeout
        try:
            await asyncio.wait_for(self._tab.get(url), timeout=timeout)
        except asyncio.TimeoutError:
            raise TransientItemError(f"Navigation timeout after {timeout}s: {url}")

    async def content(self) -> str:
        return await self._tab.get_content()

    async def current_url(self) -> str:
        return await self._tab.evaluate("window.location.href")

    async def evaluate(self, script: str):
        return await self._tab.evaluate(script)

    async def clear_storage(self):
        """Clear page-local storage and cookies visible to the current page."""
        try:
            await self._tab.evaluate(CLEAR_PAGE_STORAGE_JS)
        except Exception as e:
            logger.debug(f"Page storage clear skipped on {self.session.name} tab {self.index}: {e}")

    async def send(self, command):
        return await self._tab.send(command)

    async def block_resources(self, resource_types: List[str]):
        """Fail requests for the given CDP resource types (e.g. "Image") before they go out."""
        if not resource_types:
            return
        self._tab.add_handler(mycdp.fetch.RequestPaused, self._fail_paused_request)
        await self._tab.send(mycdp.fetch.enable(patterns=[
            mycdp.fetch.RequestPattern(resource_type=mycdp.network.ResourceType(resource_type))
            for resource_type in resource_types
        ]))

    def _fail_paused_request(self, event):
        # The paused request blocks the tab, so answer without awaiting the reply
        self._tab.feed_cdp(mycdp.fetch.fail_request(
            event.request_id, mycdp.network.ErrorReason.BLOCKED_BY_CLIENT
        ))


class BrowserSession:
    """A Chrome process with a throwaway profile directory."""

    def __init__(self, name: str, config: Optional[BrowserConfig] = None):
        """
        Args:
            name: Label used in logs ("discovery", "workers")
            config: BrowserConfig instance, uses defaults if None
        """
        self.name = name
        self.config = config or BrowserConfig()
        self._browser = None
        self._profile_dir: Optional[str] = None
        self.tabs: List[BrowserTab] = []

    async def start(self):
        """Launch Chrome with a fresh profile directory."""
        self._profile_dir = tempfile.mkdtemp(prefix=f"mapminer-{self.name}-", dir=self.config.profile_root)
        logger.info(f"Launching {self.name} browser (profile: {self._profile_dir})")
        self._browser = await cdp_driver.start_async(
            headless=self.config.headless,
            user_data_dir=self._profile_dir,
            browser_args=list(self.config.browser_args),
            browser_executable_path=self.config.browser_executable_path,
            lang=self.config.lang,
        )
        self.tabs = []

    async def new_tab(self) -> BrowserTab:
        """Open a tab, reusing the initial blank tab for the first one."""
        if self._browser is None:
            raise BrowserDisconnectedError(f"{self.name} browser is not running")
        main_tab = getattr(self._browser, 'main_tab', None)
        if not self.tabs and main_tab is not None:
            raw = main_tab
        else:
            raw = await self._browser.get("about:blank", new_tab=True)
        tab = BrowserTab(raw, self, len(self.tabs))
        await tab.block_resources(self.config.blocked_resource_types())
        self.tabs.append(tab)
        return tab

    async def open_tabs(self, count: int) -> List[BrowserTab]:
        return [await self.new_tab() for _ in range(count)]

    def is_connected(self) -> bool:
        if self._browser is None:
            return False
        return not getattr(self._browser, 'stopped', False)

    async def clear_data(self, mode: str = "full"):
        """
        Clear browser data.

        Args:
            mode: "full" wipes cache, cookies and page storage; "light" only cookies
        """
        if not self.tabs or not self.is_connected():
            return
        tab = self.tabs[0]
        try:
            if mode == "full":
                await tab.send(mycdp.network.clear_browser_cache())
                await tab.send(mycdp.network.clear_browser_cookies())
                for each in self.tabs:
                    await each.clear_storage()
                logger.debug(f"{self.name}: cache, cookies and storage cleared")
            else:
                await tab.send(mycdp.network.clear_browser_cookies())
                logger.debug(f"{self.name}: cookies cleared")
        except Exception as e:
            logger.warning(f"{self.name} browser clean failed: {e}")

    async def close(self):
        """Stop Chrome and delete its profile directory."""
        browser, self._browser = self._browser, None
        self.tabs = []
        if browser is not None:
            try:
                result = browser.stop()
                if inspect.isawaitable(result):
                    await result
                logger.info(f"{self.name} browser closed")
            except Exception as e:
                logger.error(f"Failed to close {self.name} browser: {e}")
        if self._profile_dir:
            shutil.rmtree(self._profile_dir, ignore_errors=True)
            logger.debug(f"Deleted profile dir {self._profile_dir}")
            self._profile_dir = None
