import asyncio
import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

import mycdp

from mapminer.browser import BrowserSession
from mapminer.config import BrowserConfig
from mapminer.errors import BrowserDisconnectedError, TransientItemError


def fake_browser():
    browser = MagicMock()
    browser.stopped = False
    browser.main_tab = MagicMock()
    browser.main_tab.get = AsyncMock()
    browser.main_tab.evaluate = AsyncMock(return_value=True)
    browser.main_tab.send = AsyncMock()
    browser.get = AsyncMock(
        side_effect=lambda url, new_tab=False: MagicMock(evaluate=AsyncMock(), send=AsyncMock())
    )
    browser.stop = MagicMock(return_value=None)
    return browser


async def start_session(browser, profile_root):
    session = BrowserSession("workers", BrowserConfig(profile_root=str(profile_root), navigation_timeout=1))
    with patch("mapminer.browser.cdp_driver.start_async", AsyncMock(return_value=browser)) as start:
        await session.start()
    return session, start.call_args.kwargs


class TestBrowserSession:
    """Test suite for the CDP browser wrapper."""

    @pytest.fixture
    def browser(self):
        return fake_browser()

    @pytest.mark.asyncio
    async def test_start_uses_fresh_profile(self, browser, tmp_path):
        session, kwargs = await start_session(browser, tmp_path)
        assert session.is_connected()
        assert kwargs['user_data_dir'].startswith(str(tmp_path))
        assert os.path.isdir(kwargs['user_data_dir'])

    @pytest.mark.asyncio
    async def test_first_tab_reuses_main_tab(self, browser, tmp_path):
        session, _ = await start_session(browser, tmp_path)
        tabs = await session.open_tabs(3)
        assert tabs[0]._tab is browser.main_tab
        assert browser.get.await_count == 2
        assert [tab.index for tab in tabs] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_close_removes_profile(self, browser, tmp_path):
        session, kwargs = await start_session(browser, tmp_path)
        await session.close()
        browser.stop.assert_called_once()
        assert not os.path.exists(kwargs['user_data_dir'])
        assert not session.is_connected()

    @pytest.mark.asyncio
    async def test_new_tab_requires_running_browser(self, tmp_path):
        session = BrowserSession("workers", BrowserConfig(profile_root=str(tmp_path)))
        with pytest.raises(BrowserDisconnectedError):
            await session.new_tab()

    @pytest.mark.asyncio
    async def test_goto_timeout_is_transient(self, browser, tmp_path):
        session, _ = await start_session(browser, tmp_path)
        tab = await session.new_tab()
        browser.main_tab.get.side_effect = asyncio.TimeoutError
        with pytest.raises(TransientItemError):
            await tab.goto("https://www.google.com/maps/place/x")

    @pytest.mark.asyncio
    async def test_goto_on_dead_browser(self, browser, tmp_path):
        session, _ = await start_session(browser, tmp_path)
        tab = await session.new_tab()
        browser.stopped = True
        with pytest.raises(BrowserDisconnectedError):
            await tab.goto("https://www.google.com/maps/place/x")

    @pytest.mark.asyncio
    async def test_clear_data_modes(self, browser, tmp_path):
        session, _ = await start_session(browser, tmp_path)
        await session.open_tabs(2)
        browser.main_tab.send.reset_mock()

        await session.clear_data("light")
        assert browser.main_tab.send.await_count == 1

        await session.clear_data("full")
        assert browser.main_tab.send.await_count == 3
        # Page storage cleared on every tab
        assert browser.main_tab.evaluate.await_count == 1
        session.tabs[1]._tab.evaluate.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_clear_data_failure_is_logged(self, browser, tmp_path):
        session, _ = await start_session(browser, tmp_path)
        await session.new_tab()
        browser.main_tab.send.side_effect = RuntimeError("websocket closed")
        await session.clear_data("full")
        assert session.is_connected()

    @pytest.mark.asyncio
    async def test_new_tabs_block_images_and_media(self, browser, tmp_path):
        session, _ = await start_session(browser, tmp_path)
        with patch("mapminer.browser.mycdp.fetch.enable") as enable:
            tabs = await session.open_tabs(2)

        assert enable.call_count == 2
        patterns = enable.call_args.kwargs["patterns"]
        assert [str(p.resource_type.value) for p in patterns] == ["Image", "Media"]
        tabs[1]._tab.send.assert_awaited_once_with(enable.return_value)

        for tab in tabs:
            tab._tab.add_handler.assert_called_once_with(mycdp.fetch.RequestPaused, tab._fail_paused_request)

    @pytest.mark.asyncio
    async def test_paused_request_is_failed(self, browser, tmp_path):
        session, _ = await start_session(browser, tmp_path)
        tab = await session.new_tab()

        tab._fail_paused_request(MagicMock(request_id="interception-1"))

        browser.main_tab.feed_cdp.assert_called_once()

    @pytest.mark.asyncio
    async def test_blocking_disabled(self, browser, tmp_path):
        session = BrowserSession("workers", BrowserConfig(
            profile_root=str(tmp_path), block_images=False, block_media=False
        ))
        with patch("mapminer.browser.cdp_driver.start_async", AsyncMock(return_value=browser)):
            await session.start()
        await session.new_tab()

        browser.main_tab.send.assert_not_awaited()
        browser.main_tab.add_handler.assert_not_called()
