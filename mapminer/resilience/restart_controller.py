"""
Restart control for the worker browser.
Relaunches the whole extraction browser after a bot detection, within a
fixed per-batch budget.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List

logger = logging.getLogger(__name__)


class RestartController:
    """Tears down and relaunches the worker-pool browser."""

    def __init__(
        self,
        session,
        tab_count: int,
        max_restarts: int = 2,
        backoff: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """
        Initialize controller with the session it manages.

        Args:
            session: BrowserSession used by the worker pool
            tab_count: Tabs to recreate, one per worker
            max_restarts: Restart budget per batch
            backoff: Seconds to wait per attempt number before relaunching
            sleep: Awaitable sleep, injectable for tests
        """
        self.session = session
        self.tab_count = tab_count
        self.max_restarts = max_restarts
        self.backoff = backoff
        self._sleep = sleep
        self.restart_count = 0
        self.total_restarts = 0

    @property
    def budget_exhausted(self) -> bool:
        return self.restart_count >= self.max_restarts

    def reset_budget(self):
        """Start a fresh budget for a new batch."""
        self.restart_count = 0

    async def restart(self) -> List:
        """
        Close the browser, wait, relaunch with a clean profile.

        Returns:
            The recreated tabs, one per worker

        Raises:
            RuntimeError: if called with the budget already exhausted
        """
        if self.budget_exhausted:
            raise RuntimeError(f"Restart budget ({self.max_restarts}) exhausted")

        self.restart_count += 1
        self.total_restarts += 1
        attempt = self.restart_count
        logger.warning(f"Worker browser restart #{attempt}/{self.max_restarts}: closing browser")

        await self.session.close()

        wait_time = attempt * self.backoff
        logger.info(f"Waiting {wait_time:.0f}s before relaunch")
        await self._sleep(wait_time)

        await self.session.start()
        tabs = await self.session.open_tabs(self.tab_count)
        await self.session.clear_data("full")
        logger.info(f"Worker browser restarted with {len(tabs)} fresh tabs")
        return tabs

    def get_stats(self) -> dict:
        return {
            'restarts_this_batch': self.restart_count,
            'total_restarts': self.total_restarts,
            'max_restarts': self.max_restarts,
        }
