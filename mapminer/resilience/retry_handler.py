"""
Retry handling with linear backoff.
Bot detection and dead browsers bypass retry entirely and escalate to the caller.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Tuple

from mapminer.config import RetryConfig
from mapminer.errors import BrowserDisconnectedError, DetectionError

logger = logging.getLogger(__name__)


class RetryHandler:
    """Runs a coroutine with bounded retries."""

    NON_RETRYABLE = (DetectionError, BrowserDisconnectedError)

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """
        Initialize retry handler.

        Args:
            config: RetryConfig instance, uses defaults if None
            sleep: Awaitable sleep, injectable for tests
        """
        self.config = config or RetryConfig()
        self._sleep = sleep
        self.total_retries = 0

    async def execute_with_retry(
        self,
        func: Callable[..., Awaitable[Any]],
        *args,
        context: str = "",
        **kwargs
    ) -> Tuple[bool, Any]:
        """
        Execute coroutine function with retry logic.

        Args:
            func: Coroutine function to execute
            *args: Positional arguments for func
            context: Label used in log lines
            **kwargs: Keyword arguments for func

        Returns:
            Tuple of (success, result). On failure result is the last
            exception raised.

        Raises:
            DetectionError, BrowserDisconnectedError: immediately, without retrying
        """
        attempts = max(1, self.config.max_retries)
        last_error: Optional[BaseException] = None

        for attempt in range(1, attempts + 1):
            try:
                return True, await func(*args, **kwargs)
            except self.NON_RETRYABLE:
                raise
            except Exception as e:
                last_error = e
                logger.debug(f"{context or func.__name__}: attempt {attempt}/{attempts} failed: {e}")

            # Don't sleep after last attempt
            if attempt < attempts:
                self.total_retries += 1
                await self._sleep(self.config.base_delay * attempt)

        logger.warning(f"{context or func.__name__}: giving up after {attempts} attempts: {last_error}")
        return False, last_error

    def get_stats(self) -> dict:
        return {
            'total_retries': self.total_retries,
            'max_retries': self.config.max_retries,
            'base_delay': self.config.base_delay
        }
