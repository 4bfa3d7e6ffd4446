"""
Shared FIFO of pending work items.

Discovery produces into it, the worker pool consumes from it. Every
mutation passes through a single asyncio lock so exactly one consumer
removes the head at a time; the lock is never held across I/O.
"""

import asyncio
import logging
from collections import deque
from typing import Deque, Iterable, List, Optional

from mapminer.models import WorkItem

logger = logging.getLogger(__name__)


class WorkQueue:
    """Mutex-guarded FIFO with a discovery-complete flag."""

    def __init__(self):
        self._items: Deque[WorkItem] = deque()
        self._lock = asyncio.Lock()
        self._discovery_complete = False
        self._abandoned = False
        self.total_enqueued = 0

    async def enqueue(self, items: Iterable[WorkItem]) -> int:
        """
        Append items in order.

        Args:
            items: Work items to add

        Returns:
            Number of items actually queued (0 once the queue is abandoned)
        """
        batch = list(items)
        async with self._lock:
            if self._abandoned:
                logger.debug(f"Queue abandoned, dropping {len(batch)} late items")
                return 0
            self._items.extend(batch)
            self.total_enqueued += len(batch)
        return len(batch)

    async def try_dequeue(self) -> Optional[WorkItem]:
        """
        Remove and return the head item.

        Returns:
            The next WorkItem, or None if the queue is empty. Callers back
            off on None instead of spinning.
        """
        async with self._lock:
            if not self._items:
                return None
            return self._items.popleft()

    async def abandon(self) -> List[WorkItem]:
        """
        Drop every pending item and refuse later ones.

        Returns:
            The dropped items
        """
        async with self._lock:
            dropped = list(self._items)
            self._items.clear()
            self._abandoned = True
            self._discovery_complete = True
        return dropped

    def mark_discovery_complete(self):
        self._discovery_complete = True

    @property
    def discovery_complete(self) -> bool:
        return self._discovery_complete

    @property
    def abandoned(self) -> bool:
        return self._abandoned

    @property
    def drained(self) -> bool:
        """Discovery has stopped producing and nothing is left."""
        return self._discovery_complete and not self._items

    def __len__(self) -> int:
        return len(self._items)
