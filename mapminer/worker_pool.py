"""
Worker pool that drains the shared queue.

One worker per tab of the extraction browser. Workers talk to each other
and to the scheduler only through the signals in PoolSignals and the
BatchCollector; nothing else is shared.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from mapminer.callbacks import CancelSignal, ExtractionCallbacks
from mapminer.config import ScraperConfig
from mapminer.errors import DetectionError
from mapminer.models import (
    NOT_FOUND_MARKERS,
    ExtractionOutcome,
    ProgressEvent,
    TermPhase,
    TermState,
    WorkItem,
)
from mapminer.resilience.detection import BotDetector
from mapminer.resilience.restart_controller import RestartController
from mapminer.resilience.retry_handler import RetryHandler
from mapminer.utils import random_delay
from mapminer.work_queue import WorkQueue

logger = logging.getLogger(__name__)


def classify_record(record: Optional[Dict[str, Any]], low_quality_threshold: int = 5) -> ExtractionOutcome:
    """
    Map an extractor result to an outcome.

    Args:
        record: What the extractor returned; None means "not a place page"
        low_quality_threshold: Most "Not found" fields a record may have

    Returns:
        ExtractionOutcome
    """
    if record is None:
        return ExtractionOutcome.skipped_invalid()

    name = record.get('name')
    if not name or name in NOT_FOUND_MARKERS:
        return ExtractionOutcome.skipped_no_identity()

    missing = sum(1 for value in record.values() if isinstance(value, str) and value in NOT_FOUND_MARKERS)
    if missing > low_quality_threshold:
        return ExtractionOutcome.skipped_low_quality(missing)

    return ExtractionOutcome.success(record)


@dataclass
class PoolSignals:
    """Channels shared by the workers of one batch."""
    cancel: CancelSignal
    restart: asyncio.Event = field(default_factory=asyncio.Event)
    abort: asyncio.Event = field(default_factory=asyncio.Event)

    def should_stop(self) -> bool:
        return self.cancel.is_set() or self.abort.is_set()


class BatchCollector:
    """Single collection point for the outcomes of one batch."""

    def __init__(self, states: Iterable[TermState], callbacks: Optional[ExtractionCallbacks] = None):
        self.states: Dict[str, TermState] = {state.term: state for state in states}
        self.callbacks = callbacks or ExtractionCallbacks()
        self.completed = 0

    async def add_links(self, queue: WorkQueue, term: str, urls: List[str]):
        """Register newly discovered links for a term and queue them."""
        state = self.states[term]
        state.add_links(urls)
        await queue.enqueue(WorkItem(url=url, term=term) for url in urls)

    def record(self, item: WorkItem, outcome: ExtractionOutcome):
        state = self.states[item.term]
        if not state.record(item.url, outcome):
            return
        self.completed += 1
        if state.phase is TermPhase.DISCOVERING:
            state.phase = TermPhase.EXTRACTING
        links_found = max(state.links_found, state.completed)
        self.callbacks.progress(ProgressEvent(
            term=state.term,
            phase="extracting",
            fraction=state.completed / links_found if links_found else 1.0,
            links_found=state.links_found,
            extracted_count=len(state.results),
        ))

    @property
    def total_results(self) -> int:
        return sum(len(state.results) for state in self.states.values())


class WorkerPool:
    """Drains a WorkQueue with one worker per browser tab."""

    def __init__(
        self,
        session,
        tabs: List,
        config: ScraperConfig,
        extractor,
        detector: BotDetector,
        retry_handler: Optional[RetryHandler] = None,
        restarts: Optional[RestartController] = None,
        discovery_session=None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """
        Args:
            session: BrowserSession the tabs belong to
            tabs: One tab per worker
            config: ScraperConfig instance
            extractor: Object with ``async extract(tab, item) -> dict | None``
            detector: BotDetector shared with the extractor
            retry_handler: RetryHandler, built from config if None
            restarts: RestartController, built from config if None
            discovery_session: Discovery browser, lightly cleaned alongside
            sleep: Awaitable sleep, injectable for tests
        """
        self.session = session
        self.tabs = list(tabs)
        self.config = config
        self.extractor = extractor
        self.detector = detector
        self.retry_handler = retry_handler or RetryHandler(config.retry, sleep=sleep)
        self.restarts = restarts or RestartController(
            session,
            tab_count=len(self.tabs),
            max_restarts=config.max_restarts,
            backoff=config.restart_backoff,
            sleep=sleep
        )
        self.discovery_session = discovery_session
        self._sleep = sleep
        self._since_cleanup = 0
        self.abandoned = 0

    async def drain(self, queue: WorkQueue, collector: BatchCollector, signals: PoolSignals) -> int:
        """
        Run workers until the queue is drained, restarting the browser on detection.

        Returns:
            Number of items abandoned because the restart budget ran out or
            the detection breaker tripped
        """
        self.restarts.reset_budget()
        abandoned = 0

        while True:
            signals.restart.clear()
            await self._run_workers(queue, collector, signals)

            if not signals.restart.is_set() or signals.cancel.is_set():
                break
            if signals.abort.is_set():
                dropped = await queue.abandon()
                abandoned += len(dropped)
                logger.error(f"Bot detection threshold exceeded, abandoning {len(dropped)} queued links")
                break
            if self.restarts.budget_exhausted:
                dropped = await queue.abandon()
                abandoned += len(dropped)
                logger.warning(
                    f"Max browser restarts ({self.restarts.max_restarts}) reached. "
                    f"Skipping remaining {len(dropped)} links"
                )
                break

            self.tabs = await self.restarts.restart()
            logger.info(f"Resuming with {len(queue)} queued links")

        self.abandoned += abandoned
        return abandoned

    async def _run_workers(self, queue: WorkQueue, collector: BatchCollector, signals: PoolSignals):
        tasks = [
            asyncio.ensure_future(self.run_worker(tab, worker_id, queue, collector, signals))
            for worker_id, tab in enumerate(self.tabs, start=1)
        ]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def run_worker(
        self,
        tab,
        worker_id: int,
        queue: WorkQueue,
        collector: BatchCollector,
        signals: PoolSignals
    ):
        """
        Drain the queue from one tab.

        Raises:
            BrowserDisconnectedError: if the browser died under this worker
        """
        await self._sleep((worker_id - 1) * self.config.stagger_delay)

        while not queue.drained:
            if signals.cancel.is_set():
                logger.info(f"Worker {worker_id}: cancellation detected, exiting")
                return
            if signals.restart.is_set() or signals.abort.is_set():
                return

            item = await queue.try_dequeue()
            if item is None:
                await self._sleep(self.config.poll_interval)
                continue

            try:
                success, result = await self.retry_handler.execute_with_retry(
                    self.extractor.extract, tab, item, context=f"Place extraction: {item.url}"
                )
            except DetectionError as e:
                collector.record(item, ExtractionOutcome.failed(str(e)))
                if self.detector.should_abort():
                    logger.error(f"Worker {worker_id}: detection breaker tripped ({self.detector.count} detections)")
                    signals.abort.set()
                signals.restart.set()
                return

            if success:
                outcome = classify_record(result, self.config.low_quality_threshold)
            else:
                outcome = ExtractionOutcome.failed(str(result))
            collector.record(item, outcome)

            await self._after_item(tab, collector)
            await self._sleep(random_delay(self.config.item_delay_min, self.config.item_delay_max))

    async def _after_item(self, tab, collector: BatchCollector):
        interval = self.config.cleanup_interval
        if interval <= 0:
            return

        self._since_cleanup += 1
        if self._since_cleanup >= interval:
            self._since_cleanup = 0
            logger.info(f"Auto-cleanup triggered ({interval} places extracted)")
            await self.session.clear_data("full")
            if self.discovery_session is not None and self.discovery_session.is_connected():
                await self.discovery_session.clear_data("light")

        if collector.completed % interval == 0:
            await tab.clear_storage()
