"""
Main orchestrator for map-search extraction.
Coordinates discovery, the worker pool and persistence batch by batch.
"""

import asyncio
import dataclasses
import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

from mapminer.browser import BrowserSession
from mapminer.callbacks import CancelSignal, ExtractionCallbacks
from mapminer.config import ScraperConfig
from mapminer.discovery import LinkDiscovery
from mapminer.errors import BrowserDisconnectedError, CancellationError, PersistenceError
from mapminer.extractor import PlaceExtractor
from mapminer.models import (
    ExtractionResult,
    ProgressEvent,
    TermCompleteEvent,
    TermPhase,
    TermStartEvent,
    TermState,
)
from mapminer.resilience.detection import BotDetector
from mapminer.resilience.progress_tracker import ProgressTracker
from mapminer.resilience.retry_handler import RetryHandler
from mapminer.storage import ResultStore
from mapminer.utils import chunked, dedupe
from mapminer.work_queue import WorkQueue
from mapminer.worker_pool import BatchCollector, PoolSignals, WorkerPool

logger = logging.getLogger(__name__)

BREAKER_OPEN = "bot detection threshold exceeded"


class ScraperController:
    """Main orchestrator that coordinates all pipeline components."""

    def __init__(
        self,
        config: Optional[ScraperConfig] = None,
        callbacks: Optional[ExtractionCallbacks] = None,
        discovery_session=None,
        worker_session=None,
        extractor=None,
        store: Optional[ResultStore] = None,
        progress: Optional[ProgressTracker] = None,
        detector: Optional[BotDetector] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """
        Initialize controller with configuration.

        Args:
            config: ScraperConfig instance, uses defaults if None
            callbacks: Observer hooks and the external cancel poll
            discovery_session: Browser used for link discovery
            worker_session: Browser used by the worker pool
            extractor: Per-item extractor, PlaceExtractor if None
            store: Where per-term output goes
            progress: Resume checkpoint tracker
            detector: Shared BotDetector
            sleep: Awaitable sleep, injectable for tests
        """
        self.config = config or ScraperConfig()
        if self.config.workers < 1:
            raise ValueError(f"workers must be at least 1, got {self.config.workers}")
        if self.config.link_workers < 1:
            raise ValueError(f"link_workers must be at least 1, got {self.config.link_workers}")

        self.callbacks = callbacks or ExtractionCallbacks()
        self.cancel = CancelSignal(self.callbacks.should_cancel)
        self._sleep = sleep

        self.detector = detector or BotDetector(threshold=self.config.detection_threshold)
        self.discovery_session = discovery_session or BrowserSession("discovery", self.config.browser)
        self.worker_session = worker_session or BrowserSession("workers", self.config.browser)
        self.extractor = extractor or PlaceExtractor(self.detector, sleep=sleep)
        self.discovery = LinkDiscovery(
            self.config.scroll,
            search_url_template=self.config.search_url_template,
            detector=self.detector,
            sleep=sleep
        )
        self.store = store or ResultStore(self.config.output_dir)
        self.progress = progress or ProgressTracker(self.config.state_dir, enabled=self.config.enable_resume)
        self.retry_handler = RetryHandler(self.config.retry, sleep=sleep)

        self.pool: Optional[WorkerPool] = None
        self.discovery_tabs: List = []
        self.last_result: Optional[ExtractionResult] = None

        self._reported: Set[str] = set()
        self._prefetch: Optional[Tuple[str, asyncio.Future]] = None
        self._failures: List[dict] = []
        self._started_at: Optional[str] = None

    def stop(self):
        """Request a graceful stop; the current batch is flushed first."""
        self.cancel.cancel()

    def get_stats(self) -> dict:
        """Get statistics from all components."""
        return {
            'progress': self.progress.get_stats(),
            'detection': self.detector.get_stats(),
            'retry': self.retry_handler.get_stats(),
            'restarts': self.pool.restarts.get_stats() if self.pool else None,
            'stopped': self.cancel.is_set()
        }

    async def run(self, terms: List[str]) -> Dict[str, List[dict]]:
        """
        Run extraction for every term.

        Args:
            terms: Search terms, in order

        Returns:
            Mapping of term to its extracted records (terms run this session)

        Raises:
            CancellationError: if cancelled; output already computed is flushed first
            BrowserDisconnectedError: if a browser died mid-run or could not be relaunched
        """
        self._started_at = datetime.now().isoformat()
        self._reported = set()
        self._failures = []
        self.detector.reset()

        terms = dedupe(t.strip() for t in terms if t and t.strip())
        self.progress.load_state()
        pending = self.progress.pending(terms)
        resumed = len(terms) - len(pending)
        if resumed:
            logger.info(f"Skipping {resumed} terms completed in a previous session")

        results: Dict[str, List[dict]] = {}
        cancelled = False
        batches = list(chunked(pending, self.config.link_workers))

        try:
            if batches:
                await self._launch_browsers()

            for index, batch in enumerate(batches):
                if self.cancel.is_set():
                    raise CancellationError("Extraction cancelled")
                if self.detector.should_abort():
                    logger.error(f"{BREAKER_OPEN}, not starting remaining terms")
                    self._report_remaining(pending, BREAKER_OPEN)
                    break
                self._check_browsers()

                logger.info(f"Batch {index + 1}/{len(batches)}: {', '.join(batch)}")
                next_term = batches[index + 1][0] if index + 1 < len(batches) else None
                offset = index * self.config.link_workers
                await self._run_batch(batch, offset, len(pending), next_term, results)

                if index + 1 < len(batches):
                    await self._cleanup_between_batches()
                    await self._sleep(self.config.batch_delay)
        except CancellationError:
            cancelled = True
            logger.warning("Extraction cancelled")
            self._report_remaining(pending, "cancelled")
            raise
        except BrowserDisconnectedError as e:
            logger.error(f"Browser disconnected, aborting run: {e}")
            self._report_remaining(pending, str(e))
            raise
        except Exception as e:
            logger.error(f"Extraction aborted: {e}")
            self._report_remaining(pending, str(e))
            raise
        finally:
            await self._discard_prefetch()
            await self._close_browsers()
            self.last_result = self._create_result(
                total_terms=len(terms),
                resumed_terms=resumed,
                results=results,
                cancelled=cancelled
            )
            logger.debug(f"Run stats: {self.get_stats()}")

        if self.last_result.success:
            self.progress.clear()
        return results

    async def _launch_browsers(self):
        """Start both browsers concurrently and open their tabs."""
        await asyncio.gather(self.discovery_session.start(), self.worker_session.start())
        self.discovery_tabs = await self.discovery_session.open_tabs(self.config.link_workers)
        worker_tabs = await self.worker_session.open_tabs(self.config.workers)
        logger.info(
            f"Browsers ready: {len(self.discovery_tabs)} discovery tabs, {len(worker_tabs)} worker tabs"
        )
        self.pool = WorkerPool(
            self.worker_session,
            worker_tabs,
            self.config,
            self.extractor,
            self.detector,
            retry_handler=self.retry_handler,
            discovery_session=self.discovery_session,
            sleep=self._sleep
        )

    def _check_browsers(self):
        for session in (self.discovery_session, self.worker_session):
            if not session.is_connected():
                raise BrowserDisconnectedError(f"{session.name} browser disconnected")

    async def _ensure_worker_browser(self):
        """Relaunch the worker browser if a failed batch left it down."""
        if self.worker_session.is_connected():
            return
        logger.warning("Worker browser is down after a failed batch, relaunching")
        try:
            await self.worker_session.start()
            self.pool.tabs = await self.worker_session.open_tabs(self.config.workers)
        except Exception as e:
            raise BrowserDisconnectedError(f"workers browser could not be relaunched: {e}") from e

    async def _close_browsers(self):
        await asyncio.gather(
            self.discovery_session.close(),
            self.worker_session.close(),
            return_exceptions=True
        )

    async def _cleanup_between_batches(self):
        await self.worker_session.clear_data("full")
        await self.discovery_session.clear_data("light")

    async def _run_batch(
        self,
        batch: List[str],
        offset: int,
        total: int,
        next_term: Optional[str],
        results: Dict[str, List[dict]]
    ):
        states = [TermState(term) for term in batch]
        for position, state in enumerate(states, start=1):
            self.callbacks.term_start(TermStartEvent(term=state.term, index=offset + position, total=total))

        signals = PoolSignals(cancel=self.cancel)
        queue = WorkQueue()
        collector = BatchCollector(states, self.callbacks)

        try:
            await self._extract_batch(states, queue, collector, signals, next_term)
        except BrowserDisconnectedError as e:
            for state in states:
                state.error = state.error or str(e)
            self._persist_batch(states, results)
            raise
        except Exception as e:
            logger.exception(f"Batch failed: {e}")
            for state in states:
                state.error = state.error or str(e)
            self._persist_batch(states, results)
            await self._discard_prefetch()
            await self._ensure_worker_browser()
            return

        if signals.abort.is_set():
            for state in states:
                state.error = state.error or BREAKER_OPEN

        if self.cancel.is_set():
            for state in states:
                state.error = state.error or "cancelled"
            self._persist_batch(states, results)
            raise CancellationError("Extraction cancelled")

        self._persist_batch(states, results)

        if self._prefetch is not None:
            # Let the look-ahead finish before the discovery tab is reused
            await asyncio.gather(self._prefetch[1], return_exceptions=True)

    async def _extract_batch(
        self,
        states: List[TermState],
        queue: WorkQueue,
        collector: BatchCollector,
        signals: PoolSignals,
        next_term: Optional[str]
    ):
        """Discover into the queue while the pool drains it."""
        drain = asyncio.ensure_future(self.pool.drain(queue, collector, signals))
        try:
            await self._discover_batch(states, queue, collector, signals)
        except BaseException:
            drain.cancel()
            await asyncio.gather(drain, return_exceptions=True)
            raise
        finally:
            queue.mark_discovery_complete()

        if self._should_prefetch(next_term, signals):
            self._start_prefetch(next_term)

        abandoned = await drain
        if abandoned:
            logger.warning(f"{abandoned} links left unresolved in this batch")

    async def _discover_batch(
        self,
        states: List[TermState],
        queue: WorkQueue,
        collector: BatchCollector,
        signals: PoolSignals
    ):
        if len(states) == 1:
            await self._discover_term(self.discovery_tabs[0], states[0], queue, collector, signals)
            return
        await asyncio.gather(*(
            self._discover_term(tab, state, queue, collector, signals)
            for tab, state in zip(self.discovery_tabs, states)
        ))

    async def _discover_term(
        self,
        tab,
        state: TermState,
        queue: WorkQueue,
        collector: BatchCollector,
        signals: PoolSignals
    ):
        state.phase = TermPhase.DISCOVERING

        prefetched = self._take_prefetched(state.term)
        if prefetched is not None:
            logger.info(f"Using {len(prefetched)} prefetched links for \"{state.term}\"")
            await collector.add_links(queue, state.term, prefetched)
            self._discovery_progress(state.term, len(prefetched))
            return

        async def on_batch(links: List[str]):
            await collector.add_links(queue, state.term, links)

        try:
            await self.discovery.stream_links(
                tab,
                state.term,
                on_batch,
                on_progress=self._discovery_progress,
                should_stop=lambda: signals.should_stop() or queue.abandoned
            )
        except Exception as e:
            logger.error(f"Discovery failed for \"{state.term}\": {e}")
            state.error = str(e)

    def _discovery_progress(self, term: str, links_found: int):
        expected = max(1, self.config.scroll.expected_results)
        self.callbacks.progress(ProgressEvent(
            term=term,
            phase="discovering",
            fraction=min(1.0, links_found / expected),
            links_found=links_found,
        ))

    def _should_prefetch(self, next_term: Optional[str], signals: PoolSignals) -> bool:
        return (
            next_term is not None
            and self.config.prefetch
            and self.config.link_workers == 1
            and not signals.should_stop()
        )

    def _start_prefetch(self, term: str):
        """Discover ``term`` on the idle discovery tab while the pool drains."""
        links: List[str] = []

        async def prefetch() -> List[str]:
            await self.discovery.stream_links(
                self.discovery_tabs[0],
                term,
                links.extend,
                should_stop=lambda: self.cancel.is_set() or self.detector.should_abort()
            )
            return links

        logger.info(f"Prefetching links for \"{term}\"")
        self._prefetch = (term, asyncio.ensure_future(prefetch()))

    def _take_prefetched(self, term: str) -> Optional[List[str]]:
        if self._prefetch is None or self._prefetch[0] != term:
            return None
        _, task = self._prefetch
        self._prefetch = None
        if not task.done():
            task.cancel()
            return None
        if task.cancelled():
            return None
        error = task.exception()
        if error is not None:
            logger.warning(f"Prefetch for \"{term}\" failed, discovering again: {error}")
            return None
        links = task.result()
        if not links:
            logger.info(f"Prefetch for \"{term}\" found nothing, discovering again")
            return None
        return links

    async def _discard_prefetch(self):
        if self._prefetch is None:
            return
        _, task = self._prefetch
        self._prefetch = None
        if not task.done():
            task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    def _persist_batch(self, states: List[TermState], results: Dict[str, List[dict]]):
        for state in states:
            self._persist_term(state, results)

    def _persist_term(self, state: TermState, results: Dict[str, List[dict]]):
        """Write a term's output, checkpoint it and report it once."""
        if state.term in self._reported:
            return
        records = list(state.results)
        results[state.term] = records

        try:
            self.store.save_results(state.term, records)
            self.store.save_statuses(state.term, state.status_entries())
        except PersistenceError as e:
            logger.error(f"Could not save output for \"{state.term}\": {e}")
            state.error = state.error or str(e)

        if state.error:
            state.phase = TermPhase.FAILED
            self._failures.append({'term': state.term, 'error': state.error})
        else:
            state.phase = TermPhase.PERSISTED
            try:
                self.progress.mark_completed([state.term])
            except PersistenceError as e:
                logger.error(f"Could not update progress checkpoint: {e}")

        logger.info(f"\"{state.term}\": {len(records)} places from {state.links_found} links")
        self._report_complete(state.term, records, state.error)

    def _report_complete(self, term: str, records: List[dict], error: Optional[str] = None):
        if term in self._reported:
            return
        self._reported.add(term)
        self.callbacks.term_complete(TermCompleteEvent(
            term=term,
            count=len(records),
            results=records,
            error=error
        ))

    def _report_remaining(self, pending: List[str], error: str):
        for term in pending:
            if term not in self._reported:
                self._failures.append({'term': term, 'error': error})
                self._report_complete(term, [], error)

    def _create_result(
        self,
        total_terms: int,
        resumed_terms: int,
        results: Dict[str, List[dict]],
        cancelled: bool
    ) -> ExtractionResult:
        """Create ExtractionResult with calculated fields."""
        completed_at = datetime.now().isoformat()

        duration = 0.0
        if self._started_at:
            start = datetime.fromisoformat(self._started_at)
            end = datetime.fromisoformat(completed_at)
            duration = (end - start).total_seconds()

        total_places = sum(len(records) for records in results.values())
        places_per_hour = 0.0
        if duration > 0:
            places_per_hour = total_places / (duration / 3600)

        failed_terms = len(self._failures)
        completed_terms = sum(1 for term in results if term not in {f['term'] for f in self._failures})

        return ExtractionResult(
            success=not cancelled and not self._failures and not self.detector.should_abort(),
            started_at=self._started_at or completed_at,
            completed_at=completed_at,
            total_terms=total_terms,
            completed_terms=completed_terms,
            failed_terms=failed_terms,
            resumed_terms=resumed_terms,
            total_places=total_places,
            detections=self.detector.count,
            restarts=self.pool.restarts.total_restarts if self.pool else 0,
            cancelled=cancelled,
            failed=list(self._failures),
            duration_seconds=duration,
            places_per_hour=places_per_hour
        )


async def run_extraction(
    terms: List[str],
    worker_count: int,
    link_worker_count: int,
    callbacks: Optional[ExtractionCallbacks] = None,
    config: Optional[ScraperConfig] = None
) -> Dict[str, List[dict]]:
    """
    Run a full extraction with the given pool sizes.

    Args:
        terms: Search terms
        worker_count: Extraction tabs
        link_worker_count: Discovery tabs, also the batch size
        callbacks: Optional observer hooks
        config: Base configuration, pool sizes are overridden

    Returns:
        Mapping of term to its extracted records
    """
    config = dataclasses.replace(
        config or ScraperConfig(),
        workers=worker_count,
        link_workers=link_worker_count
    )
    controller = ScraperController(config, callbacks)
    return await controller.run(terms)
