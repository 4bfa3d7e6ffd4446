"""
Observer callbacks and the cooperative cancellation signal.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from mapminer.models import ProgressEvent, TermCompleteEvent, TermStartEvent

logger = logging.getLogger(__name__)


@dataclass
class ExtractionCallbacks:
    """Hooks the caller can supply; every hook is optional."""
    on_term_start: Optional[Callable[[TermStartEvent], None]] = None
    on_progress: Optional[Callable[[ProgressEvent], None]] = None
    on_term_complete: Optional[Callable[[TermCompleteEvent], None]] = None
    should_cancel: Optional[Callable[[], bool]] = None

    def term_start(self, event: TermStartEvent):
        self._fire(self.on_term_start, event)

    def progress(self, event: ProgressEvent):
        self._fire(self.on_progress, event)

    def term_complete(self, event: TermCompleteEvent):
        self._fire(self.on_term_complete, event)

    @staticmethod
    def _fire(hook, event):
        if hook is None:
            return
        try:
            hook(event)
        except Exception as e:
            # A broken observer must not take the run down with it
            logger.warning(f"Callback {getattr(hook, '__name__', hook)} failed: {e}")


class CancelSignal:
    """
    Cooperative cancellation flag.

    Set locally with ``cancel()`` (e.g. from a signal handler) or driven by
    an external ``should_cancel`` poll. Once observed it stays set.
    """

    def __init__(self, should_cancel: Optional[Callable[[], bool]] = None):
        self._should_cancel = should_cancel
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    def is_set(self) -> bool:
        if self._cancelled:
            return True
        if self._should_cancel is not None:
            try:
                if self._should_cancel():
                    self._cancelled = True
            except Exception as e:
                logger.warning(f"should_cancel check failed: {e}")
        return self._cancelled
