"""
Bot-detection monitoring.
Spots automation challenges in rendered pages and trips a run-wide breaker.
"""

import logging
from datetime import datetime
from typing import Optional

from mapminer.models import DetectionState

logger = logging.getLogger(__name__)


class BotDetector:
    """Matches page content against known challenge signatures."""

    CONTENT_SIGNATURES = (
        'recaptcha',
        'g-recaptcha',
        'captcha',
        'challenge-form',
        'are you a robot',
        'not a robot',
        'verify you are human',
    )
    URL_SIGNATURES = (
        '/sorry/',
        'captcha',
    )

    def __init__(self, threshold: int = 3, state: Optional[DetectionState] = None):
        """
        Initialize detector.

        Args:
            threshold: Detections tolerated before should_abort() trips
            state: Shared DetectionState, a fresh one if None
        """
        self.threshold = threshold
        self.state = state or DetectionState()

    def detect(self, content: Optional[str], url: Optional[str] = None) -> bool:
        """
        Check a page for automation-challenge signatures.

        Args:
            content: Rendered HTML of the page
            url: Current page URL

        Returns:
            True if a challenge was detected (the counter is incremented)
        """
        detected = False
        if url:
            url_lower = url.lower()
            detected = any(sig in url_lower for sig in self.URL_SIGNATURES)
        if not detected and content:
            content_lower = content.lower()
            detected = any(sig in content_lower for sig in self.CONTENT_SIGNATURES)

        if detected:
            self.state.count += 1
            self.state.last_seen = datetime.now()
            logger.warning(f"Bot detection #{self.state.count} on {url or 'page'}")
        return detected

    def should_abort(self) -> bool:
        """True once cumulative detections exceed the threshold for this run."""
        return self.state.count > self.threshold

    @property
    def count(self) -> int:
        return self.state.count

    def get_stats(self) -> dict:
        return {
            'detections': self.state.count,
            'last_seen': self.state.last_seen.isoformat() if self.state.last_seen else None,
            'threshold': self.threshold,
            'should_abort': self.should_abort(),
        }

    def reset(self):
        """Reset detection tracking between independent runs."""
        self.state.count = 0
        self.state.last_seen = None
