"""
Resilience components for the extraction pipeline.
"""

from .progress_tracker import ProgressTracker
from .detection import BotDetector
from .retry_handler import RetryHandler
from .restart_controller import RestartController

__all__ = [
    'ProgressTracker',
    'BotDetector',
    'RetryHandler',
    'RestartController'
]
