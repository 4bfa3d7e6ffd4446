"""
Map-search business listing extraction pipeline.
"""

from .config import ScraperConfig, ScrollConfig, RetryConfig, BrowserConfig
from .callbacks import ExtractionCallbacks, CancelSignal
from .scraper_controller import ScraperController, run_extraction

__version__ = "0.1.0"

__all__ = [
    'ScraperConfig',
    'ScrollConfig',
    'RetryConfig',
    'BrowserConfig',
    'ExtractionCallbacks',
    'CancelSignal',
    'ScraperController',
    'run_extraction'
]
