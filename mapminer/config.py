"""
Configuration dataclasses for the extraction pipeline.
"""

import os
from dataclasses import dataclass, field
from typing import Optional, List, Mapping


@dataclass
class ScrollConfig:
    """Configuration for results-feed scrolling during link discovery."""
    idle_timeout: float = 10.0
    scroll_delay_min: float = 1.0
    scroll_delay_max: float = 2.0
    scroll_offset: int = 5000
    page_load_wait: float = 3.0
    smart_scrolling: bool = False
    max_consecutive_empty: int = 3
    check_end_of_list: bool = True
    expected_results: int = 120


@dataclass
class RetryConfig:
    """Configuration for per-item retry behavior (linear backoff)."""
    max_retries: int = 3
    base_delay: float = 1.0


@dataclass
class BrowserConfig:
    """Configuration for the two Chrome processes."""
    headless: bool = False
    browser_args: List[str] = field(default_factory=lambda: [
        '--no-first-run',
        '--no-default-browser-check',
        '--disable-dev-shm-usage',
        '--disable-notifications',
        '--mute-audio',
    ])
    profile_root: Optional[str] = None
    browser_executable_path: Optional[str] = None
    lang: str = "en-US"
    navigation_timeout: float = 45.0
    block_images: bool = True
    block_media: bool = True

    def blocked_resource_types(self) -> List[str]:
        """CDP resource types failed before they are requested."""
        blocked = []
        if self.block_images:
            blocked.append('Image')
        if self.block_media:
            blocked.append('Media')
        return blocked


@dataclass
class ScraperConfig:
    """Main configuration for the extraction pipeline."""
    # Pool sizes
    workers: int = 3
    link_workers: int = 1

    # Nested settings
    scroll: ScrollConfig = field(default_factory=ScrollConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    browser: BrowserConfig = field(default_factory=BrowserConfig)

    # Worker pacing
    stagger_delay: float = 0.5
    poll_interval: float = 0.3
    item_delay_min: float = 0.5
    item_delay_max: float = 1.0
    cleanup_interval: int = 20
    low_quality_threshold: int = 5

    # Restart and detection
    max_restarts: int = 2
    restart_backoff: float = 10.0
    detection_threshold: int = 3

    # Scheduling
    batch_delay: float = 2.0
    prefetch: bool = True
    search_url_template: str = "https://www.google.com/maps/search/{query}"

    # Persistence
    output_dir: str = "results"
    state_dir: str = "scraper_state"
    enable_resume: bool = True

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ScraperConfig":
        """
        Build a configuration from ``MAPMINER_*`` environment variables.

        Unset variables keep their dataclass defaults.

        Args:
            environ: Mapping to read from, defaults to ``os.environ``

        Returns:
            ScraperConfig instance
        """
        env = os.environ if environ is None else environ
        config = cls()

        config.workers = _env_int(env, 'MAPMINER_WORKERS', config.workers)
        config.link_workers = _env_int(env, 'MAPMINER_LINK_WORKERS', config.link_workers)
        config.cleanup_interval = _env_int(env, 'MAPMINER_CLEANUP_INTERVAL', config.cleanup_interval)
        config.max_restarts = _env_int(env, 'MAPMINER_MAX_RESTARTS', config.max_restarts)
        config.prefetch = _env_bool(env, 'MAPMINER_PREFETCH', config.prefetch)
        config.output_dir = env.get('MAPMINER_OUTPUT_DIR', config.output_dir)
        config.state_dir = env.get('MAPMINER_STATE_DIR', config.state_dir)
        config.enable_resume = _env_bool(env, 'MAPMINER_ENABLE_RESUME', config.enable_resume)

        config.scroll.idle_timeout = _env_float(env, 'MAPMINER_IDLE_TIMEOUT', config.scroll.idle_timeout)
        config.scroll.scroll_delay_min = _env_float(env, 'MAPMINER_SCROLL_DELAY_MIN', config.scroll.scroll_delay_min)
        config.scroll.scroll_delay_max = _env_float(env, 'MAPMINER_SCROLL_DELAY_MAX', config.scroll.scroll_delay_max)
        config.scroll.smart_scrolling = _env_bool(env, 'MAPMINER_SMART_SCROLLING', config.scroll.smart_scrolling)

        config.retry.max_retries = _env_int(env, 'MAPMINER_RETRY_ATTEMPTS', config.retry.max_retries)
        config.retry.base_delay = _env_float(env, 'MAPMINER_RETRY_DELAY', config.retry.base_delay)

        config.browser.headless = _env_bool(env, 'MAPMINER_HEADLESS', config.browser.headless)
        config.browser.block_images = _env_bool(env, 'MAPMINER_BLOCK_IMAGES', config.browser.block_images)
        config.browser.block_media = _env_bool(env, 'MAPMINER_BLOCK_MEDIA', config.browser.block_media)
        config.browser.browser_executable_path = (
            env.get('CHROME_EXECUTABLE_PATH') or config.browser.browser_executable_path
        )
        return config


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    value = env.get(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = env.get(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')
