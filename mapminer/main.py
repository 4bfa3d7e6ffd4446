"""
Main entry point for map-search business extraction.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from mapminer.callbacks import ExtractionCallbacks
from mapminer.config import ScraperConfig
from mapminer.errors import BrowserDisconnectedError, CancellationError
from mapminer.models import ExtractionResult, TermCompleteEvent, TermStartEvent
from mapminer.scraper_controller import ScraperController
from mapminer.utils import dedupe, load_terms_from_file


# Global controller for signal handling
_controller: Optional[ScraperController] = None


def setup_logging(verbose: bool = False):
    """Configure console logging for the CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s %(levelname)-7s %(name)s: %(message)s',
        datefmt='%H:%M:%S'
    )
    # seleniumbase/websockets are chatty at DEBUG
    for noisy in ('websockets', 'urllib3', 'asyncio'):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def load_env(env_path: Optional[Path] = None):
    env_path = env_path or Path.cwd() / '.env'
    if env_path.exists():
        load_dotenv(env_path)
        print(f"✓ Loaded environment from {env_path}")


def signal_handler(signum, frame):
    """Handle SIGINT/SIGTERM for graceful shutdown."""
    print("\n\n" + "=" * 60)
    print("STOP SIGNAL RECEIVED - SHUTTING DOWN GRACEFULLY")
    print("=" * 60)
    if _controller:
        _controller.stop()
        print("Waiting for the current batch to be saved...")
    else:
        print("Exiting immediately...")
        sys.exit(0)


def build_config(args) -> ScraperConfig:
    """Environment first, command-line flags override."""
    config = ScraperConfig.from_env()
    if args.workers is not None:
        config.workers = args.workers
    if args.link_workers is not None:
        config.link_workers = args.link_workers
    if args.headless:
        config.browser.headless = True
    if args.no_resume:
        config.enable_resume = False
    if args.smart_scrolling:
        config.scroll.smart_scrolling = True
    if args.no_prefetch:
        config.prefetch = False
    if args.output_dir:
        config.output_dir = args.output_dir
    if args.state_dir:
        config.state_dir = args.state_dir
    return config


def collect_terms(args) -> List[str]:
    terms = list(args.terms)
    if args.keywords_file:
        terms.extend(load_terms_from_file(args.keywords_file))
    return dedupe(t.strip() for t in terms if t.strip())


def print_term_start(event: TermStartEvent):
    print(f"\n[{event.index}/{event.total}] {event.term}")


def print_term_complete(event: TermCompleteEvent):
    if event.error:
        print(f"  ✗ {event.term}: {event.count} places ({event.error})")
    else:
        print(f"  ✓ {event.term}: {event.count} places")


def print_summary(result: ExtractionResult):
    print("\n" + "=" * 60)
    print("EXTRACTION COMPLETE" if not result.cancelled else "EXTRACTION CANCELLED")
    print("=" * 60)
    print(f"Success:     {result.success}")
    print(f"Duration:    {result.duration_seconds / 60:.1f} minutes")
    print(f"Terms:       {result.total_terms} ({result.resumed_terms} resumed)")
    print(f"Completed:   {result.completed_terms}")
    print(f"Failed:      {result.failed_terms}")
    print(f"Places:      {result.total_places}")
    print(f"Detections:  {result.detections}")
    print(f"Restarts:    {result.restarts}")
    print(f"Speed:       {result.places_per_hour:.1f} places/hour")

    if result.failed:
        print(f"\nFailed terms ({len(result.failed)}):")
        for f in result.failed[:10]:
            print(f"  - {f['term']}: {f['error'][:50]}")
        if len(result.failed) > 10:
            print(f"  ... and {len(result.failed) - 10} more")


def run_extraction(args) -> int:
    """Run extraction with ScraperController."""
    global _controller

    terms = collect_terms(args)
    if not terms:
        print("No search terms given (pass terms or --keywords-file)")
        return 2

    config = build_config(args)
    callbacks = ExtractionCallbacks(
        on_term_start=print_term_start,
        on_term_complete=print_term_complete
    )
    _controller = ScraperController(config, callbacks)

    signal.signal(signal.SIGINT, signal_handler)
    # SIGTERM is not reliably available on Windows
    if hasattr(signal, 'SIGTERM') and sys.platform != 'win32':
        signal.signal(signal.SIGTERM, signal_handler)

    print(f"Starting extraction: {len(terms)} terms, {config.workers} workers, {config.link_workers} link workers")
    exit_code = 0
    try:
        asyncio.run(_controller.run(terms))
    except CancellationError:
        print("\nStopped. Run again to resume.")
        exit_code = 130
    except BrowserDisconnectedError as e:
        print(f"\nBrowser disconnected: {e}")
        exit_code = 1

    result = _controller.last_result
    if result is not None:
        print_summary(result)
        if exit_code == 0 and not result.success:
            exit_code = 1
    return exit_code


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description='Map-search business listing extractor',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Two search terms, default pool sizes
  mapminer "coffee shops in Austin" "hotels in Denver"

  # Terms from a file, 5 extraction tabs, 2 terms discovered in parallel
  mapminer --keywords-file keywords.txt --workers 5 --link-workers 2

  # Start fresh, ignoring the resume file
  mapminer --keywords-file keywords.txt --no-resume
"""
    )

    parser.add_argument(
        'terms',
        nargs='*',
        help='Search terms'
    )
    parser.add_argument(
        '--keywords-file',
        type=str,
        help='Text file with one search term per line'
    )

    # Pool sizes
    parser.add_argument(
        '--workers',
        type=int,
        help='Extraction tabs (default: 3)'
    )
    parser.add_argument(
        '--link-workers',
        type=int,
        help='Terms discovered in parallel per batch (default: 1)'
    )

    # Behaviour
    parser.add_argument(
        '--headless',
        action='store_true',
        help='Run browsers in headless mode (more likely to be challenged)'
    )
    parser.add_argument(
        '--no-resume',
        action='store_true',
        help='Start fresh instead of resuming from saved progress'
    )
    parser.add_argument(
        '--smart-scrolling',
        action='store_true',
        help='Stop scrolling after 3 scrolls without new results'
    )
    parser.add_argument(
        '--no-prefetch',
        action='store_true',
        help='Do not discover the next term while the current one is extracted'
    )

    # Output
    parser.add_argument(
        '--output-dir',
        type=str,
        help='Directory for result files (default: results)'
    )
    parser.add_argument(
        '--state-dir',
        type=str,
        help='Directory for the resume file (default: scraper_state)'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Debug logging'
    )

    args = parser.parse_args(argv)

    load_env()
    setup_logging(args.verbose)
    return run_extraction(args)


if __name__ == '__main__':
    sys.exit(main())
