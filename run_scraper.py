"""
Simple runner - just run: python run_scraper.py

Usage:
    python run_scraper.py                       # Terms from keywords.txt
    python run_scraper.py --keywords my.txt     # Terms from another file
    python run_scraper.py --visible             # Show browser windows
    python run_scraper.py --no-resume           # Start fresh
"""
import argparse
import asyncio
import sys

from mapminer.config import ScraperConfig
from mapminer.errors import CancellationError
from mapminer.main import setup_logging
from mapminer.scraper_controller import ScraperController
from mapminer.utils import load_terms_from_file


def main():
    parser = argparse.ArgumentParser(description='Map-search extractor')
    parser.add_argument('--keywords', type=str, default='keywords.txt',
                        help='Text file with one search term per line (default: keywords.txt)')
    parser.add_argument('--visible', action='store_true',
                        help='Show browser windows (default: headless)')
    parser.add_argument('--no-resume', action='store_true',
                        help='Start fresh instead of resuming')
    args = parser.parse_args()

    setup_logging()
    terms = load_terms_from_file(args.keywords)
    print(f"Starting extraction of {len(terms)} terms from {args.keywords}...")
    print("Press Ctrl+C to stop (progress is saved automatically)\n")

    config = ScraperConfig.from_env()
    config.browser.headless = not args.visible
    config.enable_resume = not args.no_resume
    controller = ScraperController(config)

    try:
        asyncio.run(controller.run(terms))
    except (KeyboardInterrupt, CancellationError):
        print("\nStopped. Run again to resume.")
        return 0

    result = controller.last_result
    print(f"\nDone! Extracted {result.total_places} places")
    print(f"Failed terms: {result.failed_terms} | Resumed: {result.resumed_terms}")

    if result.duration_seconds > 0:
        print(f"Speed: {result.places_per_hour:.1f} places/hour")

    return 0 if result.success else 1


if __name__ == '__main__':
    sys.exit(main())
