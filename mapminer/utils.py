"""
Shared utility functions for the pipeline.
"""

import random
import re
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple, TypeVar
from urllib.parse import quote

T = TypeVar('T')

PLACE_PATH = '/maps/place/'


def random_delay(min_seconds: float, max_seconds: float) -> float:
    """
    Pick a uniform random delay in ``[min_seconds, max_seconds]``.

    Randomized pacing avoids a fixed automation fingerprint.
    """
    if max_seconds <= min_seconds:
        return max(0.0, min_seconds)
    return random.uniform(min_seconds, max_seconds)


def sanitize_term(term: str) -> str:
    """
    Turn a search term into a safe file stem.

    Args:
        term: Search term (e.g., "coffee shops in X")

    Returns:
        File stem (e.g., "coffee_shops_in_X"), at most 50 characters
    """
    cleaned = re.sub(r'[\\/*?:"<>|]', '', term)
    cleaned = re.sub(r'\s+', '_', cleaned.strip())
    return cleaned[:50] or 'term'


def search_url(term: str, template: str = "https://www.google.com/maps/search/{query}") -> str:
    """Build the map-search URL for a term."""
    return template.format(query=quote(term, safe=''))


def is_place_url(url: Optional[str]) -> bool:
    """
    Check whether a URL points at a place page.

    About pages and blank pages are not places.
    """
    if not url or not url.startswith('http'):
        return False
    if PLACE_PATH not in url:
        return False
    if '/about' in url or 'about?' in url or 'about:blank' in url:
        return False
    return True


def parse_coordinates(url: str) -> Optional[Tuple[float, float]]:
    """
    Extract ``(latitude, longitude)`` from a place URL.

    Returns:
        Coordinates tuple or None if the URL carries no ``@lat,lng`` segment
    """
    match = re.search(r'@(-?\d+\.\d+),(-?\d+\.\d+)', url)
    if not match:
        return None
    return float(match.group(1)), float(match.group(2))


def load_terms_from_file(path: str) -> List[str]:
    """Load search terms from a text file, one per line, blanks skipped."""
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    lines = file_path.read_text(encoding='utf-8').splitlines()
    return [line.strip() for line in lines if line.strip()]


def chunked(items: List[T], size: int) -> Iterator[List[T]]:
    """Split a list into consecutive chunks of ``size``."""
    size = max(1, size)
    for start in range(0, len(items), size):
        yield items[start:start + size]


def dedupe(items: Iterable[str]) -> List[str]:
    """Drop duplicates while keeping first-seen order."""
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result
