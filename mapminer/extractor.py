"""
Default per-item extraction for place pages.

The pipeline treats extraction as an opaque, retryable coroutine
``extract(tab, item)``. Selectors here are volatile and only need to be good
enough for the bundled CLI; any object with the same coroutine can replace
this class.
"""

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional

from bs4 import BeautifulSoup

from mapminer.errors import DetectionError
from mapminer.models import WorkItem
from mapminer.resilience.detection import BotDetector
from mapminer.utils import is_place_url, parse_coordinates

logger = logging.getLogger(__name__)

NOT_FOUND = 'Not found'

PHONE_PATTERN = re.compile(r'\+?\d[\d\s().-]{6,}\d')
WEBSITE_PATTERN = re.compile(r'^(?:https?://)?(?:www\.)?[\w.-]+\.[A-Za-z]{2,}(?:/\S*)?$')


class PlaceExtractor:
    """Extracts a business record from a rendered place page."""

    NAME_SELECTORS = [
        'h1.DUwDvf.lfPIob',
        'h1.DUwDvf',
        'h1[class*="DUwDvf"]',
        'div[role="heading"][aria-level="1"]',
        'h1.fontHeadlineLarge',
        'h1',
    ]
    HOURS_SELECTORS = [
        'span.ZDu9vd',
        'div.o0Svhf > span.ZDu9vd',
        'div.MkV9 span',
        'div.OMl5r.hH0dDd span',
    ]
    PRICE_SELECTORS = [
        '[aria-label*="Price"]',
        '[aria-label*="Expensive"]',
        '[aria-label*="Moderate"]',
    ]

    def __init__(
        self,
        detector: BotDetector,
        load_wait: float = 1.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.detector = detector
        self.load_wait = load_wait
        self._sleep = sleep

    async def extract(self, tab, item: WorkItem) -> Optional[Dict[str, Any]]:
        """
        Load a place page in ``tab`` and extract its record.

        Returns:
            Record dict, or None if the page is not a place page

        Raises:
            DetectionError: if the page is an automation challenge
        """
        await tab.goto(item.url)
        await self._sleep(self.load_wait)

        html = await tab.content()
        current_url = await tab.current_url()

        if self.detector.detect(html, current_url):
            raise DetectionError(item.url)

        if not is_place_url(current_url):
            logger.debug(f"Not a place page: {current_url}")
            return None

        return self.parse(html, item.url)

    def parse(self, html: str, link: str) -> Dict[str, Any]:
        """Parse a place page into a flat record; missing fields are "Not found"."""
        soup = BeautifulSoup(html, 'html.parser')

        coordinates = parse_coordinates(link)
        hours = self._first_text(soup, self.HOURS_SELECTORS)
        if hours == NOT_FOUND:
            hours = self._aria_label(soup, 'button[data-item-id*="hours"]', 'Hours:')

        return {
            'name': self._first_text(soup, self.NAME_SELECTORS),
            'phone': self._phones(soup),
            'rating': self._rating(soup),
            'reviews': self._reviews(soup),
            'category': self._text(soup.select_one('button[jsaction*="category"]')),
            'address': self._aria_label(soup, 'button[data-item-id="address"]', 'Address:'),
            'website': self._website(soup),
            'coordinates': {'latitude': coordinates[0], 'longitude': coordinates[1]} if coordinates else None,
            'plusCode': self._aria_label(soup, 'button[data-item-id="oloc"]', 'Plus code:'),
            'openingHours': hours,
            'businessStatus': self._business_status(hours),
            'priceLevel': self._first_aria_label(soup, self.PRICE_SELECTORS),
            'link': link,
        }

    @staticmethod
    def _text(element) -> str:
        if element is None:
            return NOT_FOUND
        text = element.get_text(strip=True)
        return text or NOT_FOUND

    def _first_text(self, soup: BeautifulSoup, selectors: List[str]) -> str:
        for selector in selectors:
            text = self._text(soup.select_one(selector))
            if text != NOT_FOUND:
                return text
        return NOT_FOUND

    @staticmethod
    def _aria_label(soup: BeautifulSoup, selector: str, prefix: str = "") -> str:
        element = soup.select_one(selector)
        if element is None or not element.get('aria-label'):
            return NOT_FOUND
        label = element['aria-label']
        if prefix and label.startswith(prefix):
            label = label[len(prefix):]
        return label.strip() or NOT_FOUND

    def _first_aria_label(self, soup: BeautifulSoup, selectors: List[str]) -> str:
        for selector in selectors:
            label = self._aria_label(soup, selector)
            if label != NOT_FOUND:
                return label
        return NOT_FOUND

    @staticmethod
    def _rating(soup: BeautifulSoup) -> str:
        for span in soup.select('span[aria-hidden="true"]'):
            text = span.get_text(strip=True)
            if re.fullmatch(r'\d\.\d', text):
                return text
        return NOT_FOUND

    @staticmethod
    def _reviews(soup: BeautifulSoup) -> str:
        element = soup.select_one('span[aria-label*="review"]')
        if element is None:
            return NOT_FOUND
        match = re.search(r'([\d,]+)\s*review', element.get('aria-label', ''), re.IGNORECASE)
        return match.group(1) if match else NOT_FOUND

    @staticmethod
    def _phones(soup: BeautifulSoup) -> str:
        phones = []
        for button in soup.select('button[data-item-id*="phone"], button[aria-label*="Phone"]'):
            combined = f"{button.get('aria-label', '')} {button.get_text(' ', strip=True)}"
            for match in PHONE_PATTERN.findall(combined):
                number = match.strip()
                if number not in phones:
                    phones.append(number)
        return ', '.join(phones) if phones else NOT_FOUND

    @staticmethod
    def _website(soup: BeautifulSoup) -> str:
        link = soup.select_one('a[data-item-id="authority"]')
        if link is not None and link.get('href'):
            return link['href']
        for div in soup.select('div.Io6YTe.fontBodyMedium'):
            text = div.get_text(strip=True)
            if WEBSITE_PATTERN.match(text):
                return text
        return NOT_FOUND

    @staticmethod
    def _business_status(hours: str) -> str:
        if hours == NOT_FOUND:
            return NOT_FOUND
        for status in ('Permanently closed', 'Temporarily closed'):
            if status in hours:
                return status
        if 'Open' in hours:
            return 'Open'
        if 'Closed' in hours:
            return 'Closed'
        return NOT_FOUND
