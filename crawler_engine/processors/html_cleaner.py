"""
HTML Cleaner

Strips scripts, navigation, ads, hidden and empty elements from fetched HTML
before Markdown conversion.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

from bs4 import BeautifulSoup, Comment, Tag

from crawler_engine.core.base import ProcessingError
from crawler_engine.core.logging import get_logger


KEEP_EMPTY_TAGS = {
    'img', 'br', 'hr', 'input', 'area', 'base', 'col', 'embed',
    'link', 'meta', 'param', 'source', 'track', 'wbr',
}

TRACKING_ATTRS = [
    'onclick', 'onload', 'onerror', 'onmouseover', 'onmouseout', 'onfocus', 'onblur',
    'data-tracking', 'data-analytics', 'data-ga', 'data-gtm',
]

AD_CLASS_FRAGMENTS = ['advert', 'sponsor', 'promo', 'banner', 'tracking', 'analytics']
AD_ID_FRAGMENTS = ['google_ads', 'doubleclick']

MAIN_CONTENT_SELECTORS = [
    'main', 'article', '[role="main"]', '#main-content', '#main', '.main-content', '.main',
    '#content', '.content', '#article', '.article', '.post-content', '.entry-content',
]

HIDDEN_STYLE_RE = re.compile(r'display\s*:\s*none|visibility\s*:\s*hidden', re.IGNORECASE)


@dataclass
class CleanerOptions:
    """What the HTML cleaner removes"""
    excluded_tags: List[str] = field(default_factory=lambda: [
        'nav', 'footer', 'aside', 'header', 'script', 'style', 'noscript',
        'iframe', 'form', 'button', 'input', 'select', 'textarea',
    ])
    excluded_classes: List[str] = field(default_factory=lambda: [
        'nav', 'navigation', 'menu', 'sidebar', 'footer', 'header',
        'advertisement', 'ad', 'ads', 'banner', 'cookie', 'popup',
        'modal', 'overlay', 'social', 'share', 'comment', 'comments',
    ])
    excluded_ids: List[str] = field(default_factory=lambda: [
        'nav', 'navigation', 'menu', 'sidebar', 'footer', 'header',
        'ad', 'ads', 'advertisement', 'banner', 'cookie', 'popup',
    ])
    remove_scripts: bool = True
    remove_styles: bool = True
    remove_comments: bool = True
    remove_empty: bool = True
    keep_main_content_only: bool = False


def _name_matches(value: str, pattern: str) -> bool:
    """Match a class/id token on word boundaries ('ad' matches 'top-ad', not 'header')"""
    value = value.lower()
    pattern = pattern.lower()
    if value == pattern:
        return True
    return pattern in re.split(r'[\s_-]+', value)


class HTMLCleaner:
    """
    Removes unwanted elements from HTML using BeautifulSoup
    """

    def __init__(self, options: Optional[CleanerOptions] = None):
        self.options = options or CleanerOptions()
        self.logger = get_logger(__name__)

    def clean(self, html: str) -> str:
        """Return the cleaned document"""
        return str(self._clean_soup(html))

    def clean_body(self, html: str) -> str:
        """
        Clean HTML and return only the body's inner HTML

        Args:
            html: Raw page HTML

        Returns:
            Cleaned body markup (the whole document when there is no body)
        """
        soup = self._clean_soup(html)
        body = soup.body
        if body is None:
            return str(soup)
        return body.decode_contents()

    def _clean_soup(self, html: str) -> BeautifulSoup:
        try:
            soup = BeautifulSoup(html or "", 'html.parser')
        except Exception as e:
            self.logger.error(f"Error parsing HTML: {e}")
            raise ProcessingError(f"HTML parsing failed: {e}") from e

        if self.options.remove_scripts:
            for element in soup(['script', 'noscript']):
                element.decompose()

        if self.options.remove_styles:
            for element in soup('style'):
                element.decompose()

        if self.options.remove_comments:
            for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
                comment.extract()

        for element in soup(self.options.excluded_tags):
            element.decompose()

        self._remove_matching(soup)
        self._remove_hidden(soup)
        self._remove_ads(soup)

        if self.options.remove_styles:
            for element in soup.find_all(style=True):
                del element['style']

        if self.options.keep_main_content_only:
            self._keep_main_content_only(soup)

        if self.options.remove_empty:
            self._remove_empty(soup)

        for element in soup.find_all(True):
            for attr in TRACKING_ATTRS:
                if attr in element.attrs:
                    del element[attr]

        return soup

    def _remove_matching(self, soup: BeautifulSoup) -> None:
        for element in soup.find_all(True):
            if element.decomposed:
                continue
            classes = element.get('class') or []
            element_id = element.get('id') or ''
            if any(_name_matches(c, p) for c in classes for p in self.options.excluded_classes):
                element.decompose()
            elif element_id and any(_name_matches(element_id, p) for p in self.options.excluded_ids):
                element.decompose()

    def _remove_hidden(self, soup: BeautifulSoup) -> None:
        for element in soup.find_all(True):
            if element.decomposed:
                continue
            if element.has_attr('hidden') or element.get('aria-hidden') == 'true':
                element.decompose()
            elif HIDDEN_STYLE_RE.search(element.get('style') or ''):
                element.decompose()

    def _remove_ads(self, soup: BeautifulSoup) -> None:
        for element in soup.find_all(True):
            if element.decomposed:
                continue
            class_str = ' '.join(element.get('class') or []).lower()
            element_id = (element.get('id') or '').lower()
            if any(fragment in class_str for fragment in AD_CLASS_FRAGMENTS):
                element.decompose()
            elif any(fragment in element_id for fragment in AD_ID_FRAGMENTS):
                element.decompose()
            elif element.has_attr('data-ad') or element.has_attr('data-advertisement'):
                element.decompose()
            elif element.name == 'ins' and 'adsbygoogle' in class_str:
                element.decompose()

    def _keep_main_content_only(self, soup: BeautifulSoup) -> None:
        body = soup.body
        if body is None:
            return
        for selector in MAIN_CONTENT_SELECTORS:
            main = soup.select_one(selector)
            if main is not None and len(main.get_text(strip=True)) > 100:
                main = main.extract()
                body.clear()
                for child in list(main.contents):
                    body.append(child)
                return

    def _remove_empty(self, soup: BeautifulSoup) -> None:
        # Removing a child can empty its parent, so repeat a bounded number of times
        for _ in range(10):
            removed = False
            for element in soup.find_all(True):
                if element.decomposed or element.name in KEEP_EMPTY_TAGS or element.name in ('html', 'body'):
                    continue
                if isinstance(element, Tag) and not element.get_text(strip=True) and not element.find(sorted(KEEP_EMPTY_TAGS)):
                    element.decompose()
                    removed = True
            if not removed:
                break
