"""
Page fetchers for the Crawler Engine
"""

from crawler_engine.fetchers.http_fetcher import HttpFetcher
from crawler_engine.fetchers.browser_fetcher import BrowserFetcher

__all__ = ['HttpFetcher', 'BrowserFetcher']
