"""
Browser Fetcher

Renders JavaScript-heavy pages with a headless crawl4ai browser. The browser
is started on the first fetch and released by ``cleanup()``.
"""

import asyncio
from typing import Optional

from crawl4ai import AsyncWebCrawler, BrowserConfig, CrawlerRunConfig, CacheMode

from crawler_engine.core.base import FetcherInterface, FetchResult, FetchError
from crawler_engine.core.config import BrowserFetcherOptions
from crawler_engine.core.logging import get_logger


class BrowserFetcher(FetcherInterface):
    """
    crawl4ai-backed fetcher with support for:
    - Wait for a CSS selector before capturing
    - Extra render delay for client-side frameworks
    - Full-page scroll to trigger lazy loading
    """

    def __init__(self, options: Optional[BrowserFetcherOptions] = None):
        super().__init__(options or BrowserFetcherOptions())
        self.options: BrowserFetcherOptions = self.config
        self.crawler: Optional[AsyncWebCrawler] = None
        self.browser_config: Optional[BrowserConfig] = None
        self._lock = asyncio.Lock()
        self.logger = get_logger(__name__)

    async def initialize(self) -> None:
        """Launch the headless browser"""
        async with self._lock:
            if self._initialized:
                return
            try:
                self.logger.info("Launching headless browser...")
                self.browser_config = BrowserConfig(
                    headless=self.options.headless,
                    viewport_width=self.options.viewport_width,
                    viewport_height=self.options.viewport_height,
                    user_agent=self.options.user_agent,
                    extra_args=[
                        "--no-sandbox",
                        "--disable-setuid-sandbox",
                        "--disable-dev-shm-usage",
                        "--disable-gpu",
                    ]
                )
                self.crawler = AsyncWebCrawler(config=self.browser_config)
                await self.crawler.start()
                self._initialized = True
            except Exception as e:
                self.crawler = None
                self.logger.error(f"Failed to launch browser: {e}")
                raise FetchError(f"Browser initialization failed: {e}") from e

    async def cleanup(self) -> None:
        """Close the browser, once"""
        async with self._lock:
            crawler, self.crawler = self.crawler, None
            self._initialized = False
            if crawler is None:
                return
            try:
                await crawler.close()
                self.logger.info("Browser closed")
            except Exception as e:
                self.logger.error(f"Error during browser cleanup: {e}")

    def _run_config(self) -> CrawlerRunConfig:
        wait_for = f"css:{self.options.wait_for_selector}" if self.options.wait_for_selector else None
        return CrawlerRunConfig(
            cache_mode=CacheMode.BYPASS,
            wait_for=wait_for,
            delay_before_return_html=self.options.wait_for_timeout,
            scan_full_page=self.options.scroll_to_bottom,
            page_timeout=int(self.options.timeout * 1000),
        )

    async def fetch(self, url: str) -> FetchResult:
        """
        Render a page and return its final HTML

        Args:
            url: Page URL

        Raises:
            FetchError: on navigation failure, HTTP status >= 400 or timeout
        """
        if not self._initialized:
            await self.initialize()

        self.logger.debug(f"Rendering {url}")
        try:
            result = await asyncio.wait_for(
                self.crawler.arun(url=url, config=self._run_config()),
                timeout=self.options.timeout,
            )
        except asyncio.TimeoutError as e:
            raise FetchError(f"Browser timed out rendering {url} after {self.options.timeout}s") from e

        status_code = getattr(result, 'status_code', None) or 200
        if not result.success:
            raise FetchError(f"Failed to render {url}: {result.error_message}", status_code=getattr(result, 'status_code', None))
        if status_code >= 400:
            raise FetchError(f"HTTP {status_code} for {url}", status_code=status_code)

        return FetchResult(
            html=result.html or "",
            url=getattr(result, 'redirected_url', None) or result.url or url,
            status_code=status_code,
            headers=dict(getattr(result, 'response_headers', None) or {}),
        )
