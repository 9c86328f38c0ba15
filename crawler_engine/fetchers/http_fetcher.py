"""
HTTP Fetcher

Plain aiohttp GET fetcher for pages that do not need JavaScript rendering.
"""

import asyncio
from typing import Optional

import aiohttp

from crawler_engine.core.base import FetcherInterface, FetchResult, FetchError
from crawler_engine.core.config import HttpFetcherOptions
from crawler_engine.core.logging import get_logger


class HttpFetcher(FetcherInterface):
    """Fetches raw HTML with browser-like headers"""

    def __init__(self, options: Optional[HttpFetcherOptions] = None):
        super().__init__(options or HttpFetcherOptions())
        self.options: HttpFetcherOptions = self.config
        self.session: Optional[aiohttp.ClientSession] = None
        self.logger = get_logger(__name__)

    async def initialize(self) -> None:
        """Open the HTTP session"""
        if self._initialized:
            return
        headers = dict(self.options.headers)
        headers['User-Agent'] = self.options.user_agent
        self.session = aiohttp.ClientSession(
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self.options.timeout),
        )
        self._initialized = True

    async def cleanup(self) -> None:
        """Close the HTTP session"""
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None
        self._initialized = False

    async def fetch(self, url: str) -> FetchResult:
        """
        Fetch a page

        Args:
            url: Page URL

        Returns:
            FetchResult with the final URL after redirects

        Raises:
            FetchError: on HTTP status >= 400, timeouts and connection failures
        """
        if not self._initialized:
            await self.initialize()

        self.logger.debug(f"HTTP GET {url}")
        try:
            async with self.session.get(
                url,
                allow_redirects=self.options.follow_redirects,
                max_redirects=self.options.max_redirects,
            ) as response:
                if response.status >= 400:
                    raise FetchError(f"HTTP {response.status}: {response.reason}", status_code=response.status)

                html = await response.text(errors='replace')
                return FetchResult(
                    html=html,
                    url=str(response.url),
                    status_code=response.status,
                    headers={key.lower(): value for key, value in response.headers.items()},
                )
        except asyncio.TimeoutError as e:
            raise FetchError(f"Timed out fetching {url} after {self.options.timeout}s") from e
        except aiohttp.ClientError as e:
            raise FetchError(f"Failed to fetch {url}: {e}") from e
