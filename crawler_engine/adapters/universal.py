"""
Universal AI Adapter

The main crawl pipeline for one source:
fetch -> clean -> Markdown -> prune -> chunk -> parallel extraction -> merge.
"""

import re
import time
from dataclasses import dataclass, field, replace, asdict
from typing import Any, Callable, Dict, List, Optional, Set

from crawler_engine.core.base import (
    ChunkOptions,
    CrawledItem,
    CrawlStage,
    CrawlStats,
    ExtractionConfig,
    ExtractionError,
    ExtractionResult,
    FetcherInterface,
    ProcessingError,
    PruningOptions,
)
from crawler_engine.core.config import BrowserFetcherOptions, HttpFetcherOptions
from crawler_engine.core.logging import get_logger
from crawler_engine.extractors.factory import ExtractorSettings, create_extractor
from crawler_engine.fetchers.browser_fetcher import BrowserFetcher
from crawler_engine.fetchers.http_fetcher import HttpFetcher
from crawler_engine.processors.chunker import SmartChunker
from crawler_engine.processors.html_cleaner import CleanerOptions, HTMLCleaner
from crawler_engine.processors.language import detect_language
from crawler_engine.processors.markdown import MarkdownConverter, MarkdownOptions
from crawler_engine.processors.pruning import PruningFilter
from crawler_engine.utils.retry import RetryOptions
from crawler_engine.workers.extraction_worker import ExtractionWorkerPool, ExtractorFactory, build_payloads


TITLE_FIELDS = ['title', 'name', 'headline', 'header']
URL_FIELDS = ['url', 'link', 'href']
DESCRIPTION_FIELDS = ['description', 'summary']
STANDARD_FIELDS = {'title', 'name', 'headline', 'url', 'link', 'href', 'description', 'summary', 'content'}

StageCallback = Callable[[CrawlStage], None]


@dataclass
class AdapterConfig:
    """Everything needed to build the pipeline for one source"""
    use_browser: bool = False
    extractor: ExtractorSettings = field(default_factory=ExtractorSettings)
    http: HttpFetcherOptions = field(default_factory=HttpFetcherOptions)
    browser: BrowserFetcherOptions = field(default_factory=BrowserFetcherOptions)
    cleaner: CleanerOptions = field(default_factory=CleanerOptions)
    markdown: MarkdownOptions = field(default_factory=MarkdownOptions)
    pruning: PruningOptions = field(default_factory=PruningOptions)
    chunking: ChunkOptions = field(default_factory=ChunkOptions)
    retry: RetryOptions = field(default_factory=RetryOptions)
    worker_pool_size: int = 3


@dataclass
class AdapterCrawlResult:
    """Items extracted from one page plus pipeline statistics"""
    items: List[CrawledItem]
    stats: CrawlStats


@dataclass
class RawCrawlResult:
    """Intermediate pipeline artefacts, without extraction"""
    html: str
    cleaned_html: str
    markdown: str
    filtered_content: str
    chunks: List[str]


def generate_id(value: str) -> str:
    """Stable id from a URL or title"""
    value = re.sub(r'https?://', '', value.lower())
    value = re.sub(r'[^a-z0-9]', '_', value)
    value = re.sub(r'_+', '_', value)
    return value[:100]


def _first_string(obj: Dict[str, Any], keys: List[str]) -> Optional[str]:
    for key in keys:
        value = obj.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def normalize_item(data: Any, source_url: str) -> Optional[CrawledItem]:
    """
    Map one extracted record onto a CrawledItem.

    Args:
        data: A record produced by the LLM
        source_url: Page URL, used when the record has no link of its own

    Returns:
        CrawledItem, or None when the record has no usable title
    """
    if not isinstance(data, dict):
        return None

    title = _first_string(data, TITLE_FIELDS)
    if title is None and isinstance(data.get('text'), str) and data['text']:
        title = data['text'][:100]
    if not title:
        return None

    url = _first_string(data, URL_FIELDS) or source_url

    description = _first_string(data, DESCRIPTION_FIELDS)
    content = data.get('content') if isinstance(data.get('content'), str) else None
    if description is None and content:
        description = content[:500]

    # Items sharing the page URL are told apart by title
    item_id = generate_id(title if url == source_url else url)

    metadata = {key: value for key, value in data.items() if key not in STANDARD_FIELDS and value is not None}

    return CrawledItem(
        id=item_id,
        title=title,
        url=url,
        description=description,
        content=content,
        metadata=metadata,
    )


def merge_results(results: List[ExtractionResult], source_url: str) -> List[CrawledItem]:
    """Flatten per-chunk results into de-duplicated items, in chunk order"""
    items: List[CrawledItem] = []
    seen: Set[str] = set()

    for result in results:
        if result.is_error:
            continue
        data = result.data

        if isinstance(data, list):
            records = data
        elif isinstance(data, dict) and 'items' in data:
            records = data['items'] if isinstance(data['items'], list) else []
        elif isinstance(data, dict):
            records = [data]
        else:
            records = []

        for record in records:
            item = normalize_item(record, source_url)
            if item is not None and item.id not in seen:
                seen.add(item.id)
                items.append(item)

    return items


class UniversalAdapter:
    """
    Crawl pipeline bound to one fetcher and one extractor mode.

    The extractor is built at construction so missing credentials surface
    before any network activity. Chunk extraction runs on a worker pool
    created on first use.
    """

    def __init__(self, config: AdapterConfig,
                 fetcher: Optional[FetcherInterface] = None,
                 extractor_factory: ExtractorFactory = create_extractor):
        self.config = config
        self.logger = get_logger(__name__)

        if fetcher is None:
            fetcher = BrowserFetcher(config.browser) if config.use_browser else HttpFetcher(config.http)
        self.fetcher = fetcher

        self.cleaner = HTMLCleaner(config.cleaner)
        self.converter = MarkdownConverter(config.markdown)
        self.filter = PruningFilter(config.pruning)
        self.chunker = SmartChunker(config.chunking)

        self.extractor_factory = extractor_factory
        self.extractor = extractor_factory(config.extractor)
        self.worker_pool: Optional[ExtractionWorkerPool] = None
        self._closed = False

    def _get_worker_pool(self) -> ExtractionWorkerPool:
        if self.worker_pool is None:
            self.worker_pool = ExtractionWorkerPool(
                max_workers=self.config.worker_pool_size,
                extractor_factory=self.extractor_factory,
            )
            self.logger.info(f"Worker pool initialized with {self.config.worker_pool_size} threads")
        return self.worker_pool

    def _process(self, html: str):
        cleaned_html = self.cleaner.clean_body(html)
        markdown = self.converter.convert(cleaned_html)
        filtered = self.filter.filter(markdown)
        chunks = self.chunker.chunk(filtered)
        return cleaned_html, markdown, filtered, chunks

    async def crawl(self, url: str, config: ExtractionConfig,
                    on_stage: Optional[StageCallback] = None) -> AdapterCrawlResult:
        """
        Run the full pipeline for a URL

        Args:
            url: Page URL
            config: Extraction configuration
            on_stage: Called with each stage as the pipeline enters it

        Returns:
            Extracted items and crawl statistics

        Raises:
            FetchError: the page could not be fetched
            ProcessingError: nothing survived cleaning and pruning
            ExtractionError: every chunk failed extraction
        """
        def stage(value: CrawlStage) -> None:
            if on_stage:
                on_stage(value)

        stats = CrawlStats()
        start_time = time.time()
        self.logger.info(f"Starting crawl pipeline for: {url}")

        stage(CrawlStage.FETCHING)
        fetch_start = time.time()
        fetch_result = await self.fetcher.fetch(url)
        stats.fetch_time = time.time() - fetch_start
        stats.html_size = len(fetch_result.html)
        self.logger.debug(f"1. Fetch: {stats.html_size} chars")

        stage(CrawlStage.PROCESSING)
        process_start = time.time()
        _, markdown, filtered, chunks = self._process(fetch_result.html)
        stats.markdown_size = len(markdown)
        stats.chunks_count = len(chunks)
        stats.process_time = time.time() - process_start
        self.logger.debug(f"2. Markdown: {len(markdown)} chars, filtered: {len(filtered)} chars, {len(chunks)} chunks")

        if not filtered.strip() or not chunks:
            raise ProcessingError("No content found")

        if not config.output_language:
            config = replace(config, output_language=detect_language(filtered))

        stage(CrawlStage.EXTRACTING)
        extract_start = time.time()
        payloads = build_payloads(chunks, config, self.config.extractor, self.config.retry)
        results = await self._get_worker_pool().run(payloads)
        stats.extract_time = time.time() - extract_start
        stats.failed_chunks = sum(1 for result in results if result.is_error)

        if results and stats.failed_chunks == len(results):
            first_error = results[0].error
            raise ExtractionError(f"All {len(results)} chunks failed extraction: {first_error}")

        items = merge_results(results, fetch_result.url or url)
        stats.total_time = time.time() - start_time

        stats_dict = asdict(stats)
        for item in items:
            item.metadata['crawl_stats'] = stats_dict

        self.logger.info(
            f"Extracted {len(items)} items from {url} in {stats.total_time:.2f}s "
            f"({stats.failed_chunks}/{stats.chunks_count} chunks failed)"
        )
        return AdapterCrawlResult(items=items, stats=stats)

    async def crawl_raw(self, url: str) -> RawCrawlResult:
        """Fetch and process a page without LLM extraction"""
        fetch_result = await self.fetcher.fetch(url)
        cleaned_html, markdown, filtered, chunks = self._process(fetch_result.html)
        return RawCrawlResult(
            html=fetch_result.html,
            cleaned_html=cleaned_html,
            markdown=markdown,
            filtered_content=filtered,
            chunks=[chunk.content for chunk in chunks],
        )

    async def close(self) -> None:
        """Release the fetcher, extractor and worker pool"""
        if self._closed:
            return
        self._closed = True

        try:
            await self.fetcher.cleanup()
        finally:
            try:
                await self.extractor.close()
            finally:
                if self.worker_pool is not None:
                    pool, self.worker_pool = self.worker_pool, None
                    await pool.close()
                    self.logger.info("Worker pool closed")
