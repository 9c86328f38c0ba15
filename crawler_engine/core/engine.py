"""
Crawler Engine

Manages crawler sources and their adapters, runs crawls with bounded batch
concurrency and publishes lifecycle events.
"""

import asyncio
import time
import uuid
from dataclasses import fields, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import validators

from crawler_engine.adapters.universal import AdapterConfig, UniversalAdapter
from crawler_engine.core.base import (
    ConfigurationError,
    CrawledItem,
    CrawlerSource,
    CrawlResult,
    CrawlStage,
    CrawlStats,
    CrawlStatus,
    ExtractionConfig,
    ExtractionType,
    SourceConfig,
    SourceNotFoundError,
    SourceRepositoryInterface,
    StorageError,
    TestResult,
)
from crawler_engine.core.config import EngineConfig
from crawler_engine.core.events import EngineEvent, EventBus, EventHandler
from crawler_engine.core.logging import get_logger, logging_manager


STAGE_PROGRESS = {
    CrawlStage.FETCHING: 0,
    CrawlStage.PROCESSING: 25,
    CrawlStage.EXTRACTING: 75,
    CrawlStage.COMPLETE: 100,
}

DEFAULT_TEST_PROMPT = "Extract all the main content elements of the page"
DEFAULT_CRAWL_PROMPT = "Extract the main content elements"

UPDATABLE_FIELDS = {f.name for f in fields(SourceConfig)}
ADAPTER_FIELDS = {f.name for f in fields(AdapterConfig)}

AdapterFactory = Callable[[AdapterConfig], UniversalAdapter]


def generate_source_id() -> str:
    return f"src_{int(time.time() * 1000):x}_{uuid.uuid4().hex[:6]}"


class CrawlerEngine:
    """
    High-level API for adding sources, testing URLs and crawling.

    Sources and adapters are private registries of this instance; every
    source owns exactly one adapter.
    """

    def __init__(self, config: Optional[EngineConfig] = None,
                 repository: Optional[SourceRepositoryInterface] = None,
                 adapter_factory: Optional[AdapterFactory] = None,
                 events: Optional[EventBus] = None):
        self.config = config or EngineConfig()
        if self.config.max_concurrent < 1:
            raise ConfigurationError(f"max_concurrent must be at least 1, got {self.config.max_concurrent}")

        self.repository = repository
        self.adapter_factory = adapter_factory or UniversalAdapter
        self.events = events or EventBus()
        self.logger = get_logger(__name__)

        self._sources: Dict[str, CrawlerSource] = {}
        self._adapters: Dict[str, UniversalAdapter] = {}
        self._adapter_overrides: Dict[str, Dict[str, Any]] = {}
        self._crawl_states: Dict[str, CrawlStage] = {}

    # Events

    def on(self, event: EngineEvent, handler: EventHandler) -> Callable[[], None]:
        """Subscribe to an engine event; returns an unsubscribe function"""
        return self.events.on(event, handler)

    def _emit(self, event: EngineEvent, payload: Dict[str, Any]) -> None:
        self.events.emit(event, payload)

    # Adapters

    def _adapter_config(self, use_browser: bool, overrides: Optional[Dict[str, Any]] = None) -> AdapterConfig:
        adapter_config = AdapterConfig(
            use_browser=use_browser,
            extractor=self.config.extractor_settings(),
            http=self.config.http,
            browser=self.config.browser,
            pruning=self.config.pruning,
            chunking=self.config.chunking,
            retry=self.config.retry,
            worker_pool_size=self.config.worker_pool_size,
        )
        if overrides:
            unknown = set(overrides) - ADAPTER_FIELDS
            if unknown:
                raise ConfigurationError(f"Unknown adapter options: {', '.join(sorted(unknown))}")
            adapter_config = replace(adapter_config, **overrides)
        return adapter_config

    def _create_adapter(self, use_browser: bool, overrides: Optional[Dict[str, Any]] = None) -> UniversalAdapter:
        return self.adapter_factory(self._adapter_config(use_browser, overrides))

    async def _close_adapter(self, adapter: UniversalAdapter) -> None:
        try:
            await adapter.close()
        except Exception as e:
            self.logger.error(f"Error closing adapter: {e}", exc_info=True)

    # Persistence

    async def _persist_source(self, source: CrawlerSource) -> None:
        if self.repository is None:
            return
        try:
            await self.repository.save_source(source)
        except StorageError as e:
            logging_manager.log_error(e, {'source_id': source.id, 'operation': 'save_source'})

    async def _persist_result(self, result: CrawlResult) -> None:
        if self.repository is None:
            return
        try:
            await self.repository.save_result(result)
        except StorageError as e:
            logging_manager.log_error(e, {'source_id': result.source_id, 'operation': 'save_result'})

    async def load_sources(self) -> List[CrawlerSource]:
        """Register every source stored in the repository"""
        if self.repository is None:
            return []

        loaded = []
        for source in await self.repository.load_sources():
            if source.id in self._sources:
                continue
            self._adapters[source.id] = self._create_adapter(source.requires_browser)
            self._sources[source.id] = source
            self._crawl_states[source.id] = CrawlStage.IDLE
            loaded.append(source)

        self.logger.info(f"Loaded {len(loaded)} sources from repository")
        return loaded

    # Source management

    def _validate_url(self, url: str) -> None:
        if not url or not validators.url(url):
            raise ConfigurationError(f"Invalid source URL: {url!r}")

    async def add_source(self, source_config: SourceConfig) -> CrawlerSource:
        """
        Register a new crawler source

        Args:
            source_config: Source settings

        Returns:
            The created source

        Raises:
            ConfigurationError: invalid URL or extractor configuration
        """
        self._validate_url(source_config.url)

        overrides = dict(source_config.adapter_overrides or {})
        adapter = self._create_adapter(source_config.requires_browser, overrides)

        now = datetime.now()
        source = CrawlerSource(
            id=generate_source_id(),
            name=source_config.name,
            url=source_config.url,
            prompt=source_config.prompt,
            schema=source_config.schema,
            requires_browser=source_config.requires_browser,
            crawl_interval_hours=source_config.crawl_interval_hours or self.config.crawl_interval_hours,
            is_enabled=source_config.is_enabled,
            created_at=now,
            updated_at=now,
        )

        self._sources[source.id] = source
        self._adapters[source.id] = adapter
        self._adapter_overrides[source.id] = overrides
        self._crawl_states[source.id] = CrawlStage.IDLE

        self.logger.info(f"Added source {source.id}: {source.name} ({source.url})")
        await self._persist_source(source)
        self._emit(EngineEvent.SOURCE_ADDED, {'source': source})

        return source

    async def update_source(self, source_id: str, **changes: Any) -> CrawlerSource:
        """
        Update fields of an existing source

        A changed ``requires_browser`` (or new ``adapter_overrides``) replaces
        the adapter. The replacement is built before the old adapter is closed;
        adapters acquire their browser on first fetch, so the old browser is
        released before the new one starts. If the replacement cannot be
        built the source keeps its current adapter and settings.

        Raises:
            SourceNotFoundError: unknown source id
            ValueError: unknown field names
            ConfigurationError: invalid adapter overrides
        """
        source = self.get_source(source_id)

        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown source fields: {', '.join(sorted(unknown))}")
        if 'url' in changes:
            self._validate_url(changes['url'])

        overrides = changes.pop('adapter_overrides', None)
        browser_changed = (
            'requires_browser' in changes and changes['requires_browser'] != source.requires_browser
        )

        if browser_changed or overrides is not None:
            new_overrides = dict(overrides) if overrides is not None else self._adapter_overrides.get(source_id)
            use_browser = changes.get('requires_browser', source.requires_browser)
            new_adapter = self._create_adapter(use_browser, new_overrides)

            old_adapter = self._adapters.get(source_id)
            self._adapters[source_id] = new_adapter
            if new_overrides is not None:
                self._adapter_overrides[source_id] = new_overrides
            if old_adapter is not None:
                await self._close_adapter(old_adapter)

        updated = replace(source, updated_at=datetime.now(), **changes)
        self._sources[source_id] = updated

        await self._persist_source(updated)
        self._emit(EngineEvent.SOURCE_UPDATED, {'source': updated})

        return updated

    async def set_enabled(self, source_id: str, enabled: bool) -> CrawlerSource:
        """Enable or disable a source for crawl_all"""
        return await self.update_source(source_id, is_enabled=enabled)

    async def remove_source(self, source_id: str) -> None:
        """
        Remove a source and close its adapter

        Raises:
            SourceNotFoundError: unknown source id
        """
        self.get_source(source_id)

        adapter = self._adapters.pop(source_id, None)
        if adapter is not None:
            await self._close_adapter(adapter)

        del self._sources[source_id]
        self._adapter_overrides.pop(source_id, None)
        self._crawl_states.pop(source_id, None)

        if self.repository is not None:
            try:
                await self.repository.delete_source(source_id)
            except StorageError as e:
                logging_manager.log_error(e, {'source_id': source_id, 'operation': 'delete_source'})

        self.logger.info(f"Removed source {source_id}")
        self._emit(EngineEvent.SOURCE_REMOVED, {'source_id': source_id})

    def get_source(self, source_id: str) -> CrawlerSource:
        """
        Raises:
            SourceNotFoundError: unknown source id
        """
        source = self._sources.get(source_id)
        if source is None:
            raise SourceNotFoundError(f"Source not found: {source_id}")
        return source

    def get_sources(self) -> List[CrawlerSource]:
        return list(self._sources.values())

    def get_crawl_stage(self, source_id: str) -> CrawlStage:
        self.get_source(source_id)
        return self._crawl_states.get(source_id, CrawlStage.IDLE)

    # Crawling

    def _extraction_config(self, prompt: Optional[str], schema: Optional[Dict[str, Any]]) -> ExtractionConfig:
        return ExtractionConfig(
            extraction_type=ExtractionType.SCHEMA if schema else ExtractionType.BLOCK,
            prompt=prompt,
            schema=schema,
        )

    def _set_stage(self, source_id: str, stage: CrawlStage) -> None:
        # A crawl may outlive its source's removal
        if source_id not in self._sources:
            return
        self._crawl_states[source_id] = stage
        if stage in STAGE_PROGRESS:
            self._emit(EngineEvent.CRAWL_PROGRESS, {
                'source_id': source_id,
                'stage': stage,
                'progress': STAGE_PROGRESS[stage],
            })

    def is_due(self, source: CrawlerSource, now: Optional[datetime] = None) -> bool:
        """A source is due when never crawled or its interval has elapsed"""
        if source.last_crawl_at is None:
            return True
        now = now or datetime.now()
        return now - source.last_crawl_at >= timedelta(hours=source.crawl_interval_hours)

    async def crawl(self, source_id: str) -> CrawlResult:
        """
        Crawl one source

        Every failure is converted into ``CrawlResult(success=False)`` and
        recorded on the source.

        Raises:
            SourceNotFoundError: unknown source id
        """
        source = self.get_source(source_id)

        started_at = datetime.now()
        start_time = time.time()

        self._emit(EngineEvent.CRAWL_START, {'source_id': source_id, 'url': source.url})

        try:
            adapter = self._adapters.get(source_id)
            if adapter is None:
                raise ConfigurationError(f"No adapter configured for source {source_id}")
            outcome = await adapter.crawl(
                source.url,
                self._extraction_config(source.prompt, source.schema),
                lambda stage: self._set_stage(source_id, stage),
            )
        except Exception as e:
            duration = time.time() - start_time
            error_message = str(e) or type(e).__name__
            self._set_stage(source_id, CrawlStage.ERROR)
            logging_manager.log_error(e, {'source_id': source_id, 'url': source.url})

            self._record(source_id, CrawlStatus.ERROR, error=error_message, duration=duration)
            result = CrawlResult(
                source_id=source_id,
                url=source.url,
                items=[],
                success=False,
                error=error_message,
                started_at=started_at,
                completed_at=datetime.now(),
                stats=CrawlStats(total_time=duration),
            )
            self._emit(EngineEvent.CRAWL_ERROR, {'source_id': source_id, 'error': e})
        else:
            duration = time.time() - start_time
            self._record(source_id, CrawlStatus.SUCCESS, item_count=len(outcome.items), duration=duration)
            result = CrawlResult(
                source_id=source_id,
                url=source.url,
                items=outcome.items,
                success=True,
                started_at=started_at,
                completed_at=datetime.now(),
                stats=outcome.stats,
            )
            self._set_stage(source_id, CrawlStage.COMPLETE)
            self._emit(EngineEvent.CRAWL_COMPLETE, {'source_id': source_id, 'result': result})

        if source_id in self._sources:
            await self._persist_source(self._sources[source_id])
        await self._persist_result(result)
        return result

    def _record(self, source_id: str, status: CrawlStatus, error: Optional[str] = None,
                item_count: Optional[int] = None, duration: float = 0.0) -> None:
        source = self._sources.get(source_id)
        if source is None:
            # Removed while crawling
            return
        now = datetime.now()
        self._sources[source_id] = replace(
            source,
            last_crawl_at=now,
            last_crawl_status=status,
            last_crawl_error=error,
            last_crawl_item_count=item_count if item_count is not None else source.last_crawl_item_count,
            last_crawl_duration=duration,
            updated_at=now,
        )

    async def crawl_all(self, force: bool = False) -> List[CrawlResult]:
        """
        Crawl every enabled source that is due (or all enabled ones with ``force``)

        Sources run in batches of ``max_concurrent``; a batch starts only after
        the previous one has finished.
        """
        start = datetime.now()
        sources = [
            source for source in self._sources.values()
            if source.is_enabled and (force or self.is_due(source, start))
        ]
        batch_size = self.config.max_concurrent
        results: List[CrawlResult] = []

        self.logger.info(f"Crawling {len(sources)} sources in batches of {batch_size}")

        for i in range(0, len(sources), batch_size):
            batch = sources[i:i + batch_size]
            outcomes = await asyncio.gather(*(self.crawl(source.id) for source in batch), return_exceptions=True)

            for source, outcome in zip(batch, outcomes):
                if isinstance(outcome, Exception):
                    self.logger.error(f"Crawl of {source.id} raised: {outcome}")
                    now = datetime.now()
                    outcome = CrawlResult(
                        source_id=source.id,
                        url=source.url,
                        items=[],
                        success=False,
                        error=str(outcome),
                        started_at=now,
                        completed_at=now,
                    )
                elif isinstance(outcome, BaseException):
                    raise outcome
                results.append(outcome)

            logging_manager.log_progress(len(results), len(sources), f"batch {i // batch_size + 1} done")

        self._log_summary(start, results)
        return results

    def _log_summary(self, start: datetime, results: List[CrawlResult]) -> None:
        end = datetime.now()
        successful = sum(1 for result in results if result.success)
        logging_manager.generate_summary_report({
            'start_time': start.isoformat(),
            'end_time': end.isoformat(),
            'duration': str(end - start),
            'total_sources': len(results),
            'successful_sources': successful,
            'failed_sources': len(results) - successful,
            'success_rate': (successful / len(results) * 100) if results else 0,
            'items_extracted': sum(len(result.items) for result in results),
            'chunks_processed': sum(result.stats.chunks_count for result in results),
            'failed_chunks': sum(result.stats.failed_chunks for result in results),
            'errors': [f"{result.source_id}: {result.error}" for result in results if not result.success],
        })

    async def test_source(self, url: str, prompt: Optional[str] = None, requires_browser: bool = True,
                          schema: Optional[Dict[str, Any]] = None) -> TestResult:
        """
        Crawl a URL through a temporary adapter before adding it as a source

        Returns:
            TestResult; crawl failures are reported in it, not raised
        """
        adapter = self._create_adapter(requires_browser)
        try:
            outcome = await adapter.crawl(url, self._extraction_config(prompt or DEFAULT_TEST_PROMPT, schema))
            return TestResult(
                success=True,
                items=outcome.items,
                item_count=len(outcome.items),
                stats=outcome.stats,
            )
        except Exception as e:
            self.logger.warning(f"Test crawl of {url} failed: {e}")
            return TestResult(success=False, error=str(e) or type(e).__name__)
        finally:
            await self._close_adapter(adapter)

    async def crawl_url(self, url: str, prompt: Optional[str] = None, schema: Optional[Dict[str, Any]] = None,
                        requires_browser: bool = True) -> List[CrawledItem]:
        """Crawl a URL directly without registering a source"""
        adapter = self._create_adapter(requires_browser)
        try:
            outcome = await adapter.crawl(url, self._extraction_config(prompt or DEFAULT_CRAWL_PROMPT, schema))
            return outcome.items
        finally:
            await self._close_adapter(adapter)

    async def close(self) -> None:
        """Close every adapter"""
        adapters = list(self._adapters.values())
        self._adapters.clear()
        for adapter in adapters:
            await self._close_adapter(adapter)
        await self.events.drain()
        self.logger.info(f"Crawler engine closed ({len(adapters)} adapters released)")
