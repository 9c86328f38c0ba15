"""
Tests for CrawlerEngine

Tests source management, crawl bookkeeping, batched crawl_all, lifecycle
events and persistence hooks with a fake adapter factory.
"""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from crawler_engine.adapters.universal import AdapterCrawlResult
from crawler_engine.core.base import (
    ConfigurationError,
    CrawledItem,
    CrawlerSource,
    CrawlStage,
    CrawlStats,
    CrawlStatus,
    FetchError,
    SourceConfig,
    SourceNotFoundError,
    SourceRepositoryInterface,
    StorageError,
)
from crawler_engine.core.config import EngineConfig
from crawler_engine.core.engine import CrawlerEngine
from crawler_engine.core.events import EngineEvent


class FakeAdapter:
    def __init__(self, config, factory):
        self.config = config
        self.factory = factory
        self.close_calls = 0

    async def crawl(self, url, config, on_stage=None):
        self.factory.log.append(('start', url))
        self.factory.extraction_configs.append(config)
        if on_stage:
            on_stage(CrawlStage.FETCHING)
        await asyncio.sleep(0.01)
        self.factory.log.append(('end', url))

        if 'fail' in url:
            raise FetchError("HTTP 500: Internal Server Error", status_code=500)

        if on_stage:
            on_stage(CrawlStage.PROCESSING)
            on_stage(CrawlStage.EXTRACTING)
        items = [CrawledItem(id='item_1', title='Item 1', url=url), CrawledItem(id='item_2', title='Item 2', url=url)]
        return AdapterCrawlResult(items=items, stats=CrawlStats(chunks_count=2))

    async def close(self):
        self.close_calls += 1


class FakeAdapterFactory:
    def __init__(self):
        self.adapters = []
        self.log = []
        self.extraction_configs = []

    def __call__(self, config):
        adapter = FakeAdapter(config, self)
        self.adapters.append(adapter)
        return adapter


def batch_sizes(log):
    """Group start/end records into runs separated by idle points"""
    sizes = []
    active = 0
    started = 0
    for kind, _ in log:
        if kind == 'start':
            active += 1
            started += 1
        else:
            active -= 1
            if active == 0:
                sizes.append(started)
                started = 0
    return sizes


@pytest.fixture
def factory():
    return FakeAdapterFactory()


@pytest.fixture
def engine(factory):
    return CrawlerEngine(EngineConfig(max_concurrent=2), adapter_factory=factory)


def _source(name="News", url="https://example.com/news", **kwargs):
    return SourceConfig(name=name, url=url, **kwargs)


class TestSourceManagement:
    """Test suite for adding, updating and removing sources"""

    @pytest.mark.asyncio
    async def test_add_source(self, engine, factory):
        events = []
        engine.on(EngineEvent.SOURCE_ADDED, events.append)

        source = await engine.add_source(_source(prompt="Extract news", crawl_interval_hours=6))

        assert source.id.startswith("src_")
        assert source.name == "News"
        assert source.crawl_interval_hours == 6
        assert source.last_crawl_at is None
        assert engine.get_source(source.id) == source
        assert engine.get_sources() == [source]
        assert engine.get_crawl_stage(source.id) == CrawlStage.IDLE
        assert len(factory.adapters) == 1
        assert factory.adapters[0].config.use_browser is False
        assert events == [{'source': source}]

    @pytest.mark.asyncio
    async def test_ids_are_unique(self, engine):
        first = await engine.add_source(_source())
        second = await engine.add_source(_source())
        assert first.id != second.id

    @pytest.mark.asyncio
    async def test_invalid_url(self, engine, factory):
        with pytest.raises(ConfigurationError):
            await engine.add_source(_source(url="not a url"))

        assert engine.get_sources() == []
        assert factory.adapters == []

    @pytest.mark.asyncio
    async def test_adapter_overrides(self, engine, factory):
        await engine.add_source(_source(adapter_overrides={'worker_pool_size': 7}))
        assert factory.adapters[0].config.worker_pool_size == 7

    @pytest.mark.asyncio
    async def test_unknown_adapter_override(self, engine):
        with pytest.raises(ConfigurationError, match="bogus"):
            await engine.add_source(_source(adapter_overrides={'bogus': 1}))

    @pytest.mark.asyncio
    async def test_unknown_source(self, engine):
        with pytest.raises(SourceNotFoundError):
            engine.get_source("src_missing")
        with pytest.raises(KeyError):
            await engine.crawl("src_missing")
        with pytest.raises(SourceNotFoundError):
            await engine.remove_source("src_missing")
        with pytest.raises(SourceNotFoundError):
            engine.get_crawl_stage("src_missing")

    @pytest.mark.asyncio
    async def test_update_source_keeps_adapter(self, engine, factory):
        source = await engine.add_source(_source())
        events = []
        engine.on(EngineEvent.SOURCE_UPDATED, events.append)

        updated = await engine.update_source(source.id, name="Renamed", prompt="New prompt")

        assert updated.name == "Renamed"
        assert updated.prompt == "New prompt"
        assert updated.updated_at >= source.updated_at
        assert updated.created_at == source.created_at
        assert len(factory.adapters) == 1
        assert events == [{'source': updated}]

    @pytest.mark.asyncio
    async def test_update_requires_browser_recreates_adapter(self, engine, factory):
        source = await engine.add_source(_source())
        old_adapter = factory.adapters[0]

        updated = await engine.update_source(source.id, requires_browser=True)

        assert updated.requires_browser
        assert old_adapter.close_calls == 1
        assert len(factory.adapters) == 2
        assert factory.adapters[1].config.use_browser is True

    @pytest.mark.asyncio
    async def test_invalid_override_update_keeps_adapter(self, engine, factory):
        source = await engine.add_source(_source(adapter_overrides={'worker_pool_size': 5}))
        adapter = factory.adapters[0]

        with pytest.raises(ConfigurationError, match="bogus"):
            await engine.update_source(source.id, adapter_overrides={'bogus': 1})

        assert adapter.close_calls == 0
        assert len(factory.adapters) == 1
        result = await engine.crawl(source.id)
        assert result.success

        await engine.update_source(source.id, requires_browser=True)
        assert factory.adapters[1].config.worker_pool_size == 5

    @pytest.mark.asyncio
    async def test_failed_adapter_rebuild_keeps_source_unchanged(self, engine, factory):
        source = await engine.add_source(_source())
        adapter = factory.adapters[0]

        def broken_factory(config):
            raise ConfigurationError("ANTHROPIC_API_KEY is not set")

        engine.adapter_factory = broken_factory
        with pytest.raises(ConfigurationError):
            await engine.update_source(source.id, requires_browser=True)

        assert adapter.close_calls == 0
        assert engine.get_source(source.id).requires_browser is False
        assert (await engine.crawl(source.id)).success

    @pytest.mark.asyncio
    async def test_update_unknown_field(self, engine):
        source = await engine.add_source(_source())
        with pytest.raises(ValueError):
            await engine.update_source(source.id, colour="blue")

    @pytest.mark.asyncio
    async def test_set_enabled(self, engine):
        source = await engine.add_source(_source())

        disabled = await engine.set_enabled(source.id, False)

        assert not disabled.is_enabled
        assert not engine.get_source(source.id).is_enabled

    @pytest.mark.asyncio
    async def test_remove_source(self, engine, factory):
        source = await engine.add_source(_source())
        events = []
        engine.on(EngineEvent.SOURCE_REMOVED, events.append)

        await engine.remove_source(source.id)

        assert factory.adapters[0].close_calls == 1
        assert engine.get_sources() == []
        assert events == [{'source_id': source.id}]
        with pytest.raises(SourceNotFoundError):
            engine.get_source(source.id)

    def test_invalid_max_concurrent(self):
        with pytest.raises(ConfigurationError):
            CrawlerEngine(EngineConfig(max_concurrent=0))


class TestCrawl:
    """Test suite for crawling single sources"""

    @pytest.mark.asyncio
    async def test_successful_crawl(self, engine, factory):
        source = await engine.add_source(_source(schema={'type': 'array'}))
        progress = []
        started = []
        completed = []
        engine.on(EngineEvent.CRAWL_START, started.append)
        engine.on(EngineEvent.CRAWL_PROGRESS, lambda p: progress.append((p['stage'], p['progress'])))
        engine.on(EngineEvent.CRAWL_COMPLETE, completed.append)

        result = await engine.crawl(source.id)

        assert result.success
        assert result.source_id == source.id
        assert [item.title for item in result.items] == ['Item 1', 'Item 2']
        assert result.completed_at >= result.started_at
        assert started == [{'source_id': source.id, 'url': source.url}]
        assert progress == [
            (CrawlStage.FETCHING, 0),
            (CrawlStage.PROCESSING, 25),
            (CrawlStage.EXTRACTING, 75),
            (CrawlStage.COMPLETE, 100),
        ]
        assert completed == [{'source_id': source.id, 'result': result}]
        assert factory.extraction_configs[0].schema == {'type': 'array'}
        assert factory.extraction_configs[0].extraction_type.value == 'schema'

        recorded = engine.get_source(source.id)
        assert recorded.last_crawl_status == CrawlStatus.SUCCESS
        assert recorded.last_crawl_item_count == 2
        assert recorded.last_crawl_error is None
        assert recorded.last_crawl_at is not None
        assert recorded.last_crawl_duration >= 0
        assert engine.get_crawl_stage(source.id) == CrawlStage.COMPLETE

    @pytest.mark.asyncio
    async def test_failed_crawl(self, engine):
        source = await engine.add_source(_source(url="https://example.com/fail"))
        errors = []
        completed = []
        engine.on(EngineEvent.CRAWL_ERROR, errors.append)
        engine.on(EngineEvent.CRAWL_COMPLETE, completed.append)

        result = await engine.crawl(source.id)

        assert not result.success
        assert result.items == []
        assert "HTTP 500" in result.error
        assert completed == []
        assert len(errors) == 1
        assert errors[0]['source_id'] == source.id
        assert isinstance(errors[0]['error'], FetchError)

        recorded = engine.get_source(source.id)
        assert recorded.last_crawl_status == CrawlStatus.ERROR
        assert "HTTP 500" in recorded.last_crawl_error
        assert engine.get_crawl_stage(source.id) == CrawlStage.ERROR

    @pytest.mark.asyncio
    async def test_missing_adapter_becomes_failed_result(self, engine):
        source = await engine.add_source(_source())
        engine._adapters.pop(source.id)

        result = await engine.crawl(source.id)

        assert not result.success
        assert result.items == []
        assert "No adapter" in result.error
        assert engine.get_source(source.id).last_crawl_status == CrawlStatus.ERROR

    @pytest.mark.asyncio
    async def test_removed_source_stage_is_not_recorded(self, engine, factory):
        source = await engine.add_source(_source())
        progress = []
        engine.on(EngineEvent.CRAWL_PROGRESS, progress.append)

        crawl_task = asyncio.create_task(engine.crawl(source.id))
        await asyncio.sleep(0)
        await engine.remove_source(source.id)
        result = await crawl_task

        assert result.success
        assert source.id not in engine._crawl_states
        assert [event['stage'] for event in progress] == [CrawlStage.FETCHING]

    @pytest.mark.asyncio
    async def test_block_extraction_without_schema(self, engine, factory):
        source = await engine.add_source(_source(prompt="List headlines"))

        await engine.crawl(source.id)

        config = factory.extraction_configs[0]
        assert config.extraction_type.value == 'block'
        assert config.prompt == "List headlines"

    @pytest.mark.asyncio
    async def test_failing_event_handler_does_not_break_crawl(self, engine):
        source = await engine.add_source(_source())

        def broken(payload):
            raise RuntimeError("subscriber bug")

        engine.on(EngineEvent.CRAWL_START, broken)
        engine.on(EngineEvent.CRAWL_COMPLETE, broken)

        result = await engine.crawl(source.id)

        assert result.success


class TestCrawlAll:
    """Test suite for batched crawling"""

    @pytest.mark.asyncio
    async def test_batches_and_failure_isolation(self, engine, factory):
        urls = [
            "https://example.com/a",
            "https://example.com/fail-b",
            "https://example.com/c",
            "https://example.com/fail-d",
            "https://example.com/e",
        ]
        for index, url in enumerate(urls):
            await engine.add_source(_source(name=f"Source {index}", url=url))

        results = await engine.crawl_all()

        assert batch_sizes(factory.log) == [2, 2, 1]
        assert len(results) == 5
        assert [result.url for result in results] == urls
        assert sum(1 for result in results if not result.success) == 2
        assert all(result.items == [] for result in results if not result.success)

    @pytest.mark.asyncio
    async def test_skips_disabled_and_not_due(self, engine, factory):
        crawled = await engine.add_source(_source(name="Crawled", url="https://example.com/a"))
        disabled = await engine.add_source(_source(name="Disabled", url="https://example.com/b", is_enabled=False))
        fresh = await engine.add_source(_source(name="Fresh", url="https://example.com/c"))
        await engine.crawl(crawled.id)
        factory.log.clear()

        results = await engine.crawl_all()

        assert [result.source_id for result in results] == [fresh.id]
        assert disabled.id not in [result.source_id for result in results]

    @pytest.mark.asyncio
    async def test_force_crawls_all_enabled(self, engine):
        first = await engine.add_source(_source(url="https://example.com/a"))
        second = await engine.add_source(_source(url="https://example.com/b"))
        await engine.crawl(first.id)
        await engine.crawl(second.id)

        results = await engine.crawl_all(force=True)

        assert len(results) == 2

    @pytest.mark.asyncio
    async def test_empty(self, engine):
        assert await engine.crawl_all() == []

    @pytest.mark.asyncio
    async def test_is_due(self, engine):
        source = await engine.add_source(_source(crawl_interval_hours=24))
        now = datetime.now()

        assert engine.is_due(source, now)

        recent = replace(source, last_crawl_at=now - timedelta(hours=1))
        stale = replace(source, last_crawl_at=now - timedelta(hours=25))
        assert not engine.is_due(recent, now)
        assert engine.is_due(stale, now)


class TestOneOffCrawls:
    """Test suite for test_source and crawl_url"""

    @pytest.mark.asyncio
    async def test_test_source_success(self, engine, factory):
        result = await engine.test_source("https://example.com/list", prompt="Find items")

        assert result.success
        assert result.item_count == 2
        assert factory.adapters[0].config.use_browser is True
        assert factory.adapters[0].close_calls == 1
        assert engine.get_sources() == []

    @pytest.mark.asyncio
    async def test_test_source_failure(self, engine, factory):
        result = await engine.test_source("https://example.com/fail", requires_browser=False)

        assert not result.success
        assert result.item_count == 0
        assert "HTTP 500" in result.error
        assert factory.adapters[0].close_calls == 1

    @pytest.mark.asyncio
    async def test_crawl_url(self, engine, factory):
        items = await engine.crawl_url("https://example.com/list")

        assert [item.title for item in items] == ['Item 1', 'Item 2']
        assert factory.adapters[0].close_calls == 1

    @pytest.mark.asyncio
    async def test_crawl_url_failure_closes_adapter(self, engine, factory):
        with pytest.raises(FetchError):
            await engine.crawl_url("https://example.com/fail")

        assert factory.adapters[0].close_calls == 1

    @pytest.mark.asyncio
    async def test_close_releases_all_adapters(self, engine, factory):
        await engine.add_source(_source(url="https://example.com/a"))
        await engine.add_source(_source(url="https://example.com/b"))

        await engine.close()

        assert [adapter.close_calls for adapter in factory.adapters] == [1, 1]


class TestPersistence:
    """Test suite for repository integration"""

    @pytest.fixture
    def repository(self):
        return AsyncMock(spec=SourceRepositoryInterface)

    @pytest.fixture
    def engine(self, factory, repository):
        return CrawlerEngine(EngineConfig(max_concurrent=2), repository=repository, adapter_factory=factory)

    @pytest.mark.asyncio
    async def test_source_lifecycle_is_persisted(self, engine, repository):
        source = await engine.add_source(_source())
        repository.save_source.assert_awaited_with(source)

        result = await engine.crawl(source.id)
        repository.save_result.assert_awaited_once_with(result)
        assert repository.save_source.await_args.args[0].last_crawl_status == CrawlStatus.SUCCESS

        await engine.remove_source(source.id)
        repository.delete_source.assert_awaited_once_with(source.id)

    @pytest.mark.asyncio
    async def test_storage_failure_does_not_fail_crawl(self, engine, repository):
        repository.save_result.side_effect = StorageError("disk full")
        source = await engine.add_source(_source())

        result = await engine.crawl(source.id)

        assert result.success

    @pytest.mark.asyncio
    async def test_load_sources(self, engine, repository, factory):
        now = datetime.now()
        stored = CrawlerSource(id="src_stored", name="Stored", url="https://example.com/stored",
                               created_at=now, updated_at=now, requires_browser=True)
        repository.load_sources.return_value = [stored]

        loaded = await engine.load_sources()

        assert loaded == [stored]
        assert engine.get_source("src_stored") == stored
        assert factory.adapters[0].config.use_browser is True
