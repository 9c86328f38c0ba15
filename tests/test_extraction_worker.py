"""
Tests for the extraction worker pool

Tests bounded concurrency, result ordering and conversion of failures
into error results.
"""

import asyncio
import threading

import pytest

from crawler_engine.core.base import (
    ConfigurationError,
    ExtractionConfig,
    ExtractionError,
    ExtractionResult,
    ExtractorInterface,
    TextChunk,
)
from crawler_engine.extractors.factory import ExtractorSettings
from crawler_engine.utils.retry import RetryOptions
from crawler_engine.workers.extraction_worker import (
    ExtractionWorkerPool,
    WorkerPayload,
    build_payloads,
    extract_chunk,
)


class InFlightTracker:
    def __init__(self):
        self.lock = threading.Lock()
        self.current = 0
        self.peak = 0
        self.calls = 0
        self.closed = 0

    def enter(self):
        with self.lock:
            self.current += 1
            self.calls += 1
            self.peak = max(self.peak, self.current)

    def leave(self):
        with self.lock:
            self.current -= 1


class FakeExtractor(ExtractorInterface):
    """Echoes the chunk back after a short delay"""

    def __init__(self, tracker, delay=0.05, fail_on=None, failures_before_success=0):
        self.tracker = tracker
        self.delay = delay
        self.fail_on = fail_on or set()
        self.failures_before_success = failures_before_success

    async def extract(self, content, config):
        self.tracker.enter()
        try:
            # Later chunks finish first
            await asyncio.sleep(self.delay / (1 + len(content)))
            if content in self.fail_on:
                raise ExtractionError(f"cannot extract {content}", status_code=400)
            if self.failures_before_success > 0:
                self.failures_before_success -= 1
                raise ExtractionError("overloaded", status_code=529)
            return ExtractionResult(data=[{'title': content}], raw=content, model='fake-model')
        finally:
            self.tracker.leave()

    async def close(self):
        with self.tracker.lock:
            self.tracker.closed += 1


class BlockingExtractor(ExtractorInterface):
    """Holds its worker thread until released"""

    def __init__(self, started, release):
        self.started = started
        self.release = release

    async def extract(self, content, config):
        self.started.set()
        self.release.wait(timeout=5)
        return ExtractionResult(data=[], raw=content, model='fake-model')

    async def close(self):
        pass


@pytest.fixture
def tracker():
    return InFlightTracker()


@pytest.fixture
def fast_retry():
    return RetryOptions(max_retries=3, initial_delay=0, max_delay=0, jitter=False)


def _payloads(count, retry):
    chunks = [TextChunk(content='x' * i, index=i, start_char=0, end_char=i) for i in range(count)]
    return build_payloads(chunks, ExtractionConfig(), ExtractorSettings(), retry)


class TestExtractChunk:
    """Test suite for a single worker task"""

    @pytest.mark.asyncio
    async def test_success(self, tracker, fast_retry):
        payload = WorkerPayload(index=0, content="hello", config=ExtractionConfig(),
                                settings=ExtractorSettings(), retry=fast_retry)

        result = await extract_chunk(payload, lambda settings: FakeExtractor(tracker))

        assert result.data == [{'title': 'hello'}]
        assert not result.is_error
        assert tracker.closed == 1

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, tracker, fast_retry):
        payload = WorkerPayload(index=0, content="hello", config=ExtractionConfig(),
                                settings=ExtractorSettings(), retry=fast_retry)

        result = await extract_chunk(payload, lambda settings: FakeExtractor(tracker, failures_before_success=2))

        assert not result.is_error
        assert tracker.calls == 3

    @pytest.mark.asyncio
    async def test_final_failure_becomes_error_result(self, tracker, fast_retry):
        payload = WorkerPayload(index=4, content="bad", config=ExtractionConfig(model="m1"),
                                settings=ExtractorSettings(), retry=fast_retry)

        result = await extract_chunk(payload, lambda settings: FakeExtractor(tracker, fail_on={"bad"}))

        assert result.is_error
        assert result.error == 'cannot extract bad'
        assert result.data is None
        assert result.model == "m1"
        assert tracker.calls == 1
        assert tracker.closed == 1

    @pytest.mark.asyncio
    async def test_factory_error_becomes_error_result(self, fast_retry):
        def failing_factory(settings):
            raise ConfigurationError("no credentials")

        payload = WorkerPayload(index=0, content="c", config=ExtractionConfig(),
                                settings=ExtractorSettings(), retry=fast_retry)

        result = await extract_chunk(payload, failing_factory)

        assert result.is_error
        assert result.error == "no credentials"
        assert result.model == "unknown"


class TestExtractionWorkerPool:
    """Test suite for ExtractionWorkerPool"""

    @pytest.mark.asyncio
    async def test_bounded_concurrency_and_order(self, tracker, fast_retry):
        pool = ExtractionWorkerPool(max_workers=3, extractor_factory=lambda settings: FakeExtractor(tracker))
        try:
            results = await pool.run(_payloads(10, fast_retry))
        finally:
            pool.shutdown()

        assert len(results) == 10
        assert [result.raw for result in results] == ['x' * i for i in range(10)]
        assert tracker.peak <= 3
        assert tracker.calls == 10
        assert tracker.closed == 10

    @pytest.mark.asyncio
    async def test_failed_chunks_keep_their_position(self, tracker, fast_retry):
        pool = ExtractionWorkerPool(
            max_workers=2,
            extractor_factory=lambda settings: FakeExtractor(tracker, fail_on={'xx'}),
        )
        try:
            results = await pool.run(_payloads(4, fast_retry))
        finally:
            pool.shutdown()

        assert [result.is_error for result in results] == [False, False, True, False]

    @pytest.mark.asyncio
    async def test_empty_payloads(self):
        pool = ExtractionWorkerPool(max_workers=1)
        try:
            assert await pool.run([]) == []
        finally:
            pool.shutdown()

    @pytest.mark.asyncio
    async def test_run_after_shutdown_raises(self, fast_retry):
        pool = ExtractionWorkerPool(max_workers=1)
        pool.shutdown()

        with pytest.raises(RuntimeError):
            await pool.run(_payloads(1, fast_retry))

    @pytest.mark.asyncio
    async def test_close_does_not_block_event_loop(self, fast_retry):
        started = threading.Event()
        release = threading.Event()
        pool = ExtractionWorkerPool(max_workers=1,
                                    extractor_factory=lambda settings: BlockingExtractor(started, release))

        run_task = asyncio.create_task(pool.run(_payloads(1, fast_retry)))
        for _ in range(500):
            if started.is_set():
                break
            await asyncio.sleep(0.01)

        close_task = asyncio.create_task(pool.close())
        await asyncio.sleep(0.05)

        assert not close_task.done()
        release.set()
        await close_task
        results = await run_task
        assert pool.is_shutdown
        assert [result.raw for result in results] == ['']

        await pool.close()

    def test_shutdown_is_idempotent(self):
        pool = ExtractionWorkerPool(max_workers=2)
        pool.shutdown()
        pool.shutdown()

        assert pool.is_shutdown

    def test_invalid_pool_size(self):
        with pytest.raises(ValueError):
            ExtractionWorkerPool(max_workers=0)
