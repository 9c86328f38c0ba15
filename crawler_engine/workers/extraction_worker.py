"""
Extraction worker pool.

Each chunk is extracted in its own task on a bounded thread pool. A task
receives plain data (``WorkerPayload``), builds its own extractor, runs the
extraction under retry inside a private event loop and always hands back an
``ExtractionResult``; failures are returned as error results.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Sequence

from crawler_engine.core.base import (
    ExtractionConfig,
    ExtractionResult,
    ExtractorInterface,
    TextChunk,
)
from crawler_engine.core.logging import get_logger
from crawler_engine.extractors.factory import ExtractorSettings, create_extractor
from crawler_engine.utils.retry import RetryOptions, with_retry


logger = get_logger(__name__)

ExtractorFactory = Callable[[ExtractorSettings], ExtractorInterface]


@dataclass
class WorkerPayload:
    """Everything a worker needs to extract one chunk"""
    index: int
    content: str
    config: ExtractionConfig
    settings: ExtractorSettings
    retry: RetryOptions = field(default_factory=RetryOptions)


def build_payloads(chunks: Sequence[TextChunk], config: ExtractionConfig,
                   settings: ExtractorSettings, retry: RetryOptions) -> List[WorkerPayload]:
    return [
        WorkerPayload(index=chunk.index, content=chunk.content, config=config, settings=settings, retry=retry)
        for chunk in chunks
    ]


async def extract_chunk(payload: WorkerPayload,
                        extractor_factory: ExtractorFactory = create_extractor) -> ExtractionResult:
    """
    Extract one chunk, never raising.

    Args:
        payload: Chunk content and extraction settings
        extractor_factory: Builds the extractor from the payload's settings

    Returns:
        The extraction result, or an error result once retries are exhausted
    """
    extractor = None
    try:
        extractor = extractor_factory(payload.settings)
        return await with_retry(
            lambda: extractor.extract(payload.content, payload.config),
            payload.retry,
        )
    except Exception as e:
        logger.error(f"Chunk {payload.index} extraction failed: {e}")
        return ExtractionResult.from_error(e, payload.config.model)
    finally:
        if extractor is not None:
            try:
                await extractor.close()
            except Exception as e:
                logger.warning(f"Failed to close extractor for chunk {payload.index}: {e}")


class ExtractionWorkerPool:
    """
    Thread pool running chunk extractions concurrently.

    At most ``max_workers`` payloads are in flight; the rest wait in FIFO
    order. Results come back in chunk index order.
    """

    def __init__(self, max_workers: int = 3, extractor_factory: ExtractorFactory = create_extractor):
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")
        self.max_workers = max_workers
        self.extractor_factory = extractor_factory
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="extraction-worker")
        self._shutdown = False

    def _run_payload(self, payload: WorkerPayload) -> ExtractionResult:
        # Fresh event loop per task; extractor clients are bound to it
        return asyncio.run(extract_chunk(payload, self.extractor_factory))

    async def run(self, payloads: Sequence[WorkerPayload]) -> List[ExtractionResult]:
        """
        Extract every payload concurrently.

        Args:
            payloads: One payload per chunk

        Returns:
            Results ordered by payload index
        """
        if self._shutdown:
            raise RuntimeError("Worker pool has been shut down")
        if not payloads:
            return []

        loop = asyncio.get_running_loop()
        futures = [loop.run_in_executor(self._executor, self._run_payload, payload) for payload in payloads]
        outcomes = await asyncio.gather(*futures, return_exceptions=True)

        results: Dict[int, ExtractionResult] = {}
        for payload, outcome in zip(payloads, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Worker for chunk {payload.index} crashed: {outcome}")
                outcome = ExtractionResult.from_error(outcome, payload.config.model)
            results[payload.index] = outcome

        failed = sum(1 for result in results.values() if result.is_error)
        if failed:
            logger.warning(f"Completed {len(results)} chunks with {failed} failures")

        return [results[index] for index in sorted(results)]

    def shutdown(self) -> None:
        """Release worker threads; later calls are no-ops"""
        if self._shutdown:
            return
        self._shutdown = True
        self._executor.shutdown(wait=True)

    async def close(self) -> None:
        """Shut the pool down without blocking the event loop"""
        if self._shutdown:
            return
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.shutdown)

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown
