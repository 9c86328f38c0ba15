"""
Crawler Engine

Turns web pages into structured, LLM-extracted records. Pages are fetched
over HTTP or with a headless browser (crawl4ai), cleaned and converted to
Markdown, pruned, split into overlapping size-bounded chunks and extracted in
parallel by a worker pool with retry and backoff.

Features:
- Separator-hierarchy text splitting with verbatim chunk overlap
- Heuristic pruning of boilerplate Markdown blocks
- Parallel chunk extraction via the Anthropic API, the Claude CLI or OpenRouter
- Source registry with due-interval scheduling and batched crawls
- Lifecycle events for crawl progress
- Configurable via YAML/JSON and environment variables
"""

from crawler_engine.core.base import (
    ChunkOptions,
    ConfigurationError,
    CrawledItem,
    CrawlerError,
    CrawlerSource,
    CrawlResult,
    CrawlStage,
    CrawlStatus,
    ExtractionConfig,
    ExtractionError,
    ExtractionResult,
    ExtractionType,
    ExtractorMode,
    FetchError,
    ProcessingError,
    PruningOptions,
    SourceConfig,
    SourceNotFoundError,
    StorageError,
    TestResult,
    TextChunk,
)
from crawler_engine.core.config import ConfigManager, EngineConfig
from crawler_engine.core.engine import CrawlerEngine
from crawler_engine.core.events import EngineEvent, EventBus
from crawler_engine.core.logging import get_logger, setup_logging
from crawler_engine.processors.chunker import SmartChunker
from crawler_engine.processors.pruning import PruningFilter
from crawler_engine.utils.retry import RetryOptions, with_retry
from crawler_engine.workers.extraction_worker import ExtractionWorkerPool

__version__ = "0.1.0"

__all__ = [
    'ChunkOptions',
    'ConfigurationError',
    'CrawledItem',
    'CrawlerError',
    'CrawlerSource',
    'CrawlResult',
    'CrawlStage',
    'CrawlStatus',
    'ExtractionConfig',
    'ExtractionError',
    'ExtractionResult',
    'ExtractionType',
    'ExtractorMode',
    'FetchError',
    'ProcessingError',
    'PruningOptions',
    'SourceConfig',
    'SourceNotFoundError',
    'StorageError',
    'TestResult',
    'TextChunk',
    'ConfigManager',
    'EngineConfig',
    'CrawlerEngine',
    'EngineEvent',
    'EventBus',
    'get_logger',
    'setup_logging',
    'SmartChunker',
    'PruningFilter',
    'RetryOptions',
    'with_retry',
    'ExtractionWorkerPool',
]
