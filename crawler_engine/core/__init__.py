"""
Core components for the crawler engine

This package contains the data model, exceptions, logging and events.
Configuration (``crawler_engine.core.config``) and the engine itself
(``crawler_engine.core.engine``) are imported from their modules.
"""

from crawler_engine.core.base import (
    ExtractorMode,
    ExtractionType,
    CrawlStage,
    CrawlStatus,
    TextChunk,
    ChunkOptions,
    PruningOptions,
    ExtractionConfig,
    ExtractionResult,
    FetchResult,
    CrawledItem,
    CrawlStats,
    CrawlResult,
    TestResult,
    SourceConfig,
    CrawlerSource,
    BaseComponent,
    FetcherInterface,
    ExtractorInterface,
    SourceRepositoryInterface,
    CrawlerError,
    ConfigurationError,
    FetchError,
    ProcessingError,
    ExtractionError,
    SourceNotFoundError,
    StorageError,
)

from crawler_engine.core.logging import (
    LoggingManager,
    get_logger,
    setup_logging,
)

from crawler_engine.core.events import (
    EngineEvent,
    EventBus,
)

__all__ = [
    # Data model
    'ExtractorMode',
    'ExtractionType',
    'CrawlStage',
    'CrawlStatus',
    'TextChunk',
    'ChunkOptions',
    'PruningOptions',
    'ExtractionConfig',
    'ExtractionResult',
    'FetchResult',
    'CrawledItem',
    'CrawlStats',
    'CrawlResult',
    'TestResult',
    'SourceConfig',
    'CrawlerSource',

    # Interfaces
    'BaseComponent',
    'FetcherInterface',
    'ExtractorInterface',
    'SourceRepositoryInterface',

    # Exceptions
    'CrawlerError',
    'ConfigurationError',
    'FetchError',
    'ProcessingError',
    'ExtractionError',
    'SourceNotFoundError',
    'StorageError',

    # Logging
    'LoggingManager',
    'get_logger',
    'setup_logging',

    # Events
    'EngineEvent',
    'EventBus',
]
