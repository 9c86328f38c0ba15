"""
Crawl adapters combining fetchers, processors and extractors into a pipeline
"""

from crawler_engine.adapters.universal import (
    UniversalAdapter,
    AdapterConfig,
    AdapterCrawlResult,
    RawCrawlResult,
    merge_results,
    normalize_item,
    generate_id,
)

__all__ = [
    'UniversalAdapter',
    'AdapterConfig',
    'AdapterCrawlResult',
    'RawCrawlResult',
    'merge_results',
    'normalize_item',
    'generate_id',
]
