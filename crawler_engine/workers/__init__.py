"""
Parallel chunk extraction workers
"""

from crawler_engine.workers.extraction_worker import (
    ExtractionWorkerPool,
    WorkerPayload,
    ExtractorSettings,
    build_payloads,
    extract_chunk,
)

__all__ = [
    'ExtractionWorkerPool',
    'WorkerPayload',
    'ExtractorSettings',
    'build_payloads',
    'extract_chunk',
]
