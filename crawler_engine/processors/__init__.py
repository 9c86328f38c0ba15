"""
Content processing components for the Crawler Engine

- HTML cleaning
- HTML to Markdown conversion
- Pruning of low-value blocks
- Separator-aware chunking with overlap
"""

from crawler_engine.processors.html_cleaner import HTMLCleaner, CleanerOptions
from crawler_engine.processors.markdown import MarkdownConverter, MarkdownOptions
from crawler_engine.processors.pruning import PruningFilter, BlockAnalysis
from crawler_engine.processors.chunker import SmartChunker

__all__ = [
    'HTMLCleaner',
    'CleanerOptions',
    'MarkdownConverter',
    'MarkdownOptions',
    'PruningFilter',
    'BlockAnalysis',
    'SmartChunker',
]
