"""
LLM extraction backends for the Crawler Engine

- Anthropic API extractor
- Claude CLI subprocess extractor
- OpenRouter gateway extractor
"""

from crawler_engine.extractors.api import ApiExtractor
from crawler_engine.extractors.cli import CliExtractor
from crawler_engine.extractors.gateway import GatewayExtractor
from crawler_engine.extractors.factory import ExtractorSettings, create_extractor

__all__ = [
    'ApiExtractor',
    'CliExtractor',
    'GatewayExtractor',
    'ExtractorSettings',
    'create_extractor',
]
