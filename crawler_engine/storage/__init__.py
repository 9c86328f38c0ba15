"""
Storage components for the crawler engine

This package contains source repository implementations:
- Development mode local JSON file storage
"""

from crawler_engine.storage.json_store import JsonSourceRepository

__all__ = ['JsonSourceRepository']
