"""
JSON File Source Repository

Keeps sources in a single ``sources.json`` and writes every crawl result to
``results/<source_id>/<timestamp>.json`` under the base path.
"""

import asyncio
import json
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List

import aiofiles

from crawler_engine.core.base import CrawlerSource, CrawlResult, SourceRepositoryInterface, StorageError
from crawler_engine.core.logging import get_logger


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, 'value'):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class JsonSourceRepository(SourceRepositoryInterface):
    """File-backed repository for local development"""

    def __init__(self, base_path: str = './data'):
        self.logger = get_logger(__name__)
        self.base_path = Path(base_path)
        self.sources_path = self.base_path / 'sources.json'
        self.results_path = self.base_path / 'results'
        self._lock = asyncio.Lock()

    async def _read_sources(self) -> Dict[str, Dict[str, Any]]:
        if not self.sources_path.exists():
            return {}
        try:
            async with aiofiles.open(self.sources_path, 'r', encoding='utf-8') as f:
                data = json.loads(await f.read() or '{}')
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Error reading {self.sources_path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"Unexpected content in {self.sources_path}")
        return data

    async def _write_json(self, path: Path, data: Any) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path, 'w', encoding='utf-8') as f:
                await f.write(json.dumps(data, indent=2, ensure_ascii=False, default=_json_default))
        except (OSError, TypeError) as e:
            raise StorageError(f"Error writing {path}: {e}") from e

    async def save_source(self, source: CrawlerSource) -> None:
        async with self._lock:
            sources = await self._read_sources()
            sources[source.id] = source.to_dict()
            await self._write_json(self.sources_path, sources)
        self.logger.debug(f"Saved source {source.id}")

    async def delete_source(self, source_id: str) -> None:
        async with self._lock:
            sources = await self._read_sources()
            if sources.pop(source_id, None) is not None:
                await self._write_json(self.sources_path, sources)
        self.logger.debug(f"Deleted source {source_id}")

    async def save_result(self, result: CrawlResult) -> None:
        timestamp = result.completed_at.strftime('%Y%m%d_%H%M%S_%f')
        path = self.results_path / self._safe_name(result.source_id) / f"{timestamp}.json"
        await self._write_json(path, asdict(result))
        self.logger.info(f"Saved crawl result to {path}")

    async def load_sources(self) -> List[CrawlerSource]:
        async with self._lock:
            sources = await self._read_sources()
        try:
            return [CrawlerSource.from_dict(data) for data in sources.values()]
        except (KeyError, ValueError, TypeError) as e:
            raise StorageError(f"Invalid source record in {self.sources_path}: {e}") from e

    def _safe_name(self, text: str) -> str:
        safe = "".join(c if c.isalnum() else "_" for c in text)[:50]
        return safe or "source"
