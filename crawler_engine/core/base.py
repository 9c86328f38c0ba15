"""
Base Classes and Interfaces for the Crawler Engine

Defines the data model shared by every pipeline stage, the abstract interfaces
for pluggable collaborators (fetchers, extractors, repositories) and the
exception hierarchy.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Pattern


class ExtractorMode(Enum):
    """How the LLM is reached for extraction"""
    API = "api"
    CLI = "cli"
    OPENROUTER = "openrouter"


class ExtractionType(Enum):
    """Shape of the data requested from the LLM"""
    SCHEMA = "schema"
    BLOCK = "block"
    AUTO = "auto"


class CrawlStage(Enum):
    """Lifecycle of a single crawl"""
    IDLE = "idle"
    FETCHING = "fetching"
    PROCESSING = "processing"
    EXTRACTING = "extracting"
    COMPLETE = "complete"
    ERROR = "error"


class CrawlStatus(Enum):
    """Outcome recorded on a source after a crawl"""
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class TextChunk:
    """A bounded slice of a document prepared for one extraction call.

    ``start_char``/``end_char`` index the original text; ``overlap`` is the
    number of leading characters repeated from the previous chunk.
    """
    content: str
    index: int
    start_char: int
    end_char: int
    overlap: int = 0

    @property
    def token_estimate(self) -> int:
        words = [w for w in self.content.split() if w]
        return int(len(words) * 1.3 + 0.999)


@dataclass
class ChunkOptions:
    """Options for the smart chunker"""
    chunk_size: int = 4000
    chunk_overlap: int = 200
    separators: List[str] = field(default_factory=lambda: ["\n\n", "\n", ". ", " ", ""])
    keep_separator: bool = True


def _default_remove_patterns() -> List[Pattern]:
    return [
        re.compile(r"^(copyright|©|\(c\))", re.IGNORECASE),
        re.compile(r"^all rights reserved", re.IGNORECASE),
        re.compile(r"^privacy policy", re.IGNORECASE),
        re.compile(r"^terms (of|and) (service|use)", re.IGNORECASE),
        re.compile(r"^cookie policy", re.IGNORECASE),
    ]


@dataclass
class PruningOptions:
    """Options for the pruning filter"""
    enabled: bool = False  # LLM extraction already filters semantically
    min_text_density: float = 0.1
    min_word_count: int = 3
    max_link_density: float = 1.0
    remove_patterns: List[Pattern] = field(default_factory=_default_remove_patterns)
    keep_keywords: List[str] = field(default_factory=list)


@dataclass
class ExtractionConfig:
    """Configuration for a single LLM extraction"""
    extraction_type: ExtractionType = ExtractionType.BLOCK
    prompt: Optional[str] = None
    schema: Optional[Dict[str, Any]] = None
    model: Optional[str] = None
    max_tokens: int = 4096
    temperature: float = 0.1
    output_language: Optional[str] = None


@dataclass
class ExtractionResult:
    """Result of extracting one chunk"""
    data: Any
    raw: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    extracted_at: datetime = field(default_factory=datetime.now)
    error: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @classmethod
    def from_error(cls, error: Exception, model: Optional[str] = None) -> "ExtractionResult":
        """Wrap a chunk-level failure as a result instead of raising"""
        return cls(
            data=None,
            raw="",
            model=model or "unknown",
            error=str(error) or type(error).__name__,
        )


@dataclass
class FetchResult:
    """Raw page returned by a fetcher"""
    html: str
    url: str
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    fetched_at: datetime = field(default_factory=datetime.now)


@dataclass
class CrawledItem:
    """Normalised record extracted from a page"""
    id: str
    title: str
    url: str
    description: Optional[str] = None
    content: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    extracted_at: datetime = field(default_factory=datetime.now)


@dataclass
class CrawlStats:
    """Timing (seconds) and size statistics of one crawl"""
    fetch_time: float = 0.0
    process_time: float = 0.0
    extract_time: float = 0.0
    total_time: float = 0.0
    html_size: int = 0
    markdown_size: int = 0
    chunks_count: int = 0
    failed_chunks: int = 0


@dataclass
class CrawlResult:
    """Result of crawling a source"""
    source_id: str
    url: str
    items: List[CrawledItem]
    success: bool
    started_at: datetime
    completed_at: datetime
    stats: CrawlStats = field(default_factory=CrawlStats)
    error: Optional[str] = None


@dataclass
class TestResult:
    """Result of test-crawling a URL before adding it as a source"""
    __test__ = False  # not a pytest test class

    success: bool
    items: List[CrawledItem] = field(default_factory=list)
    item_count: int = 0
    error: Optional[str] = None
    stats: Optional[CrawlStats] = None


@dataclass
class SourceConfig:
    """Configuration used to register a crawler source"""
    name: str
    url: str
    prompt: Optional[str] = None
    schema: Optional[Dict[str, Any]] = None
    requires_browser: bool = False
    crawl_interval_hours: float = 24
    is_enabled: bool = True
    adapter_overrides: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CrawlerSource:
    """A configured crawl target and the status of its last crawl"""
    id: str
    name: str
    url: str
    created_at: datetime
    updated_at: datetime
    prompt: Optional[str] = None
    schema: Optional[Dict[str, Any]] = None
    requires_browser: bool = False
    crawl_interval_hours: float = 24
    is_enabled: bool = True
    last_crawl_at: Optional[datetime] = None
    last_crawl_status: Optional[CrawlStatus] = None
    last_crawl_error: Optional[str] = None
    last_crawl_item_count: Optional[int] = None
    last_crawl_duration: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Plain JSON-friendly representation for persistence"""
        return {
            'id': self.id,
            'name': self.name,
            'url': self.url,
            'prompt': self.prompt,
            'schema': self.schema,
            'requires_browser': self.requires_browser,
            'crawl_interval_hours': self.crawl_interval_hours,
            'is_enabled': self.is_enabled,
            'last_crawl_at': self.last_crawl_at.isoformat() if self.last_crawl_at else None,
            'last_crawl_status': self.last_crawl_status.value if self.last_crawl_status else None,
            'last_crawl_error': self.last_crawl_error,
            'last_crawl_item_count': self.last_crawl_item_count,
            'last_crawl_duration': self.last_crawl_duration,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CrawlerSource":
        last_crawl_at = data.get('last_crawl_at')
        status = data.get('last_crawl_status')
        return cls(
            id=data['id'],
            name=data['name'],
            url=data['url'],
            prompt=data.get('prompt'),
            schema=data.get('schema'),
            requires_browser=data.get('requires_browser', False),
            crawl_interval_hours=data.get('crawl_interval_hours', 24),
            is_enabled=data.get('is_enabled', True),
            last_crawl_at=datetime.fromisoformat(last_crawl_at) if last_crawl_at else None,
            last_crawl_status=CrawlStatus(status) if status else None,
            last_crawl_error=data.get('last_crawl_error'),
            last_crawl_item_count=data.get('last_crawl_item_count'),
            last_crawl_duration=data.get('last_crawl_duration'),
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
        )


class BaseComponent(ABC):
    """Base class for components holding releasable resources"""

    def __init__(self, config: Any = None):
        self.config = config
        self._initialized = False

    @abstractmethod
    async def initialize(self) -> None:
        """Acquire resources"""
        pass

    @abstractmethod
    async def cleanup(self) -> None:
        """Release resources"""
        pass

    def is_initialized(self) -> bool:
        """Check if component is initialized"""
        return self._initialized


class FetcherInterface(BaseComponent):
    """Interface for page fetchers"""

    @abstractmethod
    async def fetch(self, url: str) -> FetchResult:
        """Fetch a single URL"""
        pass


class ExtractorInterface(ABC):
    """Interface for LLM extraction backends"""

    @abstractmethod
    async def extract(self, content: str, config: ExtractionConfig) -> ExtractionResult:
        """Extract structured data from content"""
        pass

    async def close(self) -> None:
        """Release client resources (optional)"""
        return None


class SourceRepositoryInterface(ABC):
    """Persistence collaborator for sources and crawl results"""

    @abstractmethod
    async def save_source(self, source: CrawlerSource) -> None:
        pass

    @abstractmethod
    async def delete_source(self, source_id: str) -> None:
        pass

    @abstractmethod
    async def save_result(self, result: CrawlResult) -> None:
        pass

    @abstractmethod
    async def load_sources(self) -> List[CrawlerSource]:
        pass


class CrawlerError(Exception):
    """Base exception for crawler engine errors"""
    pass


class ConfigurationError(CrawlerError):
    """Configuration-related errors (missing credentials, unknown mode)"""
    pass


class FetchError(CrawlerError):
    """Page fetching errors"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProcessingError(CrawlerError):
    """Content processing errors"""
    pass


class ExtractionError(CrawlerError):
    """LLM extraction errors"""

    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class SourceNotFoundError(CrawlerError, KeyError):
    """Unknown source id"""

    def __str__(self) -> str:
        return Exception.__str__(self)


class StorageError(CrawlerError):
    """Storage-related errors"""
    pass
