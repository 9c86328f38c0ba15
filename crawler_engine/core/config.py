"""
Configuration Manager for the Crawler Engine

Handles YAML/JSON configuration files and environment variable integration
with validation of the selected extractor mode.
"""

import os
import re
import json
import yaml
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field, fields
from pathlib import Path

from crawler_engine.core.base import (
    ChunkOptions,
    PruningOptions,
    ExtractorMode,
    ConfigurationError,
)
from crawler_engine.extractors.factory import ExtractorSettings, DEFAULT_MODEL, DEFAULT_OPENROUTER_MODEL
from crawler_engine.utils.retry import RetryOptions


DEFAULT_USER_AGENT = (
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
)


@dataclass
class HttpFetcherOptions:
    """Configuration for the plain HTTP fetcher"""
    timeout: float = 30.0
    user_agent: str = DEFAULT_USER_AGENT
    follow_redirects: bool = True
    max_redirects: int = 5
    headers: Dict[str, str] = field(default_factory=lambda: {
        'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
        'Accept-Language': 'en-US,en;q=0.5',
        'Accept-Encoding': 'gzip, deflate',
        'Connection': 'keep-alive',
        'Upgrade-Insecure-Requests': '1',
    })


@dataclass
class BrowserFetcherOptions:
    """Configuration for the crawl4ai browser fetcher"""
    headless: bool = True
    timeout: float = 60.0
    wait_for_selector: Optional[str] = None
    wait_for_timeout: float = 2.0
    scroll_to_bottom: bool = True
    viewport_width: int = 1920
    viewport_height: int = 1080
    user_agent: str = DEFAULT_USER_AGENT


@dataclass
class LoggingConfig:
    """Logging system configuration"""
    level: str = "INFO"
    file: Optional[str] = "./logs/crawler.log"
    max_size: str = "10MB"
    backup_count: int = 5


@dataclass
class EngineConfig:
    """Main crawler engine configuration"""
    extractor_mode: ExtractorMode = ExtractorMode.API
    api_key: Optional[str] = None
    auth_token: Optional[str] = None
    openrouter_api_key: Optional[str] = None
    openrouter_model: str = DEFAULT_OPENROUTER_MODEL
    claude_path: str = "claude"
    default_model: str = DEFAULT_MODEL
    max_concurrent: int = 3
    worker_pool_size: int = 3
    crawl_interval_hours: float = 24
    http: HttpFetcherOptions = field(default_factory=HttpFetcherOptions)
    browser: BrowserFetcherOptions = field(default_factory=BrowserFetcherOptions)
    chunking: ChunkOptions = field(default_factory=ChunkOptions)
    pruning: PruningOptions = field(default_factory=PruningOptions)
    retry: RetryOptions = field(default_factory=RetryOptions)

    def extractor_settings(self) -> ExtractorSettings:
        """Plain settings handed to extractor factories and workers"""
        return ExtractorSettings(
            mode=self.extractor_mode,
            api_key=self.api_key,
            auth_token=self.auth_token,
            openrouter_api_key=self.openrouter_api_key,
            openrouter_model=self.openrouter_model,
            claude_path=self.claude_path,
            default_model=self.default_model,
        )


NESTED_SECTIONS = {'http', 'browser', 'chunking', 'pruning', 'retry'}


def _pick(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only keys that are fields of the dataclass"""
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in (data or {}).items() if k in names}


class ConfigManager:
    """
    Centralized configuration manager with support for YAML/JSON files
    and environment variable integration.
    """

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or "config/crawler.yaml"
        self._config_data: Dict[str, Any] = {}
        self.engine_config: Optional[EngineConfig] = None
        self.logging_config: Optional[LoggingConfig] = None

    def load_config(self, config_path: Optional[str] = None) -> Dict[str, Any]:
        """Load configuration from file with environment variable override"""
        if config_path:
            self.config_path = config_path

        config_file = Path(self.config_path)

        if not config_file.exists():
            self._config_data = self._get_default_config()
            self._create_default_config_file()
        else:
            try:
                with open(config_file, 'r', encoding='utf-8') as f:
                    if config_file.suffix.lower() == '.json':
                        self._config_data = json.load(f)
                    else:  # Assume YAML
                        self._config_data = yaml.safe_load(f) or {}
            except (OSError, ValueError, yaml.YAMLError) as e:
                raise ConfigurationError(f"Failed to load config from {config_file}: {e}") from e

        self._apply_env_overrides()
        self._parse_config()

        return self._config_data

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration dictionary"""
        return {
            'engine': {
                'extractor_mode': 'api',
                'default_model': DEFAULT_MODEL,
                'openrouter_model': DEFAULT_OPENROUTER_MODEL,
                'claude_path': 'claude',
                'max_concurrent': 3,
                'worker_pool_size': 3,
                'crawl_interval_hours': 24,
            },
            'http': {
                'timeout': 30.0,
                'follow_redirects': True,
            },
            'browser': {
                'headless': True,
                'timeout': 60.0,
                'wait_for_timeout': 2.0,
                'scroll_to_bottom': True,
            },
            'chunking': {
                'chunk_size': 4000,
                'chunk_overlap': 200,
            },
            'pruning': {
                'enabled': False,
                'min_text_density': 0.1,
                'min_word_count': 3,
                'max_link_density': 1.0,
                'keep_keywords': [],
            },
            'retry': {
                'max_retries': 3,
                'initial_delay': 1.0,
                'max_delay': 60.0,
                'backoff_factor': 2.0,
                'jitter': True,
            },
            'logging': {
                'level': 'INFO',
                'file': './logs/crawler.log',
                'max_size': '10MB',
                'backup_count': 5
            }
        }

    def _create_default_config_file(self) -> None:
        """Create default configuration file"""
        config_dir = Path(self.config_path).parent
        config_dir.mkdir(parents=True, exist_ok=True)

        with open(self.config_path, 'w', encoding='utf-8') as f:
            yaml.dump(self._config_data, f, default_flow_style=False, indent=2)

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides"""
        engine = self._config_data.setdefault('engine', {})

        string_overrides = {
            'CRAWLER_EXTRACTOR_MODE': 'extractor_mode',
            'ANTHROPIC_API_KEY': 'api_key',
            'ANTHROPIC_AUTH_TOKEN': 'auth_token',
            'OPENROUTER_API_KEY': 'openrouter_api_key',
            'OPENROUTER_MODEL': 'openrouter_model',
            'CLAUDE_PATH': 'claude_path',
        }
        for env_name, key in string_overrides.items():
            if os.getenv(env_name):
                engine[key] = os.getenv(env_name)

        int_overrides = {
            'CRAWLER_MAX_CONCURRENT': 'max_concurrent',
            'CRAWLER_WORKER_POOL_SIZE': 'worker_pool_size',
        }
        for env_name, key in int_overrides.items():
            if os.getenv(env_name):
                try:
                    engine[key] = int(os.getenv(env_name))
                except ValueError:
                    raise ConfigurationError(f"{env_name} must be an integer, got {os.getenv(env_name)!r}")

        if os.getenv('LOG_LEVEL'):
            self._config_data.setdefault('logging', {})['level'] = os.getenv('LOG_LEVEL')

    def _parse_config(self) -> None:
        """Parse configuration into dataclass objects"""
        engine_data = dict(self._config_data.get('engine', {}))

        mode = engine_data.pop('extractor_mode', 'api')
        try:
            extractor_mode = ExtractorMode(mode)
        except ValueError:
            raise ConfigurationError(f"Invalid extractor mode: {mode}")

        pruning_data = _pick(PruningOptions, self._config_data.get('pruning', {}))
        if 'remove_patterns' in pruning_data:
            pruning_data['remove_patterns'] = [
                re.compile(p, re.IGNORECASE) for p in pruning_data['remove_patterns']
            ]

        self.engine_config = EngineConfig(
            extractor_mode=extractor_mode,
            http=HttpFetcherOptions(**_pick(HttpFetcherOptions, self._config_data.get('http', {}))),
            browser=BrowserFetcherOptions(**_pick(BrowserFetcherOptions, self._config_data.get('browser', {}))),
            chunking=ChunkOptions(**_pick(ChunkOptions, self._config_data.get('chunking', {}))),
            pruning=PruningOptions(**pruning_data),
            retry=RetryOptions(**_pick(RetryOptions, self._config_data.get('retry', {}))),
            **{k: v for k, v in _pick(EngineConfig, engine_data).items() if k not in NESTED_SECTIONS}
        )

        self.logging_config = LoggingConfig(**_pick(LoggingConfig, self._config_data.get('logging', {})))

    def validate_config(self) -> bool:
        """Validate that the selected extractor mode has what it needs"""
        if not self.engine_config:
            raise ConfigurationError("Configuration not loaded")

        config = self.engine_config
        if config.extractor_mode == ExtractorMode.API and not (config.api_key or config.auth_token):
            raise ConfigurationError("API mode requires ANTHROPIC_API_KEY or ANTHROPIC_AUTH_TOKEN")

        if config.extractor_mode == ExtractorMode.OPENROUTER and not config.openrouter_api_key:
            raise ConfigurationError("OpenRouter mode requires OPENROUTER_API_KEY")

        if config.max_concurrent < 1:
            raise ConfigurationError(f"max_concurrent must be at least 1, got {config.max_concurrent}")

        if config.worker_pool_size < 1:
            raise ConfigurationError(f"worker_pool_size must be at least 1, got {config.worker_pool_size}")

        if config.chunking.chunk_size < 1:
            raise ConfigurationError(f"chunk_size must be at least 1, got {config.chunking.chunk_size}")

        return True

    def get_remove_patterns(self) -> List[str]:
        """Source strings of the active pruning remove patterns"""
        if not self.engine_config:
            raise ConfigurationError("Configuration not loaded")
        return [p.pattern for p in self.engine_config.pruning.remove_patterns]
