"""
Extractor selection by mode.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Optional

from crawler_engine.core.base import ExtractorInterface, ExtractorMode, ConfigurationError
from crawler_engine.extractors.api import ApiExtractor
from crawler_engine.extractors.cli import CliExtractor
from crawler_engine.extractors.gateway import GatewayExtractor


DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_OPENROUTER_MODEL = "google/gemini-3-flash-preview"


@dataclass
class ExtractorSettings:
    """Plain, picklable settings from which any extractor can be rebuilt"""
    mode: ExtractorMode = ExtractorMode.API
    api_key: Optional[str] = None
    auth_token: Optional[str] = None
    openrouter_api_key: Optional[str] = None
    openrouter_model: str = DEFAULT_OPENROUTER_MODEL
    claude_path: str = "claude"
    default_model: str = DEFAULT_MODEL
    cli_timeout: float = 180.0


def _create_api(settings: ExtractorSettings) -> ExtractorInterface:
    return ApiExtractor(
        api_key=settings.api_key,
        auth_token=settings.auth_token,
        default_model=settings.default_model,
    )


def _create_cli(settings: ExtractorSettings) -> ExtractorInterface:
    return CliExtractor(
        claude_path=settings.claude_path,
        timeout=settings.cli_timeout,
        model=settings.default_model,
    )


def _create_gateway(settings: ExtractorSettings) -> ExtractorInterface:
    return GatewayExtractor(
        api_key=settings.openrouter_api_key,
        default_model=settings.openrouter_model,
    )


EXTRACTOR_FACTORIES: Dict[ExtractorMode, Callable[[ExtractorSettings], ExtractorInterface]] = {
    ExtractorMode.API: _create_api,
    ExtractorMode.CLI: _create_cli,
    ExtractorMode.OPENROUTER: _create_gateway,
}


def create_extractor(settings: ExtractorSettings) -> ExtractorInterface:
    """
    Build the extractor for the configured mode.

    Raises:
        ConfigurationError: unknown mode or missing credentials
    """
    try:
        mode = ExtractorMode(settings.mode)
    except ValueError:
        raise ConfigurationError(f"Unknown extractor mode: {settings.mode!r}")

    return EXTRACTOR_FACTORIES[mode](settings)
