"""
OpenRouter Gateway Extractor

Content extraction through OpenRouter's OpenAI-compatible chat completions
endpoint using aiohttp.
"""

from typing import Any, Dict, Optional

import aiohttp

from crawler_engine.core.base import (
    ExtractorInterface,
    ExtractionConfig,
    ExtractionResult,
    ExtractionError,
    ConfigurationError,
)
from crawler_engine.core.logging import get_logger
from crawler_engine.extractors.prompts import build_system_prompt, build_user_message, parse_json_response
from crawler_engine.utils.retry import RETRYABLE_STATUS_CODES


OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class GatewayExtractor(ExtractorInterface):
    """Extractor calling OpenRouter chat completions"""

    def __init__(self, api_key: str, default_model: str = "google/gemini-3-flash-preview",
                 base_url: str = OPENROUTER_BASE_URL, timeout: float = 120.0,
                 app_url: Optional[str] = None, app_title: str = "Crawler Engine"):
        if not api_key:
            raise ConfigurationError("OpenRouter API key must be provided")
        self.api_key = api_key
        self.default_model = default_model
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.app_url = app_url
        self.app_title = app_title
        self.session: Optional[aiohttp.ClientSession] = None
        self.logger = get_logger(__name__)

    def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            headers = {
                'Content-Type': 'application/json',
                'Authorization': f'Bearer {self.api_key}',
                'X-Title': self.app_title,
            }
            if self.app_url:
                headers['HTTP-Referer'] = self.app_url
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers=headers,
            )
        return self.session

    async def extract(self, content: str, config: ExtractionConfig) -> ExtractionResult:
        """
        Extract structured data from content

        Args:
            content: Chunk text
            config: Extraction configuration

        Returns:
            Parsed extraction result
        """
        model = config.model or self.default_model
        payload = {
            'model': model,
            'messages': [
                {'role': 'system', 'content': build_system_prompt(config)},
                {'role': 'user', 'content': build_user_message(content)},
            ],
            'max_tokens': config.max_tokens,
            'temperature': config.temperature,
            'response_format': {'type': 'json_object'},
            'stream': False,
        }

        response = await self._create_completion(payload)

        try:
            raw = response['choices'][0]['message']['content'] or ''
        except (KeyError, IndexError, TypeError) as e:
            raise ExtractionError(f"Malformed OpenRouter response: {e}") from e

        usage: Dict[str, Any] = response.get('usage') or {}
        return ExtractionResult(
            data=parse_json_response(raw),
            raw=raw,
            model=response.get('model', model),
            input_tokens=usage.get('prompt_tokens', 0),
            output_tokens=usage.get('completion_tokens', 0),
        )

    async def _create_completion(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/chat/completions"
        session = self._get_session()

        try:
            async with session.post(url, json=payload) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    raise ExtractionError(
                        f"OpenRouter API error: {response.status} {response.reason}\n{error_text}",
                        status_code=response.status,
                        retryable=response.status in RETRYABLE_STATUS_CODES or response.status >= 500,
                    )
                return await response.json(content_type=None)
        except aiohttp.ClientError as e:
            self.logger.error(f"OpenRouter request failed: {e}")
            raise ExtractionError(f"OpenRouter request failed: {e}", retryable=True) from e

    async def close(self) -> None:
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None
