"""
Anthropic API Extractor

LLM-powered content extraction through the Anthropic Messages API.
"""

from typing import Optional

import anthropic

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


class ApiExtractor(ExtractorInterface):
    """
    Extractor backed by ``anthropic.AsyncAnthropic``.

    Accepts either an API key or an OAuth auth token. The SDK's own retries
    are disabled; transient failures surface as retryable ``ExtractionError``
    so the caller's backoff policy applies.
    """

    def __init__(self, api_key: Optional[str] = None, auth_token: Optional[str] = None,
                 default_model: str = "claude-sonnet-4-20250514",
                 client: Optional[anthropic.AsyncAnthropic] = None):
        if client is None:
            if auth_token:
                client = anthropic.AsyncAnthropic(auth_token=auth_token, max_retries=0)
            elif api_key:
                client = anthropic.AsyncAnthropic(api_key=api_key, max_retries=0)
            else:
                raise ConfigurationError("Either api_key or auth_token must be provided")
        self.client = client
        self.default_model = default_model
        self.logger = get_logger(__name__)

    async def extract(self, content: str, config: ExtractionConfig) -> ExtractionResult:
        """
        Extract structured data from content

        Args:
            content: Chunk text
            config: Extraction configuration

        Returns:
            Parsed extraction result with token usage
        """
        model = config.model or self.default_model

        try:
            response = await self.client.messages.create(
                model=model,
                max_tokens=config.max_tokens,
                temperature=config.temperature,
                system=build_system_prompt(config),
                messages=[{"role": "user", "content": build_user_message(content)}],
            )
        except anthropic.APIStatusError as e:
            raise ExtractionError(
                f"Anthropic API error {e.status_code}: {e.message}",
                status_code=e.status_code,
                retryable=e.status_code in RETRYABLE_STATUS_CODES or e.status_code >= 500,
            ) from e
        except anthropic.APIConnectionError as e:
            # Also covers APITimeoutError
            raise ExtractionError(f"Anthropic API connection failed: {e}", retryable=True) from e

        block = response.content[0] if response.content else None
        if block is None or getattr(block, "type", None) != "text":
            raise ExtractionError("Unexpected response type from Claude")

        raw = block.text
        self.logger.debug(
            f"Claude extraction used {response.usage.input_tokens} input / "
            f"{response.usage.output_tokens} output tokens"
        )

        return ExtractionResult(
            data=parse_json_response(raw),
            raw=raw,
            model=model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )

    async def close(self) -> None:
        await self.client.close()
