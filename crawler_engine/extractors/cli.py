"""
Claude CLI Extractor

Runs the ``claude`` command line tool in ``--print`` mode as a subprocess,
passing the prompt on stdin, so extraction can use a CLI subscription
instead of an API key.
"""

import asyncio
import json
import os
from typing import Any, List, Optional

from crawler_engine.core.base import (
    ExtractorInterface,
    ExtractionConfig,
    ExtractionResult,
    ExtractionError,
    ExtractionType,
)
from crawler_engine.core.logging import get_logger
from crawler_engine.extractors.prompts import parse_json_response, PARSE_ERROR


MAX_CONTENT_CHARS = 10000
CLI_MODEL_LABEL = "claude-cli-subscription"

RETRYABLE_MESSAGES = [
    'network error',
    'connection refused',
    'timeout',
    'econnrefused',
    'enotfound',
    'etimedout',
    'socket hang up',
    'rate limit',
    '503',
    '502',
    '500',
]


def is_retryable_message(message: str) -> bool:
    lowered = message.lower()
    return any(pattern in lowered for pattern in RETRYABLE_MESSAGES)


class CliExtractor(ExtractorInterface):
    """Extractor that shells out to the Claude CLI"""

    def __init__(self, claude_path: str = "claude", timeout: float = 180.0,
                 model: str = "claude-sonnet-4-20250514", kill_grace: float = 5.0):
        self.claude_path = claude_path
        self.timeout = timeout
        self.model = model
        self.kill_grace = kill_grace
        self.logger = get_logger(__name__)

    def build_args(self, model: str) -> List[str]:
        return [
            '--print',
            '--max-turns', '3',
            '--output-format', 'json',
            '--model', model,
            '--dangerously-skip-permissions',
        ]

    def build_prompt(self, content: str, config: ExtractionConfig) -> str:
        """Compact single-message prompt; content is truncated to keep the CLI responsive"""
        language = config.output_language or 'en'
        truncated = content[:MAX_CONTENT_CHARS]

        if config.extraction_type == ExtractionType.SCHEMA and config.schema:
            return (
                f"{config.prompt or 'Extract the data from the content.'} "
                f"Schema: {json.dumps(config.schema, ensure_ascii=False)}. "
                f"Content: {truncated}. Return ONLY JSON:"
            )

        return (
            f"{config.prompt or 'Extract the items.'} "
            'Format:[{"title":"...","url":"...","description":"..."}]. '
            f"Content: {truncated}. JSON ({language}):"
        )

    async def extract(self, content: str, config: ExtractionConfig) -> ExtractionResult:
        prompt = self.build_prompt(content, config)
        model = config.model or self.model
        self.logger.info(f"Starting CLI extraction, content length: {len(content)}, prompt length: {len(prompt)}")

        output = await self._run(prompt, model)
        return ExtractionResult(
            data=self.parse_output(output),
            raw=output,
            model=CLI_MODEL_LABEL,
        )

    async def _run(self, prompt: str, model: str) -> str:
        env = dict(os.environ)
        # Force subscription auth instead of an API key
        env['ANTHROPIC_API_KEY'] = ''
        env['CLAUDE_USE_SUBSCRIPTION'] = 'true'
        env['CLAUDE_CODE_ENTRYPOINT'] = 'crawler-engine'

        try:
            proc = await asyncio.create_subprocess_exec(
                self.claude_path, *self.build_args(model),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            raise ExtractionError(f"Failed to start Claude CLI: {e}", retryable=True) from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(prompt.encode('utf-8')), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            self.logger.warning(f"Claude CLI timed out after {self.timeout}s, terminating")
            await self._terminate(proc)
            raise ExtractionError(f"Claude CLI timed out after {self.timeout}s", retryable=True) from e

        out_text = stdout.decode('utf-8', errors='replace').strip()
        err_text = stderr.decode('utf-8', errors='replace').strip()

        if proc.returncode != 0:
            message = err_text or out_text or 'Unknown error'
            raise ExtractionError(
                f"Claude CLI exited with code {proc.returncode}: {message}",
                retryable=is_retryable_message(message),
            )

        return out_text

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        """SIGTERM, then SIGKILL if the process outlives the grace period"""
        if proc.returncode is not None:
            return
        try:
            proc.terminate()
            await asyncio.wait_for(proc.wait(), timeout=self.kill_grace)
        except asyncio.TimeoutError:
            self.logger.warning("Claude CLI did not terminate gracefully, killing")
            proc.kill()
            await proc.wait()
        except ProcessLookupError:
            pass

    def parse_output(self, output: str) -> Any:
        """Unwrap the ``--output-format json`` envelope and parse the model's JSON"""
        result = output.strip()

        try:
            envelope = json.loads(output)
        except ValueError:
            envelope = None
        if isinstance(envelope, dict) and envelope.get('type') == 'result' and envelope.get('result'):
            result = envelope['result']
            self.logger.debug(
                f"Unwrapped CLI result ({envelope.get('num_turns')} turns, {envelope.get('duration_ms')}ms)"
            )

        data = parse_json_response(result)
        if isinstance(data, dict) and data.get('parse_error') == PARSE_ERROR:
            self.logger.warning("Failed to parse JSON from Claude CLI output")
            return [{
                'title': 'Extracted Content',
                'content': result,
                'metadata': {'parse_error': 'Failed to parse JSON'},
            }]
        return data
