"""
Retry with exponential backoff for transient failures.

Wraps an awaitable operation in a tenacity ``AsyncRetrying`` loop whose
wait, stop and retry policies come from ``RetryOptions``.
"""

import asyncio
import errno
import random
import socket
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import aiohttp
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from crawler_engine.core.logging import get_logger


logger = get_logger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
RETRYABLE_ERRNOS = {errno.ECONNRESET, errno.ETIMEDOUT}
RETRYABLE_ERROR_CODES = {'ECONNRESET', 'ETIMEDOUT', 'ENOTFOUND'}


def default_should_retry(error: BaseException) -> bool:
    """
    Decide whether an error is transient.

    Retries rate limiting (429), server errors (5xx), connection resets,
    DNS failures, timeouts and any error flagged ``retryable``.
    """
    if getattr(error, 'retryable', False):
        return True

    status = getattr(error, 'status_code', None)
    if status is None:
        status = getattr(error, 'status', None)
    if isinstance(status, int) and (status in RETRYABLE_STATUS_CODES or 500 <= status < 600):
        return True

    if getattr(error, 'code', None) in RETRYABLE_ERROR_CODES:
        return True

    if isinstance(error, (asyncio.TimeoutError, socket.gaierror, aiohttp.ClientConnectionError)):
        return True

    if isinstance(error, ConnectionError):
        return True

    if isinstance(error, OSError) and error.errno in RETRYABLE_ERRNOS:
        return True

    return False


@dataclass
class RetryOptions:
    """Backoff policy. Delays are in seconds."""
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 60.0
    backoff_factor: float = 2.0
    jitter: bool = True
    should_retry: Callable[[BaseException], bool] = default_should_retry
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None

    def compute_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)"""
        delay = min(self.initial_delay * (self.backoff_factor ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay *= random.random()
        return delay


async def with_retry(operation: Callable[[], Awaitable[Any]],
                     options: Optional[RetryOptions] = None) -> Any:
    """
    Await ``operation()`` retrying transient failures with backoff.

    Args:
        operation: Zero-argument coroutine function
        options: Backoff policy, defaults to ``RetryOptions()``

    Returns:
        The operation's result

    Raises:
        The original exception once retries are exhausted or the error is
        not retryable.
    """
    options = options or RetryOptions()

    def _wait(retry_state: RetryCallState) -> float:
        return options.compute_delay(retry_state.attempt_number)

    def _before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            f"Attempt {retry_state.attempt_number} failed: {error}. Retrying in {delay:.2f}s"
        )
        if options.on_retry:
            options.on_retry(retry_state.attempt_number, error, delay)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(options.max_retries + 1),
        wait=_wait,
        retry=retry_if_exception(options.should_retry),
        before_sleep=_before_sleep,
        reraise=True,
    )
    return await retrying(operation)
