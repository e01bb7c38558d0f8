"""
Retry with exponential backoff.

Thin wrapper over tenacity so every call site shares the same policy:
``attempts`` total tries, and after failed attempt k (0-based) a delay of
``base_delay * 2**k`` seconds.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog
from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt, wait_exponential

logger = structlog.get_logger()

T = TypeVar("T")


def backoff_delay(attempt_index: int, base_delay: float) -> float:
    """Delay (seconds) applied after the attempt with 0-based ``attempt_index`` fails."""
    return base_delay * (2**attempt_index)


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    base_delay: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "operation",
) -> T:
    """
    Await ``fn()`` until it succeeds or ``attempts`` tries are used up.

    The last exception is re-raised unchanged on exhaustion.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    def _log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "retry.attempt_failed",
            label=label,
            attempt=retry_state.attempt_number,
            max_attempts=attempts,
            retry_in_s=retry_state.next_action.sleep if retry_state.next_action else None,
            error=str(exc),
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=base_delay, exp_base=2, min=0),
        sleep=sleep,
        before_sleep=_log_retry,
        reraise=True,
    )
    return await retrying(fn)
