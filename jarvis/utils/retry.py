"""
Bounded retry helper

One retry policy for every call site that needs it (track source opening, conversational
AI socket reconnects): a fixed attempt budget with exponential backoff, re-raising the last
error once the budget is spent.
"""

from typing import Awaitable, Callable, Tuple, Type, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from jarvis.config.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def _log_retry(label: str) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        logger.warning(
            f"⚠️ {label} failed (attempt {state.attempt_number}): {error} - retrying"
        )
    return before_sleep


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    min_wait: float = 0.5,
    max_wait: float = 10.0,
    label: str = "operation",
) -> T:
    """
    Run ``fn`` up to ``attempts`` times with exponential backoff.

    Args:
        fn: Zero-argument coroutine factory, called once per attempt
        attempts: Total attempts including the first (>= 1)
        retry_on: Exception types that trigger another attempt
        min_wait: Lower bound of the backoff delay in seconds
        max_wait: Upper bound of the backoff delay in seconds
        label: Name used in retry log lines

    Returns:
        Result of the first successful attempt

    Raises:
        The last exception raised by ``fn`` once attempts are exhausted, or immediately
        for exception types outside ``retry_on``.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(retry_on),
        before_sleep=_log_retry(label),
        reraise=True,
    ):
        with attempt:
            return await fn()
