"""
Retry utilities for handling rate limits and transient provider errors.
"""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_rate_limit_error(exception: BaseException) -> bool:
    """Check if an exception looks like provider throttling or overload."""
    code = getattr(exception, "code", None)
    if code in ("RATE_LIMITED", "OVERLOADED"):
        return True
    error_str = str(exception).lower()
    return (
        "rate limit" in error_str
        or "rate_limit" in error_str
        or "overloaded" in error_str
        or "too many requests" in error_str
    )


def _retry_after_from_message(exception: BaseException) -> float | None:
    match = re.search(r"(\d+(?:\.\d+)?)\s{0,10}seconds?", str(exception), re.IGNORECASE)
    if match:
        return float(match.group(1))
    return None


async def run_with_retry(
    func: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    should_retry: Callable[[BaseException], bool] = is_rate_limit_error,
    on_retry: Callable[[BaseException], Any] | None = None,
) -> T:
    """
    Execute an async function with retry logic for rate limit errors.

    Timeouts are never retried here: a call that ran out of time may have
    partially completed, so the caller has to re-invoke explicitly.

    Args:
        func: Async function to execute (no parameters)
        max_retries: Maximum number of attempts
        initial_delay: Initial delay in seconds before first retry
        backoff_factor: Multiplier for delay between retries
        should_retry: Predicate deciding whether an error is retryable
        on_retry: Optional hook called with the error before sleeping

    Returns:
        Result from the function

    Raises:
        Exception: If max retries exceeded or non-retryable error occurs
    """
    attempts = max(1, max_retries)

    for attempt in range(attempts):
        try:
            return await func()
        except (TimeoutError, asyncio.TimeoutError):
            raise
        except Exception as e:
            if not should_retry(e) or attempt >= attempts - 1:
                raise

            wait_time = _retry_after_from_message(e)
            if wait_time is None:
                wait_time = initial_delay * (backoff_factor**attempt)

            logger.warning(
                "Retryable error detected (%s). Attempt %s/%s. Waiting %.1f seconds before retry...",
                e,
                attempt + 1,
                attempts,
                wait_time,
            )
            if on_retry is not None:
                on_retry(e)
            await asyncio.sleep(wait_time)

    raise RuntimeError("Max retries exceeded")
