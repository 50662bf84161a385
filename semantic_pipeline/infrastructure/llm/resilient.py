"""Adapter decorator applying backoff, concurrency caps, circuit breaking and retries."""

import asyncio
import logging
from typing import Any

from semantic_pipeline.infrastructure.llm.models import (
    CompletionOptions,
    LLMAdapter,
    LLMError,
    LLMMessage,
    LLMResponse,
)
from semantic_pipeline.infrastructure.resilience.circuit_breaker import CircuitBreaker, CircuitOpenError
from semantic_pipeline.infrastructure.resilience.concurrency import ConcurrencyLimiter
from semantic_pipeline.infrastructure.resilience.rate_limiter import AdaptiveRateLimiter
from semantic_pipeline.utils.retry import is_rate_limit_error, run_with_retry

logger = logging.getLogger(__name__)


def _is_retryable(error: BaseException) -> bool:
    if isinstance(error, CircuitOpenError):
        return False
    if isinstance(error, LLMError):
        return error.code in (LLMError.RATE_LIMITED, LLMError.OVERLOADED)
    return is_rate_limit_error(error)


class ResilientLLMAdapter:
    """Wrap any LLMAdapter with the shared resilience services.

    Each attempt holds a concurrency slot for its whole duration, waits on the
    rate limiter, asks the provider's breaker for admission and reports its
    outcome back. Throttling errors raise the backoff level and are retried
    with exponential backoff; timeouts and other errors propagate immediately.
    """

    def __init__(
        self,
        inner: LLMAdapter,
        breaker: CircuitBreaker,
        rate_limiter: AdaptiveRateLimiter | None = None,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        backoff_factor: float = 2.0,
        concurrency: ConcurrencyLimiter | None = None,
    ):
        self.inner = inner
        self.provider = inner.provider
        self.model = inner.model
        self.breaker = breaker
        self.rate_limiter = rate_limiter
        self.concurrency = concurrency
        self._max_retries = max_retries
        self._initial_delay = initial_delay
        self._backoff_factor = backoff_factor

    async def complete(self, messages: list[LLMMessage], options: CompletionOptions) -> LLMResponse:
        async def _attempt() -> LLMResponse:
            if self.concurrency is not None:
                await self.concurrency.acquire()
            try:
                return await _call()
            finally:
                if self.concurrency is not None:
                    self.concurrency.release()

        async def _call() -> LLMResponse:
            if self.rate_limiter is not None:
                await self.rate_limiter.acquire()
            self.breaker.acquire()
            try:
                response = await self.inner.complete(messages, options)
            except asyncio.CancelledError:
                self.breaker.release_trial()
                raise
            except (TimeoutError, asyncio.TimeoutError) as e:
                self.breaker.record_failure()
                raise LLMError(f"{self.provider} call timed out", code=LLMError.TIMEOUT) from e
            except Exception:
                self.breaker.record_failure()
                raise
            self.breaker.record_success()
            return response

        def _on_retry(error: BaseException) -> None:
            if self.rate_limiter is not None:
                self.rate_limiter.record_throttle()

        return await run_with_retry(
            _attempt,
            max_retries=self._max_retries,
            initial_delay=self._initial_delay,
            backoff_factor=self._backoff_factor,
            should_retry=_is_retryable,
            on_retry=_on_retry,
        )

    def resilience_status(self) -> dict[str, Any]:
        """Snapshot of the breaker, backoff level and concurrency slots for this adapter."""
        return {
            "provider": self.provider,
            "circuit": self.breaker.status(),
            "backoff_level": self.rate_limiter.level.name if self.rate_limiter is not None else None,
            "concurrency": self.concurrency.status() if self.concurrency is not None else None,
        }
