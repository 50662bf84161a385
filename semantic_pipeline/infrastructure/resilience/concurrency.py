"""Cap on in-flight LLM calls with a bounded wait for a free slot."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from semantic_pipeline.config.settings import Settings
from semantic_pipeline.infrastructure.llm.models import LLMError

logger = logging.getLogger(__name__)


class ConcurrencyLimitError(LLMError):
    """Raised when no slot frees up within the queue timeout."""

    def __init__(self, max_concurrent: int, queue_timeout: float):
        super().__init__(
            f"LLM concurrency limit reached: {max_concurrent} calls in flight, "
            f"no slot after waiting {queue_timeout:.1f}s",
            code=LLMError.CONCURRENCY_LIMIT,
        )
        self.max_concurrent = max_concurrent
        self.queue_timeout = queue_timeout


class ConcurrencyLimiter:
    """Semaphore over LLM calls shared by every request of the process.

    Callers beyond ``max_concurrent`` wait in line; a caller that waits longer
    than ``queue_timeout`` gets ``ConcurrencyLimitError``. Every successful
    ``acquire`` must be paired with ``release``, preferably via ``slot()``.
    """

    def __init__(self, max_concurrent: int = 5, queue_timeout: float = 30.0):
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be at least 1, got {max_concurrent}")
        self.max_concurrent = max_concurrent
        self.queue_timeout = queue_timeout
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._in_flight = 0
        self._queued = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "ConcurrencyLimiter":
        return cls(max_concurrent=settings.llm_max_concurrent, queue_timeout=settings.llm_queue_timeout)

    async def acquire(self) -> None:
        """
        Wait for a free slot.

        Raises:
            ConcurrencyLimitError: No slot within ``queue_timeout``
        """
        if self._semaphore.locked():
            logger.info(f"LLM concurrency at capacity ({self.max_concurrent}), queueing")
        self._queued += 1
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self.queue_timeout)
        except TimeoutError as e:
            logger.warning(f"LLM call rejected after {self.queue_timeout}s in the concurrency queue")
            raise ConcurrencyLimitError(self.max_concurrent, self.queue_timeout) from e
        finally:
            self._queued -= 1
        self._in_flight += 1

    def release(self) -> None:
        self._in_flight = max(0, self._in_flight - 1)
        self._semaphore.release()

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        await self.acquire()
        try:
            yield
        finally:
            self.release()

    def status(self) -> dict[str, Any]:
        return {
            "in_flight": self._in_flight,
            "queued": self._queued,
            "max_concurrent": self.max_concurrent,
        }
