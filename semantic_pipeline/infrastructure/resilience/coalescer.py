"""Single-flight request coalescing."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

from semantic_pipeline.infrastructure.cache.llm_cache import hash_history, hash_text

logger = logging.getLogger(__name__)

T = TypeVar("T")


def build_coalesce_key(tenant_id: str, message: str, history: list[dict[str, str]] | None = None) -> str:
    """Key for a whole pipeline run: tenant, question and the user side of the history."""
    normalized = " ".join(message.lower().split())
    return f"{tenant_id}:{hash_text(normalized)}:{hash_history(history)}"


class RequestCoalescer(Generic[T]):
    """Collapse concurrent calls that share a key into one in-flight task.

    Every caller awaits the same task through ``asyncio.shield`` so a caller
    that gets cancelled does not cancel the shared work for the others. The
    key is dropped as soon as the task settles; results are not cached. An
    in-flight call older than ``ttl_seconds`` is not joined.
    """

    def __init__(self, ttl_seconds: float = 10.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._in_flight: dict[str, tuple[asyncio.Task[T], float]] = {}
        self._coalesced = 0

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        entry = self._in_flight.get(key)
        if entry is not None and self._clock() - entry[1] <= self._ttl:
            task = entry[0]
            self._coalesced += 1
            logger.info("Coalescing request onto in-flight call for key: %s", key[:24])
        else:
            # No await between lookup and insert, so this is atomic on the event loop
            task = asyncio.ensure_future(factory())
            self._in_flight[key] = (task, self._clock())
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        return await asyncio.shield(task)

    def in_flight(self) -> int:
        return len(self._in_flight)

    def get_stats(self) -> dict[str, Any]:
        return {"in_flight": len(self._in_flight), "coalesced": self._coalesced}

    def _forget(self, key: str, task: "asyncio.Task[T]") -> None:
        entry = self._in_flight.get(key)
        if entry is not None and entry[0] is task:
            del self._in_flight[key]
        # Mark the exception retrieved; every waiter already receives it via shield
        if not task.cancelled():
            task.exception()
