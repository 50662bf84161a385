"""Adaptive rate limiter driven by a settable backoff level."""

import asyncio
import logging
import threading
import time
from collections.abc import Callable

from semantic_pipeline.config.constants import BACKOFF_SPACING_SECONDS, BackoffLevel
from semantic_pipeline.config.settings import Settings

logger = logging.getLogger(__name__)


class AdaptiveRateLimiter:
    """Spaces LLM calls according to the current backoff level.

    The level is raised by ``record_throttle`` (one step per signal) or set
    explicitly, and decays one step for every ``decay_seconds`` without a new
    raise.
    """

    def __init__(
        self,
        decay_seconds: float = 60.0,
        spacing: dict[BackoffLevel, float] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._decay = decay_seconds
        self._spacing = spacing or BACKOFF_SPACING_SECONDS
        self._clock = clock
        self._level = BackoffLevel.NORMAL
        self._raised_at = clock()
        self._last_call = 0.0
        self._lock = threading.Lock()
        self._call_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "AdaptiveRateLimiter":
        return cls(decay_seconds=settings.backoff_decay_seconds)

    @property
    def level(self) -> BackoffLevel:
        with self._lock:
            self._decay_locked()
            return self._level

    def set_level(self, level: BackoffLevel) -> None:
        with self._lock:
            if level != self._level:
                logger.info("Backoff level %s -> %s", self._level.name, level.name)
            self._level = level
            self._raised_at = self._clock()

    def record_throttle(self) -> BackoffLevel:
        """Raise the level one step after a provider throttling signal."""
        with self._lock:
            self._decay_locked()
            new_level = BackoffLevel(min(self._level + 1, BackoffLevel.MINIMAL))
            if new_level != self._level:
                logger.warning("Provider throttling, backoff level %s -> %s", self._level.name, new_level.name)
            self._level = new_level
            self._raised_at = self._clock()
            return new_level

    def spacing(self) -> float:
        return self._spacing[self.level]

    async def acquire(self) -> None:
        """Wait until the spacing for the current level has elapsed since the last call."""
        async with self._call_lock:
            wait = self._last_call + self.spacing() - self._clock()
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_call = self._clock()

    def _decay_locked(self) -> None:
        if self._level == BackoffLevel.NORMAL or self._decay <= 0:
            return
        steps = int((self._clock() - self._raised_at) // self._decay)
        if steps > 0:
            decayed = BackoffLevel(max(BackoffLevel.NORMAL, self._level - steps))
            logger.info("Backoff level decayed %s -> %s", self._level.name, decayed.name)
            self._level = decayed
            self._raised_at = self._clock()
