"""Per-provider circuit breaker."""

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from typing import Any

from semantic_pipeline.config.constants import CircuitState
from semantic_pipeline.config.settings import Settings
from semantic_pipeline.infrastructure.llm.models import LLMError

logger = logging.getLogger(__name__)

# Outcomes kept for the error-rate readout
_OUTCOME_WINDOW = 20


class CircuitOpenError(LLMError):
    """Raised when a call is rejected because the breaker is open."""

    def __init__(self, provider: str, retry_after: float):
        super().__init__(
            f"Circuit breaker for '{provider}' is open; retry after {retry_after:.1f}s",
            code=LLMError.CIRCUIT_OPEN,
        )
        self.provider = provider
        self.retry_after = retry_after


class CircuitBreaker:
    """CLOSED -> OPEN -> HALF_OPEN -> CLOSED state machine.

    The breaker trips after ``failure_threshold`` consecutive failures that all
    happened within ``window_seconds``. While open every call is rejected. Once
    ``cooldown_seconds`` have passed a single trial call is admitted; its
    outcome closes or re-opens the circuit.
    """

    def __init__(
        self,
        provider: str,
        failure_threshold: int = 5,
        window_seconds: float = 60.0,
        cooldown_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider
        self._failure_threshold = max(1, failure_threshold)
        self._window = window_seconds
        self._cooldown = cooldown_seconds
        self._clock = clock
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._failure_times: deque[float] = deque()
        self._outcomes: deque[bool] = deque(maxlen=_OUTCOME_WINDOW)
        self._opened_at = 0.0
        self._trial_in_flight = False
        self._total_trips = 0
        self._total_rejected = 0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def acquire(self) -> None:
        """Admit a call or raise CircuitOpenError."""
        with self._lock:
            self._maybe_half_open()
            if self._state == CircuitState.OPEN:
                self._total_rejected += 1
                raise CircuitOpenError(self.provider, self._retry_after())
            if self._state == CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    self._total_rejected += 1
                    raise CircuitOpenError(self.provider, self._cooldown)
                self._trial_in_flight = True

    def record_success(self) -> None:
        with self._lock:
            self._outcomes.append(True)
            self._failure_times.clear()
            if self._state == CircuitState.HALF_OPEN:
                logger.info("Circuit breaker for '%s' closed after successful trial", self.provider)
                self._state = CircuitState.CLOSED
                self._trial_in_flight = False
                self._outcomes.clear()

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            self._outcomes.append(False)
            if self._state == CircuitState.HALF_OPEN:
                self._trip(now)
                return
            self._failure_times.append(now)
            while self._failure_times and now - self._failure_times[0] > self._window:
                self._failure_times.popleft()
            if self._state == CircuitState.CLOSED and len(self._failure_times) >= self._failure_threshold:
                self._trip(now)

    def release_trial(self) -> None:
        """Give back a HALF_OPEN trial slot without recording an outcome."""
        with self._lock:
            self._trial_in_flight = False

    def error_rate(self) -> float:
        with self._lock:
            if not self._outcomes:
                return 0.0
            return sum(1 for ok in self._outcomes if not ok) / len(self._outcomes)

    def status(self) -> dict[str, Any]:
        with self._lock:
            self._maybe_half_open()
            failures = sum(1 for ok in self._outcomes if not ok)
            return {
                "provider": self.provider,
                "state": self._state.value,
                "total_trips": self._total_trips,
                "total_rejected": self._total_rejected,
                "error_rate": round(failures / len(self._outcomes), 3) if self._outcomes else 0.0,
                "retry_after_seconds": self._retry_after() if self._state == CircuitState.OPEN else 0.0,
            }

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_times.clear()
            self._outcomes.clear()
            self._trial_in_flight = False

    def _trip(self, now: float) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._trial_in_flight = False
        self._failure_times.clear()
        self._total_trips += 1
        logger.warning(
            "Circuit breaker for '%s' opened (trip #%d), cooling down %.1fs",
            self.provider,
            self._total_trips,
            self._cooldown,
        )

    def _maybe_half_open(self) -> None:
        if self._state == CircuitState.OPEN and self._clock() - self._opened_at >= self._cooldown:
            self._state = CircuitState.HALF_OPEN
            self._trial_in_flight = False
            logger.info("Circuit breaker for '%s' half-open, admitting a trial call", self.provider)

    def _retry_after(self) -> float:
        return max(0.0, self._cooldown - (self._clock() - self._opened_at))


class CircuitBreakerRegistry:
    """Process-wide map of provider name to breaker."""

    def __init__(
        self,
        failure_threshold: int = 5,
        window_seconds: float = 60.0,
        cooldown_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._kwargs: dict[str, Any] = {
            "failure_threshold": failure_threshold,
            "window_seconds": window_seconds,
            "cooldown_seconds": cooldown_seconds,
            "clock": clock,
        }
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "CircuitBreakerRegistry":
        return cls(
            failure_threshold=settings.circuit_failure_threshold,
            window_seconds=settings.circuit_window_seconds,
            cooldown_seconds=settings.circuit_cooldown_seconds,
        )

    def get(self, provider: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(provider)
            if breaker is None:
                breaker = CircuitBreaker(provider, **self._kwargs)
                self._breakers[provider] = breaker
            return breaker

    def status(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            breakers = list(self._breakers.values())
        return {b.provider: b.status() for b in breakers}
