"""Resilience primitives shared by every LLM call."""

from semantic_pipeline.infrastructure.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitOpenError,
)
from semantic_pipeline.infrastructure.resilience.coalescer import RequestCoalescer, build_coalesce_key
from semantic_pipeline.infrastructure.resilience.concurrency import ConcurrencyLimiter, ConcurrencyLimitError
from semantic_pipeline.infrastructure.resilience.prompt_guard import (
    GuardedPrompt,
    PromptBudget,
    estimate_tokens,
    guard_prompt_size,
)
from semantic_pipeline.infrastructure.resilience.rate_limiter import AdaptiveRateLimiter

__all__ = [
    "AdaptiveRateLimiter",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitOpenError",
    "ConcurrencyLimitError",
    "ConcurrencyLimiter",
    "GuardedPrompt",
    "PromptBudget",
    "RequestCoalescer",
    "build_coalesce_key",
    "estimate_tokens",
    "guard_prompt_size",
]
