"""Adapter factory helpers."""

import logging

from semantic_pipeline.config.settings import Settings
from semantic_pipeline.infrastructure.llm.anthropic_adapter import AnthropicAdapter
from semantic_pipeline.infrastructure.llm.models import LLMAdapter
from semantic_pipeline.infrastructure.llm.openai_adapter import OpenAIAdapter
from semantic_pipeline.infrastructure.llm.resilient import ResilientLLMAdapter
from semantic_pipeline.infrastructure.resilience.circuit_breaker import CircuitBreakerRegistry
from semantic_pipeline.infrastructure.resilience.concurrency import ConcurrencyLimiter
from semantic_pipeline.infrastructure.resilience.rate_limiter import AdaptiveRateLimiter

logger = logging.getLogger(__name__)


def is_anthropic_model(model: str) -> bool:
    """Check if model is Anthropic (Claude)."""
    return "claude" in model.lower()


def create_provider_adapter(settings: Settings, model: str | None = None) -> LLMAdapter:
    """Create the bare SDK adapter for the configured provider."""
    model = model or settings.intent_model
    if settings.llm_provider == "openai":
        if not settings.openai_api_key:
            logger.warning("openai_api_key is not set; relying on OPENAI_API_KEY from the environment")
        return OpenAIAdapter(model=model, api_key=settings.openai_api_key)
    if not is_anthropic_model(model):
        logger.warning("Model '%s' does not look like a Claude model for the anthropic provider", model)
    return AnthropicAdapter(model=model, api_key=settings.anthropic_api_key)


def create_llm_adapter(
    settings: Settings,
    breakers: CircuitBreakerRegistry,
    rate_limiter: AdaptiveRateLimiter | None = None,
    model: str | None = None,
    concurrency: ConcurrencyLimiter | None = None,
) -> ResilientLLMAdapter:
    """
    Create the provider adapter wrapped with the shared resilience services.

    Args:
        settings: Application settings
        breakers: Process-wide breaker registry (one breaker per provider)
        rate_limiter: Shared adaptive rate limiter
        model: Default model; per-call options may override it
        concurrency: Shared cap on in-flight calls

    Returns:
        Resilient adapter
    """
    inner = create_provider_adapter(settings, model)
    logger.info("LLM adapter initialized: provider=%s model=%s", inner.provider, inner.model)
    return ResilientLLMAdapter(
        inner,
        breaker=breakers.get(inner.provider),
        rate_limiter=rate_limiter,
        max_retries=settings.llm_max_retries,
        initial_delay=settings.llm_retry_delay,
        backoff_factor=settings.retry_backoff_factor,
        concurrency=concurrency,
    )
