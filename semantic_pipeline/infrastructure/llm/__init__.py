"""LLM infrastructure module."""

from semantic_pipeline.infrastructure.llm.models import (
    CompletionOptions,
    LLMAdapter,
    LLMError,
    LLMMessage,
    LLMResponse,
)

__all__ = [
    "CompletionOptions",
    "LLMAdapter",
    "LLMError",
    "LLMMessage",
    "LLMResponse",
]
