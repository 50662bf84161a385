"""Anthropic Messages API adapter."""

import logging
import time

import anthropic
from anthropic import AsyncAnthropic

from semantic_pipeline.infrastructure.llm.models import CompletionOptions, LLMError, LLMMessage, LLMResponse

logger = logging.getLogger(__name__)

_OVERLOADED_STATUSES = {503, 529}


def map_anthropic_error(error: Exception) -> LLMError:
    """Translate SDK exceptions into LLMError codes."""
    if isinstance(error, anthropic.RateLimitError):
        return LLMError(f"Anthropic rate limit: {error}", code=LLMError.RATE_LIMITED)
    if isinstance(error, anthropic.APITimeoutError):
        return LLMError(f"Anthropic request timed out: {error}", code=LLMError.TIMEOUT)
    if isinstance(error, anthropic.APIStatusError) and error.status_code in _OVERLOADED_STATUSES:
        return LLMError(f"Anthropic overloaded: {error}", code=LLMError.OVERLOADED)
    return LLMError(f"Anthropic error: {error}", code=LLMError.PROVIDER_ERROR)


class AnthropicAdapter:
    """LLMAdapter backed by ``AsyncAnthropic``."""

    provider = "anthropic"

    def __init__(self, model: str, api_key: str | None = None, client: AsyncAnthropic | None = None):
        self.model = model
        self._client = client or AsyncAnthropic(api_key=api_key)

    async def complete(self, messages: list[LLMMessage], options: CompletionOptions) -> LLMResponse:
        model = options.model or self.model
        start = time.time()
        request: dict = {
            "model": model,
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
        }
        if options.system_prompt:
            request["system"] = options.system_prompt
        if options.timeout is not None:
            request["timeout"] = options.timeout

        try:
            response = await self._client.messages.create(**request)
        except anthropic.APIError as e:
            raise map_anthropic_error(e) from e

        content = "".join(block.text for block in response.content if getattr(block, "type", None) == "text")
        latency_ms = int((time.time() - start) * 1000)
        logger.debug(
            "Anthropic completion model=%s in=%d out=%d %dms",
            response.model,
            response.usage.input_tokens,
            response.usage.output_tokens,
            latency_ms,
        )
        return LLMResponse(
            content=content,
            tokens_input=response.usage.input_tokens,
            tokens_output=response.usage.output_tokens,
            model=response.model or model,
            provider=self.provider,
            latency_ms=latency_ms,
            stop_reason=response.stop_reason,
        )
