"""OpenAI Chat Completions adapter."""

import logging
import time

import openai
from openai import AsyncOpenAI

from semantic_pipeline.infrastructure.llm.models import CompletionOptions, LLMError, LLMMessage, LLMResponse

logger = logging.getLogger(__name__)


def map_openai_error(error: Exception) -> LLMError:
    """Translate SDK exceptions into LLMError codes."""
    if isinstance(error, openai.RateLimitError):
        return LLMError(f"OpenAI rate limit: {error}", code=LLMError.RATE_LIMITED)
    if isinstance(error, openai.APITimeoutError):
        return LLMError(f"OpenAI request timed out: {error}", code=LLMError.TIMEOUT)
    if isinstance(error, openai.APIStatusError) and error.status_code == 503:
        return LLMError(f"OpenAI overloaded: {error}", code=LLMError.OVERLOADED)
    return LLMError(f"OpenAI error: {error}", code=LLMError.PROVIDER_ERROR)


class OpenAIAdapter:
    """LLMAdapter backed by ``AsyncOpenAI``."""

    provider = "openai"

    def __init__(self, model: str, api_key: str | None = None, client: AsyncOpenAI | None = None):
        self.model = model
        self._client = client or AsyncOpenAI(api_key=api_key)

    async def complete(self, messages: list[LLMMessage], options: CompletionOptions) -> LLMResponse:
        model = options.model or self.model
        chat_messages = []
        if options.system_prompt:
            chat_messages.append({"role": "system", "content": options.system_prompt})
        chat_messages.extend({"role": m.role, "content": m.content} for m in messages)

        start = time.time()
        try:
            response = await self._client.chat.completions.create(
                model=model,
                messages=chat_messages,
                temperature=options.temperature,
                max_tokens=options.max_tokens,
                timeout=options.timeout,
            )
        except openai.APIError as e:
            raise map_openai_error(e) from e

        choice = response.choices[0]
        usage = response.usage
        latency_ms = int((time.time() - start) * 1000)
        return LLMResponse(
            content=choice.message.content or "",
            tokens_input=usage.prompt_tokens if usage else 0,
            tokens_output=usage.completion_tokens if usage else 0,
            model=response.model or model,
            provider=self.provider,
            latency_ms=latency_ms,
            stop_reason=choice.finish_reason,
        )
