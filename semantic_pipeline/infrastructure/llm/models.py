"""LLM call contract shared by every provider adapter."""

from dataclasses import dataclass
from typing import Literal, Protocol, runtime_checkable


class LLMError(Exception):
    """Error raised by an LLM call or while interpreting its output."""

    PARSE_ERROR = "PARSE_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    OVERLOADED = "OVERLOADED"
    TIMEOUT = "TIMEOUT"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    CONCURRENCY_LIMIT = "CONCURRENCY_LIMIT"
    PROVIDER_ERROR = "PROVIDER_ERROR"

    def __init__(self, message: str, code: str = PROVIDER_ERROR):
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class LLMMessage:
    """One chat turn sent to the model."""

    role: Literal["user", "assistant"]
    content: str


@dataclass(frozen=True)
class CompletionOptions:
    """Per-call options."""

    system_prompt: str = ""
    temperature: float = 0.0
    max_tokens: int = 1024
    model: str | None = None
    timeout: float | None = None


@dataclass(frozen=True)
class LLMResponse:
    """Normalized completion result."""

    content: str
    tokens_input: int
    tokens_output: int
    model: str
    provider: str
    latency_ms: int
    stop_reason: str | None = None


@runtime_checkable
class LLMAdapter(Protocol):
    """Single-capability interface the pipeline depends on."""

    provider: str
    model: str

    async def complete(self, messages: list[LLMMessage], options: CompletionOptions) -> LLMResponse: ...
