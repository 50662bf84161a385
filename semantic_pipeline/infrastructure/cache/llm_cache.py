"""LLM response cache keyed by hashed prompt + request context."""

import hashlib
import json
import logging
from typing import Any

from semantic_pipeline.config.settings import Settings
from semantic_pipeline.infrastructure.cache.bounded_cache import BoundedCache

logger = logging.getLogger(__name__)


def hash_text(text: str) -> str:
    """Short stable digest for cache keys."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


def hash_history(history: list[dict[str, str]] | None) -> str:
    """Digest of the user turns of a conversation history."""
    if not history:
        return "none"
    user_turns = [m.get("content", "") for m in history if m.get("role") == "user"]
    return hash_text(json.dumps(user_turns, ensure_ascii=False))


class LLMResponseCache:
    """Caches LLM outputs so identical prompts within a short window reuse the response."""

    def __init__(self, max_size: int = 500, ttl_seconds: float = 300, stale_ttl_seconds: float = 3600):
        self._cache: BoundedCache[Any] = BoundedCache(
            max_size=max_size,
            ttl_seconds=ttl_seconds,
            stale_ttl_seconds=stale_ttl_seconds,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "LLMResponseCache":
        return cls(
            max_size=settings.llm_cache_max_size,
            ttl_seconds=settings.llm_cache_ttl,
            stale_ttl_seconds=settings.llm_cache_stale_ttl,
        )

    @staticmethod
    def make_key(
        tenant_id: str,
        prompt: str,
        message: str,
        history: list[dict[str, str]] | None = None,
    ) -> str:
        """Build the cache key.

        Args:
            tenant_id: Tenant the response belongs to
            prompt: System prompt (or a stable identifier for it)
            message: Normalized user message
            history: Prior conversation turns

        Returns:
            Cache key
        """
        normalized = " ".join(message.lower().split())
        return f"{tenant_id}:{hash_text(prompt)}:{hash_text(normalized)}:{hash_history(history)}"

    def get(self, key: str) -> Any | None:
        value = self._cache.get(key)
        if value is not None:
            logger.debug("LLM cache hit for key: %s", key[:24])
        return value

    def get_stale(self, key: str) -> Any | None:
        value = self._cache.get_stale(key)
        if value is not None:
            logger.info("Serving stale LLM response for key: %s", key[:24])
        return value

    def set(self, key: str, value: Any) -> None:
        self._cache.set(key, value)

    def get_stats(self) -> dict[str, Any]:
        return self._cache.get_stats()
