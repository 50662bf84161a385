"""Cache infrastructure module."""

from semantic_pipeline.infrastructure.cache.bounded_cache import BoundedCache
from semantic_pipeline.infrastructure.cache.guard import cache_get, cache_set
from semantic_pipeline.infrastructure.cache.llm_cache import LLMResponseCache
from semantic_pipeline.infrastructure.cache.query_cache import QueryResultCache

__all__ = [
    "BoundedCache",
    "LLMResponseCache",
    "QueryResultCache",
    "cache_get",
    "cache_set",
]
