"""Query result cache keyed by compiled-query fingerprint."""

import hashlib
import json
import logging
from typing import Any

from semantic_pipeline.config.settings import Settings
from semantic_pipeline.infrastructure.cache.bounded_cache import BoundedCache

logger = logging.getLogger(__name__)


class QueryResultCache:
    """Caches query results per tenant, statement and bound parameters."""

    def __init__(self, max_size: int = 200, ttl_seconds: float = 60, stale_ttl_seconds: float = 900):
        self._cache: BoundedCache[Any] = BoundedCache(
            max_size=max_size,
            ttl_seconds=ttl_seconds,
            stale_ttl_seconds=stale_ttl_seconds,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "QueryResultCache":
        return cls(
            max_size=settings.query_cache_max_size,
            ttl_seconds=settings.query_cache_ttl,
            stale_ttl_seconds=settings.query_cache_stale_ttl,
        )

    @staticmethod
    def fingerprint(tenant_id: str, sql: str, params: list[Any] | dict[str, Any] | None = None) -> str:
        """Stable key for a statement and its parameters."""
        normalized_sql = " ".join(sql.split())
        payload = json.dumps(params or [], sort_keys=True, default=str)
        digest = hashlib.sha256(f"{normalized_sql}|{payload}".encode("utf-8")).hexdigest()
        return f"{tenant_id}:{digest[:32]}"

    def get(self, tenant_id: str, sql: str, params: list[Any] | dict[str, Any] | None = None) -> Any | None:
        return self._cache.get(self.fingerprint(tenant_id, sql, params))

    def get_stale(self, tenant_id: str, sql: str, params: list[Any] | dict[str, Any] | None = None) -> Any | None:
        return self._cache.get_stale(self.fingerprint(tenant_id, sql, params))

    def set(self, tenant_id: str, sql: str, params: list[Any] | dict[str, Any] | None, result: Any) -> None:
        self._cache.set(self.fingerprint(tenant_id, sql, params), result)

    def get_stats(self) -> dict[str, Any]:
        return self._cache.get_stats()
