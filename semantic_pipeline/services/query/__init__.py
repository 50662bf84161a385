"""Query execution."""

from semantic_pipeline.services.query.executor import QueryExecutor
from semantic_pipeline.services.query.models import ExecutionError, QueryResult

__all__ = ["ExecutionError", "QueryExecutor", "QueryResult"]
