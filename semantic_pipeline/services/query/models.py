"""Query execution models."""

from dataclasses import dataclass, field
from typing import Any


class ExecutionError(Exception):
    """Statement failed or exceeded its deadline."""

    QUERY_ERROR = "QUERY_ERROR"
    QUERY_TIMEOUT = "QUERY_TIMEOUT"
    NO_DATA_SOURCE = "NO_DATA_SOURCE"

    def __init__(self, message: str, code: str = QUERY_ERROR):
        super().__init__(message)
        self.code = code


@dataclass
class QueryResult:
    """Rows returned by one statement. ``truncated`` means the row cap was hit."""

    rows: list[dict[str, Any]]
    row_count: int
    execution_time_ms: int
    truncated: bool = False
    columns: list[str] = field(default_factory=list)
