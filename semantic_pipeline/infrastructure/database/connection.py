"""Direct database access for tenant data using SQLAlchemy."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from semantic_pipeline.config.settings import Settings

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    """Rows fetched by ``fetch_rows``."""

    rows: list[dict[str, Any]]
    columns: list[str]
    truncated: bool


def create_db_engine(settings: Settings) -> Engine | None:
    """Create the read engine, or None when no data source is configured."""
    if not settings.database_url:
        logger.warning("database_url is not configured; query execution and SQL mode are disabled")
        return None
    return create_engine(settings.database_url, pool_pre_ping=True, future=True)


def _fetch_sync(
    engine: Engine,
    sql: str,
    params: dict[str, Any],
    max_rows: int,
    statement_timeout_ms: int | None,
) -> FetchResult:
    """Run a read-only statement synchronously (called from a worker thread)."""
    with engine.connect() as conn:
        if conn.dialect.name == "postgresql":
            conn.execute(text("SET TRANSACTION READ ONLY"))
            if statement_timeout_ms:
                conn.execute(text(f"SET LOCAL statement_timeout = {int(statement_timeout_ms)}"))
        result = conn.execute(text(sql), params)
        columns = list(result.keys())
        fetched = result.fetchmany(max_rows + 1)
        truncated = len(fetched) > max_rows
        rows = [dict(row._mapping) for row in fetched[:max_rows]]
        conn.rollback()
    return FetchResult(rows=rows, columns=columns, truncated=truncated)


async def fetch_rows(
    engine: Engine,
    sql: str,
    params: dict[str, Any] | None = None,
    *,
    max_rows: int = 10_000,
    timeout: float | None = None,
) -> FetchResult:
    """
    Execute a SELECT statement and return rows as dictionaries.

    Args:
        engine: SQLAlchemy engine
        sql: Statement using named binds (``:name``)
        params: Bind values
        max_rows: Row cap; one extra row is fetched to detect truncation
        timeout: Deadline in seconds for the whole call

    Returns:
        FetchResult

    Raises:
        TimeoutError: When the deadline is exceeded
        sqlalchemy.exc.SQLAlchemyError: On database errors
    """
    statement_timeout_ms = int(timeout * 1000) if timeout else None
    call = asyncio.to_thread(_fetch_sync, engine, sql, params or {}, max_rows, statement_timeout_ms)
    if timeout is None:
        return await call
    return await asyncio.wait_for(call, timeout=timeout)
