"""Query executor shared by metrics mode and SQL mode."""

import logging
import re
import time
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from semantic_pipeline.config.settings import Settings
from semantic_pipeline.infrastructure.database import fetch_rows
from semantic_pipeline.services.compiler.models import CompiledQuery
from semantic_pipeline.services.intent.models import IntentContext
from semantic_pipeline.services.query.models import ExecutionError, QueryResult

logger = logging.getLogger(__name__)

_LOCATION_BIND = re.compile(r":location_id\b")


class QueryExecutor:
    """Runs read-only statements against the tenant data source."""

    def __init__(self, settings: Settings, engine: Engine | None):
        self.settings = settings
        self.engine = engine

    async def execute_compiled_query(self, compiled: CompiledQuery, context: IntentContext) -> QueryResult:
        """
        Execute a compiled metrics-mode statement.

        Raises:
            ExecutionError: QUERY_ERROR or QUERY_TIMEOUT
        """
        logger.info(
            "Executing compiled query on %s for tenant %s", compiled.primary_table, context.tenant_id
        )
        return await self._run(compiled.sql, compiled.bind_params)

    async def execute_sql_query(self, sql: str, context: IntentContext) -> QueryResult:
        """
        Execute a validated SQL-mode statement.

        ``:tenant_id`` is always bound; ``:location_id`` only when the
        statement references it.

        Raises:
            ExecutionError: QUERY_ERROR or QUERY_TIMEOUT
        """
        params: dict[str, Any] = {"tenant_id": context.tenant_id}
        if _LOCATION_BIND.search(sql):
            params["location_id"] = context.location_id
        logger.info("Executing generated SQL for tenant %s", context.tenant_id)
        return await self._run(sql, params)

    async def _run(self, sql: str, params: dict[str, Any]) -> QueryResult:
        if self.engine is None:
            raise ExecutionError("No data source configured", ExecutionError.NO_DATA_SOURCE)

        start = time.time()
        try:
            fetched = await fetch_rows(
                self.engine,
                sql,
                params,
                max_rows=self.settings.max_result_rows,
                timeout=self.settings.sql_execution_timeout,
            )
        except TimeoutError as e:
            logger.warning("Query exceeded %.1fs deadline", self.settings.sql_execution_timeout)
            raise ExecutionError(
                f"Query timed out after {self.settings.sql_execution_timeout}s", ExecutionError.QUERY_TIMEOUT
            ) from e
        except SQLAlchemyError as e:
            message = str(getattr(e, "orig", None) or e)
            logger.error("Query failed: %s", message)
            raise ExecutionError(f"Query failed: {message}", ExecutionError.QUERY_ERROR) from e

        execution_time_ms = int((time.time() - start) * 1000)
        if fetched.truncated:
            logger.warning("Result truncated at %d rows", self.settings.max_result_rows)
        logger.info("Query returned %d rows in %dms", len(fetched.rows), execution_time_ms)

        return QueryResult(
            rows=fetched.rows,
            row_count=len(fetched.rows),
            execution_time_ms=execution_time_ms,
            truncated=fetched.truncated,
            columns=fetched.columns,
        )
