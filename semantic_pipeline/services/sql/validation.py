"""SQL validation service."""

import logging

from semantic_pipeline.config.validation import has_limit, validate_sql_query
from semantic_pipeline.services.sql.models import SqlValidationResult

logger = logging.getLogger(__name__)


class SQLValidationService:
    """Deny-by-default checks for generated SQL."""

    @staticmethod
    def sanitize(sql: str, max_rows: int) -> str:
        """Strip trailing semicolons and append a LIMIT when none is present."""
        cleaned = sql.strip().rstrip(";").strip()
        if not has_limit(cleaned):
            cleaned = f"{cleaned}\nLIMIT {int(max_rows)}"
        return cleaned

    @staticmethod
    def validate(
        sql: str,
        table_names: set[str] | frozenset[str] | None = None,
        max_rows: int = 10_000,
    ) -> SqlValidationResult:
        """
        Validate a generated statement.

        Rejects empty or multi-statement SQL, comments, anything but
        SELECT/WITH, blocked keywords, system schemas, unknown tables and
        statements missing the ``:tenant_id`` bind.

        Args:
            sql: SQL query string
            table_names: Tables the statement may reference
            max_rows: LIMIT appended when the statement has none

        Returns:
            SqlValidationResult with ``sanitized_sql`` set when valid
        """
        is_valid, errors = validate_sql_query(sql, valid_tables=table_names)

        if not is_valid:
            logger.warning(f"SQL validation failed with {len(errors)} error(s): {errors}")
            return SqlValidationResult(valid=False, errors=errors)

        logger.info("SQL validation passed")
        return SqlValidationResult(valid=True, errors=[], sanitized_sql=SQLValidationService.sanitize(sql, max_rows))
