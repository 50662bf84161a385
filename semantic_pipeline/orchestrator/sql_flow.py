"""SQL-mode fallback flow: generate, validate, execute, with corrective retries."""

import logging
from dataclasses import dataclass, field

from semantic_pipeline.config.settings import Settings
from semantic_pipeline.config.validation import extract_table_names
from semantic_pipeline.infrastructure.llm.models import LLMError
from semantic_pipeline.services.catalog.schema import SchemaCatalog
from semantic_pipeline.services.intent.models import IntentContext
from semantic_pipeline.services.query.executor import QueryExecutor
from semantic_pipeline.services.query.models import ExecutionError, QueryResult
from semantic_pipeline.services.sql.generator import SQLGenerator
from semantic_pipeline.services.sql.models import SqlGenerationError, SqlRetryError
from semantic_pipeline.services.sql.retry import SQLRetryService
from semantic_pipeline.services.sql.validation import SQLValidationService

logger = logging.getLogger(__name__)


@dataclass
class SqlFallbackOutcome:
    """What SQL mode produced. ``result`` is None when every attempt failed."""

    result: QueryResult | None = None
    sql: str | None = None
    explanation: str | None = None
    tables: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    attempts: int = 0
    tokens_input: int = 0
    tokens_output: int = 0
    latency_ms: int = 0


class SQLFallbackFlow:
    """Orchestrate SQL generation, validation and execution.

    A validation rejection or an execution error triggers a corrective retry
    (bounded by ``sql_max_retries``); a timeout never does. Failures never
    raise: they are reported on the outcome so the caller keeps the metrics
    result.
    """

    def __init__(
        self,
        settings: Settings,
        sql_gen: SQLGenerator,
        sql_retry: SQLRetryService,
        sql_validation: SQLValidationService,
        executor: QueryExecutor,
    ) -> None:
        self.settings = settings
        self.sql_gen = sql_gen
        self.sql_retry = sql_retry
        self.sql_validation = sql_validation
        self.executor = executor

    async def run(self, question: str, schema_catalog: SchemaCatalog, context: IntentContext) -> SqlFallbackOutcome:
        outcome = SqlFallbackOutcome()

        try:
            generated = await self.sql_gen.generate(question, schema_catalog, context)
        except (SqlGenerationError, LLMError) as e:
            logger.warning(f"SQL generation failed: {e}")
            outcome.errors.append(str(e))
            return outcome

        outcome.attempts = 1
        outcome.tokens_input += generated.tokens_input
        outcome.tokens_output += generated.tokens_output
        outcome.latency_ms += generated.latency_ms
        outcome.explanation = generated.explanation
        sql = generated.sql
        retries = 0

        while True:
            validation = self.sql_validation.validate(
                sql, schema_catalog.table_names, max_rows=self.settings.max_result_rows
            )
            if validation.valid:
                outcome.sql = validation.sanitized_sql
                outcome.tables = extract_table_names(validation.sanitized_sql)
                try:
                    outcome.result = await self.executor.execute_sql_query(validation.sanitized_sql, context)
                    return outcome
                except ExecutionError as e:
                    outcome.errors.append(str(e))
                    if e.code == ExecutionError.QUERY_TIMEOUT:
                        logger.warning("Generated SQL timed out; not retrying")
                        return outcome
                    feedback = [str(e)]
            else:
                outcome.sql = sql
                outcome.errors.extend(validation.errors)
                feedback = validation.errors

            if retries >= self.settings.sql_max_retries:
                logger.warning(f"SQL mode giving up after {outcome.attempts} attempt(s): {outcome.errors}")
                return outcome

            retries += 1
            logger.info(f"Retrying SQL generation ({retries}/{self.settings.sql_max_retries})")
            try:
                retry = await self.sql_retry.retry(question, sql, feedback, schema_catalog, context)
            except (SqlRetryError, LLMError) as e:
                logger.warning(f"SQL retry failed: {e}")
                outcome.errors.append(str(e))
                return outcome

            outcome.attempts += 1
            outcome.tokens_input += retry.tokens_input
            outcome.tokens_output += retry.tokens_output
            outcome.latency_ms += retry.latency_ms
            outcome.explanation = retry.explanation or outcome.explanation
            sql = retry.corrected_sql
