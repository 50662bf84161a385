"""Corrective SQL retry service."""

import logging
import time

from semantic_pipeline.config.prompts import build_sql_retry_user_input
from semantic_pipeline.config.settings import Settings
from semantic_pipeline.infrastructure.llm.models import LLMAdapter, LLMMessage
from semantic_pipeline.services.catalog.schema import SchemaCatalog
from semantic_pipeline.services.intent.models import IntentContext
from semantic_pipeline.services.sql.generator import SQLGenerator, parse_sql_completion
from semantic_pipeline.services.sql.models import SqlGenerationError, SqlRetryError, SqlRetryResult

logger = logging.getLogger(__name__)


class SQLRetryService:
    """Re-prompts the SQL generator with the failure as feedback. Never cached."""

    def __init__(self, settings: Settings, adapter: LLMAdapter):
        self.settings = settings
        self._generator = SQLGenerator(settings, adapter)
        self.adapter = adapter

    async def retry(
        self,
        question: str,
        failed_sql: str,
        error_message: str | list[str],
        schema_catalog: SchemaCatalog,
        context: IntentContext,
    ) -> SqlRetryResult:
        """
        Ask for a corrected query.

        Args:
            question: User's original question
            failed_sql: Statement that was rejected or failed
            error_message: Validation errors or the execution error
            schema_catalog: Raw schema the query may use
            context: Request context

        Returns:
            SqlRetryResult

        Raises:
            SqlRetryError: When the retry yields no SQL
            LLMError: On provider failure
        """
        errors = [error_message] if isinstance(error_message, str) else list(error_message)
        system_prompt, _ = self._generator.build_system_prompt(schema_catalog, context)
        messages = [
            LLMMessage(role="user", content=build_sql_retry_user_input(question, failed_sql, errors)),
        ]

        start = time.time()
        response = await self.adapter.complete(messages, self._generator.completion_options(system_prompt))
        latency_ms = int((time.time() - start) * 1000)

        try:
            completion = parse_sql_completion(response.content)
        except SqlGenerationError as e:
            raise SqlRetryError(str(e), code=e.code) from e

        logger.info("SQL retry produced a corrected query in %dms", latency_ms)
        return SqlRetryResult(
            corrected_sql=completion.sql.strip(),
            explanation=completion.explanation,
            tokens_input=response.tokens_input,
            tokens_output=response.tokens_output,
            latency_ms=latency_ms,
        )
