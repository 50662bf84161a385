"""SQL generator service."""

import logging
import time
from dataclasses import replace

from pydantic import ValidationError

from semantic_pipeline.config.prompts import build_sql_generation_system_prompt, build_sql_generation_user_input
from semantic_pipeline.config.settings import Settings
from semantic_pipeline.infrastructure.cache import LLMResponseCache, cache_get, cache_set
from semantic_pipeline.infrastructure.llm.models import CompletionOptions, LLMAdapter, LLMMessage
from semantic_pipeline.infrastructure.resilience.prompt_guard import PromptBudget, guard_prompt_size
from semantic_pipeline.services.catalog.schema import SchemaCatalog
from semantic_pipeline.services.intent.models import IntentContext
from semantic_pipeline.services.sql.models import SqlCompletion, SqlGenerationError, SqlGenerationResult
from semantic_pipeline.utils.json_parser import JSONParser

logger = logging.getLogger(__name__)


def parse_sql_completion(raw: str) -> SqlCompletion:
    """
    Parse the SQL generation completion.

    Raises:
        SqlGenerationError: When the content is not a JSON object with SQL
    """
    data = JSONParser.parse_object(raw)
    if data is None:
        raise SqlGenerationError(f"SQL generator returned non-JSON: {raw[:200]}", code="PARSE_ERROR")
    try:
        completion = SqlCompletion.model_validate(data)
    except ValidationError as e:
        raise SqlGenerationError(f"SQL generator output invalid: {e.errors()}", code="PARSE_ERROR") from e
    if not completion.sql.strip():
        raise SqlGenerationError(
            f"SQL generator returned no query: {completion.explanation or 'no explanation'}", code="NO_SQL"
        )
    return completion


class SQLGenerator:
    """Generates SQL queries from natural language over the raw schema."""

    def __init__(self, settings: Settings, adapter: LLMAdapter, llm_cache: LLMResponseCache | None = None):
        """Initialize SQL generator.

        Args:
            settings: Application settings
            adapter: LLM adapter used for generation
            llm_cache: Optional response cache for first attempts
        """
        self.settings = settings
        self.adapter = adapter
        self.llm_cache = llm_cache
        logger.info(f"SQLGenerator initialized with model: {settings.sql_model}")

    def build_system_prompt(self, schema_catalog: SchemaCatalog, context: IntentContext) -> tuple[str, bool]:
        """System prompt with the full schema run through the prompt guard."""
        base = build_sql_generation_system_prompt("", context)
        guarded = guard_prompt_size(
            base,
            schema=schema_catalog.full_text,
            budget=PromptBudget.from_settings(self.settings),
        )
        return build_sql_generation_system_prompt(guarded.schema, context), guarded.was_truncated

    def completion_options(self, system_prompt: str) -> CompletionOptions:
        return CompletionOptions(
            system_prompt=system_prompt,
            temperature=self.settings.sql_temperature,
            max_tokens=self.settings.sql_max_tokens,
            model=self.settings.sql_model,
            timeout=self.settings.llm_timeout,
        )

    async def generate(
        self,
        question: str,
        schema_catalog: SchemaCatalog,
        context: IntentContext,
    ) -> SqlGenerationResult:
        """
        Generate SQL query from natural language.

        Args:
            question: User's natural language question
            schema_catalog: Raw schema the query may use
            context: Request context

        Returns:
            SqlGenerationResult

        Raises:
            SqlGenerationError: When no SQL can be extracted
            LLMError: On provider failure
        """
        system_prompt, _ = self.build_system_prompt(schema_catalog, context)

        cache_key = None
        if self.llm_cache is not None:
            cache_key = LLMResponseCache.make_key(context.tenant_id, system_prompt, question)
            cached = cache_get(lambda: self.llm_cache.get(cache_key), "SQL")
            if isinstance(cached, SqlGenerationResult):
                logger.info(f"SQL cache hit for key: {cache_key[:24]}...")
                return replace(cached, cached=True)

        messages = [LLMMessage(role="user", content=build_sql_generation_user_input(question))]

        start = time.time()
        response = await self.adapter.complete(messages, self.completion_options(system_prompt))
        latency_ms = int((time.time() - start) * 1000)

        completion = parse_sql_completion(response.content)
        result = SqlGenerationResult(
            sql=completion.sql.strip(),
            explanation=completion.explanation,
            confidence=completion.confidence,
            tokens_input=response.tokens_input,
            tokens_output=response.tokens_output,
            latency_ms=latency_ms,
            provider=response.provider,
            model=response.model,
        )

        if cache_key is not None:
            cache_set(lambda: self.llm_cache.set(cache_key, result), "SQL")
        logger.info("SQL generated in %dms (confidence=%.2f)", latency_ms, result.confidence)
        return result
