"""Tests for SQL-mode generation, corrective retry and the fallback flow."""

import json
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

import pytest

from semantic_pipeline.infrastructure.cache import LLMResponseCache
from semantic_pipeline.infrastructure.llm.models import LLMError
from semantic_pipeline.orchestrator import SQLFallbackFlow
from semantic_pipeline.services.query import QueryExecutor
from semantic_pipeline.services.query.models import ExecutionError, QueryResult
from semantic_pipeline.services.sql import (
    SQLGenerator,
    SQLRetryService,
    SQLValidationService,
    SqlGenerationError,
    SqlRetryError,
)
from semantic_pipeline.services.sql.generator import parse_sql_completion
from tests.fakes import ScriptedLLMAdapter

GOOD_SQL = "SELECT COUNT(*) AS total_orders FROM orders WHERE tenant_id = :tenant_id LIMIT 100"
UNKNOWN_TABLE_SQL = "SELECT COUNT(*) AS total FROM payments WHERE tenant_id = :tenant_id LIMIT 100"


def sql_json(sql: str, explanation: str = "Counts orders", confidence: float = 0.8) -> str:
    return json.dumps({"sql": sql, "explanation": explanation, "confidence": confidence})


def _executor(*outcomes) -> MagicMock:
    executor = MagicMock(spec=QueryExecutor)
    executor.execute_sql_query = AsyncMock(side_effect=list(outcomes))
    return executor


def _flow(settings, adapter, executor) -> SQLFallbackFlow:
    return SQLFallbackFlow(
        settings,
        SQLGenerator(settings, adapter),
        SQLRetryService(settings, adapter),
        SQLValidationService(),
        executor,
    )


# ---------------------------------------------------------------------------
# Completion parsing
# ---------------------------------------------------------------------------


class TestParseSqlCompletion:
    def test_fenced_json(self):
        completion = parse_sql_completion(f"```json\n{sql_json(GOOD_SQL)}\n```")
        assert completion.sql == GOOD_SQL
        assert completion.confidence == 0.8

    def test_confidence_is_clamped(self):
        assert parse_sql_completion(sql_json(GOOD_SQL, confidence=3)).confidence == 1.0
        completion = parse_sql_completion(json.dumps({"sql": GOOD_SQL, "confidence": "high"}))
        assert completion.confidence == 0.5

    def test_empty_sql_is_no_sql(self):
        with pytest.raises(SqlGenerationError) as exc:
            parse_sql_completion(sql_json("", explanation="No table holds weather data"))
        assert exc.value.code == "NO_SQL"
        assert "weather" in str(exc.value)

    def test_non_json_is_parse_error(self):
        with pytest.raises(SqlGenerationError) as exc:
            parse_sql_completion("I think you want SELECT 1")
        assert exc.value.code == "PARSE_ERROR"


# ---------------------------------------------------------------------------
# Generator and retry
# ---------------------------------------------------------------------------


class TestSQLGenerator:
    @pytest.mark.asyncio
    async def test_generate_embeds_schema_and_context(self, settings, context, schema_catalog):
        adapter = ScriptedLLMAdapter(sql=sql_json(GOOD_SQL))
        result = await SQLGenerator(settings, adapter).generate("how many orders?", schema_catalog, context)

        assert result.sql == GOOD_SQL
        assert result.tokens_input == 100
        assert result.cached is False
        (messages, options), = adapter.calls["sql"]
        assert "## Database Schema" in options.system_prompt
        assert "orders" in options.system_prompt
        assert "- Current date: 2025-06-16" in options.system_prompt
        assert messages[0].content.startswith("how many orders?")

    @pytest.mark.asyncio
    async def test_cache_hit_skips_llm(self, settings, context, schema_catalog):
        adapter = ScriptedLLMAdapter(sql=sql_json(GOOD_SQL))
        generator = SQLGenerator(settings, adapter, llm_cache=LLMResponseCache())

        first = await generator.generate("how many orders?", schema_catalog, context)
        second = await generator.generate("how many orders?", schema_catalog, context)

        assert adapter.complete.await_count == 1
        assert first.cached is False
        assert second.cached is True
        assert second.sql == GOOD_SQL

    @pytest.mark.asyncio
    async def test_cache_is_tenant_scoped(self, settings, context, schema_catalog):
        adapter = ScriptedLLMAdapter(sql=sql_json(GOOD_SQL))
        generator = SQLGenerator(settings, adapter, llm_cache=LLMResponseCache())

        await generator.generate("how many orders?", schema_catalog, context)
        await generator.generate("how many orders?", schema_catalog, replace(context, tenant_id="tenant-2"))

        assert adapter.complete.await_count == 2

    @pytest.mark.asyncio
    async def test_cache_failure_falls_through_to_llm(self, settings, context, schema_catalog):
        cache = MagicMock(spec=LLMResponseCache)
        cache.get.side_effect = ConnectionError("cache backend down")
        cache.set.side_effect = ConnectionError("cache backend down")
        adapter = ScriptedLLMAdapter(sql=sql_json(GOOD_SQL))

        result = await SQLGenerator(settings, adapter, llm_cache=cache).generate(
            "how many orders?", schema_catalog, context
        )

        assert result.sql == GOOD_SQL
        assert result.cached is False
        assert adapter.complete.await_count == 1
        cache.set.assert_called_once()


class TestSQLRetryService:
    @pytest.mark.asyncio
    async def test_retry_prompt_contains_errors(self, settings, context, schema_catalog):
        adapter = ScriptedLLMAdapter(sql=sql_json(GOOD_SQL))
        result = await SQLRetryService(settings, adapter).retry(
            "how many orders?", UNKNOWN_TABLE_SQL, ["Unknown table: payments"], schema_catalog, context
        )

        assert result.corrected_sql == GOOD_SQL
        user_input = adapter.calls["sql"][0][0][0].content
        assert "<previous_sql>\n" + UNKNOWN_TABLE_SQL in user_input
        assert "- Unknown table: payments" in user_input

    @pytest.mark.asyncio
    async def test_retry_without_sql_raises(self, settings, context, schema_catalog):
        adapter = ScriptedLLMAdapter(sql=sql_json(""))
        with pytest.raises(SqlRetryError) as exc:
            await SQLRetryService(settings, adapter).retry("q", "SELECT 1", "boom", schema_catalog, context)
        assert exc.value.code == "NO_SQL"


# ---------------------------------------------------------------------------
# Fallback flow
# ---------------------------------------------------------------------------


class TestSQLFallbackFlow:
    @pytest.mark.asyncio
    async def test_success_first_try(self, settings, context, schema_catalog):
        adapter = ScriptedLLMAdapter(sql=sql_json(GOOD_SQL))
        executor = _executor(QueryResult(rows=[{"total_orders": 42}], row_count=1, execution_time_ms=3))

        outcome = await _flow(settings, adapter, executor).run("how many orders?", schema_catalog, context)

        assert outcome.result.rows == [{"total_orders": 42}]
        assert outcome.attempts == 1
        assert outcome.tables == ["orders"]
        assert outcome.errors == []
        assert outcome.explanation == "Counts orders"
        executor.execute_sql_query.assert_awaited_once_with(GOOD_SQL, context)

    @pytest.mark.asyncio
    async def test_validation_failure_is_retried(self, settings, context, schema_catalog):
        adapter = ScriptedLLMAdapter(sql=[sql_json(UNKNOWN_TABLE_SQL), sql_json(GOOD_SQL, explanation="Fixed")])
        executor = _executor(QueryResult(rows=[{"total_orders": 42}], row_count=1, execution_time_ms=3))

        outcome = await _flow(settings, adapter, executor).run("how many orders?", schema_catalog, context)

        assert outcome.result is not None
        assert outcome.attempts == 2
        assert outcome.sql == GOOD_SQL
        assert outcome.explanation == "Fixed"
        assert any("payments" in e for e in outcome.errors)
        assert outcome.tokens_input == 200
        assert "payments" in adapter.calls["sql"][1][0][0].content

    @pytest.mark.asyncio
    async def test_execution_error_is_retried_then_gives_up(self, settings, context, schema_catalog):
        adapter = ScriptedLLMAdapter(sql=sql_json(GOOD_SQL))
        executor = _executor(
            ExecutionError('column "total" does not exist'),
            ExecutionError('column "total" does not exist'),
        )

        outcome = await _flow(settings, adapter, executor).run("how many orders?", schema_catalog, context)

        assert outcome.result is None
        assert outcome.attempts == 1 + settings.sql_max_retries
        assert executor.execute_sql_query.await_count == 2

    @pytest.mark.asyncio
    async def test_timeout_is_not_retried(self, settings, context, schema_catalog):
        adapter = ScriptedLLMAdapter(sql=sql_json(GOOD_SQL))
        executor = _executor(ExecutionError("statement timeout", ExecutionError.QUERY_TIMEOUT))

        outcome = await _flow(settings, adapter, executor).run("how many orders?", schema_catalog, context)

        assert outcome.result is None
        assert outcome.attempts == 1
        assert len(adapter.calls["sql"]) == 1

    @pytest.mark.asyncio
    async def test_generation_failure_is_reported(self, settings, context, schema_catalog):
        adapter = ScriptedLLMAdapter(sql=LLMError("rate limited", LLMError.RATE_LIMITED))
        executor = _executor()

        outcome = await _flow(settings, adapter, executor).run("how many orders?", schema_catalog, context)

        assert outcome.result is None
        assert outcome.attempts == 0
        assert outcome.errors == ["rate limited"]
        executor.execute_sql_query.assert_not_awaited()
