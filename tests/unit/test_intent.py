"""Tests for intent service."""

from dataclasses import replace
from unittest.mock import AsyncMock

import pytest

from semantic_pipeline.infrastructure.llm.models import LLMError
from semantic_pipeline.services.intent import HistoryMessage, IntentExample, IntentResolver, KeywordExampleRetriever
from semantic_pipeline.services.intent.resolver import extract_query_plan, parse_intent_response, prune_user_history
from tests.fakes import INTENT_PROMPT_PREFIX, ScriptedLLMAdapter, intent_json

NET_SALES_PLAN = {
    "metrics": ["net_sales"],
    "dimensions": ["business_date"],
    "filters": [],
    "dateRange": {"start": "2025-06-09", "end": "2025-06-15"},
    "timeGranularity": "day",
    "sort": [],
    "limit": None,
    "lensSlug": None,
    "intent": "Net sales by day last week",
    "rationale": "Daily sales aggregates",
}


# ---------------------------------------------------------------------------
# IntentResolver.resolve
# ---------------------------------------------------------------------------


class TestIntentResolver:
    @pytest.mark.asyncio
    async def test_resolves_plan(self, settings, context, catalog):
        adapter = ScriptedLLMAdapter(intent=intent_json(NET_SALES_PLAN, confidence=0.92))
        resolver = IntentResolver(settings, adapter)

        result = await resolver.resolve("net sales by day last week", context, catalog=catalog)

        assert not result.is_clarification
        assert result.plan.metrics == ["net_sales"]
        assert result.plan.date_range.start == "2025-06-09"
        assert result.plan.time_granularity.value == "day"
        assert result.confidence == 0.92
        assert result.tokens_input == 100
        assert result.tokens_output == 40
        assert result.provider == "anthropic"

    @pytest.mark.asyncio
    async def test_system_prompt_lists_catalog_and_context(self, settings, context, catalog):
        adapter = ScriptedLLMAdapter(intent=intent_json(NET_SALES_PLAN))
        resolver = IntentResolver(settings, adapter)

        await resolver.resolve(
            "net sales",
            context,
            catalog=catalog,
            examples=[IntentExample(question="sales yesterday", plan={"metrics": ["net_sales"]})],
            lens_prompt_fragment="Focus on revenue.",
            schema_summary="- orders: Order transactions",
        )

        _, options = adapter.calls["intent"][0]
        prompt = options.system_prompt
        assert prompt.startswith(INTENT_PROMPT_PREFIX)
        assert "net_sales: Net Sales" in prompt
        assert "Current date: 2025-06-16" in prompt
        assert "Focus on revenue." in prompt
        assert "## Golden Examples" in prompt
        assert "- orders: Order transactions" in prompt
        assert options.model == settings.intent_model

    @pytest.mark.asyncio
    async def test_null_plan_is_clarification(self, settings, context, catalog):
        adapter = ScriptedLLMAdapter(intent=intent_json(None, confidence=0.4))
        result = await IntentResolver(settings, adapter).resolve("how are we doing?", context, catalog=catalog)

        assert result.is_clarification
        assert result.plan is None
        assert result.clarification_text

    @pytest.mark.asyncio
    async def test_clarification_with_options(self, settings, context, catalog):
        options = [f"Option {i}" for i in range(8)]
        adapter = ScriptedLLMAdapter(
            intent=intent_json(
                None,
                confidence=0.3,
                clarificationNeeded=True,
                clarificationMessage="Which location?",
                clarificationOptions=options,
            )
        )
        result = await IntentResolver(settings, adapter).resolve("sales at the store", context, catalog=catalog)

        assert result.is_clarification
        assert result.clarification_text == "Which location?"
        assert result.clarification_options == options[:5]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw, expected", [(1.7, 1.0), (-0.2, 0.0), (0.55, 0.55)])
    async def test_confidence_is_clamped(self, settings, context, catalog, raw, expected):
        adapter = ScriptedLLMAdapter(intent=intent_json(NET_SALES_PLAN, confidence=raw))
        result = await IntentResolver(settings, adapter).resolve("net sales", context, catalog=catalog)
        assert result.confidence == expected

    @pytest.mark.asyncio
    async def test_fenced_json_is_accepted(self, settings, context, catalog):
        adapter = ScriptedLLMAdapter(intent=f"```json\n{intent_json(NET_SALES_PLAN)}\n```")
        result = await IntentResolver(settings, adapter).resolve("net sales", context, catalog=catalog)
        assert result.plan.metrics == ["net_sales"]

    @pytest.mark.asyncio
    async def test_non_json_raises_parse_error(self, settings, context, catalog):
        adapter = ScriptedLLMAdapter(intent="Sure! Net sales were great.")
        with pytest.raises(LLMError) as exc:
            await IntentResolver(settings, adapter).resolve("net sales", context, catalog=catalog)
        assert exc.value.code == LLMError.PARSE_ERROR

    @pytest.mark.asyncio
    async def test_provider_error_propagates(self, settings, context, catalog):
        adapter = ScriptedLLMAdapter(intent=LLMError("overloaded", code=LLMError.OVERLOADED))
        with pytest.raises(LLMError) as exc:
            await IntentResolver(settings, adapter).resolve("net sales", context, catalog=catalog)
        assert exc.value.code == LLMError.OVERLOADED

    @pytest.mark.asyncio
    async def test_only_user_history_is_sent(self, settings, context, catalog):
        history = (
            HistoryMessage(role="user", content="sales yesterday?"),
            HistoryMessage(role="assistant", content="## Answer\nYou sold $1,000."),
        )
        adapter = ScriptedLLMAdapter(intent=intent_json(NET_SALES_PLAN))
        await IntentResolver(settings, adapter).resolve(
            "and the day before?", replace(context, history=history), catalog=catalog
        )

        messages, _ = adapter.calls["intent"][0]
        assert [m.role for m in messages] == ["user", "user"]
        assert messages[0].content == "sales yesterday?"
        assert messages[1].content.startswith("and the day before?")

    @pytest.mark.asyncio
    async def test_retrieved_examples_are_added_to_prompt(self, settings, context, catalog):
        retriever = KeywordExampleRetriever(
            [
                IntentExample(question="net sales by week last quarter", plan={"metrics": ["net_sales"]}),
                IntentExample(question="labor hours by employee", plan={"metrics": ["labor_hours"]}),
            ]
        )
        adapter = ScriptedLLMAdapter(intent=intent_json(NET_SALES_PLAN))
        await IntentResolver(settings, adapter, retriever=retriever).resolve(
            "net sales by day last week", context, catalog=catalog
        )

        _, options = adapter.calls["intent"][0]
        assert "## Similar Past Questions" in options.system_prompt
        assert 'Question: "net sales by week last quarter"' in options.system_prompt
        assert "labor hours by employee" not in options.system_prompt

    @pytest.mark.asyncio
    async def test_retrieval_failure_does_not_block_resolution(self, settings, context, catalog):
        retriever = AsyncMock()
        retriever.retrieve.side_effect = ConnectionError("vector store down")
        adapter = ScriptedLLMAdapter(intent=intent_json(NET_SALES_PLAN))

        result = await IntentResolver(settings, adapter, retriever=retriever).resolve(
            "net sales by day last week", context, catalog=catalog
        )

        assert result.plan.metrics == ["net_sales"]
        _, options = adapter.calls["intent"][0]
        assert "## Similar Past Questions" not in options.system_prompt

    @pytest.mark.asyncio
    async def test_retrieved_duplicates_of_golden_examples_are_dropped(self, settings, context, catalog):
        golden = IntentExample(question="Net sales last week", plan={"metrics": ["net_sales"]})
        retriever = AsyncMock()
        retriever.retrieve.return_value = [
            IntentExample(question="net  sales last week", plan={"metrics": ["net_sales"]}),
            IntentExample(question="net sales last month", plan={"metrics": ["net_sales"]}),
        ]
        resolver = IntentResolver(settings, AsyncMock(), retriever=retriever)

        retrieved = await resolver.retrieve_examples("net sales last week", context, [golden])

        assert [e.question for e in retrieved] == ["net sales last month"]
        retriever.retrieve.assert_awaited_once_with(
            "net sales last week", context.tenant_id, settings.intent_retrieval_max_examples
        )


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


class TestParsing:
    def test_missing_confidence_is_a_contract_violation(self):
        with pytest.raises(LLMError) as exc:
            parse_intent_response('{"plan": null}')
        assert exc.value.code == LLMError.PARSE_ERROR

    def test_nan_confidence_becomes_zero(self):
        assert parse_intent_response('{"plan": null, "confidence": NaN}').confidence == 0.0

    def test_malformed_plan_is_treated_as_missing(self):
        assert extract_query_plan({"metrics": "net_sales", "filters": 3}) is None

    def test_snake_case_plan_is_accepted(self):
        raw = {"metrics": ["net_sales"], "date_range": {"start": "2025-01-01", "end": "2025-01-31"}}
        plan = extract_query_plan(raw)
        assert plan.date_range.end == "2025-01-31"


class TestPruneUserHistory:
    def test_keeps_newest_user_turns_within_budget(self):
        history = [HistoryMessage(role="user", content=f"question {i}") for i in range(10)]
        kept = prune_user_history(history, max_turns=3, max_chars=1_000)
        assert [m.content for m in kept] == ["question 7", "question 8", "question 9"]

    def test_character_budget(self):
        history = [
            HistoryMessage(role="user", content="a" * 50),
            HistoryMessage(role="user", content="b" * 50),
        ]
        kept = prune_user_history(history, max_turns=6, max_chars=60)
        assert [m.content for m in kept] == ["b" * 50]

    def test_blank_and_assistant_turns_dropped(self):
        history = [
            HistoryMessage(role="user", content="   "),
            HistoryMessage(role="assistant", content="hello"),
        ]
        assert prune_user_history(history) == []
