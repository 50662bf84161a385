"""Regression harness over golden cases."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from evaluation.config import EvalConfig
from evaluation.loader import GoldenCase, filter_cases, load_cases
from evaluation.run import compare_case, run_regression
from semantic_pipeline.infrastructure.llm.models import LLMError
from semantic_pipeline.orchestrator import PipelineOrchestrator, PipelineOutput
from semantic_pipeline.services.catalog import StaticRegistry
from semantic_pipeline.services.query import QueryExecutor, QueryResult
from tests.fakes import ScriptedLLMAdapter, intent_json


def test_shipped_cases_and_registry_load():
    config = EvalConfig()
    cases = load_cases(config.cases_path)
    with open(config.registry_path, encoding="utf-8") as f:
        registry = StaticRegistry.from_dict(json.load(f))

    assert {c.id for c in cases} >= {"net-sales-by-day", "ambiguous-performance"}
    assert [c.id for c in filter_cases(cases, ["smoke"])] == ["net-sales-by-day", "ambiguous-performance"]
    assert registry is not None


def test_load_cases_accepts_plain_list(tmp_path):
    path = tmp_path / "cases.json"
    path.write_text(json.dumps([{"question": "net sales?"}, {"question": "  "}]), encoding="utf-8")

    cases = load_cases(path)

    assert [(c.id, c.question) for c in cases] == [("0", "net sales?")]


def test_load_cases_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_cases(tmp_path / "missing.json")


class TestCompareCase:
    def test_metric_mismatch(self):
        case = GoldenCase(id="1", question="q", expected_metrics=["net_sales"])
        output = PipelineOutput(is_clarification=False, plan={"metrics": ["order_count"]}, mode="metrics")
        assert compare_case(case, output) == ["metrics: expected ['net_sales'], got ['order_count']"]

    def test_missing_mode_is_advisor(self):
        case = GoldenCase(id="1", question="q", expected_mode="advisor")
        assert compare_case(case, PipelineOutput(is_clarification=False)) == []

    def test_clarification_expected(self):
        case = GoldenCase(id="1", question="q", expect_clarification=True)
        output = PipelineOutput(is_clarification=False, plan={"metrics": ["net_sales"]})
        assert compare_case(case, output) == ["clarification: expected True, got False"]


@pytest.mark.asyncio
async def test_run_regression_reports_each_status(settings, registry, context):
    adapter = ScriptedLLMAdapter(
        intent=[
            intent_json({"metrics": ["net_sales"], "dimensions": ["business_date"]}),
            intent_json(None, confidence=0.2, clarificationNeeded=True, clarificationMessage="Which store?"),
            intent_json({"metrics": ["order_count"]}),
            LLMError("provider down"),
        ]
    )
    executor = MagicMock(spec=QueryExecutor)
    executor.execute_compiled_query = AsyncMock(
        return_value=QueryResult(rows=[{"net_sales": 10.0}], row_count=1, execution_time_ms=1)
    )
    orchestrator = PipelineOrchestrator(settings, adapter, registry, executor)
    cases = [
        GoldenCase(id="a", question="net sales by day", expected_metrics=["net_sales"], expected_mode="metrics"),
        GoldenCase(id="b", question="how are we doing?", expect_clarification=True),
        GoldenCase(id="c", question="net sales", expected_metrics=["net_sales"]),
        GoldenCase(id="d", question="orders?", expected_metrics=["order_count"]),
    ]

    report = await run_regression(orchestrator, cases, context)

    assert [r["status"] for r in report["results"]] == ["passed", "passed", "failed", "errored"]
    assert report["summary"] == {"total": 4, "passed": 2, "failed": 1, "errored": 1, "pass_rate": 0.5}
    assert report["results"][0]["row_count"] == 1
    assert report["results"][3]["error"] == "provider down"
    assert adapter.calls["narrative"] == []
