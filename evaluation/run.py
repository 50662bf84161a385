"""Regression evaluation script - generates JSON results."""

import argparse
import asyncio
import json
import logging
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any

from evaluation.config import EvalConfig
from evaluation.loader import GoldenCase, filter_cases, load_cases
from semantic_pipeline.config.settings import get_settings
from semantic_pipeline.infrastructure.logging import setup_logging
from semantic_pipeline.orchestrator import PipelineOrchestrator, PipelineOutput
from semantic_pipeline.services.catalog import StaticRegistry
from semantic_pipeline.services.intent import IntentContext

logger = logging.getLogger(__name__)

PASSED = "passed"
FAILED = "failed"
ERRORED = "errored"


def compare_case(case: GoldenCase, output: PipelineOutput) -> list[str]:
    """Return mismatches between the expected and the produced turn."""
    mismatches: list[str] = []

    if case.expect_clarification != output.is_clarification:
        mismatches.append(f"clarification: expected {case.expect_clarification}, got {output.is_clarification}")
    if case.expect_clarification:
        return mismatches

    plan = output.plan or {}
    actual_metrics = set(plan.get("metrics") or [])
    actual_dimensions = set(plan.get("dimensions") or [])

    if case.expected_metrics and set(case.expected_metrics) != actual_metrics:
        mismatches.append(f"metrics: expected {sorted(case.expected_metrics)}, got {sorted(actual_metrics)}")
    if case.expected_dimensions and set(case.expected_dimensions) != actual_dimensions:
        mismatches.append(
            f"dimensions: expected {sorted(case.expected_dimensions)}, got {sorted(actual_dimensions)}"
        )
    if case.expected_mode is not None:
        # advisor means no data was produced
        actual_mode = output.mode or "advisor"
        if case.expected_mode != actual_mode:
            mismatches.append(f"mode: expected {case.expected_mode}, got {actual_mode}")

    return mismatches


async def evaluate_case(
    orchestrator: PipelineOrchestrator,
    case: GoldenCase,
    context: IntentContext,
    timeout: float | None = None,
) -> dict[str, Any]:
    """Run one case through the pipeline without narration."""
    logger.info(f"[{case.id}] {case.question[:60]}...")
    case_context = replace(context, lens_slug=case.lens_slug or context.lens_slug)

    record: dict[str, Any] = {
        "id": case.id,
        "question": case.question,
        "expected_metrics": case.expected_metrics,
        "expected_dimensions": case.expected_dimensions,
        "expected_mode": case.expected_mode,
        "expect_clarification": case.expect_clarification,
    }
    try:
        output = await orchestrator.process(case.question, case_context, skip_narrative=True, timeout=timeout)
    except Exception as e:
        logger.error(f"Error on case {case.id}: {e}")
        return {**record, "status": ERRORED, "mismatches": [], "error": str(e)}

    mismatches = compare_case(case, output)
    return {
        **record,
        "status": FAILED if mismatches else PASSED,
        "mismatches": mismatches,
        "predicted_plan": output.plan,
        "predicted_mode": output.mode,
        "is_clarification": output.is_clarification,
        "compiled_sql": output.compiled_sql,
        "row_count": output.data["row_count"] if output.data else None,
        "error": None,
    }


def summarize(results: list[dict[str, Any]]) -> dict[str, Any]:
    total = len(results)
    counts = {status: sum(1 for r in results if r["status"] == status) for status in (PASSED, FAILED, ERRORED)}
    return {
        "total": total,
        **counts,
        "pass_rate": round(counts[PASSED] / total, 4) if total else 0.0,
    }


async def run_regression(
    orchestrator: PipelineOrchestrator,
    cases: list[GoldenCase],
    context: IntentContext,
    *,
    delay_between_cases: float = 0.0,
    timeout_per_case: float | None = None,
) -> dict[str, Any]:
    """Run every case sequentially and return per-case results with a summary."""
    results: list[dict[str, Any]] = []
    for i, case in enumerate(cases):
        results.append(await evaluate_case(orchestrator, case, context, timeout=timeout_per_case))
        logger.info(f"[{i + 1}/{len(cases)}] {results[-1]['status']}")

        if delay_between_cases and i < len(cases) - 1:
            await asyncio.sleep(delay_between_cases)

    return {"summary": summarize(results), "results": results}


async def main() -> None:
    parser = argparse.ArgumentParser(description="Run semantic pipeline regression evaluation")
    parser.add_argument("--cases", type=str, help="Golden cases JSON path")
    parser.add_argument("--registry", type=str, help="Registry definitions JSON path")
    parser.add_argument("--tenant", type=str, help="Tenant id used for every case")
    parser.add_argument("--tags", nargs="*", help="Only run cases carrying one of these tags")
    parser.add_argument("--delay", type=float, default=0.0, help="Delay between cases")
    parser.add_argument("--output", type=str, help="Output JSON path")
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(settings.log_level)

    config = EvalConfig(delay_between_cases=args.delay)
    if args.cases:
        config.cases_path = Path(args.cases)
    if args.registry:
        config.registry_path = Path(args.registry)
    if args.tenant:
        config.tenant_id = args.tenant

    cases = filter_cases(load_cases(config.cases_path), args.tags)
    with open(config.registry_path, encoding="utf-8") as f:
        registry = StaticRegistry.from_dict(json.load(f))

    orchestrator = PipelineOrchestrator.from_settings(settings, registry)
    context = IntentContext(
        tenant_id=config.tenant_id,
        user_id="regression",
        user_role="owner",
        session_id=f"regression-{config.run_id}",
        current_date=config.current_date,
    )

    output = await run_regression(
        orchestrator,
        cases,
        context,
        delay_between_cases=config.delay_between_cases,
        timeout_per_case=config.timeout_per_case,
    )
    output["metadata"] = {
        "timestamp": datetime.now().isoformat(),
        "run_id": config.run_id,
        "dataset": config.cases_path.name,
    }

    output_path = Path(args.output) if args.output else config.output_path
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(output, f, indent=2, ensure_ascii=False, default=str)

    summary = output["summary"]
    logger.info(f"{summary['passed']}/{summary['total']} passed. Results saved to {output_path}")


if __name__ == "__main__":
    asyncio.run(main())
