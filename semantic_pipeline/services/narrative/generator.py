"""Narrative generator service."""

import logging
import math
import re
import time
from dataclasses import replace
from decimal import Decimal, InvalidOperation
from typing import Any

from semantic_pipeline.config.constants import FALLBACK_TABLE_ROWS, SectionType
from semantic_pipeline.config.prompts import build_narrative_system_prompt, build_narrative_user_input
from semantic_pipeline.config.prompts.narrative import build_data_summary
from semantic_pipeline.config.settings import Settings
from semantic_pipeline.infrastructure.llm.models import CompletionOptions, LLMAdapter, LLMMessage
from semantic_pipeline.services.catalog.models import MetricDef
from semantic_pipeline.services.intent.models import IntentContext, ResolvedIntent
from semantic_pipeline.services.narrative.models import NarrativeResult, NarrativeSection
from semantic_pipeline.services.narrative.parser import parse_narrative_response
from semantic_pipeline.services.query.models import QueryResult

logger = logging.getLogger(__name__)

_NUMERIC_STRING = re.compile(r"^-?\d+(\.\d+)?$")

_EMPTY_ANSWER = (
    "We don't have recorded data matching that query yet. This usually means either no transactions "
    "have been captured for the requested period, or the reporting system is still processing recent activity."
)
_EMPTY_QUICK_WINS = (
    'Try a broader question like "how many orders do I have?" or "show me my sales summary" '
    "to verify data exists."
)
_EMPTY_DRIVER = (
    "Once transactions are flowing, I can help with trends, comparisons, top sellers, and much more. "
    "Want to try a different question?"
)


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def format_column_name(column: str) -> str:
    """snake_case -> Title Case."""
    return " ".join(part[:1].upper() + part[1:] for part in column.replace("_", " ").split())


def format_cell_value(value: Any) -> str:
    """Format a value for a markdown table cell."""
    if value is None:
        return "-"
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, str) and _NUMERIC_STRING.match(value.strip()):
        try:
            value = Decimal(value.strip())
        except InvalidOperation:
            return value
    if isinstance(value, int):
        return f"{value:,}"
    if isinstance(value, (float, Decimal)):
        if not math.isfinite(value):
            return str(value)
        if value == int(value):
            return f"{int(value):,}"
        return f"{value:,.2f}"
    return str(value)


def build_empty_result_narrative(question: str, context: IntentContext | None = None) -> NarrativeResult:
    """Deterministic advisor answer for empty results. No LLM call, zero tokens."""
    text = "\n".join(
        [
            "## Answer",
            _EMPTY_ANSWER,
            "",
            "### Quick Wins",
            "- **Check your date range**: if you just started, try an all-time question instead of a specific week",
            '- **Try a broader question**: "show me my sales summary" or "what\'s my revenue?"',
            '- **Verify data exists**: ask "how many orders are in the system?"',
            "",
            "### Next Steps",
            _EMPTY_DRIVER,
            "",
            "---",
            f'*Query: "{question}". No data returned for this request.*',
        ]
    )
    return NarrativeResult(
        text=text,
        sections=[
            NarrativeSection(SectionType.ANSWER, _EMPTY_ANSWER),
            NarrativeSection(SectionType.QUICK_WINS, _EMPTY_QUICK_WINS),
            NarrativeSection(SectionType.CONVERSATION_DRIVER, _EMPTY_DRIVER),
        ],
    )


def build_data_fallback_narrative(question: str, result: QueryResult) -> NarrativeResult:
    """Deterministic markdown table used when narration fails but rows exist."""
    if result.row_count == 0 or not result.rows:
        return build_empty_result_narrative(question)

    row_count = result.row_count
    sample = result.rows[:FALLBACK_TABLE_ROWS]
    keys = list(sample[0].keys())

    lines = [
        "## Answer",
        "",
        f"Your query returned **{_plural(row_count, 'result')}**. Here's a summary of the data:",
        "",
        "| " + " | ".join(format_column_name(k) for k in keys) + " |",
        "| " + " | ".join("---" for _ in keys) + " |",
    ]
    for row in sample:
        lines.append("| " + " | ".join(format_cell_value(row.get(k)) for k in keys) + " |")
    if row_count > FALLBACK_TABLE_ROWS:
        lines.extend(["", f"*Showing {FALLBACK_TABLE_ROWS} of {row_count} rows.*"])
    lines.extend(["", "---", f'*Query: "{question}". {_plural(row_count, "row")} returned.*'])

    return NarrativeResult(
        text="\n".join(lines),
        sections=[
            NarrativeSection(
                SectionType.ANSWER, f"Your query returned {_plural(row_count, 'result')}. See the data table for details."
            ),
            NarrativeSection(SectionType.DATA_SOURCES, f"{_plural(row_count, 'row')} returned."),
        ],
    )


class NarrativeGenerator:
    """Turns a query result (or its absence) into a sectioned answer."""

    def __init__(self, settings: Settings, adapter: LLMAdapter):
        self.settings = settings
        self.adapter = adapter

    def build_prompts(
        self,
        result: QueryResult | None,
        intent: ResolvedIntent | None,
        question: str,
        context: IntentContext,
        *,
        lens_slug: str | None = None,
        lens_prompt_fragment: str | None = None,
        metric_defs: list[MetricDef] | None = None,
    ) -> tuple[str, str]:
        """Return ``(system_prompt, user_input)``."""
        plan = intent.plan if intent else None
        intent_summary = (plan.intent if plan and plan.intent else None) or question
        data_summary = build_data_summary(
            result.rows if result else None,
            result.row_count if result else 0,
            result.truncated if result else False,
            intent_summary,
        )
        system_prompt = build_narrative_system_prompt(
            lens_slug=lens_slug,
            lens_prompt_fragment=lens_prompt_fragment,
            metric_defs=metric_defs,
        )
        user_input = build_narrative_user_input(
            question, context, data_summary, rationale=plan.rationale if plan else None
        )
        return system_prompt, user_input

    async def generate(
        self,
        result: QueryResult | None,
        intent: ResolvedIntent | None,
        question: str,
        context: IntentContext,
        *,
        lens_slug: str | None = None,
        lens_prompt_fragment: str | None = None,
        metric_defs: list[MetricDef] | None = None,
        timeout: float | None = None,
        model: str | None = None,
    ) -> NarrativeResult:
        """
        Generate the narrative for one turn.

        An empty or missing result still gets narrated (advisor mode) through
        the no-data prompt variant. ``timeout`` and ``model`` override the
        configured narrative call, e.g. when little time is left in the turn.

        Raises:
            LLMError: On provider failure
        """
        system_prompt, user_input = self.build_prompts(
            result,
            intent,
            question,
            context,
            lens_slug=lens_slug,
            lens_prompt_fragment=lens_prompt_fragment,
            metric_defs=metric_defs,
        )
        options = CompletionOptions(
            system_prompt=system_prompt,
            temperature=self.settings.narrative_temperature,
            max_tokens=self.settings.narrative_max_tokens,
            model=model or self.settings.narrative_model,
            timeout=timeout or self.settings.llm_timeout,
        )

        start = time.time()
        response = await self.adapter.complete([LLMMessage(role="user", content=user_input)], options)
        latency_ms = int((time.time() - start) * 1000)

        parsed = parse_narrative_response(response.content)
        logger.info("Narrative generated in %dms with %d sections", latency_ms, len(parsed.sections))
        return replace(
            parsed,
            tokens_input=response.tokens_input,
            tokens_output=response.tokens_output,
            latency_ms=latency_ms,
        )
