"""
Intent resolution system prompts.
"""

import json
from typing import TYPE_CHECKING

from semantic_pipeline.config.constants import MAX_INTENT_EXAMPLES

if TYPE_CHECKING:
    from semantic_pipeline.services.catalog.models import RegistryCatalog
    from semantic_pipeline.services.intent.models import IntentContext, IntentExample

INTENT_USER_SUFFIX = "\n\nRespond ONLY with the JSON object. No prose."

_OUTPUT_CONTRACT = """## Output Contract
Respond with a single JSON object, no markdown fences and no prose around it:
```
{
  "plan": {
    "metrics": string[],            // slugs from Available Metrics
    "dimensions": string[],         // slugs from Available Dimensions
    "filters": [
      { "dimensionSlug": string,
        "operator": "eq"|"neq"|"gt"|"gte"|"lt"|"lte"|"in"|"not_in"|"between"|"like"|"is_null"|"is_not_null",
        "value"?: string|number, "values"?: (string|number)[],
        "rangeStart"?: string, "rangeEnd"?: string }
    ],
    "dateRange": { "start": "YYYY-MM-DD", "end": "YYYY-MM-DD" } | null,
    "timeGranularity": "day"|"week"|"month"|"quarter"|"year" | null,
    "sort": [{ "metricSlug": string, "direction": "asc"|"desc" }] | null,
    "limit": number | null,
    "lensSlug": string | null,
    "intent": string,               // one sentence describing what the user wants
    "rationale": string             // brief explanation of the choices made
  } | null,
  "confidence": number,             // 0.0-1.0 certainty that the plan is correct
  "clarificationNeeded": boolean,
  "clarificationMessage": string | null,
  "clarificationOptions": string[] | null  // 3-5 complete, ready-to-send follow-up questions
}
```"""

_RULES = """## Rules
1. Only use metric/dimension slugs from the lists below. Never invent slugs.
2. If the question is answerable with reasonable assumptions, make the best plan and set confidence < 0.8.
3. Set clarificationNeeded = true (and plan = null) only when the question cannot be mapped to the catalog without guessing, e.g. it depends on a location or entity that is not specified and no location scope is set below.
4. Resolve relative dates ("last month", "this week", "YTD") against the current date. Default to the last 7 days when no range is given for a time-series metric. Snapshot and running-total tables take no date range.
5. Include a date dimension whenever a date range is specified.
6. Filters must reference dimension slugs included in dimensions[].
7. Do not mix metrics from different table groups in one plan."""


def _build_catalog_section(catalog: "RegistryCatalog") -> str:
    metric_lines = []
    for m in catalog.metrics:
        meta = [part for part in (m.unit, f"from {m.sql_table}", m.data_type) if part]
        description = f" - {m.description}" if m.description else ""
        metric_lines.append(f"  - {m.slug}: {m.display_name}{description} [{', '.join(meta)}]")

    dimension_lines = []
    for d in catalog.dimensions:
        meta = [f"from {d.sql_table}"]
        if d.is_time_dimension:
            meta.append("time")
        description = f" - {d.description}" if d.description else ""
        dimension_lines.append(f"  - {d.slug}: {d.display_name}{description} [{', '.join(meta)}]")

    return (
        "## Available Metrics\n"
        + ("\n".join(metric_lines) or "  (none)")
        + "\n\n## Available Dimensions\n"
        + ("\n".join(dimension_lines) or "  (none)")
    )


def _build_compatibility_section(catalog: "RegistryCatalog") -> str:
    groups: dict[str, dict[str, list[str]]] = {}
    for m in catalog.metrics:
        groups.setdefault(m.sql_table, {"metrics": [], "dims": []})["metrics"].append(m.slug)
    for d in catalog.dimensions:
        if d.sql_table in groups and d.slug not in groups[d.sql_table]["dims"]:
            groups[d.sql_table]["dims"].append(d.slug)

    if not groups:
        return ""

    lines = ["## Metric-Dimension Compatibility"]
    for table, group in groups.items():
        no_date = not any(
            d.is_time_dimension and d.sql_table == table for d in catalog.dimensions
        )
        suffix = " (NO date dimension)" if no_date else ""
        lines.append(
            f"- {table}{suffix}: dims=[{', '.join(group['dims'])}], metrics=[{', '.join(group['metrics'])}]"
        )
    return "\n".join(lines)


def build_intent_examples_section(examples: list["IntentExample"]) -> str:
    """Golden examples rendered for the prompt (at most six)."""
    if not examples:
        return ""
    blocks = []
    for example in examples[:MAX_INTENT_EXAMPLES]:
        plan = json.dumps(example.plan, indent=2, ensure_ascii=False)
        blocks.append(f'### Example\nQuestion: "{example.question}"\nPlan:\n```json\n{plan}\n```')
    return "## Golden Examples\nStudy these to understand the expected plan structure:\n\n" + "\n\n".join(blocks)


def build_retrieved_examples_section(examples: list["IntentExample"]) -> str:
    """Past questions similar to the current one, with the plans that answered them."""
    if not examples:
        return ""
    blocks = []
    for example in examples:
        plan = json.dumps(example.plan, ensure_ascii=False)
        blocks.append(f'- Question: "{example.question}"\n  Plan: {plan}')
    return (
        "## Similar Past Questions\n"
        "Plans that answered similar questions before. Reuse their structure when it fits:\n"
        + "\n".join(blocks)
    )


def build_schema_summary_section(schema_summary: str | None) -> str:
    if not schema_summary:
        return ""
    return (
        "## Other Database Tables\n"
        "The tenant database also contains these tables. Prefer catalog metrics; "
        "questions outside the catalog are answered from these tables automatically.\n"
        f"{schema_summary}"
    )


def _build_context_section(context: "IntentContext") -> str:
    scope = f"- Location: {context.location_id}" if context.location_id else "- Scope: all locations"
    return (
        "## Context\n"
        f"- Current date: {context.current_date}\n"
        f"- Tenant: {context.tenant_id}\n"
        f"- User role: {context.user_role}\n"
        f"{scope}"
    )


def build_intent_system_prompt(
    catalog: "RegistryCatalog",
    context: "IntentContext",
    *,
    lens_prompt_fragment: str | None = None,
    schema_section: str = "",
    examples_section: str = "",
    retrieval_section: str = "",
) -> str:
    """Build the system prompt for intent resolution.

    ``schema_section``, ``examples_section`` and ``retrieval_section`` are
    passed in already rendered so the caller can run them through the
    prompt-size guard first.
    """
    lens_section = f"## Active Lens Context\n{lens_prompt_fragment}" if lens_prompt_fragment else ""

    sections = [
        "You are the intent-resolution engine for a business analytics assistant used by "
        "hospitality and retail operators. Translate the user's question into a structured "
        "query plan over the curated metric catalog, or ask for clarification.",
        _OUTPUT_CONTRACT,
        _RULES,
        _build_context_section(context),
        lens_section,
        _build_catalog_section(catalog),
        _build_compatibility_section(catalog),
        schema_section,
        examples_section,
        retrieval_section,
    ]
    return "\n\n".join(s for s in sections if s).strip()
