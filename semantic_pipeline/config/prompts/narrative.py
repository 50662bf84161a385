"""
Narrative generation system prompts.
"""

from decimal import Decimal
from typing import TYPE_CHECKING, Any

from semantic_pipeline.config.constants import NARRATIVE_MAX_COLUMNS, NARRATIVE_MAX_ROWS, SectionType

if TYPE_CHECKING:
    from semantic_pipeline.services.catalog.models import MetricDef
    from semantic_pipeline.services.intent.models import IntentContext

_INDUSTRY_HINTS: tuple[tuple[str, str], ...] = (
    (
        "golf",
        "Industry: Golf. Translate capacity to tee sheet utilization, revenue to yield per round, "
        "throughput to rounds played.",
    ),
    (
        "core_items",
        "Industry: Retail/F&B. Translate capacity to shelf space or menu exposure, throughput to items sold, "
        "efficiency to sell-through rate.",
    ),
    (
        "core_sales",
        "Industry: Retail/Hospitality. Translate capacity to covers or transactions, throughput to order count, "
        "efficiency to average ticket.",
    ),
)

_DEFAULT_INDUSTRY_HINT = (
    "Industry: General SMB. Use generic operational language unless you can infer the industry from the question."
)

_SECTION_TYPES = ", ".join(s.value for s in SectionType)

_RESPONSE_FORMAT = f"""## Response Format
Respond with a single JSON object, no code fences:
```
{{
  "text": "full answer in markdown",
  "sections": [{{ "type": "answer", "content": "..." }}, ...]
}}
```
Allowed section types: {_SECTION_TYPES}.
Always include exactly one `answer` section first: a 1-3 sentence direct answer that leads with the number or insight.
Add `quick_wins`, `what_to_track` and `conversation_driver` when useful. Use `options` + `recommendation` only
for decision questions. Add `assumptions` whenever you rely on assumptions instead of data.
If you cannot produce JSON, answer in markdown with `## Answer`, `### Quick Wins`, `### What to Track` and
`### Next Steps` headings."""

_DATA_RULES = """## Data Interpretation Rules
- Monetary values in query results are already in DOLLARS unless a column says cents. Display as $X,XXX.XX.
- Snapshot metrics (inventory on hand) are "current as of last sync", never a date range.
- Customer metrics are lifetime running totals, not filtered by date.
- "0 rows returned" for a date range usually means no activity in that period, not a data error. Say so helpfully.
- Ratios such as average order value are not summable."""

_RULES = """## Rules
1. Never refuse. Every question gets a useful answer.
2. Lead with the answer. Do not start with "Based on the data...".
3. Be specific with numbers: $X,XXX.XX for currency, X.X% for percentages, human-readable dates.
4. Connect data to decisions: staffing, pricing, scheduling, inventory, marketing.
5. Stay under 400 words. Skip sections that do not apply.
6. Interpret the data instead of repeating it.
7. Priority: REAL DATA, then ASSUMPTIONS, then BEST PRACTICE. Label assumptions clearly."""


def _industry_hint(lens_slug: str | None) -> str:
    for prefix, hint in _INDUSTRY_HINTS:
        if lens_slug and lens_slug.startswith(prefix):
            return hint
    return _DEFAULT_INDUSTRY_HINT


def _build_metric_section(metric_defs: list["MetricDef"]) -> str:
    if not metric_defs:
        return ""
    lines = []
    for m in metric_defs:
        direction = "Higher is better." if m.higher_is_better else "Lower is better."
        description = m.description or "No description"
        lines.append(
            f"- **{m.display_name}** (`{m.slug}`): {description}. {direction} "
            f"Format: {m.format_pattern or m.data_type}"
        )
    return "## Metrics in This Query\n" + "\n".join(lines)


def build_narrative_system_prompt(
    *,
    lens_slug: str | None = None,
    lens_prompt_fragment: str | None = None,
    metric_defs: list["MetricDef"] | None = None,
) -> str:
    """Build the system prompt for narrative generation."""
    lens_section = f"## Active Lens\n{lens_prompt_fragment}" if lens_prompt_fragment else ""
    sections = [
        "You are a practical, data-driven operator and advisor helping small and mid-sized businesses "
        "increase revenue, improve efficiency and simplify operations. Write in a friendly, practical "
        'tone using first person plural ("we", "our").',
        _industry_hint(lens_slug),
        _RESPONSE_FORMAT,
        _DATA_RULES,
        _RULES,
        lens_section,
        _build_metric_section(metric_defs or []),
    ]
    return "\n\n".join(s for s in sections if s).strip()


def format_prompt_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, int):
        return f"{value:,}"
    if isinstance(value, (float, Decimal)):
        return f"{value:,.2f}"
    return str(value)


def build_data_summary(
    rows: list[dict[str, Any]] | None,
    row_count: int,
    truncated: bool,
    intent_summary: str,
) -> str:
    """Pipe table of at most 20 rows and 8 columns, or the no-data variant."""
    if not rows:
        return (
            "## Query Results\n"
            f'No data returned for: "{intent_summary}"\n\n'
            "No query data available. Use industry best practices, benchmarks and operational heuristics. "
            "Label assumptions clearly."
        )

    sample = rows[:NARRATIVE_MAX_ROWS]
    columns = list(sample[0].keys())[:NARRATIVE_MAX_COLUMNS]
    lines = [
        " | ".join(columns),
        " | ".join("---" for _ in columns),
    ]
    for row in sample:
        lines.append(" | ".join(format_prompt_value(row.get(col)) for col in columns))

    note = ""
    if truncated:
        note = f"\n\n_Results truncated: showing {NARRATIVE_MAX_ROWS} of {row_count}+ rows._"
    elif row_count > NARRATIVE_MAX_ROWS:
        note = f"\n\n_Showing {NARRATIVE_MAX_ROWS} of {row_count} rows._"

    total = f"{row_count}{'+' if truncated else ''}"
    return f'## Query Results\nQuestion: "{intent_summary}"\nTotal rows: {total}\n\n' + "\n".join(lines) + note


def build_narrative_user_input(
    question: str,
    context: "IntentContext",
    data_summary: str,
    rationale: str | None = None,
) -> str:
    """User turn for the narrative call: question, context, plan rationale and data."""
    context_lines = [f"- Date: {context.current_date}", f"- Role: {context.user_role}"]
    if context.location_id:
        context_lines.append(f"- Location: {context.location_id}")

    parts = [f"## Original Question\n{question}", "## Context\n" + "\n".join(context_lines)]
    if rationale:
        parts.append(f"## Plan Rationale\n{rationale}")
    parts.append(data_summary)
    return "\n\n".join(parts)
