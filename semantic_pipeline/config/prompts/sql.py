"""
SQL-mode generation prompts.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from semantic_pipeline.services.intent.models import IntentContext

_OUTPUT_FORMAT = """## Output Format
Return JSON only, no markdown fences:
```json
{
  "sql": "SELECT ... FROM table WHERE tenant_id = :tenant_id ... LIMIT 100",
  "explanation": "Brief explanation of what this query returns",
  "confidence": 0.0
}
```
If the question cannot be answered from these tables, return `"sql": ""` and explain why in `explanation`."""

_SQL_RULES = """## SQL Rules
1. **SELECT only.** A single SELECT (CTEs with WITH are fine). Never INSERT, UPDATE, DELETE, DROP, ALTER, SET or any other statement.
2. **PostgreSQL syntax.** Use `LIMIT N`, `DATE_TRUNC`, `ILIKE`, `COALESCE`.
3. **Tenant isolation is MANDATORY.** Every table you read must be filtered with `tenant_id = :tenant_id`. Write the `:tenant_id` bind literally; never inline a tenant value.
4. **Location scope.** When a location is given in the context, also filter with `location_id = :location_id` on tables that carry a location.
5. **Only use tables and columns listed in the schema.** Never guess a table name.
6. **No comments** (`--` or `/* */`) and no trailing semicolon.
7. **Always include a LIMIT** (100 unless the question needs more).
8. **Respect units.** Columns documented as CENTS must be divided by 100.0 when reporting dollars.
9. **Date filtering.** Prefer `business_date` over `created_at` when both exist. Resolve relative dates against the current date.
10. **Active records.** Exclude voided or reversed rows when a status column documents them.
11. **Readable aliases.** Alias every computed column in snake_case."""


def build_sql_generation_system_prompt(schema_section: str, context: "IntentContext") -> str:
    """Build the system prompt for SQL-mode generation.

    ``schema_section`` is the already-guarded full schema text.
    """
    scope = f"- Location: {context.location_id}" if context.location_id else "- Scope: all locations"
    sections = [
        "You are an expert PostgreSQL analyst for a business analytics assistant. The curated metric "
        "catalog could not answer the question, so generate ONE read-only query over the raw tenant "
        "tables below. Do not execute it.",
        _SQL_RULES,
        "## Context\n"
        f"- Current date: {context.current_date}\n"
        f"- User role: {context.user_role}\n"
        f"{scope}",
        f"## Database Schema\n{schema_section}" if schema_section else "",
        _OUTPUT_FORMAT,
    ]
    return "\n\n".join(s for s in sections if s).strip()


def build_sql_generation_user_input(question: str) -> str:
    return f"{question}\n\nRespond ONLY with the JSON object."


def build_sql_retry_user_input(
    original_question: str,
    previous_sql: str,
    errors: list[str],
) -> str:
    """
    Build user input for SQL generation retry after a rejected or failed query.

    Args:
        original_question: The user's original question
        previous_sql: The SQL that failed
        errors: Validation or execution errors for that SQL
    """
    issues_text = "\n".join(f"- {issue}" for issue in errors) or "- Unknown error"

    return (
        "The previous SQL query FAILED. You MUST fix it.\n\n"
        f"<original_question>\n{original_question}\n</original_question>\n\n"
        f"<previous_sql>\n{previous_sql}\n</previous_sql>\n\n"
        f"<errors>\n{issues_text}\n</errors>\n\n"
        "IMPORTANT: Keep the `tenant_id = :tenant_id` filter, use only tables from the schema, "
        "and return a single SELECT with a LIMIT. Generate a new, corrected SQL query and respond "
        "ONLY with the JSON object."
    )
