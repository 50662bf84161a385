"""
SQL validation rules and security checks for generated PostgreSQL.
"""

import re

# =============================================================================
# Blocked Keywords (Security - DDL/DML Operations)
# =============================================================================

BLOCKED_KEYWORDS: frozenset[str] = frozenset(
    {
        # DDL
        "CREATE",
        "ALTER",
        "DROP",
        "TRUNCATE",
        "RENAME",
        # DML (write)
        "INSERT",
        "UPDATE",
        "DELETE",
        "MERGE",
        "UPSERT",
        "COPY",
        # DCL
        "GRANT",
        "REVOKE",
        # Transaction
        "BEGIN",
        "COMMIT",
        "ROLLBACK",
        "SAVEPOINT",
        # Administrative
        "EXECUTE",
        "CALL",
        "DO",
        "VACUUM",
        "ANALYZE",
        "REINDEX",
        "CLUSTER",
        "LOCK",
        "LISTEN",
        "NOTIFY",
        "SET",
        "RESET",
        "DISCARD",
        "PREPARE",
        "DEALLOCATE",
        "REFRESH",
        # Dangerous functions
        "PG_SLEEP",
        "PG_READ_FILE",
        "PG_READ_BINARY_FILE",
        "PG_LS_DIR",
        "PG_TERMINATE_BACKEND",
        "PG_CANCEL_BACKEND",
        "LO_IMPORT",
        "LO_EXPORT",
        "DBLINK",
        "SET_CONFIG",
    }
)

BLOCKED_PATTERNS: frozenset[str] = frozenset(
    {
        "--",
        "/*",
        "*/",
    }
)

BLOCKED_SCHEMAS: frozenset[str] = frozenset(
    {
        "pg_catalog",
        "information_schema",
        "pg_toast",
        "pg_temp",
    }
)

ALLOWED_STATEMENT_PREFIXES: frozenset[str] = frozenset(
    {
        "SELECT",
        "WITH",
    }
)

ALLOWED_STATEMENT_NAMES = ", ".join(sorted(ALLOWED_STATEMENT_PREFIXES))  # For error messages

REQUIRED_TENANT_BIND: str = ":tenant_id"

_STRING_LITERAL = re.compile(r"'(?:[^']|'')*'")
_QUOTED_IDENTIFIER = re.compile(r'"(?:[^"]|"")*"')
_LIMIT_CLAUSE = re.compile(r"\bLIMIT\s+(\d+|:\w+)", re.IGNORECASE)
# FROM inside EXTRACT(... FROM x), SUBSTRING(... FROM n) and TRIM(... FROM s) is not a table reference
_FUNCTION_FROM = re.compile(r"\b(EXTRACT|SUBSTRING|TRIM|OVERLAY|POSITION)\s*\([^()]*\bFROM\b[^()]*\)", re.IGNORECASE)
_DISTINCT_FROM = re.compile(r"\bDISTINCT\s+FROM\b", re.IGNORECASE)
_TABLE_KEYWORD = re.compile(r"\b(?:FROM|JOIN)\b", re.IGNORECASE)
# Ends a FROM/JOIN table list at nesting depth zero
_CLAUSE_BOUNDARY = re.compile(
    r"(?:WHERE|GROUP|ORDER|HAVING|LIMIT|OFFSET|FETCH|WINDOW|UNION|INTERSECT|EXCEPT|"
    r"JOIN|INNER|LEFT|RIGHT|FULL|CROSS|NATURAL|ON|USING|FOR|RETURNING)\b",
    re.IGNORECASE,
)
_FROM_ITEM_PREFIX = re.compile(r"^(?:ONLY|LATERAL)\s+", re.IGNORECASE)
_FROM_ITEM = re.compile(r"((?:\w+\.)?\w+)\b(?!\s*[(.])", re.IGNORECASE)
_CTE_NAME = re.compile(r"(?:\bWITH\s+(?:RECURSIVE\s+)?|,\s*)(\w+)\s+AS\s*(?:NOT\s+)?(?:MATERIALIZED\s+)?\(", re.IGNORECASE)


def strip_literals(sql: str) -> str:
    """Blank out string literals and quoted identifiers before keyword scans."""
    sql = _STRING_LITERAL.sub("''", sql)
    return _QUOTED_IDENTIFIER.sub('""', sql)


# =============================================================================
# Security Validation (Primary - Always Run)
# =============================================================================


def is_sql_safe(sql: str) -> tuple[bool, str | None]:
    """
    Security validation for SQL query.

    This is the PRIMARY validation that MUST pass before execution.

    Returns:
        Tuple of (is_safe, error_message)
    """
    if not sql or not sql.strip():
        return False, "SQL query is empty"

    scrubbed = strip_literals(sql.strip())
    sql_upper = scrubbed.upper()

    # 1. Check blocked patterns (exact match)
    for pattern in sorted(BLOCKED_PATTERNS):
        if pattern in scrubbed:
            return False, f"Comments are not allowed: {pattern}"

    # 2. Single statement only (a trailing semicolon is tolerated)
    if ";" in scrubbed.rstrip().rstrip(";"):
        return False, "Multiple statements are not allowed"

    # 3. Check starts with allowed statement
    if not any(re.match(rf"{prefix}\b", sql_upper) for prefix in ALLOWED_STATEMENT_PREFIXES):
        return False, f"Query must start with one of: {ALLOWED_STATEMENT_NAMES}"

    # 4. Check blocked keywords (word boundary)
    for keyword in sorted(BLOCKED_KEYWORDS):
        if re.search(rf"\b{re.escape(keyword)}\b", sql_upper):
            return False, f"Blocked keyword: {keyword}"

    # 5. Check system schemas
    sql_lower = scrubbed.lower()
    for schema in sorted(BLOCKED_SCHEMAS):
        if re.search(rf"\b{schema}\b", sql_lower):
            return False, f"System schema not allowed: {schema}"

    return True, None


# =============================================================================
# Schema Validation
# =============================================================================


def extract_cte_names(sql: str) -> set[str]:
    """Names introduced by WITH clauses."""
    return {match.group(1).lower() for match in _CTE_NAME.finditer(strip_literals(sql))}


def _split_table_list(sql: str, start: int) -> list[str]:
    """
    Split the table list that begins at ``start`` on top-level commas.

    The list ends at the next clause keyword, a closing parenthesis of the
    enclosing query, or the end of the statement.
    """
    items: list[str] = []
    depth = 0
    item_start = start
    i = start
    while i < len(sql):
        ch = sql[i]
        if ch == "(":
            depth += 1
        elif ch == ")":
            if depth == 0:
                break
            depth -= 1
        elif depth == 0:
            if ch == ";":
                break
            if ch == ",":
                items.append(sql[item_start:i])
                item_start = i + 1
            elif (ch.isalpha() and (i == 0 or not (sql[i - 1].isalnum() or sql[i - 1] == "_"))
                  and _CLAUSE_BOUNDARY.match(sql, i)):
                break
        i += 1
    items.append(sql[item_start:i])
    return items


def _table_of_item(item: str) -> str | None:
    """Table name of one FROM-list item, without its alias. Subqueries and function calls yield None."""
    item = _FROM_ITEM_PREFIX.sub("", item.strip())
    if not item or item.startswith("("):
        return None
    match = _FROM_ITEM.match(item)
    return match.group(1).lower() if match else None


def extract_table_names(sql: str) -> list[str]:
    """Extract every table named in FROM lists (comma joins included) and JOIN clauses."""
    scrubbed = _FUNCTION_FROM.sub("", strip_literals(sql))
    scrubbed = _DISTINCT_FROM.sub("DISTINCT", scrubbed)
    table_names: list[str] = []
    for keyword in _TABLE_KEYWORD.finditer(scrubbed):
        for item in _split_table_list(scrubbed, keyword.end()):
            table = _table_of_item(item)
            if table and table not in table_names:
                table_names.append(table)
    return table_names


def validate_table_references(sql: str, valid_tables: set[str] | frozenset[str]) -> list[str]:
    """
    Validate table references against a set of valid tables.

    CTE names are accepted; schema-qualified names are matched on the table part.

    Returns:
        List of error messages (empty if valid)
    """
    known = {t.lower() for t in valid_tables}
    ctes = extract_cte_names(sql)
    errors = []
    for table_name in extract_table_names(sql):
        bare = table_name.rsplit(".", 1)[-1]
        if bare in ctes or bare in known or table_name in known:
            continue
        errors.append(f"Unknown table: {table_name}")
    return errors


def has_tenant_bind(sql: str) -> bool:
    return re.search(rf"{re.escape(REQUIRED_TENANT_BIND)}\b", strip_literals(sql)) is not None


def has_limit(sql: str) -> bool:
    return _LIMIT_CLAUSE.search(strip_literals(sql)) is not None


# =============================================================================
# Main Validation Function
# =============================================================================


def validate_sql_query(
    sql: str,
    valid_tables: set[str] | frozenset[str] | None = None,
) -> tuple[bool, list[str]]:
    """
    Validate SQL query for security, tenant scoping and schema.

    Args:
        sql: SQL query string
        valid_tables: Optional set of valid table names for schema validation

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    errors = []

    # 1. Security validation (REQUIRED)
    is_safe, error = is_sql_safe(sql)
    if not is_safe:
        return False, [error] if error else ["Security validation failed"]

    # 2. Tenant scoping (REQUIRED)
    if not has_tenant_bind(sql):
        errors.append(f"Query must filter by tenant using the {REQUIRED_TENANT_BIND} parameter")

    # 3. Schema validation
    if valid_tables:
        errors.extend(validate_table_references(sql, valid_tables))

    return len(errors) == 0, errors
