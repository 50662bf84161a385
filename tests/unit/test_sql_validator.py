"""Tests for SQL validation service."""

from semantic_pipeline.config.validation import (
    extract_cte_names,
    extract_table_names,
    has_limit,
    has_tenant_bind,
    is_sql_safe,
    validate_sql_query,
)
from semantic_pipeline.services.sql.validation import SQLValidationService

TABLES = frozenset({"orders", "rm_daily_sales", "locations"})


def test_sql_validator_safe_query():
    """Test SQL validation service with safe query."""
    validator = SQLValidationService()
    result = validator.validate("SELECT COUNT(*) FROM orders WHERE tenant_id = :tenant_id", TABLES)
    assert result.valid
    assert result.errors == []


def test_sql_validator_dangerous_query():
    """Test SQL validation service with dangerous query."""
    validator = SQLValidationService()
    result = validator.validate("DROP TABLE orders")
    assert not result.valid
    assert len(result.errors) > 0


def test_sql_validator_no_select():
    """Test SQL validation service with query without SELECT."""
    validator = SQLValidationService()
    result = validator.validate("UPDATE orders SET status='paid' WHERE tenant_id = :tenant_id")
    assert not result.valid
    assert "Query must start with one of" in str(result.errors)


def test_blocked_keyword_inside_select():
    is_safe, error = is_sql_safe("SELECT * FROM orders; DELETE FROM orders")
    assert not is_safe
    assert error == "Multiple statements are not allowed"


def test_blocked_keyword_in_cte():
    is_safe, error = is_sql_safe("WITH x AS (DELETE FROM orders RETURNING *) SELECT * FROM x")
    assert not is_safe
    assert error == "Blocked keyword: DELETE"


def test_insert_is_blocked():
    is_safe, error = is_sql_safe("WITH x AS (INSERT INTO orders VALUES (1) RETURNING *) SELECT * FROM x")
    assert not is_safe
    assert error == "Blocked keyword: INSERT"


def test_comments_rejected():
    is_safe, error = is_sql_safe("SELECT 1 -- sneaky")
    assert not is_safe
    assert error.startswith("Comments are not allowed")


def test_keywords_inside_string_literals_are_ignored():
    sql = "SELECT * FROM orders WHERE status = 'DELETE; DROP' AND tenant_id = :tenant_id"
    is_valid, errors = validate_sql_query(sql, TABLES)
    assert is_valid, errors


def test_system_schema_rejected():
    is_safe, error = is_sql_safe("SELECT * FROM pg_catalog.pg_tables")
    assert not is_safe
    assert error == "System schema not allowed: pg_catalog"


def test_pg_sleep_rejected():
    is_safe, error = is_sql_safe("SELECT pg_sleep(10)")
    assert not is_safe
    assert error == "Blocked keyword: PG_SLEEP"


def test_trailing_semicolon_tolerated():
    is_safe, _ = is_sql_safe("SELECT 1;")
    assert is_safe


def test_missing_tenant_bind():
    is_valid, errors = validate_sql_query("SELECT * FROM orders LIMIT 5", TABLES)
    assert not is_valid
    assert errors == ["Query must filter by tenant using the :tenant_id parameter"]


def test_unknown_table():
    is_valid, errors = validate_sql_query("SELECT * FROM payroll WHERE tenant_id = :tenant_id", TABLES)
    assert not is_valid
    assert "Unknown table: payroll" in errors


def test_cte_names_are_allowed():
    sql = (
        "WITH daily AS (SELECT business_date, SUM(net_sales) AS s FROM rm_daily_sales "
        "WHERE tenant_id = :tenant_id GROUP BY business_date) SELECT * FROM daily"
    )
    assert extract_cte_names(sql) == {"daily"}
    is_valid, errors = validate_sql_query(sql, TABLES)
    assert is_valid, errors


def test_extract_from_function_is_not_a_table():
    sql = "SELECT EXTRACT(DOW FROM business_date) AS dow FROM rm_daily_sales WHERE tenant_id = :tenant_id"
    assert extract_table_names(sql) == ["rm_daily_sales"]


def test_extract_table_names_with_join():
    sql = (
        "SELECT l.name FROM rm_daily_sales s JOIN locations l ON l.id = s.location_id "
        "WHERE s.tenant_id = :tenant_id"
    )
    assert extract_table_names(sql) == ["rm_daily_sales", "locations"]


def test_schema_qualified_table_matches_bare_name():
    is_valid, errors = validate_sql_query("SELECT * FROM public.orders WHERE tenant_id = :tenant_id", TABLES)
    assert is_valid, errors


def test_has_tenant_bind_and_limit():
    assert has_tenant_bind("SELECT 1 WHERE tenant_id = :tenant_id")
    assert not has_tenant_bind("SELECT 1 WHERE tenant_id = ':tenant_id'")
    assert has_limit("SELECT 1 LIMIT 10")
    assert has_limit("SELECT 1 LIMIT :p3")
    assert not has_limit("SELECT 'LIMIT 10'")


def test_sanitize_appends_limit_and_strips_semicolon():
    sanitized = SQLValidationService.sanitize("SELECT * FROM orders WHERE tenant_id = :tenant_id;", 500)
    assert sanitized.endswith("\nLIMIT 500")
    assert ";" not in sanitized


def test_sanitize_keeps_existing_limit():
    sql = "SELECT * FROM orders WHERE tenant_id = :tenant_id LIMIT 10"
    assert SQLValidationService.sanitize(sql, 500) == sql


def test_validate_returns_sanitized_sql():
    result = SQLValidationService.validate("SELECT * FROM orders WHERE tenant_id = :tenant_id", TABLES, max_rows=50)
    assert result.valid
    assert result.sanitized_sql.endswith("LIMIT 50")


def test_empty_sql():
    is_valid, errors = validate_sql_query("   ")
    assert not is_valid
    assert errors == ["SQL query is empty"]


def test_comma_join_with_aliases_checks_every_table():
    result = SQLValidationService.validate(
        "SELECT o.id, p.email FROM orders o, platform_admins p WHERE o.tenant_id = :tenant_id",
        frozenset({"orders"}),
    )
    assert not result.valid
    assert result.errors == ["Unknown table: platform_admins"]
    assert result.sanitized_sql == ""


def test_comma_join_without_aliases_checks_every_table():
    is_valid, errors = validate_sql_query(
        "SELECT * FROM orders, users WHERE orders.tenant_id = :tenant_id", TABLES
    )
    assert not is_valid
    assert errors == ["Unknown table: users"]


def test_comma_join_of_known_tables_passes():
    sql = (
        "SELECT l.name, SUM(s.net_sales) FROM rm_daily_sales AS s, public.locations l "
        "WHERE l.id = s.location_id AND s.tenant_id = :tenant_id GROUP BY l.name"
    )
    assert extract_table_names(sql) == ["rm_daily_sales", "public.locations"]
    is_valid, errors = validate_sql_query(sql, TABLES)
    assert is_valid, errors


def test_comma_join_after_subquery_is_checked():
    sql = (
        "SELECT * FROM (SELECT id FROM orders WHERE tenant_id = :tenant_id) o, payroll p "
        "WHERE p.id = o.id"
    )
    assert extract_table_names(sql) == ["payroll", "orders"]


def test_function_in_from_list_is_not_a_table():
    sql = "SELECT d FROM orders, generate_series(1, 3) d WHERE tenant_id = :tenant_id"
    assert extract_table_names(sql) == ["orders"]


def test_is_distinct_from_is_not_a_table():
    sql = "SELECT * FROM orders WHERE status IS DISTINCT FROM refunded_status AND tenant_id = :tenant_id"
    assert extract_table_names(sql) == ["orders"]
