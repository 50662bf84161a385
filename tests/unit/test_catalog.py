"""Tests for the curated registry and the raw schema catalog."""

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from semantic_pipeline.services.catalog import (
    LensDef,
    SqlAlchemySchemaCatalog,
    StaticRegistry,
    scope_catalog_to_lens,
    validate_plan,
)
from semantic_pipeline.services.catalog.schema import compact_type
from semantic_pipeline.services.intent import QueryPlan

REGISTRY_PAYLOAD = {
    "metrics": [
        {
            "slug": "net_sales",
            "displayName": "Net Sales",
            "sqlExpression": "net_sales",
            "sqlTable": "rm_daily_sales",
            "sqlAggregation": "sum",
        },
        {
            "slug": "rounds_played",
            "displayName": "Rounds Played",
            "domain": "golf",
            "sqlExpression": "rounds",
            "sqlTable": "rm_golf_rounds",
        },
        {
            "slug": "legacy_sales",
            "display_name": "Legacy Sales",
            "sql_expression": "legacy",
            "sql_table": "rm_daily_sales",
            "is_active": False,
        },
    ],
    "dimensions": [
        {
            "slug": "business_date",
            "displayName": "Business Date",
            "sqlExpression": "business_date",
            "sqlTable": "rm_daily_sales",
            "isTimeDimension": True,
        }
    ],
    "lenses": [
        {"slug": "golf_ops", "displayName": "Golf", "domain": "golf", "allowedMetrics": ["rounds_played"]},
        {"slug": "core_sales", "displayName": "Sales"},
    ],
}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestStaticRegistry:
    @pytest.mark.asyncio
    async def test_from_dict_accepts_camel_and_snake_case(self):
        registry = StaticRegistry.from_dict(REGISTRY_PAYLOAD)
        catalog = await registry.build_registry_catalog()

        assert [m.slug for m in catalog.metrics] == ["net_sales", "rounds_played"]
        assert catalog.metric("net_sales").sql_table == "rm_daily_sales"
        assert catalog.time_dimension_for("rm_daily_sales").slug == "business_date"
        assert catalog.time_dimension_for("orders") is None

    @pytest.mark.asyncio
    async def test_domain_filter_keeps_core(self):
        registry = StaticRegistry.from_dict(REGISTRY_PAYLOAD)

        golf = await registry.build_registry_catalog(domain="golf")
        retail = await registry.build_registry_catalog(domain="retail")

        assert {m.slug for m in golf.metrics} == {"net_sales", "rounds_played"}
        assert [m.slug for m in retail.metrics] == ["net_sales"]
        assert [lens.slug for lens in retail.lenses] == ["core_sales"]

    @pytest.mark.asyncio
    async def test_get_lens(self, registry):
        assert (await registry.get_lens("core_sales")).display_name == "Sales"
        assert await registry.get_lens("missing") is None


def test_scope_catalog_to_lens(catalog, lens_defs):
    scoped = scope_catalog_to_lens(catalog, lens_defs[0])

    assert [m.slug for m in scoped.metrics] == ["net_sales", "order_count"]
    assert len(scoped.dimensions) == len(catalog.dimensions)
    assert scope_catalog_to_lens(catalog, None) is catalog


def test_scope_catalog_to_lens_dimensions(catalog):
    lens = LensDef(slug="by_day", display_name="By Day", allowed_dimensions=["business_date"])
    scoped = scope_catalog_to_lens(catalog, lens)
    assert [d.slug for d in scoped.dimensions] == ["business_date"]
    assert scoped.metrics == catalog.metrics


class TestValidatePlan:
    def test_valid_plan(self, catalog):
        result = validate_plan(QueryPlan(metrics=["net_sales"], dimensions=["channel"]), catalog)
        assert result.valid
        assert [m.slug for m in result.metrics] == ["net_sales"]

    def test_unknown_slugs(self, catalog):
        result = validate_plan(QueryPlan(metrics=["nope"], dimensions=["weather"]), catalog)
        assert not result.valid
        assert result.unknown_metrics == ["nope"]
        assert result.unknown_dimensions == ["weather"]

    def test_empty_metrics(self, catalog):
        result = validate_plan(QueryPlan(dimensions=["channel"]), catalog)
        assert not result.valid
        assert "Plan has no metrics" in result.errors


# ---------------------------------------------------------------------------
# Schema catalog
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("TIMESTAMP WITH TIME ZONE", "timestamp"),
        ("DATE", "date"),
        ("BIGINT", "int"),
        ("NUMERIC(12, 2)", "numeric"),
        ("VARCHAR(255)", "text"),
        ("JSONB", "json"),
        ("BOOLEAN", "bool"),
        ("tsvector", "tsvector"),
    ],
)
def test_compact_type(raw, expected):
    assert compact_type(raw) == expected


def test_schema_catalog_texts(schema_catalog):
    assert schema_catalog.table_names == frozenset({"orders", "rm_daily_sales"})
    assert [t.name for t in schema_catalog.tables] == ["orders", "rm_daily_sales"]
    assert "- orders: Order transactions (amounts in cents)" in schema_catalog.summary_text
    assert "id text PK" in schema_catalog.full_text
    assert "total_cents int NOT NULL -- grand total in CENTS" in schema_catalog.full_text
    assert "net_sales numeric -- net sales in DOLLARS" in schema_catalog.full_text


def _memory_engine():
    # One shared connection so introspection threads see the same database
    return create_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})


@pytest.fixture
def sqlite_engine():
    engine = _memory_engine()
    with engine.begin() as conn:
        conn.execute(
            text(
                "CREATE TABLE orders (id TEXT PRIMARY KEY, tenant_id TEXT NOT NULL, "
                "business_date DATE, total_cents INTEGER NOT NULL)"
            )
        )
        conn.execute(text("CREATE TABLE alembic_version (version_num TEXT, tenant_id TEXT)"))
        conn.execute(text("CREATE TABLE feature_flags (name TEXT, enabled BOOLEAN)"))
    yield engine
    engine.dispose()


class TestSqlAlchemySchemaCatalog:
    @pytest.mark.asyncio
    async def test_introspects_tenant_tables_only(self, sqlite_engine):
        provider = SqlAlchemySchemaCatalog(sqlite_engine)
        catalog = await provider.build_schema_catalog()

        assert catalog.table_names == frozenset({"orders"})
        columns = {c.name: c for c in catalog.tables[0].columns}
        assert columns["id"].is_primary_key
        assert columns["total_cents"].data_type == "int"
        assert not columns["tenant_id"].is_nullable
        assert catalog.tables[0].description == "Order transactions (amounts in cents)"

    @pytest.mark.asyncio
    async def test_catalog_is_cached_until_invalidated(self, sqlite_engine):
        provider = SqlAlchemySchemaCatalog(sqlite_engine)
        first = await provider.build_schema_catalog()
        assert await provider.build_schema_catalog() is first

        provider.invalidate()
        assert await provider.build_schema_catalog() is not first

    @pytest.mark.asyncio
    async def test_no_tenant_tables_disables_sql_mode(self):
        engine = _memory_engine()
        with engine.begin() as conn:
            conn.execute(text("CREATE TABLE feature_flags (name TEXT)"))
        assert await SqlAlchemySchemaCatalog(engine).build_schema_catalog() is None
        engine.dispose()
