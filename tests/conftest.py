"""Pytest configuration and fixtures."""

import pytest

from semantic_pipeline.config.settings import Settings
from semantic_pipeline.services.catalog import (
    DimensionDef,
    LensDef,
    MetricDef,
    RegistryCatalog,
    StaticRegistry,
    build_schema_catalog_from_tables,
)
from semantic_pipeline.services.catalog.schema import ColumnInfo, TableInfo
from semantic_pipeline.services.evaluation import InMemoryEvalSink
from semantic_pipeline.services.intent import IntentContext


@pytest.fixture
def settings():
    """Provide settings fixture."""
    return Settings(
        llm_max_retries=1,
        llm_retry_delay=0.01,
        sql_max_retries=1,
        pipeline_timeout=5.0,
        sql_fallback_min_remaining=1.0,
        eval_log_dir=None,
    )


@pytest.fixture
def context():
    return IntentContext(
        tenant_id="tenant-1",
        user_id="user-1",
        user_role="owner",
        session_id="session-1",
        current_date="2025-06-16",
    )


@pytest.fixture
def metric_defs():
    return [
        MetricDef(
            slug="net_sales",
            display_name="Net Sales",
            description="Net sales in dollars",
            category="sales",
            sql_expression="net_sales",
            sql_table="rm_daily_sales",
            sql_aggregation="sum",
            data_type="currency",
            format_pattern="$#,##0.00",
            aliases=["revenue"],
        ),
        MetricDef(
            slug="order_count",
            display_name="Orders",
            category="sales",
            sql_expression="order_count",
            sql_table="rm_daily_sales",
            sql_aggregation="sum",
            data_type="integer",
        ),
        MetricDef(
            slug="avg_order_value",
            display_name="Average Order Value",
            category="sales",
            sql_expression="SUM(net_sales) / NULLIF(SUM(order_count), 0)",
            sql_table="rm_daily_sales",
            sql_aggregation="ratio",
            data_type="currency",
            incompatible_with=["item"],
        ),
        MetricDef(
            slug="units_sold",
            display_name="Units Sold",
            category="items",
            sql_expression="quantity_sold",
            sql_table="rm_item_sales",
            sql_aggregation="sum",
            data_type="integer",
        ),
    ]


@pytest.fixture
def dimension_defs():
    return [
        DimensionDef(
            slug="business_date",
            display_name="Business Date",
            sql_expression="business_date",
            sql_table="rm_daily_sales",
            sql_data_type="date",
            is_time_dimension=True,
            time_granularities=["day", "week", "month"],
        ),
        DimensionDef(
            slug="location",
            display_name="Location",
            sql_expression="location_id",
            sql_table="rm_daily_sales",
            lookup_table="locations",
            lookup_key_column="id",
            lookup_label_column="name",
        ),
        DimensionDef(
            slug="channel",
            display_name="Channel",
            sql_expression="channel",
            sql_table="rm_daily_sales",
        ),
        DimensionDef(
            slug="item",
            display_name="Item",
            sql_expression="catalog_item_id",
            sql_table="rm_item_sales",
        ),
    ]


@pytest.fixture
def lens_defs():
    return [
        LensDef(
            slug="core_sales",
            display_name="Sales",
            system_prompt_fragment="Focus on revenue and order volume.",
            allowed_metrics=["net_sales", "order_count"],
        ),
    ]


@pytest.fixture
def registry(metric_defs, dimension_defs, lens_defs):
    return StaticRegistry(metrics=metric_defs, dimensions=dimension_defs, lenses=lens_defs)


@pytest.fixture
def catalog(metric_defs, dimension_defs, lens_defs):
    return RegistryCatalog(metrics=metric_defs, dimensions=dimension_defs, lenses=lens_defs)


@pytest.fixture
def schema_catalog():
    tables = [
        TableInfo(
            name="rm_daily_sales",
            description="Daily sales aggregates per location (amounts in dollars)",
            columns=[
                ColumnInfo("tenant_id", "text", False, False),
                ColumnInfo("location_id", "text", False, False),
                ColumnInfo("business_date", "date", False, False),
                ColumnInfo("net_sales", "numeric", True, False),
                ColumnInfo("order_count", "int", True, False),
            ],
        ),
        TableInfo(
            name="orders",
            description="Order transactions (amounts in cents)",
            columns=[
                ColumnInfo("id", "text", False, True),
                ColumnInfo("tenant_id", "text", False, False),
                ColumnInfo("business_date", "date", False, False),
                ColumnInfo("total_cents", "int", False, False),
            ],
        ),
    ]
    return build_schema_catalog_from_tables(tables)


@pytest.fixture
def eval_sink():
    return InMemoryEvalSink()
