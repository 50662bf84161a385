"""Raw schema catalog used by SQL-mode generation and validation."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol

from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from semantic_pipeline.infrastructure.cache.bounded_cache import BoundedCache

logger = logging.getLogger(__name__)

TENANT_COLUMN = "tenant_id"

# Infrastructure tables never exposed to the model
EXCLUDED_TABLES: frozenset[str] = frozenset(
    {
        "alembic_version",
        "schema_migrations",
        "event_outbox",
        "processed_events",
        "event_dead_letters",
        "platform_admins",
        "platform_admin_roles",
        "platform_admin_audit_log",
        "background_jobs",
        "background_job_attempts",
        "scheduled_jobs",
        "semantic_eval_turns",
    }
)

TABLE_DESCRIPTIONS: dict[str, str] = {
    "locations": "Business locations (sites and venues)",
    "users": "Staff/employee accounts (NOT customers, see customers)",
    "customers": "Customer CRM records: people who buy from the business (NOT staff)",
    "orders": "Order transactions (amounts in cents)",
    "order_lines": "Line items within orders (amounts in cents)",
    "tenders": "Payment tenders (amounts in cents)",
    "catalog_items": "Product catalog items",
    "inventory_movements": "Append-only stock movement ledger",
    "rm_daily_sales": "Daily sales aggregates per location (amounts in dollars)",
    "rm_item_sales": "Item sales aggregates per day (amounts in dollars)",
    "rm_inventory_on_hand": "Inventory on-hand snapshot",
    "rm_customer_activity": "Customer activity aggregates",
}

COLUMN_DESCRIPTIONS: dict[str, dict[str, str]] = {
    "orders": {
        "total_cents": "grand total in CENTS (divide by 100 for dollars)",
        "business_date": "business date (use for date filtering, NOT created_at)",
        "status": "open|placed|paid|voided; active orders are placed or paid",
    },
    "tenders": {
        "amount_cents": "payment amount in CENTS",
        "status": "captured|reversed; active tenders have status=captured",
    },
    "rm_daily_sales": {
        "net_sales": "net sales in DOLLARS",
        "gross_sales": "gross sales in DOLLARS",
        "order_count": "completed orders count",
        "business_date": "aggregation date (one row per location per date)",
    },
    "rm_inventory_on_hand": {
        "on_hand": "current stock level (SNAPSHOT, not time-series)",
    },
    "rm_customer_activity": {
        "total_spend": "lifetime spend in DOLLARS (RUNNING TOTAL)",
    },
}

_TYPE_PREFIXES: tuple[tuple[str, str], ...] = (
    ("timestamp", "timestamp"),
    ("datetime", "timestamp"),
    ("date", "date"),
    ("time", "time"),
    ("bigint", "int"),
    ("smallint", "int"),
    ("integer", "int"),
    ("int", "int"),
    ("numeric", "numeric"),
    ("decimal", "numeric"),
    ("double", "float"),
    ("float", "float"),
    ("real", "float"),
    ("bool", "bool"),
    ("jsonb", "json"),
    ("json", "json"),
    ("uuid", "uuid"),
    ("varchar", "text"),
    ("character", "text"),
    ("char", "text"),
    ("text", "text"),
)


def compact_type(raw_type: str) -> str:
    """Shorten a database type name for the prompt."""
    lowered = raw_type.lower()
    for prefix, short in _TYPE_PREFIXES:
        if lowered.startswith(prefix):
            return short
    return lowered


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    data_type: str
    is_nullable: bool
    is_primary_key: bool


@dataclass(frozen=True)
class TableInfo:
    name: str
    description: str
    columns: list[ColumnInfo]


@dataclass(frozen=True)
class SchemaCatalog:
    """Snapshot of the tenant-scoped tables."""

    tables: list[TableInfo]
    table_names: frozenset[str]
    summary_text: str
    full_text: str
    column_descriptions: dict[str, dict[str, str]] = field(default_factory=dict)


def build_full_text(tables: list[TableInfo], column_descriptions: dict[str, dict[str, str]]) -> str:
    lines: list[str] = []
    for table in tables:
        descriptions = column_descriptions.get(table.name, {})
        column_defs = []
        for column in table.columns:
            definition = f"{column.name} {column.data_type}"
            if column.is_primary_key:
                definition += " PK"
            elif not column.is_nullable:
                definition += " NOT NULL"
            if column.name in descriptions:
                definition += f" -- {descriptions[column.name]}"
            column_defs.append(definition)
        lines.append(f"## {table.name} — {table.description}")
        lines.append(", ".join(column_defs))
        lines.append("")
    return "\n".join(lines)


def build_summary_text(tables: list[TableInfo]) -> str:
    return "\n".join(f"- {t.name}: {t.description}" for t in tables)


def build_schema_catalog_from_tables(
    tables: list[TableInfo],
    column_descriptions: dict[str, dict[str, str]] | None = None,
) -> SchemaCatalog:
    """Assemble the catalog texts from table metadata."""
    column_descriptions = column_descriptions if column_descriptions is not None else COLUMN_DESCRIPTIONS
    ordered = sorted(tables, key=lambda t: t.name)
    return SchemaCatalog(
        tables=ordered,
        table_names=frozenset(t.name for t in ordered),
        summary_text=build_summary_text(ordered),
        full_text=build_full_text(ordered, column_descriptions),
        column_descriptions=column_descriptions,
    )


class SchemaCatalogProvider(Protocol):
    async def build_schema_catalog(self) -> SchemaCatalog | None: ...


class SqlAlchemySchemaCatalog:
    """Introspects tables carrying a ``tenant_id`` column through the SQLAlchemy inspector."""

    _CACHE_KEY = "schema_catalog"

    def __init__(
        self,
        engine: Engine,
        schema: str | None = None,
        ttl_seconds: float = 3600,
        table_descriptions: dict[str, str] | None = None,
        column_descriptions: dict[str, dict[str, str]] | None = None,
        excluded_tables: frozenset[str] = EXCLUDED_TABLES,
    ):
        self.engine = engine
        self.schema = schema
        self._table_descriptions = {**TABLE_DESCRIPTIONS, **(table_descriptions or {})}
        self._column_descriptions = {**COLUMN_DESCRIPTIONS, **(column_descriptions or {})}
        self._excluded = excluded_tables
        self._cache: BoundedCache[SchemaCatalog] = BoundedCache(max_size=1, ttl_seconds=ttl_seconds)

    async def build_schema_catalog(self) -> SchemaCatalog | None:
        cached = self._cache.get(self._CACHE_KEY)
        if cached is not None:
            return cached
        tables = await asyncio.to_thread(self._introspect)
        if not tables:
            logger.warning("No tenant-scoped tables found; SQL mode disabled")
            return None
        catalog = build_schema_catalog_from_tables(tables, self._column_descriptions)
        self._cache.set(self._CACHE_KEY, catalog)
        logger.info("Schema catalog built with %d tables", len(catalog.tables))
        return catalog

    def invalidate(self) -> None:
        self._cache.clear()

    def _introspect(self) -> list[TableInfo]:
        inspector = inspect(self.engine)
        tables: list[TableInfo] = []
        for table_name in inspector.get_table_names(schema=self.schema):
            if table_name in self._excluded:
                continue
            raw_columns = inspector.get_columns(table_name, schema=self.schema)
            if not any(c["name"] == TENANT_COLUMN for c in raw_columns):
                continue
            primary_keys = set(
                inspector.get_pk_constraint(table_name, schema=self.schema).get("constrained_columns") or []
            )
            columns = [
                ColumnInfo(
                    name=c["name"],
                    data_type=compact_type(str(c["type"])),
                    is_nullable=bool(c.get("nullable", True)),
                    is_primary_key=c["name"] in primary_keys,
                )
                for c in raw_columns
            ]
            description = self._table_descriptions.get(table_name, table_name.replace("_", " "))
            tables.append(TableInfo(name=table_name, description=description, columns=columns))
        return tables
