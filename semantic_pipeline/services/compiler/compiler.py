"""Deterministic plan compiler: QueryPlan -> parameterized SQL."""

import logging
import re
from datetime import date
from typing import Any

from semantic_pipeline.config.constants import ABSOLUTE_MAX_ROWS, DEFAULT_QUERY_LIMIT, TimeGranularity
from semantic_pipeline.services.catalog.models import DimensionDef, MetricDef, RegistryCatalog
from semantic_pipeline.services.catalog.registry import validate_plan
from semantic_pipeline.services.compiler.models import CompiledQuery, CompilerError
from semantic_pipeline.services.intent.models import PlanFilter, QueryPlan

logger = logging.getLogger(__name__)

_COMPARISON_OPERATORS = {"eq": "=", "neq": "<>", "gt": ">", "gte": ">=", "lt": "<", "lte": "<="}
_AGGREGATIONS = {"sum": "SUM", "avg": "AVG", "min": "MIN", "max": "MAX", "count": "COUNT", "count_distinct": "COUNT"}
_BARE_COLUMN = re.compile(r"^[A-Za-z_][\w.]*$")


class _Params:
    """Collects bind values and hands out ``:pN`` placeholders."""

    def __init__(self) -> None:
        self.values: list[Any] = []

    def add(self, value: Any) -> str:
        self.values.append(value)
        return f":p{len(self.values) - 1}"


def _parse_date(value: str, label: str) -> date:
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError) as e:
        raise CompilerError(f"Invalid {label} date: {value!r}", CompilerError.INVALID_DATE_RANGE) from e


def _metric_select_expr(metric: MetricDef) -> str:
    """Wrap a bare column in its aggregation; expressions are used as written."""
    expression = metric.sql_expression.strip()
    aggregation = _AGGREGATIONS.get(metric.sql_aggregation.lower())
    if aggregation is None or not _BARE_COLUMN.match(expression):
        return expression
    if metric.sql_aggregation.lower() == "count_distinct":
        return f"COUNT(DISTINCT {expression})"
    return f"{aggregation}({expression})"


def _dimension_select_expr(
    dimension: DimensionDef,
    granularity: TimeGranularity | None,
    lookup_alias: str | None,
) -> str:
    if lookup_alias:
        return f"{lookup_alias}.{dimension.lookup_label_column}"
    if dimension.is_time_dimension and granularity and granularity != TimeGranularity.DAY:
        return f"DATE_TRUNC('{granularity.value}', {dimension.sql_expression})"
    return dimension.sql_expression


def _filter_predicate(flt: PlanFilter, expression: str, params: _Params) -> str:
    op = flt.operator
    if op in _COMPARISON_OPERATORS:
        if flt.value is None:
            raise CompilerError(
                f"Filter on '{flt.dimension_slug}' with operator '{op}' needs a value",
                CompilerError.INVALID_FILTER,
            )
        return f"{expression} {_COMPARISON_OPERATORS[op]} {params.add(flt.value)}"
    if op in ("in", "not_in"):
        if not flt.values:
            raise CompilerError(
                f"Filter on '{flt.dimension_slug}' with operator '{op}' needs a non-empty values list",
                CompilerError.INVALID_FILTER,
            )
        placeholders = ", ".join(params.add(v) for v in flt.values)
        keyword = "IN" if op == "in" else "NOT IN"
        return f"{expression} {keyword} ({placeholders})"
    if op == "between":
        start = flt.range_start if flt.range_start is not None else (flt.values or [None])[0]
        end = flt.range_end if flt.range_end is not None else (flt.values or [None, None])[-1]
        if start is None or end is None:
            raise CompilerError(
                f"Filter on '{flt.dimension_slug}' with operator 'between' needs rangeStart and rangeEnd",
                CompilerError.INVALID_FILTER,
            )
        return f"{expression} BETWEEN {params.add(start)} AND {params.add(end)}"
    if op == "like":
        if flt.value is None:
            raise CompilerError(
                f"Filter on '{flt.dimension_slug}' with operator 'like' needs a value",
                CompilerError.INVALID_FILTER,
            )
        return f"{expression} ILIKE {params.add(f'%{flt.value}%')}"
    if op == "is_null":
        return f"{expression} IS NULL"
    if op == "is_not_null":
        return f"{expression} IS NOT NULL"
    raise CompilerError(f"Unsupported filter operator: {op}", CompilerError.INVALID_FILTER)


def compile_plan(
    plan: QueryPlan,
    catalog: RegistryCatalog,
    tenant_id: str,
    *,
    location_id: str | None = None,
    max_date_range_days: int = 366,
    default_limit: int = DEFAULT_QUERY_LIMIT,
    max_rows: int = ABSOLUTE_MAX_ROWS,
) -> CompiledQuery:
    """
    Compile a plan into one parameterized statement.

    The tenant predicate is always the first WHERE condition and a LIMIT is
    always bound. Incompatible or cross-table dimensions, filters on
    unselected dimensions and a missing date range produce warnings.

    Raises:
        CompilerError: Empty metrics, unknown slugs, bad filters or dates
    """
    if not plan.metrics:
        raise CompilerError("Plan has no metrics to compile", CompilerError.NO_METRICS)

    validation = validate_plan(plan, catalog)
    if validation.unknown_metrics:
        raise CompilerError(
            f"Unknown metric(s): {', '.join(validation.unknown_metrics)}", CompilerError.UNKNOWN_METRIC
        )
    if validation.unknown_dimensions:
        raise CompilerError(
            f"Unknown dimension(s): {', '.join(validation.unknown_dimensions)}", CompilerError.UNKNOWN_DIMENSION
        )
    if not validation.valid:
        raise CompilerError("; ".join(validation.errors), CompilerError.PLAN_VALIDATION_ERROR)

    metrics = validation.metrics
    primary_table = metrics[0].sql_table
    warnings: list[str] = []
    params = _Params()

    for metric in metrics[1:]:
        if metric.sql_table != primary_table:
            warnings.append(
                f"Metric '{metric.slug}' comes from {metric.sql_table}, not {primary_table}; results may be inconsistent"
            )

    # Resolve dimensions, joining lookups and dropping ones that cannot be reached
    dimensions: list[DimensionDef] = []
    join_tables: list[str] = []
    joins: list[str] = []
    select_exprs: dict[str, str] = {}
    for dimension in validation.dimensions:
        lookup_alias = None
        if dimension.sql_table != primary_table:
            if not (dimension.lookup_table and dimension.lookup_key_column and dimension.lookup_label_column):
                warnings.append(
                    f"Cross-table dimension '{dimension.slug}' ({dimension.sql_table}) cannot be joined to "
                    f"{primary_table}; skipped"
                )
                continue
        if dimension.lookup_table and dimension.lookup_key_column and dimension.lookup_label_column:
            lookup_alias = f"lk_{dimension.slug}"
            joins.append(
                f"LEFT JOIN {dimension.lookup_table} AS {lookup_alias} "
                f"ON {lookup_alias}.{dimension.lookup_key_column} = {primary_table}.{dimension.sql_expression} "
                f"AND {lookup_alias}.tenant_id = {primary_table}.tenant_id"
            )
            if dimension.lookup_table not in join_tables:
                join_tables.append(dimension.lookup_table)

        for metric in metrics:
            if dimension.slug in metric.incompatible_with:
                warnings.append(f"Dimension '{dimension.slug}' is incompatible with metric '{metric.slug}'")

        dimensions.append(dimension)
        select_exprs[dimension.slug] = _dimension_select_expr(dimension, plan.time_granularity, lookup_alias)

    # SELECT
    select_parts = [f'{select_exprs[d.slug]} AS "{d.slug}"' for d in dimensions]
    select_parts.extend(f'{_metric_select_expr(m)} AS "{m.slug}"' for m in metrics)

    # WHERE: tenant scope first
    where = [f"{primary_table}.tenant_id = {params.add(tenant_id)}"]
    if location_id:
        where.append(f"{primary_table}.location_id = {params.add(location_id)}")
    for metric in metrics:
        if metric.sql_filter and f"({metric.sql_filter})" not in where:
            where.append(f"({metric.sql_filter})")

    time_dimension = next((d for d in dimensions if d.is_time_dimension), None) or catalog.time_dimension_for(
        primary_table
    )
    if plan.date_range is not None:
        start = _parse_date(plan.date_range.start, "start")
        end = _parse_date(plan.date_range.end, "end")
        if end < start:
            raise CompilerError(
                f"Date range end {end} is before start {start}", CompilerError.INVALID_DATE_RANGE
            )
        if (end - start).days > max_date_range_days:
            raise CompilerError(
                f"Date range of {(end - start).days} days exceeds the maximum of {max_date_range_days}",
                CompilerError.DATE_RANGE_TOO_LARGE,
            )
        if time_dimension is None:
            warnings.append(f"No time dimension on {primary_table}; date range ignored")
        else:
            where.append(f"{time_dimension.sql_expression} >= {params.add(plan.date_range.start)}")
            where.append(f"{time_dimension.sql_expression} <= {params.add(plan.date_range.end)}")
    elif time_dimension is not None:
        warnings.append(
            f"No date range specified for time-series metric '{metrics[0].slug}'; querying all dates"
        )

    selected = {d.slug: d for d in dimensions}
    for flt in plan.filters:
        dimension = selected.get(flt.dimension_slug)
        if dimension is None:
            warnings.append(f"Filter on unselected dimension '{flt.dimension_slug}' skipped")
            continue
        expression = (
            f"lk_{dimension.slug}.{dimension.lookup_label_column}"
            if dimension.lookup_table and dimension.lookup_label_column
            else dimension.sql_expression
        )
        where.append(_filter_predicate(flt, expression, params))

    # ORDER BY
    order_parts: list[str] = []
    for sort in plan.sort:
        key = sort.metric_slug or sort.dimension_slug
        if key and (key in selected or any(m.slug == key for m in metrics)):
            order_parts.append(f'"{key}" {sort.direction.upper()}')
        elif key:
            warnings.append(f"Sort on unselected field '{key}' ignored")
    if not order_parts:
        time_selected = next((d for d in dimensions if d.is_time_dimension), None)
        if time_selected is not None:
            order_parts.append(f'"{time_selected.slug}" ASC')
        else:
            order_parts.append(f'"{metrics[0].slug}" DESC')

    limit = min(plan.limit or default_limit, max_rows)
    if limit < 1:
        limit = default_limit

    lines = [f"SELECT {', '.join(select_parts)}", f"FROM {primary_table}"]
    lines.extend(joins)
    lines.append(f"WHERE {' AND '.join(where)}")
    if dimensions:
        lines.append(f"GROUP BY {', '.join(select_exprs[d.slug] for d in dimensions)}")
    lines.append(f"ORDER BY {', '.join(order_parts)}")
    lines.append(f"LIMIT {params.add(limit)}")

    if warnings:
        logger.info("Plan compiled with %d warning(s): %s", len(warnings), warnings)

    return CompiledQuery(
        sql="\n".join(lines),
        params=params.values,
        primary_table=primary_table,
        join_tables=join_tables,
        metric_defs=metrics,
        dimension_defs=dimensions,
        warnings=warnings,
    )
