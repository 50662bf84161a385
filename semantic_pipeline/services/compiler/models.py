"""Compiler models."""

from dataclasses import dataclass, field
from typing import Any

from semantic_pipeline.services.catalog.models import DimensionDef, MetricDef


class CompilerError(Exception):
    """Plan could not be compiled. Non-fatal to the pipeline."""

    NO_METRICS = "NO_METRICS"
    UNKNOWN_METRIC = "UNKNOWN_METRIC"
    UNKNOWN_DIMENSION = "UNKNOWN_DIMENSION"
    PLAN_VALIDATION_ERROR = "PLAN_VALIDATION_ERROR"
    INVALID_FILTER = "INVALID_FILTER"
    INVALID_DATE_RANGE = "INVALID_DATE_RANGE"
    DATE_RANGE_TOO_LARGE = "DATE_RANGE_TOO_LARGE"

    def __init__(self, message: str, code: str):
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class CompiledQuery:
    """Parameterized statement for one plan.

    ``params[i]`` binds the ``:p{i}`` placeholder in ``sql``.
    """

    sql: str
    params: list[Any]
    primary_table: str
    join_tables: list[str] = field(default_factory=list)
    metric_defs: list[MetricDef] = field(default_factory=list)
    dimension_defs: list[DimensionDef] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def bind_params(self) -> dict[str, Any]:
        return {f"p{i}": value for i, value in enumerate(self.params)}
