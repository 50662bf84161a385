"""Registry catalog models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CatalogModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class MetricDef(_CatalogModel):
    """A curated metric: an aggregation over one table column expression."""

    slug: str
    display_name: str
    description: str = ""
    domain: str = "core"
    category: str = ""
    sql_expression: str
    sql_table: str
    sql_aggregation: str = "sum"
    sql_filter: str | None = None
    data_type: str = "number"
    format_pattern: str | None = None
    unit: str | None = None
    higher_is_better: bool = True
    aliases: list[str] = Field(default_factory=list)
    requires_dimensions: list[str] = Field(default_factory=list)
    incompatible_with: list[str] = Field(default_factory=list)
    is_active: bool = True
    is_experimental: bool = False


class DimensionDef(_CatalogModel):
    """A curated dimension: a grouping/filtering expression on one table."""

    slug: str
    display_name: str
    description: str = ""
    domain: str = "core"
    category: str = ""
    sql_expression: str
    sql_table: str
    sql_data_type: str = "text"
    is_time_dimension: bool = False
    time_granularities: list[str] = Field(default_factory=list)
    lookup_table: str | None = None
    lookup_key_column: str | None = None
    lookup_label_column: str | None = None
    aliases: list[str] = Field(default_factory=list)
    is_active: bool = True


class LensDef(_CatalogModel):
    """A named sub-domain that scopes the catalog and adds prompt guidance."""

    slug: str
    display_name: str
    description: str = ""
    domain: str | None = None
    system_prompt_fragment: str | None = None
    allowed_metrics: list[str] | None = None
    allowed_dimensions: list[str] | None = None
    example_questions: list[str] = Field(default_factory=list)


@dataclass(frozen=True)
class RegistryCatalog:
    """Read-only snapshot of the registry for one request."""

    metrics: list[MetricDef]
    dimensions: list[DimensionDef]
    lenses: list[LensDef] = field(default_factory=list)
    generated_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def metric(self, slug: str) -> MetricDef | None:
        return next((m for m in self.metrics if m.slug == slug), None)

    def dimension(self, slug: str) -> DimensionDef | None:
        return next((d for d in self.dimensions if d.slug == slug), None)

    def time_dimension_for(self, table: str) -> DimensionDef | None:
        """First time dimension defined on ``table``."""
        return next((d for d in self.dimensions if d.is_time_dimension and d.sql_table == table), None)


@dataclass(frozen=True)
class PlanValidation:
    """Result of checking plan slugs against a catalog."""

    valid: bool
    errors: list[str]
    metrics: list[MetricDef]
    dimensions: list[DimensionDef]
    unknown_metrics: list[str] = field(default_factory=list)
    unknown_dimensions: list[str] = field(default_factory=list)
