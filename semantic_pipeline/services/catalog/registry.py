"""Registry catalog provider."""

import logging
from typing import TYPE_CHECKING, Any, Protocol

from semantic_pipeline.services.catalog.models import (
    DimensionDef,
    LensDef,
    MetricDef,
    PlanValidation,
    RegistryCatalog,
)

if TYPE_CHECKING:
    from semantic_pipeline.services.intent.models import QueryPlan

logger = logging.getLogger(__name__)


class RegistryProvider(Protocol):
    """Source of curated metrics, dimensions and lenses."""

    async def build_registry_catalog(self, domain: str | None = None) -> RegistryCatalog: ...

    async def get_lens(self, slug: str) -> LensDef | None: ...


class StaticRegistry:
    """In-process registry built from definitions loaded at startup."""

    def __init__(
        self,
        metrics: list[MetricDef],
        dimensions: list[DimensionDef],
        lenses: list[LensDef] | None = None,
    ):
        self._metrics = list(metrics)
        self._dimensions = list(dimensions)
        self._lenses = {lens.slug: lens for lens in lenses or []}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "StaticRegistry":
        """Build from ``{"metrics": [...], "dimensions": [...], "lenses": [...]}`` (camelCase or snake_case keys)."""
        return cls(
            metrics=[MetricDef.model_validate(m) for m in payload.get("metrics", [])],
            dimensions=[DimensionDef.model_validate(d) for d in payload.get("dimensions", [])],
            lenses=[LensDef.model_validate(lens) for lens in payload.get("lenses", [])],
        )

    async def build_registry_catalog(self, domain: str | None = None) -> RegistryCatalog:
        metrics = [m for m in self._metrics if m.is_active and (domain is None or m.domain in (domain, "core"))]
        dimensions = [
            d for d in self._dimensions if d.is_active and (domain is None or d.domain in (domain, "core"))
        ]
        lenses = [lens for lens in self._lenses.values() if domain is None or lens.domain in (domain, None)]
        return RegistryCatalog(metrics=metrics, dimensions=dimensions, lenses=lenses)

    async def get_lens(self, slug: str) -> LensDef | None:
        return self._lenses.get(slug)


def scope_catalog_to_lens(catalog: RegistryCatalog, lens: LensDef | None) -> RegistryCatalog:
    """Restrict a catalog to the metrics and dimensions a lens allows."""
    if lens is None:
        return catalog
    metrics = catalog.metrics
    dimensions = catalog.dimensions
    if lens.allowed_metrics:
        allowed = set(lens.allowed_metrics)
        metrics = [m for m in metrics if m.slug in allowed]
    if lens.allowed_dimensions:
        allowed = set(lens.allowed_dimensions)
        dimensions = [d for d in dimensions if d.slug in allowed]
    return RegistryCatalog(
        metrics=metrics,
        dimensions=dimensions,
        lenses=catalog.lenses,
        generated_at=catalog.generated_at,
    )


def validate_plan(plan: "QueryPlan", catalog: RegistryCatalog) -> PlanValidation:
    """Check every plan slug against the catalog."""
    errors: list[str] = []
    metrics: list[MetricDef] = []
    dimensions: list[DimensionDef] = []
    unknown_metrics: list[str] = []
    unknown_dimensions: list[str] = []

    if not plan.metrics:
        errors.append("Plan has no metrics")

    for slug in plan.metrics:
        metric = catalog.metric(slug)
        if metric is None:
            unknown_metrics.append(slug)
            errors.append(f"Unknown metric: {slug}")
        else:
            metrics.append(metric)

    for slug in plan.dimensions:
        dimension = catalog.dimension(slug)
        if dimension is None:
            unknown_dimensions.append(slug)
            errors.append(f"Unknown dimension: {slug}")
        else:
            dimensions.append(dimension)

    selected = set(plan.dimensions)
    for metric in metrics:
        missing = [d for d in metric.requires_dimensions if d not in selected]
        if missing:
            errors.append(f"Metric '{metric.slug}' requires dimension(s): {', '.join(missing)}")

    return PlanValidation(
        valid=not errors,
        errors=errors,
        metrics=metrics,
        dimensions=dimensions,
        unknown_metrics=unknown_metrics,
        unknown_dimensions=unknown_dimensions,
    )
