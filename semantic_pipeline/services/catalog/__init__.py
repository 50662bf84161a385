"""Catalog adapters: curated registry and raw schema."""

from semantic_pipeline.services.catalog.models import (
    DimensionDef,
    LensDef,
    MetricDef,
    PlanValidation,
    RegistryCatalog,
)
from semantic_pipeline.services.catalog.registry import (
    RegistryProvider,
    StaticRegistry,
    scope_catalog_to_lens,
    validate_plan,
)
from semantic_pipeline.services.catalog.schema import (
    SchemaCatalog,
    SchemaCatalogProvider,
    SqlAlchemySchemaCatalog,
    build_schema_catalog_from_tables,
)

__all__ = [
    "DimensionDef",
    "LensDef",
    "MetricDef",
    "PlanValidation",
    "RegistryCatalog",
    "RegistryProvider",
    "SchemaCatalog",
    "SchemaCatalogProvider",
    "SqlAlchemySchemaCatalog",
    "StaticRegistry",
    "build_schema_catalog_from_tables",
    "scope_catalog_to_lens",
    "validate_plan",
]
