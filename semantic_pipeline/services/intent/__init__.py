"""Intent resolution."""

from semantic_pipeline.services.intent.models import (
    DateRange,
    HistoryMessage,
    IntentContext,
    IntentExample,
    PlanFilter,
    PlanSort,
    QueryPlan,
    ResolvedIntent,
)
from semantic_pipeline.services.intent.resolver import IntentResolver
from semantic_pipeline.services.intent.retrieval import ExampleRetriever, KeywordExampleRetriever

__all__ = [
    "DateRange",
    "ExampleRetriever",
    "HistoryMessage",
    "IntentContext",
    "IntentExample",
    "IntentResolver",
    "KeywordExampleRetriever",
    "PlanFilter",
    "PlanSort",
    "QueryPlan",
    "ResolvedIntent",
]
