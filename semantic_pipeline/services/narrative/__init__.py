"""Narrative generation."""

from semantic_pipeline.services.narrative.generator import (
    NarrativeGenerator,
    build_data_fallback_narrative,
    build_empty_result_narrative,
)
from semantic_pipeline.services.narrative.models import NarrativeResult, NarrativeSection
from semantic_pipeline.services.narrative.parser import (
    HEADING_TO_SECTION,
    parse_markdown_narrative,
    parse_narrative_response,
)

__all__ = [
    "HEADING_TO_SECTION",
    "NarrativeGenerator",
    "NarrativeResult",
    "NarrativeSection",
    "build_data_fallback_narrative",
    "build_empty_result_narrative",
    "parse_markdown_narrative",
    "parse_narrative_response",
]
