"""Pipeline orchestration."""

from semantic_pipeline.orchestrator.models import PipelineOutput
from semantic_pipeline.orchestrator.pipeline import PipelineOrchestrator
from semantic_pipeline.orchestrator.sql_flow import SQLFallbackFlow, SqlFallbackOutcome
from semantic_pipeline.orchestrator.state import PipelineState

__all__ = ["PipelineOrchestrator", "PipelineOutput", "PipelineState", "SQLFallbackFlow", "SqlFallbackOutcome"]
