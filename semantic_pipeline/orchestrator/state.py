"""Pipeline state model."""

import time
from dataclasses import dataclass, field
from typing import Optional

from semantic_pipeline.config.constants import CacheStatus, ExecutionMode, PipelineStage
from semantic_pipeline.services.catalog.models import LensDef, RegistryCatalog
from semantic_pipeline.services.catalog.schema import SchemaCatalog
from semantic_pipeline.services.compiler.models import CompiledQuery
from semantic_pipeline.services.intent.models import IntentContext, IntentExample, ResolvedIntent
from semantic_pipeline.services.narrative.models import NarrativeResult
from semantic_pipeline.services.query.models import QueryResult


@dataclass
class PipelineState:
    """State object passed through the pipeline."""

    # Input
    question: str
    context: IntentContext
    skip_narrative: bool = False
    examples: list[IntentExample] = field(default_factory=list)
    stage: PipelineStage = PipelineStage.INTENT

    # Deadline (time.monotonic), set when the run starts
    started_at: float = 0.0
    deadline_at: Optional[float] = None

    # Catalogs
    catalog: Optional[RegistryCatalog] = None
    schema_catalog: Optional[SchemaCatalog] = None
    lens: Optional[LensDef] = None

    # Intent
    intent: Optional[ResolvedIntent] = None

    # Compile
    compiled: Optional[CompiledQuery] = None
    compilation_errors: list[str] = field(default_factory=list)

    # Execute (metrics or SQL mode)
    mode: Optional[ExecutionMode] = None
    executed_sql: Optional[str] = None
    result: Optional[QueryResult] = None
    execution_error: Optional[str] = None
    tables_accessed: list[str] = field(default_factory=list)
    sql_explanation: Optional[str] = None
    cache_status: CacheStatus = CacheStatus.SKIP

    # Narrate
    narrative: Optional[NarrativeResult] = None

    # Accounting across every LLM call of the turn
    tokens_input: int = 0
    tokens_output: int = 0
    llm_latency_ms: int = 0

    # Capture
    eval_turn_id: Optional[str] = None
    captured: bool = False

    def add_usage(self, tokens_input: int, tokens_output: int, latency_ms: int) -> None:
        self.tokens_input += tokens_input
        self.tokens_output += tokens_output
        self.llm_latency_ms += latency_ms

    def start_clock(self, timeout: float) -> None:
        self.started_at = time.monotonic()
        self.deadline_at = self.started_at + timeout

    def remaining_seconds(self) -> Optional[float]:
        """Seconds left before the deadline, or None when the run is unbounded."""
        if self.deadline_at is None:
            return None
        return self.deadline_at - time.monotonic()
