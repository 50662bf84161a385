"""Pipeline output model."""

from dataclasses import dataclass, field
from typing import Any, Optional

from semantic_pipeline.config.constants import CacheStatus


@dataclass
class PipelineOutput:
    """What one turn returns to the caller."""

    is_clarification: bool
    clarification_text: Optional[str] = None
    clarification_options: list[str] = field(default_factory=list)
    plan: Optional[dict[str, Any]] = None
    confidence: Optional[float] = None
    mode: Optional[str] = None
    compiled_sql: Optional[str] = None
    compilation_errors: list[str] = field(default_factory=list)
    data: Optional[dict[str, Any]] = None
    narrative: Optional[str] = None
    sections: list[dict[str, str]] = field(default_factory=list)
    provider: str = ""
    model: str = ""
    tokens_input: int = 0
    tokens_output: int = 0
    llm_latency_ms: int = 0
    execution_time_ms: Optional[int] = None
    cache_status: CacheStatus = CacheStatus.SKIP
    tables_accessed: list[str] = field(default_factory=list)
    sql_explanation: Optional[str] = None
    eval_turn_id: Optional[str] = None
