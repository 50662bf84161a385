"""Async context manager for timing and logging pipeline stages."""

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from semantic_pipeline.config.constants import PipelineStage, log_pipeline_stage
from semantic_pipeline.infrastructure.logging import StructuredLogger


class StepContext:
    """Mutable context for a timed pipeline stage."""

    def __init__(self) -> None:
        self.details: dict[str, Any] = {}

    def set(self, **details: Any) -> None:
        self.details.update(details)


@asynccontextmanager
async def timed_step(
    stage: PipelineStage,
    structured_logger: StructuredLogger,
    *,
    tenant_id: str | None = None,
) -> AsyncGenerator[StepContext, None]:
    """Time a pipeline stage and log its outcome as one JSON line."""
    log_pipeline_stage(stage)
    ctx = StepContext()
    if tenant_id:
        ctx.set(tenant_id=tenant_id)
    start = time.time()
    try:
        yield ctx
    except Exception as e:
        structured_logger.log_error(stage.value, e, context=ctx.details)
        raise
    elapsed_ms = (time.time() - start) * 1000
    structured_logger.log_step(stage.value, ctx.details, duration_ms=elapsed_ms)
