"""Evaluation capture."""

from semantic_pipeline.services.evaluation.capture import (
    EvalSink,
    EvalTurn,
    InMemoryEvalSink,
    SessionEvalSink,
    render_turn_markdown,
)

__all__ = ["EvalSink", "EvalTurn", "InMemoryEvalSink", "SessionEvalSink", "render_turn_markdown"]
