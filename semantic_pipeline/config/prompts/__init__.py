"""System prompts for the pipeline's LLM calls."""

from semantic_pipeline.config.prompts.intent import build_intent_system_prompt
from semantic_pipeline.config.prompts.narrative import build_narrative_system_prompt, build_narrative_user_input
from semantic_pipeline.config.prompts.sql import (
    build_sql_generation_system_prompt,
    build_sql_generation_user_input,
    build_sql_retry_user_input,
)

__all__ = [
    "build_intent_system_prompt",
    "build_narrative_system_prompt",
    "build_narrative_user_input",
    "build_sql_generation_system_prompt",
    "build_sql_generation_user_input",
    "build_sql_retry_user_input",
]
