"""Prompt-size guard for system prompts with optional sections."""

import logging
import math
from dataclasses import dataclass

from semantic_pipeline.config.settings import Settings

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n[... truncated to fit the prompt budget ...]"


def estimate_tokens(text: str) -> int:
    """Rough token estimate (4 characters per token)."""
    return math.ceil(len(text) / 4) if text else 0


@dataclass(frozen=True)
class PromptBudget:
    """Character budgets for the assembled prompt and each optional section."""

    max_total_chars: int = 100_000
    max_schema_chars: int = 40_000
    max_examples_chars: int = 16_000
    max_retrieval_chars: int = 12_000

    @classmethod
    def from_settings(cls, settings: Settings) -> "PromptBudget":
        return cls(
            max_total_chars=settings.prompt_max_chars,
            max_schema_chars=settings.prompt_max_schema_chars,
            max_examples_chars=settings.prompt_max_examples_chars,
            max_retrieval_chars=settings.prompt_max_retrieval_chars,
        )


@dataclass(frozen=True)
class GuardedPrompt:
    """Sections that survived the guard."""

    base: str
    schema: str
    examples: str
    retrieval: str
    was_truncated: bool

    @property
    def total_chars(self) -> int:
        return len(self.base) + len(self.schema) + len(self.examples) + len(self.retrieval)

    @property
    def estimated_tokens(self) -> int:
        return math.ceil(self.total_chars / 4)


def _cap(text: str, limit: int) -> tuple[str, bool]:
    if len(text) <= limit:
        return text, False
    keep = max(0, limit - len(TRUNCATION_MARKER))
    return text[:keep] + TRUNCATION_MARKER, True


def guard_prompt_size(
    base: str,
    *,
    schema: str = "",
    examples: str = "",
    retrieval: str = "",
    budget: PromptBudget | None = None,
) -> GuardedPrompt:
    """
    Fit optional prompt sections into the budget.

    Each section is first capped to its own limit. If the assembled prompt
    still exceeds the total budget, sections are cut in priority order:
    retrieval snippets, then examples, then schema. The base prompt is never
    touched.

    Returns:
        GuardedPrompt with the surviving sections and ``was_truncated``
    """
    budget = budget or PromptBudget()
    truncated = False

    schema, cut = _cap(schema, budget.max_schema_chars)
    truncated |= cut
    examples, cut = _cap(examples, budget.max_examples_chars)
    truncated |= cut
    retrieval, cut = _cap(retrieval, budget.max_retrieval_chars)
    truncated |= cut

    sections = {"retrieval": retrieval, "examples": examples, "schema": schema}
    for name in ("retrieval", "examples", "schema"):
        overflow = len(base) + sum(len(s) for s in sections.values()) - budget.max_total_chars
        if overflow <= 0:
            break
        current = sections[name]
        if not current:
            continue
        remaining = len(current) - overflow
        if remaining > len(TRUNCATION_MARKER):
            sections[name], _ = _cap(current, remaining)
        else:
            sections[name] = ""
        truncated = True

    if truncated:
        logger.warning(
            "Prompt truncated to fit budget (base=%d schema=%d examples=%d retrieval=%d chars)",
            len(base),
            len(sections["schema"]),
            len(sections["examples"]),
            len(sections["retrieval"]),
        )

    return GuardedPrompt(
        base=base,
        schema=sections["schema"],
        examples=sections["examples"],
        retrieval=sections["retrieval"],
        was_truncated=truncated,
    )
