"""Retrieval of similar past questions for few-shot intent prompts."""

import logging
import re
from typing import Protocol

from semantic_pipeline.services.intent.models import IntentExample

logger = logging.getLogger(__name__)

_WORD = re.compile(r"[a-z0-9]+")
_STOPWORDS = frozenset(
    {
        "a", "an", "and", "are", "by", "did", "do", "for", "from", "how", "i", "in",
        "is", "it", "me", "my", "of", "on", "our", "show", "the", "to", "was", "we",
        "what", "which", "who", "with",
    }
)


def keywords(text: str) -> set[str]:
    return {word for word in _WORD.findall(text.lower()) if word not in _STOPWORDS}


class ExampleRetriever(Protocol):
    """Source of past question/plan pairs similar to a new question."""

    async def retrieve(self, question: str, tenant_id: str, limit: int) -> list[IntentExample]: ...


class KeywordExampleRetriever:
    """Ranks a pool of past question/plan pairs by keyword overlap with the question.

    ``pool`` is shared by every tenant; ``tenant_pools`` adds pairs visible
    to one tenant only.
    """

    def __init__(
        self,
        pool: list[IntentExample] | None = None,
        tenant_pools: dict[str, list[IntentExample]] | None = None,
        min_overlap: int = 1,
    ):
        self.pool = list(pool or [])
        self.tenant_pools = {tenant: list(examples) for tenant, examples in (tenant_pools or {}).items()}
        self.min_overlap = min_overlap

    async def retrieve(self, question: str, tenant_id: str, limit: int = 3) -> list[IntentExample]:
        wanted = keywords(question)
        if not wanted or limit <= 0:
            return []

        candidates = self.tenant_pools.get(tenant_id, []) + self.pool
        scored = []
        for position, example in enumerate(candidates):
            overlap = len(wanted & keywords(example.question))
            if overlap >= self.min_overlap:
                scored.append((-overlap, position, example))
        scored.sort(key=lambda item: (item[0], item[1]))

        selected: list[IntentExample] = []
        seen: set[str] = set()
        for _, _, example in scored:
            normalized = " ".join(example.question.lower().split())
            if normalized in seen:
                continue
            seen.add(normalized)
            selected.append(example)
            if len(selected) >= limit:
                break

        logger.debug(f"Retrieved {len(selected)} similar example(s) for tenant {tenant_id}")
        return selected
