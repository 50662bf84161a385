"""Golden case loader for regression runs."""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class GoldenCase:
    """A single regression case."""

    id: str
    question: str
    expected_metrics: list[str] = field(default_factory=list)
    expected_dimensions: list[str] = field(default_factory=list)
    expected_mode: str | None = None
    expect_clarification: bool = False
    lens_slug: str | None = None
    tags: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, idx: int, raw: dict[str, Any]) -> "GoldenCase":
        return cls(
            id=str(raw.get("id", idx)),
            question=str(raw.get("question", "")).strip(),
            expected_metrics=list(raw.get("expected_metrics") or []),
            expected_dimensions=list(raw.get("expected_dimensions") or []),
            expected_mode=raw.get("expected_mode"),
            expect_clarification=bool(raw.get("expect_clarification", False)),
            lens_slug=raw.get("lens_slug"),
            tags=list(raw.get("tags") or []),
        )


def load_cases(path: Path) -> list[GoldenCase]:
    """Load golden cases from a JSON file holding a list or ``{"cases": [...]}``."""
    if not path.exists():
        raise FileNotFoundError(f"Dataset not found: {path}")

    with open(path, encoding="utf-8") as f:
        payload = json.load(f)

    raw_cases = payload.get("cases", []) if isinstance(payload, dict) else payload
    cases = [GoldenCase.from_dict(idx, raw) for idx, raw in enumerate(raw_cases)]
    cases = [c for c in cases if c.question]

    logger.info(f"Loaded {len(cases)} cases from {path}")
    return cases


def filter_cases(cases: list[GoldenCase], tags: list[str] | None = None) -> list[GoldenCase]:
    """Keep cases carrying at least one of ``tags``."""
    if not tags:
        return cases
    wanted = set(tags)
    return [c for c in cases if wanted.intersection(c.tags)]
