"""Narrative models."""

from dataclasses import dataclass, field

from semantic_pipeline.config.constants import SectionType


@dataclass(frozen=True)
class NarrativeSection:
    type: SectionType
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type.value, "content": self.content}


@dataclass
class NarrativeResult:
    """Narrated answer. ``sections`` always holds at least one answer."""

    text: str
    sections: list[NarrativeSection] = field(default_factory=list)
    tokens_input: int = 0
    tokens_output: int = 0
    latency_ms: int = 0

    def section_dicts(self) -> list[dict[str, str]]:
        return [s.to_dict() for s in self.sections]
