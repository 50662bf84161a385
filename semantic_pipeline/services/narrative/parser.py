"""Dual-format narrative parsing: JSON first, markdown headings as fallback."""

import json
import logging
import re
from typing import Any

from semantic_pipeline.config.constants import SectionType
from semantic_pipeline.services.narrative.models import NarrativeResult, NarrativeSection
from semantic_pipeline.utils.json_parser import JSONParser

logger = logging.getLogger(__name__)

HEADING_TO_SECTION: dict[str, SectionType] = {
    "answer": SectionType.ANSWER,
    "executive summary": SectionType.ANSWER,
    "deep analysis": SectionType.ANSWER,
    "options": SectionType.OPTIONS,
    "recommendation": SectionType.RECOMMENDATION,
    "recommendations": SectionType.RECOMMENDATION,
    "quick wins": SectionType.QUICK_WINS,
    "roi snapshot": SectionType.ROI_SNAPSHOT,
    "what to track": SectionType.WHAT_TO_TRACK,
    "metrics": SectionType.WHAT_TO_TRACK,
    "risks to watch": SectionType.RISK,
    "risks": SectionType.RISK,
    "risk": SectionType.RISK,
    "assumptions": SectionType.ASSUMPTIONS,
    "next steps": SectionType.CONVERSATION_DRIVER,
    "conversation driver": SectionType.CONVERSATION_DRIVER,
    "data sources": SectionType.DATA_SOURCES,
    "key takeaways": SectionType.TAKEAWAY,
    "takeaways": SectionType.TAKEAWAY,
    "takeaway": SectionType.TAKEAWAY,
    "what i'd do next": SectionType.ACTION,
    "what i would do next": SectionType.ACTION,
    "action": SectionType.ACTION,
}

_HEADING_SPLIT = re.compile(r"^(#{2,3})\s+(.+)$", re.MULTILINE)
_RULE_LINE = re.compile(r"^---\s*$", re.MULTILINE)
_FOOTER_TEXT = re.compile(r"\*(.+)\*", re.DOTALL)
_TRAILING_FOOTER = re.compile(r"---\s*\n\s*\*(.+)\*\s*$", re.DOTALL)
# "Quick Wins - Mode Label" maps to "quick wins", whatever the dash
_MODE_SUFFIX = re.compile(r"\s+[—–-]\s+.*$")


def normalize_heading(heading: str) -> str:
    cleaned = heading.strip().strip("*_").strip().lower()
    cleaned = cleaned.replace("’", "'")
    cleaned = _MODE_SUFFIX.sub("", cleaned)
    return cleaned.rstrip(":").strip()


def section_type_for(label: str) -> SectionType:
    """Map a heading or a JSON section type to a SectionType; unknown labels are answers."""
    normalized = normalize_heading(label)
    try:
        return SectionType(normalized.replace(" ", "_"))
    except ValueError:
        return HEADING_TO_SECTION.get(normalized, SectionType.ANSWER)


def _split_footer(content: str) -> tuple[str, str | None]:
    matches = list(_RULE_LINE.finditer(content))
    if not matches:
        return content, None
    last = matches[-1]
    return content[: last.start()].strip(), content[last.end():].strip()


def _ensure_answer(sections: list[NarrativeSection], text: str) -> list[NarrativeSection]:
    if any(s.type == SectionType.ANSWER for s in sections):
        return sections
    first = next((s for s in sections if s.type != SectionType.DATA_SOURCES), None)
    return [NarrativeSection(SectionType.ANSWER, first.content if first else text), *sections]


def parse_markdown_narrative(raw: str) -> NarrativeResult:
    """
    Split markdown on ``##``/``###`` headings, one section per heading.

    Prelude text becomes the answer; a trailing ``---`` + ``*...*`` footer
    becomes data_sources; text without headings is a single verbatim answer.
    """
    text = raw.strip()
    parts = _HEADING_SPLIT.split(text)

    if len(parts) == 1:
        return NarrativeResult(text=text, sections=[NarrativeSection(SectionType.ANSWER, text)])

    sections: list[NarrativeSection] = []
    prelude = parts[0].strip()
    if prelude and not prelude.startswith(("*", "---")):
        sections.append(NarrativeSection(SectionType.ANSWER, prelude))

    for i in range(1, len(parts) - 2, 3):
        heading = parts[i + 1]
        content, footer = _split_footer(parts[i + 2].strip())
        if content:
            sections.append(NarrativeSection(section_type_for(heading), content))
        if footer:
            match = _FOOTER_TEXT.search(footer)
            if match:
                sections.append(NarrativeSection(SectionType.DATA_SOURCES, match.group(1).strip()))

    if not any(s.type == SectionType.DATA_SOURCES for s in sections):
        match = _TRAILING_FOOTER.search(text)
        if match:
            sections.append(NarrativeSection(SectionType.DATA_SOURCES, match.group(1).strip()))

    if not sections:
        sections.append(NarrativeSection(SectionType.ANSWER, text))

    return NarrativeResult(text=text, sections=_ensure_answer(sections, text))


def _sections_from_json(raw_sections: Any, text: str) -> list[NarrativeSection]:
    if not isinstance(raw_sections, list):
        return [NarrativeSection(SectionType.ANSWER, text)]
    sections = [
        NarrativeSection(section_type_for(item["type"]), item["content"].strip())
        for item in raw_sections
        if isinstance(item, dict)
        and isinstance(item.get("type"), str)
        and isinstance(item.get("content"), str)
        and item["content"].strip()
    ]
    return sections or [NarrativeSection(SectionType.ANSWER, text)]


def parse_narrative_response(raw: str) -> NarrativeResult:
    """
    Parse a narrative completion.

    Code fences are stripped, then a ``{text, sections}`` JSON object is
    tried; anything else goes through ``parse_markdown_narrative``.
    """
    cleaned = JSONParser.strip_code_fences(raw or "")

    if cleaned.startswith("{"):
        try:
            parsed = json.loads(cleaned)
        except json.JSONDecodeError:
            logger.debug("Narrative is not valid JSON, parsing as markdown")
        else:
            if isinstance(parsed, dict):
                text = parsed["text"] if isinstance(parsed.get("text"), str) else cleaned
                sections = _sections_from_json(parsed.get("sections"), text)
                return NarrativeResult(text=text, sections=_ensure_answer(sections, text))

    return parse_markdown_narrative(cleaned)
