"""
JSON Parser utility for extracting JSON from LLM responses.
"""
import json
import logging
import re
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"^\s*```(?:json|JSON|markdown|md)?\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


class JSONParser:
    """Helper class to extract clean JSON from LLM responses."""

    @staticmethod
    def strip_code_fences(text: str) -> str:
        """Remove a single wrapping markdown code fence, if any."""
        if not text:
            return ""
        match = _FENCE_PATTERN.match(text)
        if match:
            return match.group(1).strip()
        return text.strip()

    @staticmethod
    def parse_object(text: str) -> Optional[Dict[str, Any]]:
        """
        Parse a JSON object out of model output.

        Strips code fences first; when the remaining text does not start with
        ``{`` the outermost ``{...}`` block is tried instead.

        Returns:
            The decoded object, or None when no JSON object can be decoded.
        """
        cleaned = JSONParser.strip_code_fences(text)
        if not cleaned:
            return None

        candidate = cleaned
        if not cleaned.startswith("{"):
            match = re.search(r"(\{.*\})", cleaned, re.DOTALL)
            if not match:
                return None
            candidate = match.group(1)

        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            return None
        return parsed if isinstance(parsed, dict) else None

    @staticmethod
    def extract_json(text: str) -> Dict[str, Any]:
        """Attempts to extract a JSON block from text."""
        parsed = JSONParser.parse_object(text)
        if parsed is not None:
            return parsed

        # Fallback: fenced block somewhere inside prose
        match = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", text or "", re.DOTALL)
        if match:
            try:
                return json.loads(match.group(1))
            except json.JSONDecodeError:
                pass
        logger.warning("JSONParser: Could not extract JSON from text, returning empty dict")
        return {}
