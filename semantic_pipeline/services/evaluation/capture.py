"""Evaluation capture: one record per pipeline turn."""

import asyncio
import json
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


@dataclass
class EvalTurn:
    """Everything needed to review or replay one turn offline."""

    tenant_id: str
    user_id: str
    user_role: str
    session_id: str
    user_message: str
    context: dict[str, Any] = field(default_factory=dict)
    plan: dict[str, Any] | None = None
    is_clarification: bool = False
    clarification_text: str | None = None
    confidence: float | None = None
    mode: str | None = None
    provider: str | None = None
    model: str | None = None
    tokens_input: int = 0
    tokens_output: int = 0
    latency_ms: int = 0
    compiled_sql: str | None = None
    compilation_errors: list[str] = field(default_factory=list)
    tables_accessed: list[str] = field(default_factory=list)
    execution_time_ms: int | None = None
    row_count: int | None = None
    result_sample: list[dict[str, Any]] = field(default_factory=list)
    execution_error: str | None = None
    cache_status: str | None = None
    narrative: str | None = None
    sections: list[dict[str, str]] = field(default_factory=list)
    turn_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class EvalSink(Protocol):
    async def record_turn(self, turn: EvalTurn) -> str: ...


class InMemoryEvalSink:
    """Keeps turns in a list, for embedding and tests."""

    def __init__(self) -> None:
        self.turns: list[EvalTurn] = []

    async def record_turn(self, turn: EvalTurn) -> str:
        self.turns.append(turn)
        return turn.turn_id


class SessionEvalSink:
    """
    Writes one markdown file and one JSON file per turn.

    Files land in ``<base_dir>/<YYYY-MM-DD>/<session_id>/``, numbered in the
    order they were recorded.
    """

    def __init__(self, base_dir: str | None = None) -> None:
        """
        Initialize the sink.

        Args:
            base_dir: Base directory for eval logs. Defaults to 'logs/eval' in the working directory.
        """
        self.base_dir = Path(base_dir) if base_dir else Path.cwd() / "logs" / "eval"
        self._counters: dict[str, int] = {}

    async def record_turn(self, turn: EvalTurn) -> str:
        counter = self._counters.get(turn.session_id, 0) + 1
        self._counters[turn.session_id] = counter
        await asyncio.to_thread(self._write, turn, counter)
        logger.debug("Eval turn %s recorded for session %s", turn.turn_id, turn.session_id)
        return turn.turn_id

    def _session_dir(self, turn: EvalTurn) -> Path:
        day = turn.created_at[:10]
        safe_session = "".join(c if c.isalnum() or c in "-_" else "_" for c in turn.session_id) or "anonymous"
        return self.base_dir / day / safe_session

    def _write(self, turn: EvalTurn, counter: int) -> None:
        session_dir = self._session_dir(turn)
        session_dir.mkdir(parents=True, exist_ok=True)
        stem = f"{counter:02d}_{turn.turn_id}"
        (session_dir / f"{stem}.json").write_text(
            json.dumps(turn.to_dict(), indent=2, ensure_ascii=False, default=str), encoding="utf-8"
        )
        (session_dir / f"{stem}.md").write_text(render_turn_markdown(turn), encoding="utf-8")


def render_turn_markdown(turn: EvalTurn) -> str:
    """Human-readable view of a turn."""
    content = f"# Turn {turn.turn_id}\n\n"
    content += f"- **Tenant**: {turn.tenant_id}\n"
    content += f"- **User**: {turn.user_id} ({turn.user_role})\n"
    content += f"- **Session**: {turn.session_id}\n"
    content += f"- **Recorded at**: {turn.created_at}\n"
    content += f"- **Mode**: {turn.mode or 'none'}\n"
    content += f"- **Cache**: {turn.cache_status or 'n/a'}\n"
    if turn.confidence is not None:
        content += f"- **Confidence**: {turn.confidence:.2f}\n"
    content += f"- **LLM**: {turn.provider or '-'} / {turn.model or '-'} "
    content += f"({turn.tokens_input} in, {turn.tokens_output} out, {turn.latency_ms} ms)\n\n"

    content += f"## Message\n\n{turn.user_message}\n\n"

    if turn.is_clarification:
        content += f"## Clarification\n\n{turn.clarification_text or ''}\n\n"

    if turn.plan is not None:
        content += f"## Plan\n\n```json\n{json.dumps(turn.plan, indent=2, ensure_ascii=False, default=str)}\n```\n\n"

    if turn.compiled_sql:
        content += f"## SQL\n\n```sql\n{turn.compiled_sql}\n```\n\n"

    if turn.compilation_errors:
        content += "## Compilation Errors\n\n" + "\n".join(f"- {e}" for e in turn.compilation_errors) + "\n\n"

    if turn.execution_error:
        content += f"## Execution Error\n\n{turn.execution_error}\n\n"

    if turn.row_count is not None:
        content += f"## Result\n\n**Rows**: {turn.row_count}"
        if turn.execution_time_ms is not None:
            content += f" in {turn.execution_time_ms} ms"
        content += "\n\n"
        if turn.result_sample:
            sample = json.dumps(turn.result_sample, indent=2, ensure_ascii=False, default=str)
            content += f"```json\n{sample}\n```\n\n"

    if turn.narrative:
        content += f"## Narrative\n\n{turn.narrative}\n"

    return content
