"""Intent service models."""

import math
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from semantic_pipeline.config.constants import MAX_CLARIFICATION_OPTIONS, TimeGranularity

FilterOperator = Literal[
    "eq", "neq", "gt", "gte", "lt", "lte", "in", "not_in", "between", "like", "is_null", "is_not_null"
]


class _WireModel(BaseModel):
    """Accepts the camelCase keys the model is prompted with."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PlanFilter(_WireModel):
    dimension_slug: str
    operator: FilterOperator = "eq"
    value: Any = None
    values: list[Any] | None = None
    range_start: Any = None
    range_end: Any = None


class DateRange(_WireModel):
    start: str
    end: str


class PlanSort(_WireModel):
    metric_slug: str | None = None
    dimension_slug: str | None = None
    direction: Literal["asc", "desc"] = "desc"


class QueryPlan(_WireModel):
    """Structured plan between the question and an executable query."""

    metrics: list[str] = Field(default_factory=list)
    dimensions: list[str] = Field(default_factory=list)
    filters: list[PlanFilter] = Field(default_factory=list)
    date_range: DateRange | None = None
    time_granularity: TimeGranularity | None = None
    sort: list[PlanSort] = Field(default_factory=list)
    limit: int | None = None
    lens_slug: str | None = None
    intent: str = ""
    rationale: str = ""


class IntentResponse(_WireModel):
    """Raw JSON contract of the intent completion."""

    plan: dict[str, Any] | None = None
    confidence: float
    clarification_needed: bool = False
    clarification_message: str | None = None
    clarification_options: list[str] = Field(default_factory=list)

    @field_validator("confidence", mode="after")
    @classmethod
    def clamp_confidence(cls, v: float) -> float:
        if math.isnan(v):
            return 0.0
        return min(1.0, max(0.0, v))

    @field_validator("clarification_options", mode="before")
    @classmethod
    def cap_options(cls, v: Any) -> list[str]:
        if not v:
            return []
        return [str(option) for option in v][:MAX_CLARIFICATION_OPTIONS]


@dataclass(frozen=True)
class HistoryMessage:
    role: Literal["user", "assistant"]
    content: str


@dataclass(frozen=True)
class IntentContext:
    """Per-call request context. Immutable."""

    tenant_id: str
    user_id: str
    user_role: str
    session_id: str
    current_date: str
    history: tuple[HistoryMessage, ...] = ()
    lens_slug: str | None = None
    location_id: str | None = None
    domain: str | None = None

    def history_dicts(self) -> list[dict[str, str]]:
        return [{"role": m.role, "content": m.content} for m in self.history]


@dataclass(frozen=True)
class IntentExample:
    """Golden question/plan pair embedded in the prompt."""

    question: str
    plan: dict[str, Any]
    rationale: str = ""


@dataclass
class ResolvedIntent:
    """Outcome of one intent resolution call."""

    plan: QueryPlan | None
    confidence: float
    is_clarification: bool
    clarification_text: str | None
    provider: str
    model: str
    tokens_input: int
    tokens_output: int
    latency_ms: int
    raw_response: str
    clarification_options: list[str] = field(default_factory=list)
    prompt_truncated: bool = False

    def __post_init__(self) -> None:
        self.confidence = min(1.0, max(0.0, self.confidence))
        # A missing plan cannot execute, whatever the model claimed
        if self.plan is None:
            self.is_clarification = True
