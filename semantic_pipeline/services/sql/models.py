"""SQL-mode service models."""

import math
from dataclasses import dataclass, field

from pydantic import BaseModel, Field, field_validator


class SqlGenerationError(Exception):
    """Model produced no usable SQL."""

    def __init__(self, message: str, code: str = "SQL_GENERATION_ERROR"):
        super().__init__(message)
        self.code = code


class SqlRetryError(Exception):
    """Corrective retry produced no usable SQL."""

    def __init__(self, message: str, code: str = "SQL_RETRY_ERROR"):
        super().__init__(message)
        self.code = code


class SqlCompletion(BaseModel):
    """JSON contract of the SQL generation completion."""

    sql: str = ""
    explanation: str = ""
    confidence: float = Field(default=0.5)

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: object) -> float:
        try:
            value = float(v)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 0.5
        if math.isnan(value):
            return 0.0
        return min(1.0, max(0.0, value))


@dataclass
class SqlGenerationResult:
    """Generated statement plus call accounting."""

    sql: str
    explanation: str
    confidence: float
    tokens_input: int = 0
    tokens_output: int = 0
    latency_ms: int = 0
    provider: str = ""
    model: str = ""
    cached: bool = False


@dataclass
class SqlValidationResult:
    """Result from SQL validation."""

    valid: bool
    errors: list[str] = field(default_factory=list)
    sanitized_sql: str = ""


@dataclass
class SqlRetryResult:
    """Corrected statement from one retry."""

    corrected_sql: str
    explanation: str
    tokens_input: int = 0
    tokens_output: int = 0
    latency_ms: int = 0
