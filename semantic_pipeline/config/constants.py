"""
Constants, enums, and static values.
"""

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    """Pipeline state machine stages."""

    INTENT = "intent"
    CLARIFY = "clarify"
    COMPILE = "compile"
    EXECUTE_METRICS = "execute_metrics"
    EXECUTE_SQL_FALLBACK = "execute_sql_fallback"
    NARRATE = "narrate"
    CAPTURE = "capture"
    DONE = "done"


class PipelineStageDescription(str, Enum):
    """Human readable description per stage, used in step logs."""

    INTENT = "Resolving intent"
    CLARIFY = "Asking for clarification"
    COMPILE = "Compiling query plan"
    EXECUTE_METRICS = "Executing metrics query"
    EXECUTE_SQL_FALLBACK = "Running SQL fallback"
    NARRATE = "Generating narrative"
    CAPTURE = "Capturing evaluation record"
    DONE = "Done"


def log_pipeline_stage(stage: PipelineStage) -> None:
    """Log the start of a pipeline stage."""
    description = PipelineStageDescription[stage.name].value
    logger.info("[%s] %s", stage.value.upper(), description)


class ExecutionMode(str, Enum):
    """Strategy that produced the data."""

    METRICS = "metrics"
    SQL = "sql"


class CacheStatus(str, Enum):
    """How the data or narrative for a turn was served."""

    HIT = "HIT"
    MISS = "MISS"
    STALE = "STALE"
    SKIP = "SKIP"


class TimeGranularity(str, Enum):
    """Supported time bucketing for time dimensions."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


class SectionType(str, Enum):
    """Narrative section variants."""

    ANSWER = "answer"
    OPTIONS = "options"
    RECOMMENDATION = "recommendation"
    QUICK_WINS = "quick_wins"
    ROI_SNAPSHOT = "roi_snapshot"
    WHAT_TO_TRACK = "what_to_track"
    RISK = "risk"
    ASSUMPTIONS = "assumptions"
    CONVERSATION_DRIVER = "conversation_driver"
    DATA_SOURCES = "data_sources"
    TAKEAWAY = "takeaway"
    ACTION = "action"


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class BackoffLevel(int, Enum):
    """Adaptive backoff levels consulted by the rate limiter."""

    NORMAL = 0
    REDUCED = 1
    MINIMAL = 2


# Minimum spacing (seconds) between LLM calls per backoff level
BACKOFF_SPACING_SECONDS: dict[BackoffLevel, float] = {
    BackoffLevel.NORMAL: 0.0,
    BackoffLevel.REDUCED: 0.5,
    BackoffLevel.MINIMAL: 2.0,
}

# Compiler row limits
DEFAULT_QUERY_LIMIT = 10_000
ABSOLUTE_MAX_ROWS = 50_000

# Golden examples embedded in the intent prompt
MAX_INTENT_EXAMPLES = 6
MAX_CLARIFICATION_OPTIONS = 5

# Narrative data summary limits
NARRATIVE_MAX_ROWS = 20
NARRATIVE_MAX_COLUMNS = 8
FALLBACK_TABLE_ROWS = 10

# Rows kept in the evaluation record
EVAL_RESULT_SAMPLE_ROWS = 5

# Error rate above which intent calls run at reduced pace
BACKOFF_ERROR_RATE_THRESHOLD = 0.4
