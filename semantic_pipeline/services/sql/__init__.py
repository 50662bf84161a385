"""SQL-mode fallback services."""

from semantic_pipeline.services.sql.generator import SQLGenerator
from semantic_pipeline.services.sql.models import (
    SqlGenerationError,
    SqlGenerationResult,
    SqlRetryError,
    SqlRetryResult,
    SqlValidationResult,
)
from semantic_pipeline.services.sql.retry import SQLRetryService
from semantic_pipeline.services.sql.validation import SQLValidationService

__all__ = [
    "SQLGenerator",
    "SQLRetryService",
    "SQLValidationService",
    "SqlGenerationError",
    "SqlGenerationResult",
    "SqlRetryError",
    "SqlRetryResult",
    "SqlValidationResult",
]
