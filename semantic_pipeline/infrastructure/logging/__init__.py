"""Logging infrastructure module."""

from semantic_pipeline.infrastructure.logging.logger import StructuredLogger, setup_logging

__all__ = ["StructuredLogger", "setup_logging"]
