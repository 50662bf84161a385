"""Structured logging."""

import json
import logging
from datetime import datetime, timezone
from typing import Any

_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger once for the process."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=_LOG_FORMAT)
    # SDK clients are chatty at INFO
    for noisy in ("httpx", "httpcore", "anthropic", "openai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


class StructuredLogger:
    """Structured logger for pipeline events."""

    def __init__(self, name: str = __name__):
        """Initialize structured logger."""
        self.logger = logging.getLogger(name)

    def log_step(
        self,
        step: str,
        state: dict[str, Any],
        duration_ms: float | None = None,
    ) -> None:
        """Log a pipeline step."""
        log_data: dict[str, Any] = {
            "step": step,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "state": state,
        }
        if duration_ms is not None:
            log_data["duration_ms"] = round(duration_ms, 2)

        self.logger.info(json.dumps(log_data, default=str))

    def log_error(
        self,
        step: str,
        error: BaseException,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Log an error with context."""
        log_data: dict[str, Any] = {
            "step": step,
            "error": str(error),
            "error_type": type(error).__name__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        code = getattr(error, "code", None)
        if code:
            log_data["error_code"] = code
        if context:
            log_data["context"] = context

        self.logger.error(json.dumps(log_data, default=str))
