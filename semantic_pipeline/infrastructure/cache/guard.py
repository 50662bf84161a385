"""Best-effort wrappers for cache reads and writes."""

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


def cache_get(read: Callable[[], Any], name: str) -> Any | None:
    """Run a cache read. A failing cache backend reads as a miss."""
    try:
        return read()
    except Exception as e:
        logger.warning(f"{name} cache read failed, continuing uncached: {e}")
        return None


def cache_set(write: Callable[[], None], name: str) -> None:
    """Run a cache write. A failing cache backend only loses the entry."""
    try:
        write()
    except Exception as e:
        logger.warning(f"{name} cache write failed: {e}")
