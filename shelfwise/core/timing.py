"""Lightweight timing utilities for logging pipeline stage durations."""

import logging
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

logger = logging.getLogger(__name__)


def now_ms() -> float:
    """Return current time in milliseconds using high-resolution timer."""
    return time.perf_counter() * 1000


@contextmanager
def time_operation(
    label: str,
    log: logging.Logger | logging.LoggerAdapter | None = None,
    level: int = logging.DEBUG,
) -> Iterator[dict[str, Any]]:
    """
    Time a block and log its duration together with any fields the block adds.

    The yielded dict is merged into the log record's extra fields, so callers can
    report counts computed inside the block:

        with time_operation("candidate generation", logger) as stats:
            candidates = ...
            stats["candidate_count"] = len(candidates)
    """
    stats: dict[str, Any] = {}
    start = now_ms()
    try:
        yield stats
    finally:
        elapsed = now_ms() - start
        stats["duration_ms"] = round(elapsed, 2)
        (log or logger).log(
            level,
            f"{label}: {elapsed:.2f}ms",
            extra={"extra_fields": stats},
        )


def utcnow() -> datetime:
    """Naive UTC now, comparable with the naive UTC DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
