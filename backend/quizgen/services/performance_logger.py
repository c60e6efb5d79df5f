"""Activity and performance logging for generation runs.

Tracks per-stage timings of a generation (prompt build, AI call, parsing)
in context variables so concurrent tasks do not see each other's numbers,
and emits structured records:

- ``activity`` logger: one event per user-visible action
  (``quiz_generation_started``, ``quiz_generated``, ``ai_request``, ...)
- ``performance`` logger: one ``generation_performance`` record per run

Both are plain ``logging`` records with ``extra=`` payloads; the embedding
app decides where they go.
"""

from __future__ import annotations

import logging
import time
from contextvars import ContextVar
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)
perf_logger = logging.getLogger("performance")
activity_logger = logging.getLogger("activity")

STAGES = ("prompt", "ai", "parse")

# Context variables for tracking timings across async operations
_generation_start_time: ContextVar[float] = ContextVar("generation_start_time")
_stage_times: ContextVar[Optional[Dict[str, float]]] = ContextVar("stage_times", default=None)


def start_generation_timer() -> None:
    """Mark the start of a generation run and reset stage timings."""
    _generation_start_time.set(time.time())
    _stage_times.set({})


def get_generation_elapsed_time() -> float:
    """Elapsed seconds since ``start_generation_timer``, or 0.0 if not set."""
    try:
        start = _generation_start_time.get()
        return time.time() - start
    except LookupError:
        return 0.0


def record_stage_time(stage: str, seconds: float) -> None:
    times = _stage_times.get()
    if times is None:
        times = {}
        _stage_times.set(times)
    times[stage] = times.get(stage, 0.0) + seconds
    logger.debug(f"Stage {stage} completed in {seconds:.3f}s")


def get_performance_metrics() -> Dict[str, float]:
    """All recorded stage timings plus ``total_time`` and ``other_time``."""
    times = _stage_times.get() or {}
    metrics = {f"{stage}_time": times.get(stage, 0.0) for stage in STAGES}
    total = get_generation_elapsed_time()
    metrics["total_time"] = total
    metrics["other_time"] = max(0.0, total - sum(times.values()))
    return metrics


def log_performance_metrics(
    operation: str,
    status: str,
    generation_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> None:
    metrics = get_performance_metrics()
    perf_logger.info(
        "generation_performance",
        extra={
            "operation": operation,
            "status": status,
            "generation_id": generation_id,
            "user_id": user_id or "anonymous",
            **{key: round(value, 3) for key, value in metrics.items()},
        },
    )


def log_activity(event: str, user_id: Optional[str] = None, **fields: Any) -> None:
    """Emit an activity event. Never raises."""
    try:
        activity_logger.info(
            event,
            extra={"event": event, "user_id": user_id or "anonymous", "details": fields},
        )
    except Exception as e:
        logger.error(f"Failed to log activity {event}: {e}")
        # Don't raise - activity logging is non-critical


class PerformanceTimer:
    """Context manager for timing code blocks.

    Example:
        with PerformanceTimer("ai") as timer:
            # ... do work ...
        timer.elapsed  # seconds; also recorded as the "ai" stage
    """

    def __init__(self, stage: Optional[str] = None):
        self.stage = stage
        self.start_time: float = 0.0
        self.elapsed: float = 0.0

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed = time.time() - self.start_time
        if self.stage:
            record_stage_time(self.stage, self.elapsed)
        return False
