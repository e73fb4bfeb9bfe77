"""In-process latency metrics for digest pipeline stages."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from threading import Lock
from time import perf_counter

logger = logging.getLogger(__name__)


@dataclass
class LatencySummary:
    """Aggregated latency metrics for one operation."""

    count: int = 0
    error_count: int = 0
    total_ms: float = 0.0
    min_ms: float = 0.0
    max_ms: float = 0.0
    last_ms: float = 0.0

    def add(self, duration_ms: float, ok: bool) -> None:
        self.count += 1
        if not ok:
            self.error_count += 1
        self.total_ms += duration_ms
        self.last_ms = duration_ms
        if self.count == 1:
            self.min_ms = self.max_ms = duration_ms
        else:
            self.min_ms = min(self.min_ms, duration_ms)
            self.max_ms = max(self.max_ms, duration_ms)


class _LatencyRecorder:
    def __init__(self) -> None:
        self._lock = Lock()
        self._stats: dict[str, LatencySummary] = {}

    def record(self, operation: str, duration_ms: float, ok: bool) -> None:
        with self._lock:
            self._stats.setdefault(operation, LatencySummary()).add(duration_ms, ok)

    def snapshot(self) -> dict[str, dict[str, float | int]]:
        with self._lock:
            return {
                operation: {
                    "count": s.count,
                    "error_count": s.error_count,
                    "total_ms": round(s.total_ms, 3),
                    "avg_ms": round(s.total_ms / s.count if s.count else 0.0, 3),
                    "min_ms": round(s.min_ms, 3),
                    "max_ms": round(s.max_ms, 3),
                    "last_ms": round(s.last_ms, 3),
                }
                for operation, s in sorted(self._stats.items())
            }

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()


_RECORDER = _LatencyRecorder()


def record_latency(*, operation: str, duration_ms: float, ok: bool = True) -> None:
    """Record one latency sample."""
    normalized = max(float(duration_ms), 0.0)
    _RECORDER.record(operation, normalized, ok)
    logger.debug(
        "latency operation=%s duration_ms=%.3f ok=%s", operation, normalized, ok
    )


@contextmanager
def timed_stage(
    metrics: dict[str, float], stage: str, *, prefix: str = "digest"
) -> Iterator[None]:
    """Time the wrapped block into ``metrics[f"{stage}_ms"]`` and the recorder.

    The sample is recorded with ``ok=False`` when the block raises.
    """
    start = perf_counter()
    ok = False
    try:
        yield
        ok = True
    finally:
        elapsed_ms = (perf_counter() - start) * 1000
        metrics[f"{stage}_ms"] = round(elapsed_ms, 3)
        record_latency(operation=f"{prefix}.{stage}", duration_ms=elapsed_ms, ok=ok)


def latency_metrics_snapshot() -> dict[str, dict[str, float | int]]:
    """Return current in-process latency aggregates."""
    return _RECORDER.snapshot()


def reset_latency_metrics() -> None:
    """Clear all latency aggregates (test helper)."""
    _RECORDER.reset()
