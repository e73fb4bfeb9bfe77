"""Unit tests for in-process latency observability helpers."""

from __future__ import annotations

import pytest

from projectmemory.observability import latency_metrics_snapshot
from projectmemory.observability import record_latency
from projectmemory.observability import reset_latency_metrics
from projectmemory.observability import timed_stage


class TestObservabilityLatency:
    def setup_method(self):
        reset_latency_metrics()

    def teardown_method(self):
        reset_latency_metrics()

    def test_records_latency_aggregates(self):
        record_latency(operation="mcp.send_event", duration_ms=10.0, ok=True)
        record_latency(operation="mcp.send_event", duration_ms=30.0, ok=False)

        metrics = latency_metrics_snapshot()["mcp.send_event"]
        assert metrics["count"] == 2
        assert metrics["error_count"] == 1
        assert metrics["total_ms"] == 40.0
        assert metrics["avg_ms"] == 20.0
        assert metrics["min_ms"] == 10.0
        assert metrics["max_ms"] == 30.0
        assert metrics["last_ms"] == 30.0

    def test_negative_durations_are_clamped(self):
        record_latency(operation="digest.merge", duration_ms=-5.0)
        assert latency_metrics_snapshot()["digest.merge"]["min_ms"] == 0.0

    def test_reset_clears_all_metrics(self):
        record_latency(operation="digest.selection", duration_ms=12.0, ok=True)
        assert "digest.selection" in latency_metrics_snapshot()
        reset_latency_metrics()
        assert latency_metrics_snapshot() == {}


class TestTimedStage:
    def setup_method(self):
        reset_latency_metrics()

    def teardown_method(self):
        reset_latency_metrics()

    def test_writes_stage_metric_and_sample(self):
        metrics: dict[str, float] = {}
        with timed_stage(metrics, "selection"):
            pass

        assert metrics["selection_ms"] >= 0.0
        assert latency_metrics_snapshot()["digest.selection"]["error_count"] == 0

    def test_failed_block_is_recorded_as_error(self):
        metrics: dict[str, float] = {}
        with pytest.raises(RuntimeError):
            with timed_stage(metrics, "generation", prefix="rebuild"):
                raise RuntimeError("boom")

        assert "generation_ms" in metrics
        assert latency_metrics_snapshot()["rebuild.generation"]["error_count"] == 1
