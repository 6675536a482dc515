"""Tests for the in-process counters and latency samples."""

from __future__ import annotations

from captureq.observability import telemetry
from captureq.observability.telemetry import counter, get_counters, get_latency_stats, time_block


def test_counter_and_prefix_filter():
    counter("cleanup.applied")
    counter("cleanup.applied", 2)
    counter("staleness.sweep")

    assert get_counters("cleanup.") == {"cleanup.applied": 3}
    assert counter("cleanup.applied", 0) == 3


def test_latency_samples_are_bounded(monkeypatch):
    monkeypatch.setattr(telemetry, "LATENCY_SAMPLES_MAX", 5)

    for _ in range(12):
        with time_block("staleness.sweep"):
            pass

    stats = get_latency_stats("staleness.sweep")
    assert stats["count"] == 5
    assert stats["min"] <= stats["p95"] <= stats["max"]


def test_unknown_metric_has_zero_stats():
    assert get_latency_stats("nothing")["count"] == 0
