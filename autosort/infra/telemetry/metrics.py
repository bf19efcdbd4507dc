"""
Metrics Collector: Prometheus + Internal Metrics
===================================================

Centralized metrics registry for the orchestration layer.
Provides typed metric primitives (counters, gauges, histograms)
with Prometheus exposition and a small internal summary.

Metric Naming Convention:
  - autosort_{component}_{metric}_{unit}
  - e.g., autosort_sort_latency_seconds
"""

from __future__ import annotations

import threading
from collections import Counter as _Tally
from typing import Any

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from autosort.infra.telemetry.logger import get_logger

logger = get_logger(__name__)

# ── Metrics Collector ──────────────────────────────────────────────

class MetricsCollector:
    """
    Centralized metrics collection.

    Each collector owns its own registry so several instances (tests,
    embedded hosts) never collide on metric names.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._lock = threading.Lock()
        self.registry = registry or CollectorRegistry()
        self._outcomes: _Tally[str] = _Tally()

        # ── Sort Metrics ──
        self.sort_runs = Counter(
            "autosort_sort_runs_total",
            "Sort pipeline runs by outcome",
            labelnames=["outcome"],
            registry=self.registry,
        )

        self.sort_latency = Histogram(
            "autosort_sort_latency_seconds",
            "Time from dispatch to settled sort",
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
            registry=self.registry,
        )

        self.sort_retries = Counter(
            "autosort_sort_invalid_item_retries_total",
            "Retries after dropping an item the engine rejected",
            registry=self.registry,
        )

        self.cycles_reported = Counter(
            "autosort_cycles_reported_total",
            "Cyclic interactions surfaced to the user",
            registry=self.registry,
        )

        self.fixes_applied = Counter(
            "autosort_cycle_fixes_applied_total",
            "Cycle fixes applied",
            labelnames=["kind"],
            registry=self.registry,
        )

        # ── Engine Metrics ──
        self.engine_inits = Counter(
            "autosort_engine_initializations_total",
            "Engine initializations by result",
            labelnames=["result"],
            registry=self.registry,
        )

        self.engines_live = Gauge(
            "autosort_engine_instances_live",
            "Engine instances created and not yet closed",
            registry=self.registry,
        )

        self.metadata_failures = Counter(
            "autosort_metadata_item_failures_total",
            "Per-item metadata lookups that failed",
            registry=self.registry,
        )

    # ── Recording Methods ──────────────────────────────────────────

    def record_sort(self, outcome: str, latency_s: float | None = None) -> None:
        self.sort_runs.labels(outcome=outcome).inc()
        if latency_s is not None:
            self.sort_latency.observe(latency_s)
        with self._lock:
            self._outcomes[outcome] += 1

    def record_retry(self) -> None:
        self.sort_retries.inc()

    def record_cycle(self) -> None:
        self.cycles_reported.inc()

    def record_fix(self, kind: str) -> None:
        self.fixes_applied.labels(kind=kind).inc()

    def record_engine_init(self, result: str) -> None:
        self.engine_inits.labels(result=result).inc()

    def engine_opened(self) -> None:
        self.engines_live.inc()

    def engine_closed(self) -> None:
        self.engines_live.dec()

    def record_metadata_failure(self) -> None:
        self.metadata_failures.inc()

    # ── Export ─────────────────────────────────────────────────────

    def get_summary(self) -> dict[str, Any]:
        with self._lock:
            return {"sort_outcomes": dict(self._outcomes)}

    def export_prometheus(self) -> bytes:
        """Export metrics in Prometheus text format."""
        return generate_latest(self.registry)

# ── Singleton ──────────────────────────────────────────────────────

_metrics: MetricsCollector | None = None

def get_metrics() -> MetricsCollector:
    # Lock-free benign-race singleton.
    global _metrics
    if _metrics is not None:
        return _metrics
    _metrics = MetricsCollector()
    return _metrics
