from __future__ import annotations

"""Prometheus metrics for the reconciliation loop.

Per-task drift families are produced at scrape time by
:class:`DriftCollector`, which reads one consistent ``(snapshot, health)``
pair from the store. They are never kept as mutable gauges, so a task that
disappears from the inventory disappears from the exposition in the same
cycle. Loop activity (cycle outcomes, skipped triggers, durations) is
tracked with regular counters and a histogram.
"""

from typing import Iterator

from prometheus_client import CollectorRegistry, REGISTRY as global_registry, generate_latest
from prometheus_client.core import GaugeMetricFamily
from prometheus_client.registry import Collector

from vmonitor.foundation.common.metrics_factory import (
    get_or_create_counter,
    get_or_create_histogram,
    reset_metrics as _reset_registered,
)

from .models import VerdictKind
from .store import DriftStore

TASK_LABELS = ["job", "group", "task"]

# Cycles usually take seconds; very large clusters or slow registries take minutes.
DURATION_BUCKETS = (0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0)


class DriftCollector(Collector):
    """Expose the store's current snapshot as gauge families."""

    def __init__(self, store: DriftStore) -> None:
        self._store = store

    def describe(self) -> list:
        return []

    def collect(self) -> Iterator[GaugeMetricFamily]:
        snapshot, health = self._store.view()

        outdated = GaugeMetricFamily(
            "vmonitor_task_outdated",
            "Whether the task runs an outdated version (1) or the newest one (0)",
            labels=TASK_LABELS + ["latest"],
        )
        verdicts = GaugeMetricFamily(
            "vmonitor_task_verdict",
            "Drift verdict of each tracked task",
            labels=TASK_LABELS + ["verdict", "reason"],
        )
        versions = GaugeMetricFamily(
            "vmonitor_task_version_info",
            "Declared and newest available version of each tracked task",
            labels=TASK_LABELS + ["current", "newest"],
        )

        for key in sorted(snapshot):
            entry = snapshot.entries[key]
            verdict = entry.verdict
            task_labels = [key.job, key.group, key.task]
            declared = entry.declared or ""
            verdicts.add_metric(
                task_labels + [verdict.kind.value, verdict.reason or ""], 1.0
            )
            if verdict.kind is VerdictKind.OUTDATED:
                outdated.add_metric(task_labels + [verdict.latest or ""], 1.0)
                versions.add_metric(task_labels + [declared, verdict.latest or ""], 1.0)
            elif verdict.kind is VerdictKind.CURRENT:
                outdated.add_metric(task_labels + [""], 0.0)
                versions.add_metric(task_labels + [declared, declared], 1.0)

        yield outdated
        yield verdicts
        yield versions
        yield GaugeMetricFamily(
            "vmonitor_reconcile_consecutive_failures",
            "Number of reconciliation cycles that failed in a row",
            value=float(health.consecutive_failures),
        )
        yield GaugeMetricFamily(
            "vmonitor_reconcile_last_success_timestamp_seconds",
            "Unix time of the last successful reconciliation cycle",
            value=float(health.last_success_at or 0.0),
        )


def register_drift_collector(
    store: DriftStore, *, registry: CollectorRegistry | None = None
) -> DriftCollector:
    collector = DriftCollector(store)
    (registry or global_registry).register(collector)
    return collector


class ReconcilerMetrics:
    """Counters describing loop activity, registered once per registry."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or global_registry
        self.cycles_total = get_or_create_counter(
            "vmonitor_reconcile_cycles_total",
            "Reconciliation cycles by outcome",
            ["outcome"],
            registry=self.registry,
        )
        self.skipped_triggers_total = get_or_create_counter(
            "vmonitor_reconcile_skipped_triggers_total",
            "Reconciliation triggers dropped because a cycle was still running",
            registry=self.registry,
        )
        self.duration_seconds = get_or_create_histogram(
            "vmonitor_reconcile_duration_seconds",
            "Wall-clock duration of reconciliation cycles",
            registry=self.registry,
            buckets=DURATION_BUCKETS,
        )

    def record_cycle(self, outcome: str, duration: float) -> None:
        self.cycles_total.labels(outcome=outcome).inc()
        self.duration_seconds.observe(duration)

    def record_skipped_trigger(self) -> None:
        self.skipped_triggers_total.inc()

    def reset(self) -> None:
        """Helper for tests to clear recorded values."""
        _reset_registered(
            [
                "vmonitor_reconcile_cycles_total",
                "vmonitor_reconcile_skipped_triggers_total",
                "vmonitor_reconcile_duration_seconds",
            ],
            registry=self.registry,
        )


def collect_metrics(registry: CollectorRegistry | None = None) -> str:
    """Return metrics in text exposition format."""
    return generate_latest(registry or global_registry).decode()


__all__ = [
    "DriftCollector",
    "ReconcilerMetrics",
    "collect_metrics",
    "register_drift_collector",
]
