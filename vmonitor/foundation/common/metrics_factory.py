"""Idempotent Prometheus metric registration.

Every component that owns metrics asks for them through the
``get_or_create_*`` helpers. Building a second loop or app against the same
:class:`~prometheus_client.CollectorRegistry` then hands back the collectors
that are already registered instead of raising ``Duplicated timeseries``.
Each registry also keeps a reset hook per metric name so tests can zero
state between cases.
"""

from __future__ import annotations

import weakref
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

from prometheus_client import (
    REGISTRY as global_registry,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
)
from prometheus_client.metrics import MetricWrapperBase

__all__ = [
    "get_or_create_counter",
    "get_or_create_gauge",
    "get_or_create_histogram",
    "get_metric_value",
    "register_reset_hook",
    "reset_metrics",
]

MetricT = TypeVar("MetricT", bound=MetricWrapperBase)


@dataclass
class _Owned:
    metrics: dict[str, MetricWrapperBase] = field(default_factory=dict)
    resets: dict[str, Callable[[], None]] = field(default_factory=dict)


_OWNED: "weakref.WeakKeyDictionary[CollectorRegistry, _Owned]" = weakref.WeakKeyDictionary()


def _owned(registry: CollectorRegistry | None) -> tuple[CollectorRegistry, _Owned]:
    reg = registry or global_registry
    owned = _OWNED.get(reg)
    if owned is None:
        owned = _OWNED[reg] = _Owned()
    return reg, owned


def get_or_create_counter(
    name: str,
    documentation: str,
    labelnames: Sequence[str] | None = None,
    *,
    registry: CollectorRegistry | None = None,
) -> Counter:
    return _ensure(Counter, name, documentation, labelnames, registry)


def get_or_create_gauge(
    name: str,
    documentation: str,
    labelnames: Sequence[str] | None = None,
    *,
    registry: CollectorRegistry | None = None,
) -> Gauge:
    return _ensure(Gauge, name, documentation, labelnames, registry)


def get_or_create_histogram(
    name: str,
    documentation: str,
    labelnames: Sequence[str] | None = None,
    *,
    registry: CollectorRegistry | None = None,
    buckets: Sequence[float] | None = None,
) -> Histogram:
    extra = {} if buckets is None else {"buckets": tuple(buckets)}
    return _ensure(Histogram, name, documentation, labelnames, registry, **extra)


def register_reset_hook(
    name: str,
    callback: Callable[[], None],
    *,
    registry: CollectorRegistry | None = None,
) -> None:
    """Replace the reset behaviour of ``name`` on ``registry``."""
    _, owned = _owned(registry)
    owned.resets[name] = callback


def reset_metrics(
    names: Iterable[str] | None = None,
    *,
    registry: CollectorRegistry | None = None,
) -> None:
    """Run the reset hooks of ``names``, or of every metric when ``None``."""
    _, owned = _owned(registry)
    selected = list(owned.resets) if names is None else [n for n in names if n in owned.resets]
    for name in selected:
        owned.resets[name]()


def get_metric_value(
    metric: MetricWrapperBase, labels: Mapping[str, str] | None = None
) -> float:
    """Return the current value of ``metric`` for ``labels``.

    Without ``labels`` the first unlabelled sample wins. ``_created``
    timestamps are never returned. A labelled child that has not been
    touched yet reads as ``0.0``.
    """
    wanted = dict(labels) if labels is not None else {}
    for family in metric.collect():
        for sample in family.samples:
            if sample.name.endswith("_created"):
                continue
            if sample.labels == wanted:
                return float(sample.value)
    return 0.0


def _ensure(
    metric_cls: type[MetricT],
    name: str,
    documentation: str,
    labelnames: Sequence[str] | None,
    registry: CollectorRegistry | None,
    **kwargs: Any,
) -> MetricT:
    reg, owned = _owned(registry)
    labels = tuple(labelnames or ())

    metric = owned.metrics.get(name)
    if metric is None:
        # Registered on this registry without going through the factory.
        metric = getattr(reg, "_names_to_collectors", {}).get(name)
    if metric is not None:
        if not isinstance(metric, metric_cls):
            raise TypeError(
                f"metric {name!r} is already registered as {type(metric).__name__}"
            )
        if tuple(getattr(metric, "_labelnames", ())) != labels:
            reg.unregister(metric)
            metric = None
    if metric is None:
        metric = metric_cls(name, documentation, labels, registry=reg, **kwargs)
        owned.resets.pop(name, None)

    owned.metrics[name] = metric
    owned.resets.setdefault(name, lambda: _zero(metric))
    return metric  # type: ignore[return-value]


def _zero(metric: MetricWrapperBase) -> None:
    if getattr(metric, "_labelnames", ()):
        metric.clear()
    elif isinstance(metric, Gauge):
        metric.set(0)
    elif isinstance(metric, Counter):
        metric._value.set(0)  # type: ignore[attr-defined]
    elif isinstance(metric, Histogram):
        metric._sum.set(0)  # type: ignore[attr-defined]
        for bucket in metric._buckets:  # type: ignore[attr-defined]
            bucket.set(0)
