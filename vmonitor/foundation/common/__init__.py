from .circuit_breaker import AsyncCircuitBreaker, CircuitOpenError
from .metrics_factory import (
    get_metric_value,
    get_or_create_counter,
    get_or_create_gauge,
    get_or_create_histogram,
    reset_metrics,
)
from .tracing import setup_tracing

__all__ = [
    "AsyncCircuitBreaker",
    "CircuitOpenError",
    "get_metric_value",
    "get_or_create_counter",
    "get_or_create_gauge",
    "get_or_create_histogram",
    "reset_metrics",
    "setup_tracing",
]
