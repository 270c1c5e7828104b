"""OpenTelemetry tracing utilities.

``setup_tracing`` configures the global tracer provider once per process.
Spans are exported to an OTLP compatible backend when an endpoint is given
(``otel_exporter_endpoint`` in the config file or
``VMONITOR_OTEL_EXPORTER_ENDPOINT``). The special value ``console`` prints
spans to stdout. Without an endpoint a provider is installed but nothing is
exported.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
try:
    # Optional dependency; only needed when an OTLP endpoint is configured
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter  # type: ignore
except Exception:  # pragma: no cover - optional dependency not present
    OTLPSpanExporter = None  # type: ignore

logger = logging.getLogger(__name__)

_INITIALISED = False


def setup_tracing(service_name: str, exporter_endpoint: Optional[str] = None) -> None:
    """Configure a global :class:`TracerProvider` if not already set."""
    global _INITIALISED
    if _INITIALISED:
        return

    endpoint = exporter_endpoint or os.getenv("VMONITOR_OTEL_EXPORTER_ENDPOINT")
    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)
    if endpoint:
        if endpoint.strip().lower() == "console":
            provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        elif OTLPSpanExporter is not None:
            provider.add_span_processor(
                BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint))
            )
        else:
            logger.warning(
                "OTLP exporter package not installed; spans for %s are not exported",
                service_name,
            )
    trace.set_tracer_provider(provider)
    _INITIALISED = True


__all__ = ["setup_tracing"]
