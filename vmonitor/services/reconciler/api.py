from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, FastAPI, Response
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, REGISTRY as global_registry
from pydantic import BaseModel

from vmonitor import __version__

from .metrics import collect_metrics
from .models import VerdictKind
from .store import DriftStore


class HealthResponse(BaseModel):
    """Cycle health as served by ``/health``."""

    status: str
    cycle: int
    tasks: int
    outdated: int
    unknown: int
    consecutive_failures: int
    cycles_succeeded: int
    cycles_failed: int
    last_attempt_at: Optional[float] = None
    last_success_at: Optional[float] = None
    last_error: Optional[str] = None


def _health_status(consecutive_failures: int, cycles_succeeded: int, cycles_failed: int) -> str:
    if consecutive_failures:
        return "degraded"
    if cycles_succeeded == 0 and cycles_failed == 0:
        return "starting"
    return "ok"


def create_observability_router(
    store: DriftStore, *, registry: CollectorRegistry | None = None
) -> APIRouter:
    router = APIRouter()
    reg = registry or global_registry

    @router.get("/metrics")
    async def metrics_endpoint() -> Response:
        return Response(collect_metrics(reg), media_type=CONTENT_TYPE_LATEST)

    @router.get("/health", response_model=HealthResponse)
    async def health_endpoint() -> HealthResponse:
        snapshot, health = store.view()
        kinds = [entry.verdict.kind for entry in snapshot.entries.values()]
        return HealthResponse(
            status=_health_status(
                health.consecutive_failures, health.cycles_succeeded, health.cycles_failed
            ),
            cycle=snapshot.cycle,
            tasks=len(snapshot),
            outdated=kinds.count(VerdictKind.OUTDATED),
            unknown=kinds.count(VerdictKind.UNKNOWN),
            consecutive_failures=health.consecutive_failures,
            cycles_succeeded=health.cycles_succeeded,
            cycles_failed=health.cycles_failed,
            last_attempt_at=health.last_attempt_at,
            last_success_at=health.last_success_at,
            last_error=health.last_error,
        )

    return router


def create_app(
    store: DriftStore,
    *,
    registry: CollectorRegistry | None = None,
    enable_otel: bool = False,
) -> FastAPI:
    """Return the FastAPI app serving metrics and health."""
    app = FastAPI(title="vmonitor", version=__version__)
    if enable_otel:
        FastAPIInstrumentor().instrument_app(app)
    app.include_router(create_observability_router(store, registry=registry))
    return app


__all__ = ["HealthResponse", "create_app", "create_observability_router"]
