from __future__ import annotations

"""Periodic reconciliation of declared versions against upstream registries."""

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, Iterable, Optional, Tuple, Union

from opentelemetry import trace

from vmonitor.foundation.errors import InventoryFetchError, ResolutionError

from .inventory import WorkloadInventory
from .models import ArtifactReference, AvailableVersions, DriftVerdict, DriverType, Task, TaskKey
from .resolvers import ResolverRegistry, VersionResolver
from .store import DriftEntry, DriftSnapshot, DriftStore
from .versions import DEFAULT_FLOATING_TAGS, Comparator

if TYPE_CHECKING:  # pragma: no cover - import for typing only
    from .metrics import ReconcilerMetrics

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

SourceKey = Tuple[DriverType, str, str]
Resolution = Union[AvailableVersions, ResolutionError]


class LoopState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    RESOLVING = "resolving"
    PUBLISHING = "publishing"


class CycleOutcome(str, Enum):
    SUCCESS = "success"
    FETCH_FAILED = "fetch_failed"
    RESOLUTION_FAILED = "resolution_failed"
    ERROR = "error"


@dataclass(frozen=True)
class CycleReport:
    cycle: int
    outcome: CycleOutcome
    tasks: int = 0
    sources: int = 0
    failed_sources: int = 0
    duration: float = 0.0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is CycleOutcome.SUCCESS


class ReconciliationLoop:
    """Fetch the inventory, resolve upstream versions and publish verdicts.

    Cycles never overlap: :meth:`run_cycle` and :meth:`trigger` return
    without doing anything while another cycle is active, and the dropped
    trigger is counted. The store is only touched at the end of a cycle,
    either by one ``publish`` or by one ``record_failure``, so cancelling a
    cycle midway leaves the last published snapshot in place.
    """

    def __init__(
        self,
        inventory: WorkloadInventory,
        resolvers: ResolverRegistry,
        store: DriftStore,
        *,
        interval: float = 900.0,
        max_concurrency: int = 8,
        fetch_timeout: Optional[float] = None,
        resolve_timeout: Optional[float] = None,
        floating_tags: Iterable[str] = DEFAULT_FLOATING_TAGS,
        comparator: Comparator | None = None,
        metrics: "ReconcilerMetrics | None" = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._inventory = inventory
        self._resolvers = resolvers
        self._store = store
        self.interval = interval
        self._max_concurrency = max_concurrency
        self._fetch_timeout = fetch_timeout
        self._resolve_timeout = resolve_timeout
        self._comparator = comparator or Comparator(floating_tags)
        self._metrics = metrics
        self._clock = clock

        self._state = LoopState.IDLE
        self._in_progress = False
        self._cycles = 0
        self._task: Optional[asyncio.Task] = None
        self._cycle_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    @property
    def cycles_started(self) -> int:
        return self._cycles

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    async def start(self) -> None:
        """Run a first cycle now and then one every ``interval`` seconds."""
        if self._task is None:
            self._stop_event.clear()
            self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        try:
            while not self._stop_event.is_set():
                self.trigger(source="interval")
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:  # pragma: no cover - background task
            pass

    async def stop(self) -> None:
        """Stop the ticker and cancel an in-flight cycle."""
        if self._task is not None:
            self._stop_event.set()
            try:
                await self._task
            finally:
                self._task = None
                self._stop_event = asyncio.Event()
        cycle = self._cycle_task
        if cycle is not None and not cycle.done():
            cycle.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await cycle
        self._cycle_task = None

    def trigger(self, *, source: str = "manual") -> bool:
        """Start a cycle in the background unless one is already running.

        Returns ``True`` when a cycle was scheduled.
        """
        pending = self._cycle_task is not None and not self._cycle_task.done()
        if self._in_progress or pending:
            self._skip(source)
            return False
        self._cycle_task = asyncio.create_task(self.run_cycle())
        return True

    async def wait_idle(self) -> None:
        """Wait for the background cycle started by :meth:`trigger`."""
        cycle = self._cycle_task
        if cycle is not None:
            await asyncio.shield(cycle)

    def _skip(self, source: str) -> None:
        logger.warning(
            "Skipping %s reconciliation trigger: cycle %d still in progress",
            source,
            self._cycles,
        )
        if self._metrics is not None:
            self._metrics.record_skipped_trigger()

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------
    async def run_cycle(self) -> CycleReport | None:
        """Run one reconciliation cycle.

        Returns ``None`` when another cycle is still active.
        """
        if self._in_progress:
            self._skip("direct")
            return None
        self._in_progress = True
        self._cycles += 1
        cycle = self._cycles
        started = time.perf_counter()
        try:
            with tracer.start_as_current_span("vmonitor.reconcile") as span:
                span.set_attribute("vmonitor.cycle", cycle)
                try:
                    report = await self._cycle(cycle, started)
                except Exception as exc:
                    logger.exception("Reconciliation cycle %d failed unexpectedly", cycle)
                    self._store.record_failure(f"unexpected error: {exc}", at=self._clock())
                    report = CycleReport(
                        cycle,
                        CycleOutcome.ERROR,
                        duration=time.perf_counter() - started,
                        error=str(exc),
                    )
                span.set_attribute("vmonitor.outcome", report.outcome.value)
        finally:
            self._in_progress = False
            self._state = LoopState.IDLE
        if self._metrics is not None:
            self._metrics.record_cycle(report.outcome.value, report.duration)
        return report

    async def _cycle(self, cycle: int, started: float) -> CycleReport:
        self._state = LoopState.FETCHING
        with tracer.start_as_current_span("vmonitor.reconcile.fetch"):
            try:
                workloads = await asyncio.wait_for(
                    self._inventory.fetch(), timeout=self._fetch_timeout
                )
            except InventoryFetchError as exc:
                return self._fetch_failed(cycle, started, str(exc))
            except asyncio.TimeoutError:
                return self._fetch_failed(
                    cycle, started, f"inventory fetch timed out after {self._fetch_timeout}s"
                )

        tasks = [task for workload in workloads for task in workload.tasks]
        now = self._clock()
        previous = self._store.snapshot()
        entries: Dict[TaskKey, DriftEntry] = {}
        pending: Dict[SourceKey, list[Task]] = {}
        resolvers: Dict[SourceKey, VersionResolver] = {}

        for task in tasks:
            reference = task.reference
            if reference is None:
                continue
            resolver = self._resolvers.get(task.driver_type)
            if resolver is None:
                continue
            early = self._comparator.precheck(reference.declared)
            if early is not None:
                entries[task.key] = DriftEntry(early, reference.declared, now, now)
                continue
            source = (task.driver_type, reference.origin, reference.repository)
            pending.setdefault(source, []).append(task)
            resolvers.setdefault(source, resolver)

        self._state = LoopState.RESOLVING
        with tracer.start_as_current_span("vmonitor.reconcile.resolve") as span:
            span.set_attribute("vmonitor.sources", len(pending))
            results = await self._resolve_all(
                {source: (resolvers[source], group[0].reference) for source, group in pending.items()}
            )

        failed_sources = 0
        for source, group in pending.items():
            outcome = results[source]
            if isinstance(outcome, ResolutionError) and outcome.is_transient:
                failed_sources += 1
            for task in group:
                entries[task.key] = self._entry(task, outcome, previous, now)

        duration = time.perf_counter() - started
        if pending and failed_sources == len(pending):
            error = f"all {failed_sources} upstream lookups failed"
            logger.error("Reconciliation cycle %d failed, keeping previous snapshot: %s", cycle, error)
            self._store.record_failure(error, at=self._clock())
            return CycleReport(
                cycle,
                CycleOutcome.RESOLUTION_FAILED,
                tasks=len(entries),
                sources=len(pending),
                failed_sources=failed_sources,
                duration=duration,
                error=error,
            )

        self._state = LoopState.PUBLISHING
        with tracer.start_as_current_span("vmonitor.reconcile.publish"):
            snapshot = DriftSnapshot(entries, cycle=cycle, completed_at=self._clock())
            self._store.publish(snapshot, at=snapshot.completed_at)

        logger.info(
            "Reconciliation cycle %d published %d verdicts (%d sources, %d unavailable) in %.2fs",
            cycle,
            len(entries),
            len(pending),
            failed_sources,
            duration,
        )
        return CycleReport(
            cycle,
            CycleOutcome.SUCCESS,
            tasks=len(entries),
            sources=len(pending),
            failed_sources=failed_sources,
            duration=duration,
        )

    def _fetch_failed(self, cycle: int, started: float, error: str) -> CycleReport:
        logger.error("Reconciliation cycle %d could not fetch inventory: %s", cycle, error)
        self._store.record_failure(error, at=self._clock())
        return CycleReport(
            cycle,
            CycleOutcome.FETCH_FAILED,
            duration=time.perf_counter() - started,
            error=error,
        )

    async def _resolve_all(
        self, sources: Dict[SourceKey, Tuple[VersionResolver, ArtifactReference]]
    ) -> Dict[SourceKey, Resolution]:
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _bounded(resolver: VersionResolver, reference: ArtifactReference) -> Resolution:
            async with semaphore:
                return await self._resolve_one(resolver, reference)

        keys = list(sources)
        results = await asyncio.gather(*(_bounded(*sources[key]) for key in keys))
        return dict(zip(keys, results))

    async def _resolve_one(
        self, resolver: VersionResolver, reference: ArtifactReference
    ) -> Resolution:
        target = f"{reference.origin}/{reference.repository}"
        try:
            return tuple(
                await asyncio.wait_for(resolver.resolve(reference), timeout=self._resolve_timeout)
            )
        except ResolutionError as exc:
            if exc.is_transient:
                logger.warning("Upstream versions for %s unavailable: %s", target, exc)
            else:
                logger.info("Upstream versions for %s cannot be resolved: %s", target, exc)
            return exc
        except asyncio.TimeoutError:
            logger.warning("Resolving %s timed out after %ss", target, self._resolve_timeout)
            return ResolutionError.transient(f"resolving {target} timed out", reason="timeout")
        except Exception as exc:
            logger.exception("Unexpected error while resolving %s", target)
            return ResolutionError.transient(f"resolving {target} failed: {exc}")

    def _entry(
        self,
        task: Task,
        outcome: Resolution,
        previous: DriftSnapshot,
        now: float,
    ) -> DriftEntry:
        declared = task.reference.declared if task.reference is not None else None
        if isinstance(outcome, ResolutionError):
            if outcome.is_transient:
                prior = previous.get(task.key)
                last_success = prior.last_success_at if prior is not None else None
                return DriftEntry(DriftVerdict.unknown(outcome.reason), declared, now, last_success)
            return DriftEntry(DriftVerdict.incomparable(outcome.reason), declared, now, now)
        verdict = self._comparator.compare(declared or "", outcome)
        if verdict.is_outdated:
            logger.info("%s runs %s, newest is %s", task.key, declared, verdict.latest)
        return DriftEntry(verdict, declared, now, now)


__all__ = [
    "CycleOutcome",
    "CycleReport",
    "LoopState",
    "ReconciliationLoop",
]
