"""Snapshot store shared by the reconciliation loop and metric readers.

The store never mutates a published object. A cycle builds a complete
:class:`DriftSnapshot` off to the side and :meth:`DriftStore.publish`
replaces the reference in one step, so a reader sees either the previous
cycle or the new one and never a mixture. The lock only guards the
reference swap; no fetch or resolve work ever happens while it is held.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import threading
from types import MappingProxyType
from typing import Iterator, Mapping

from .models import DriftVerdict, TaskKey


@dataclass(frozen=True, slots=True)
class DriftEntry:
    verdict: DriftVerdict
    declared: str | None = None
    last_checked_at: float | None = None
    last_success_at: float | None = None


@dataclass(frozen=True)
class DriftSnapshot:
    """Immutable view of all verdicts produced by one completed cycle."""

    entries: Mapping[TaskKey, DriftEntry] = field(default_factory=dict)
    cycle: int = 0
    completed_at: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "entries", MappingProxyType(dict(self.entries)))

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[TaskKey]:
        return iter(self.entries)

    def __contains__(self, key: object) -> bool:
        return key in self.entries

    def get(self, key: TaskKey) -> DriftEntry | None:
        return self.entries.get(key)

    def verdicts(self) -> dict[TaskKey, DriftVerdict]:
        """Verdicts without timestamps, for comparing snapshots."""
        return {key: entry.verdict for key, entry in self.entries.items()}


@dataclass(frozen=True, slots=True)
class CycleHealth:
    """Counters describing the reconciliation loop itself."""

    consecutive_failures: int = 0
    cycles_succeeded: int = 0
    cycles_failed: int = 0
    last_attempt_at: float | None = None
    last_success_at: float | None = None
    last_error: str | None = None


class DriftStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._snapshot = DriftSnapshot()
        self._health = CycleHealth()

    def snapshot(self) -> DriftSnapshot:
        return self._snapshot

    @property
    def health(self) -> CycleHealth:
        return self._health

    def view(self) -> tuple[DriftSnapshot, CycleHealth]:
        """Return a snapshot and the health record published alongside it."""
        with self._lock:
            return self._snapshot, self._health

    def publish(self, snapshot: DriftSnapshot, *, at: float) -> None:
        """Replace the snapshot with the output of a successful cycle."""
        with self._lock:
            health = self._health
            self._snapshot = snapshot
            self._health = replace(
                health,
                consecutive_failures=0,
                cycles_succeeded=health.cycles_succeeded + 1,
                last_attempt_at=at,
                last_success_at=at,
                last_error=None,
            )

    def record_failure(self, error: str, *, at: float) -> None:
        """Count a failed cycle and keep the current snapshot."""
        with self._lock:
            self._health = _failed(self._health, error, at)


def _failed(health: CycleHealth, error: str, at: float) -> CycleHealth:
    return replace(
        health,
        consecutive_failures=health.consecutive_failures + 1,
        cycles_failed=health.cycles_failed + 1,
        last_attempt_at=at,
        last_error=error,
    )


__all__ = ["CycleHealth", "DriftEntry", "DriftSnapshot", "DriftStore"]
