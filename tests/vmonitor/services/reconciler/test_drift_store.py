import pytest

from vmonitor.services.reconciler.models import DriftVerdict, TaskKey
from vmonitor.services.reconciler.store import DriftEntry, DriftSnapshot, DriftStore

KEY = TaskKey("web", "frontend", "nginx")


def _snapshot(cycle: int, **verdicts: DriftVerdict) -> DriftSnapshot:
    entries = {
        TaskKey("job", "group", name): DriftEntry(verdict, "1.0.0", 10.0, 10.0)
        for name, verdict in verdicts.items()
    }
    return DriftSnapshot(entries, cycle=cycle, completed_at=float(cycle))


def test_empty_store():
    store = DriftStore()
    assert len(store.snapshot()) == 0
    assert store.health.consecutive_failures == 0
    assert store.health.last_success_at is None


def test_snapshot_is_read_only():
    snapshot = DriftSnapshot({KEY: DriftEntry(DriftVerdict.current())})
    with pytest.raises(TypeError):
        snapshot.entries[KEY] = DriftEntry(DriftVerdict.unknown("x"))  # type: ignore[index]


def test_snapshot_copies_input_mapping():
    source = {KEY: DriftEntry(DriftVerdict.current())}
    snapshot = DriftSnapshot(source)
    source.clear()
    assert KEY in snapshot


def test_publish_replaces_snapshot_and_resets_failures():
    store = DriftStore()
    store.record_failure("nomad down", at=1.0)
    store.record_failure("nomad down", at=2.0)
    assert store.health.consecutive_failures == 2

    snapshot = _snapshot(3, a=DriftVerdict.current())
    store.publish(snapshot, at=3.0)

    assert store.snapshot() is snapshot
    health = store.health
    assert health.consecutive_failures == 0
    assert health.cycles_succeeded == 1
    assert health.cycles_failed == 2
    assert health.last_success_at == 3.0
    assert health.last_error is None


def test_record_failure_keeps_snapshot():
    store = DriftStore()
    snapshot = _snapshot(1, a=DriftVerdict.outdated("2.0.0"))
    store.publish(snapshot, at=1.0)
    store.record_failure("timeout", at=2.0)

    assert store.snapshot() is snapshot
    assert store.health.consecutive_failures == 1
    assert store.health.last_success_at == 1.0
    assert store.health.last_attempt_at == 2.0
    assert store.health.last_error == "timeout"


def test_failure_after_success_keeps_snapshot_and_resets_on_next_publish():
    store = DriftStore()
    good = _snapshot(1, a=DriftVerdict.current(), b=DriftVerdict.current())
    store.publish(good, at=1.0)
    store.record_failure("all lookups failed", at=2.0)

    snapshot, health = store.view()
    assert snapshot is good
    assert health.consecutive_failures == 1
    assert health.last_success_at == 1.0

    store.publish(_snapshot(3, a=DriftVerdict.current()), at=3.0)
    assert store.health.consecutive_failures == 0
    assert store.health.cycles_failed == 1
    assert store.health.last_error is None


def test_verdicts_excludes_timestamps():
    first = DriftSnapshot({KEY: DriftEntry(DriftVerdict.current(), "1.0.0", 1.0, 1.0)})
    second = DriftSnapshot({KEY: DriftEntry(DriftVerdict.current(), "1.0.0", 2.0, 2.0)})
    assert first.verdicts() == second.verdicts()
    assert first.entries != second.entries
