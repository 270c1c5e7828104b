from __future__ import annotations

import pytest

from vmonitor.foundation.config import MonitorConfig
from vmonitor.services.reconciler import server
from vmonitor.services.reconciler.models import DriverType


@pytest.mark.asyncio
async def test_build_service_wires_components(registry):
    cfg = MonitorConfig(
        nomad_address="nomad.internal",
        interval=60.0,
        max_concurrency=3,
        floating_tags=("latest", "stable"),
        watch_events=True,
    )
    service = server.build_service(cfg, registry=registry)
    try:
        assert service.nomad.base_url == "http://nomad.internal:4646"
        assert service.loop.interval == 60.0
        assert service.loop._comparator.floating_tags == frozenset({"latest", "stable"})
        assert service.loop._resolvers.get(DriverType.CONTAINER_IMAGE) is not None
        assert service.watcher is not None
        assert registry.get_sample_value("vmonitor_reconcile_consecutive_failures") == 0.0
    finally:
        await service.stop()


@pytest.mark.asyncio
async def test_event_watcher_is_optional(registry):
    service = server.build_service(MonitorConfig(), registry=registry)
    try:
        assert service.watcher is None
    finally:
        await service.stop()


def test_main_exits_on_invalid_configuration(tmp_path, monkeypatch):
    bad = tmp_path / "vmonitor.yml"
    bad.write_text("vmonitor:\n  interval: sometimes\n")
    monkeypatch.setattr(server, "setup_logging", lambda *args, **kwargs: None)

    def fail_run(*args, **kwargs):  # pragma: no cover - must not be reached
        raise AssertionError("service started with invalid configuration")

    monkeypatch.setattr(server.asyncio, "run", fail_run)
    with pytest.raises(SystemExit) as excinfo:
        server.main(["--config", str(bad)])
    assert excinfo.value.code == 2
