from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from typing import Optional, Sequence

import uvicorn
from prometheus_client import CollectorRegistry, REGISTRY as global_registry

from vmonitor import __version__
from vmonitor.foundation.common.tracing import setup_tracing
from vmonitor.foundation.config import MonitorConfig, find_config_file, load_config
from vmonitor.foundation.errors import ConfigurationError
from vmonitor.foundation.log_setup import setup_logging

from .api import create_app
from .event_stream import NomadEventWatcher
from .inventory import WorkloadInventory
from .loop import ReconciliationLoop
from .metrics import ReconcilerMetrics, register_drift_collector
from .models import DriverType
from .nomad_client import NomadClient
from .registry_client import RegistryClient
from .resolvers import ContainerRegistryResolver, ResolverRegistry
from .store import DriftStore

logger = logging.getLogger(__name__)


def _log_config_source(cfg_path: str | None, *, cli_override: str | None) -> None:
    if cli_override:
        logger.info("vmonitor configuration loaded from %s (--config)", cli_override)
    elif cfg_path:
        logger.info("vmonitor configuration loaded from %s", cfg_path)
    else:
        logger.info("vmonitor configuration file not provided; using defaults and environment")


@dataclass
class Service:
    """All long-lived objects of one monitor process."""

    config: MonitorConfig
    store: DriftStore
    loop: ReconciliationLoop
    nomad: NomadClient
    registry: RegistryClient
    watcher: Optional[NomadEventWatcher] = None

    async def start(self) -> None:
        await self.loop.start()
        if self.watcher is not None:
            await self.watcher.start()

    async def stop(self) -> None:
        if self.watcher is not None:
            await self.watcher.stop()
        await self.loop.stop()
        await self.nomad.aclose()
        await self.registry.aclose()


def build_service(
    cfg: MonitorConfig, *, registry: CollectorRegistry | None = None
) -> Service:
    """Wire clients, resolvers, the loop and its metrics from ``cfg``."""
    reg = registry or global_registry
    nomad = NomadClient(
        cfg.nomad_base_url,
        timeout=cfg.scheduler_timeout,
        namespace=cfg.nomad_namespace,
    )
    registry_client = RegistryClient(timeout=cfg.registry_timeout)
    resolvers = ResolverRegistry(
        {DriverType.CONTAINER_IMAGE: ContainerRegistryResolver(registry_client)}
    )
    store = DriftStore()
    register_drift_collector(store, registry=reg)
    loop = ReconciliationLoop(
        WorkloadInventory(nomad, default_registry=cfg.default_registry),
        resolvers,
        store,
        interval=cfg.interval,
        max_concurrency=cfg.max_concurrency,
        # Every job read is bounded by the client timeout; the fetch as a
        # whole is bounded by the cycle interval.
        fetch_timeout=cfg.interval,
        resolve_timeout=cfg.registry_timeout * 4,
        floating_tags=cfg.floating_tags,
        metrics=ReconcilerMetrics(reg),
    )
    watcher = NomadEventWatcher(nomad, loop) if cfg.watch_events else None
    return Service(cfg, store, loop, nomad, registry_client, watcher)


async def _run(cfg: MonitorConfig, *, enable_otel: bool = False) -> None:
    service = build_service(cfg)
    app = create_app(service.store, enable_otel=enable_otel)
    config = uvicorn.Config(
        app,
        host=cfg.metrics_host,
        port=cfg.metrics_port,
        loop="asyncio",
        log_level=cfg.log_level.lower(),
    )
    http_server = uvicorn.Server(config)
    logger.info(
        "vmonitor %s watching %s every %ss, metrics on %s:%d",
        __version__,
        cfg.nomad_base_url,
        cfg.interval,
        cfg.metrics_host,
        cfg.metrics_port,
    )
    try:
        await service.start()
        await http_server.serve()
    finally:
        await service.stop()


def main(argv: Sequence[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="vmonitor",
        description="Report Nomad tasks running outdated container images",
    )
    parser.add_argument("--config", help="Path to configuration file")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args(list(sys.argv[1:] if argv is None else argv))

    cfg_path = args.config or find_config_file()
    try:
        cfg = load_config(cfg_path)
    except ConfigurationError as exc:
        setup_logging()
        logger.error("Invalid configuration: %s", exc)
        raise SystemExit(2) from exc

    setup_logging(cfg.log_level, cfg.log_format)
    _log_config_source(cfg_path, cli_override=args.config)
    setup_tracing("vmonitor", exporter_endpoint=cfg.otel_exporter_endpoint)

    asyncio.run(_run(cfg, enable_otel=True))


if __name__ == "__main__":  # pragma: no cover - CLI entry
    main()
