"""Configuration for the version monitor.

Values are layered: dataclass defaults, then the ``vmonitor`` section of a
YAML file, then environment variables. Every value is validated up front so
that a malformed setting stops the process at start-up instead of surfacing
in the middle of a reconciliation cycle.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Mapping
from urllib.parse import urlsplit

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_SECTION = "vmonitor"
CONFIG_FILE_NAMES = ("vmonitor.yml", "vmonitor.yaml")
DEFAULT_REGISTRY = "registry.hub.docker.com"

# Environment variable consulted for each field.
ENV_OVERRIDES: dict[str, str] = {
    "nomad_address": "NOMAD_ADDR",
    "nomad_port": "NOMAD_PORT",
    "nomad_scheme": "NOMAD_SCHEME",
    "nomad_namespace": "NOMAD_NAMESPACE",
    "interval": "VMONITOR_INTERVAL",
    "metrics_host": "VMONITOR_METRICS_HOST",
    "metrics_port": "VMONITOR_METRICS_PORT",
    "scheduler_timeout": "VMONITOR_SCHEDULER_TIMEOUT",
    "registry_timeout": "VMONITOR_REGISTRY_TIMEOUT",
    "max_concurrency": "VMONITOR_MAX_CONCURRENCY",
    "default_registry": "VMONITOR_DEFAULT_REGISTRY",
    "floating_tags": "VMONITOR_FLOATING_TAGS",
    "watch_events": "VMONITOR_WATCH_EVENTS",
    "log_level": "VMONITOR_LOG_LEVEL",
    "log_format": "VMONITOR_LOG_FORMAT",
    "otel_exporter_endpoint": "VMONITOR_OTEL_EXPORTER_ENDPOINT",
}

_DURATION_RE = re.compile(
    r"^(?:(?P<h>\d+(?:\.\d+)?)h)?(?:(?P<m>\d+(?:\.\d+)?)m)?(?:(?P<s>\d+(?:\.\d+)?)s)?$"
)
_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


@dataclass(frozen=True)
class MonitorConfig:
    """Settings for the reconciliation service."""

    nomad_address: str = "localhost"
    nomad_port: int = 4646
    nomad_scheme: str = "http"
    nomad_namespace: str | None = None
    interval: float = 900.0
    metrics_host: str = "0.0.0.0"
    metrics_port: int = 3000
    scheduler_timeout: float = 10.0
    registry_timeout: float = 10.0
    max_concurrency: int = 8
    default_registry: str = DEFAULT_REGISTRY
    floating_tags: tuple[str, ...] = field(default=("latest",))
    watch_events: bool = False
    log_level: str = "INFO"
    log_format: str = "text"
    otel_exporter_endpoint: str | None = None

    @property
    def nomad_base_url(self) -> str:
        """Base URL of the Nomad HTTP API.

        ``NOMAD_ADDR`` is commonly a full URL (``http://10.0.0.1:4646``); in
        that case its scheme and port win over the separate settings.
        """
        if "://" in self.nomad_address:
            parts = urlsplit(self.nomad_address)
            if parts.port is not None:
                return f"{parts.scheme}://{parts.netloc}"
            return f"{parts.scheme}://{parts.netloc}:{self.nomad_port}"
        return f"{self.nomad_scheme}://{self.nomad_address}:{self.nomad_port}"


def parse_interval(value: Any) -> float:
    """Return ``value`` as a positive number of seconds.

    Accepts numbers, numeric strings and durations such as ``30s``, ``15m``,
    ``1h`` or ``1h30m``.
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid interval: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        text = value.strip().lower()
        try:
            seconds = float(text)
        except ValueError:
            match = _DURATION_RE.match(text)
            if not text or match is None:
                raise ConfigurationError(f"Invalid interval: {value!r}") from None
            seconds = (
                float(match.group("h") or 0) * 3600
                + float(match.group("m") or 0) * 60
                + float(match.group("s") or 0)
            )
    else:
        raise ConfigurationError(f"Invalid interval: {value!r}")
    if seconds <= 0:
        raise ConfigurationError(f"Interval must be positive, got {value!r}")
    return seconds


def _parse_int(name: str) -> Callable[[Any], int]:
    def _convert(value: Any) -> int:
        if isinstance(value, bool):
            raise ConfigurationError(f"{name} must be an integer, got {value!r}")
        try:
            return int(str(value).strip())
        except ValueError:
            raise ConfigurationError(f"{name} must be an integer, got {value!r}") from None

    return _convert


def _parse_float(name: str) -> Callable[[Any], float]:
    def _convert(value: Any) -> float:
        if isinstance(value, bool):
            raise ConfigurationError(f"{name} must be a number, got {value!r}")
        try:
            return float(str(value).strip())
        except ValueError:
            raise ConfigurationError(f"{name} must be a number, got {value!r}") from None

    return _convert


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off", ""}:
        return False
    raise ConfigurationError(f"Invalid boolean value: {value!r}")


def _parse_tags(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
    else:
        raise ConfigurationError(f"floating_tags must be a list or comma string, got {value!r}")
    return tuple(item.strip() for item in items if item.strip())


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


_CONVERTERS: dict[str, Callable[[Any], Any]] = {
    "nomad_address": lambda v: str(v).strip(),
    "nomad_port": _parse_int("nomad_port"),
    "nomad_scheme": lambda v: str(v).strip().lower(),
    "nomad_namespace": _optional_str,
    "interval": parse_interval,
    "metrics_host": lambda v: str(v).strip(),
    "metrics_port": _parse_int("metrics_port"),
    "scheduler_timeout": _parse_float("scheduler_timeout"),
    "registry_timeout": _parse_float("registry_timeout"),
    "max_concurrency": _parse_int("max_concurrency"),
    "default_registry": lambda v: str(v).strip(),
    "floating_tags": _parse_tags,
    "watch_events": _parse_bool,
    "log_level": lambda v: str(v).strip().upper(),
    "log_format": lambda v: str(v).strip().lower(),
    "otel_exporter_endpoint": _optional_str,
}


def find_config_file(cwd: Path | None = None) -> str | None:
    """Return the first discoverable configuration file in ``cwd``."""

    base = Path.cwd() if cwd is None else cwd

    for name in CONFIG_FILE_NAMES:
        candidate = base / name
        if candidate.is_file():
            return str(candidate)
    return None


def _read_config_mapping(path: str) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            try:
                data = yaml.safe_load(fh) or {}
            except yaml.YAMLError as exc:
                logger.error("Failed to parse configuration file %s: %s", path, exc)
                raise ConfigurationError(f"Failed to parse configuration file {path}") from exc
    except OSError as exc:
        logger.error("Unable to open configuration file %s: %s", path, exc)
        raise ConfigurationError(f"Unable to open configuration file {path}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError("Configuration file must be a mapping")
    section = data.get(CONFIG_SECTION, data)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"{CONFIG_SECTION} section must be a mapping")
    return section


def _apply_values(cfg: MonitorConfig, values: Mapping[str, Any], *, source: str) -> MonitorConfig:
    known = {f.name for f in fields(MonitorConfig)}
    updates: dict[str, Any] = {}
    for key, raw in values.items():
        if key not in known:
            logger.warning("%s: ignoring unknown configuration key '%s'", source, key)
            continue
        updates[key] = _CONVERTERS[key](raw)
    return replace(cfg, **updates) if updates else cfg


def _environment_values(environ: Mapping[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for name, env in ENV_OVERRIDES.items():
        if env in environ:
            values[name] = environ[env]
    # Machine readable logs are switched on by the presence of LOG_MACHINE.
    if "LOG_MACHINE" in environ and "log_format" not in values:
        values["log_format"] = "json"
    return values


def validate_config(cfg: MonitorConfig) -> MonitorConfig:
    """Raise :class:`ConfigurationError` for values the service cannot use."""

    if not cfg.nomad_address:
        raise ConfigurationError("nomad_address must not be empty")
    if cfg.nomad_scheme not in {"http", "https"}:
        raise ConfigurationError(f"nomad_scheme must be http or https, got {cfg.nomad_scheme!r}")
    for name in ("nomad_port", "metrics_port"):
        port = getattr(cfg, name)
        if not 0 < port < 65536:
            raise ConfigurationError(f"{name} out of range: {port}")
    for name in ("scheduler_timeout", "registry_timeout"):
        if getattr(cfg, name) <= 0:
            raise ConfigurationError(f"{name} must be positive")
    if cfg.max_concurrency < 1:
        raise ConfigurationError("max_concurrency must be at least 1")
    if cfg.interval <= 0:
        raise ConfigurationError("interval must be positive")
    if not cfg.default_registry:
        raise ConfigurationError("default_registry must not be empty")
    if cfg.log_level not in _LOG_LEVELS:
        raise ConfigurationError(f"Unknown log level: {cfg.log_level}")
    if cfg.log_format not in {"text", "json"}:
        raise ConfigurationError(f"log_format must be text or json, got {cfg.log_format!r}")
    return cfg


def load_config(
    path: str | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> MonitorConfig:
    """Build a validated :class:`MonitorConfig`.

    ``path`` points at an optional YAML file whose values sit either at the
    top level or under a ``vmonitor`` key. Environment variables listed in
    :data:`ENV_OVERRIDES` take precedence over the file.
    """

    cfg = MonitorConfig()
    if path:
        cfg = _apply_values(cfg, _read_config_mapping(path), source=path)
    env = os.environ if environ is None else environ
    cfg = _apply_values(cfg, _environment_values(env), source="environment")
    return validate_config(cfg)


__all__ = [
    "CONFIG_SECTION",
    "DEFAULT_REGISTRY",
    "ENV_OVERRIDES",
    "MonitorConfig",
    "find_config_file",
    "load_config",
    "parse_interval",
    "validate_config",
]
