from .config import MonitorConfig, find_config_file, load_config, parse_interval
from .errors import (
    ConfigurationError,
    InvalidReference,
    InventoryFetchError,
    RegistryError,
    RegistryNotFound,
    RegistryUnavailable,
    ResolutionError,
    ResolutionErrorKind,
    SchedulerError,
    VMonitorError,
)

__all__ = [
    "ConfigurationError",
    "InvalidReference",
    "InventoryFetchError",
    "MonitorConfig",
    "RegistryError",
    "RegistryNotFound",
    "RegistryUnavailable",
    "ResolutionError",
    "ResolutionErrorKind",
    "SchedulerError",
    "VMonitorError",
    "find_config_file",
    "load_config",
    "parse_interval",
]
