"""Exception hierarchy shared by the monitor services.

Only :class:`ConfigurationError` is fatal, and only during start-up. Every
other error is scoped to a single reconciliation cycle or a single task.
"""

from __future__ import annotations

from enum import Enum


class VMonitorError(Exception):
    """Base class for all monitor errors."""


class ConfigurationError(VMonitorError):
    """Raised when the configuration cannot be parsed or is invalid."""


class InvalidReference(VMonitorError, ValueError):
    """Raised when an image string cannot be normalised into a reference."""


class InventoryFetchError(VMonitorError):
    """Raised when the workload inventory cannot be built for a cycle."""


class ResolutionErrorKind(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


class ResolutionError(VMonitorError):
    """Failure to list the available versions for one artifact source.

    ``kind`` decides the verdict: transient failures become ``Unknown`` and
    are retried next cycle, permanent ones become ``Incomparable``.
    """

    def __init__(
        self,
        message: str,
        kind: ResolutionErrorKind,
        *,
        reason: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.reason = reason or (
            "resolution-unavailable"
            if kind is ResolutionErrorKind.TRANSIENT
            else "resolution-failed"
        )

    @classmethod
    def transient(cls, message: str, *, reason: str | None = None) -> "ResolutionError":
        return cls(message, ResolutionErrorKind.TRANSIENT, reason=reason)

    @classmethod
    def permanent(cls, message: str, *, reason: str | None = None) -> "ResolutionError":
        return cls(message, ResolutionErrorKind.PERMANENT, reason=reason)

    @property
    def is_transient(self) -> bool:
        return self.kind is ResolutionErrorKind.TRANSIENT


class SchedulerError(VMonitorError):
    """Nomad API call failed (connectivity, HTTP status or payload)."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class RegistryError(VMonitorError):
    """Registry API call failed with a non-retryable client error."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class RegistryNotFound(RegistryError):
    """The repository does not exist on the registry."""


class RegistryUnavailable(RegistryError):
    """Network failure, timeout, rate limiting or server-side error."""


__all__ = [
    "ConfigurationError",
    "InvalidReference",
    "InventoryFetchError",
    "RegistryError",
    "RegistryNotFound",
    "RegistryUnavailable",
    "ResolutionError",
    "ResolutionErrorKind",
    "SchedulerError",
    "VMonitorError",
]
