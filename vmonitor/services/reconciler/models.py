"""Data model shared by the reconciliation components."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import re
from typing import Tuple

from vmonitor.foundation.errors import InvalidReference

# ``<algorithm>:<hex>`` as used by OCI content digests.
_DIGEST_RE = re.compile(r"^[a-z0-9]+(?:[+._-][a-z0-9]+)*:[0-9a-fA-F]{32,}$")

AvailableVersions = Tuple[str, ...]


def is_digest(value: str) -> bool:
    """Return ``True`` when ``value`` is a content digest rather than a tag."""
    return bool(_DIGEST_RE.match(value))


class DriverType(str, Enum):
    """Artifact-source family of a task, derived from its Nomad driver."""

    CONTAINER_IMAGE = "container-image"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class ArtifactReference:
    """Normalised pointer to a deployed artifact.

    ``declared`` is either a tag (``1.2.0``) or a content digest
    (``sha256:...``).
    """

    origin: str
    repository: str
    declared: str

    def __post_init__(self) -> None:
        if not self.origin or not self.repository or not self.declared:
            raise InvalidReference(
                f"incomplete artifact reference: origin={self.origin!r} "
                f"repository={self.repository!r} declared={self.declared!r}"
            )

    @property
    def is_digest(self) -> bool:
        return is_digest(self.declared)

    @property
    def source(self) -> tuple[str, str]:
        """The ``(origin, repository)`` pair a resolver lists versions for."""
        return (self.origin, self.repository)

    def __str__(self) -> str:
        sep = "@" if self.is_digest else ":"
        return f"{self.origin}/{self.repository}{sep}{self.declared}"


@dataclass(frozen=True, slots=True, order=True)
class TaskKey:
    """Identity of one task across cycles."""

    job: str
    group: str
    task: str

    def __str__(self) -> str:
        return f"{self.job}/{self.group}/{self.task}"


@dataclass(frozen=True, slots=True)
class Task:
    job: str
    group: str
    name: str
    driver: str
    driver_type: DriverType = DriverType.UNKNOWN
    reference: ArtifactReference | None = None

    @property
    def key(self) -> TaskKey:
        return TaskKey(self.job, self.group, self.name)


@dataclass(frozen=True, slots=True)
class Workload:
    """A running Nomad job and its tasks for the current cycle."""

    job_id: str
    name: str
    namespace: str | None = None
    tasks: tuple[Task, ...] = field(default_factory=tuple)


class VerdictKind(str, Enum):
    CURRENT = "current"
    OUTDATED = "outdated"
    INCOMPARABLE = "incomparable"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class DriftVerdict:
    """Outcome of comparing one task's declared version with upstream.

    Use the ``current``/``outdated``/``incomparable``/``unknown``
    constructors; ``latest`` is set only for outdated verdicts and
    ``reason`` only for incomparable and unknown ones.
    """

    kind: VerdictKind
    latest: str | None = None
    reason: str | None = None

    @classmethod
    def current(cls) -> "DriftVerdict":
        return cls(VerdictKind.CURRENT)

    @classmethod
    def outdated(cls, latest: str) -> "DriftVerdict":
        return cls(VerdictKind.OUTDATED, latest=latest)

    @classmethod
    def incomparable(cls, reason: str) -> "DriftVerdict":
        return cls(VerdictKind.INCOMPARABLE, reason=reason)

    @classmethod
    def unknown(cls, reason: str) -> "DriftVerdict":
        return cls(VerdictKind.UNKNOWN, reason=reason)

    @property
    def is_current(self) -> bool:
        return self.kind is VerdictKind.CURRENT

    @property
    def is_outdated(self) -> bool:
        return self.kind is VerdictKind.OUTDATED

    @property
    def is_unknown(self) -> bool:
        return self.kind is VerdictKind.UNKNOWN

    def __str__(self) -> str:
        if self.latest is not None:
            return f"{self.kind.value}({self.latest})"
        if self.reason is not None:
            return f"{self.kind.value}({self.reason})"
        return self.kind.value


__all__ = [
    "ArtifactReference",
    "AvailableVersions",
    "DriftVerdict",
    "DriverType",
    "Task",
    "TaskKey",
    "VerdictKind",
    "Workload",
    "is_digest",
]
