from __future__ import annotations

"""Version resolvers keyed by artifact-source type."""

import logging
from typing import Dict, Mapping, Protocol, runtime_checkable

from vmonitor.foundation.errors import (
    RegistryError,
    RegistryNotFound,
    RegistryUnavailable,
    ResolutionError,
)

from .models import ArtifactReference, AvailableVersions, DriverType

logger = logging.getLogger(__name__)


@runtime_checkable
class VersionResolver(Protocol):
    """Return the versions published for a reference's origin."""

    async def resolve(self, reference: ArtifactReference) -> AvailableVersions:
        ...


class TagLister(Protocol):
    async def list_tags(self, origin: str, repository: str) -> list[str]:
        ...


class ContainerRegistryResolver:
    """Resolve container images to the tags listed by their registry."""

    def __init__(self, registry: TagLister) -> None:
        self._registry = registry

    async def resolve(self, reference: ArtifactReference) -> AvailableVersions:
        target = f"{reference.origin}/{reference.repository}"
        try:
            tags = await self._registry.list_tags(reference.origin, reference.repository)
        except RegistryNotFound as exc:
            raise ResolutionError.permanent(str(exc), reason="not-found") from exc
        except RegistryUnavailable as exc:
            raise ResolutionError.transient(str(exc), reason="registry-unavailable") from exc
        except RegistryError as exc:
            reason = "unauthorized" if exc.status in (401, 403) else "registry-rejected"
            raise ResolutionError.permanent(str(exc), reason=reason) from exc
        logger.debug("Resolved %d tags for %s", len(tags), target)
        return tuple(tags)


class ResolverRegistry:
    """Map driver types to resolvers.

    A driver type without a resolver is the explicit "excluded" variant:
    :meth:`get` returns ``None`` and the task is skipped rather than failed.
    """

    def __init__(self, resolvers: Mapping[DriverType, VersionResolver] | None = None) -> None:
        self._resolvers: Dict[DriverType, VersionResolver] = dict(resolvers or {})

    def register(self, driver_type: DriverType, resolver: VersionResolver) -> None:
        self._resolvers[driver_type] = resolver

    def get(self, driver_type: DriverType) -> VersionResolver | None:
        return self._resolvers.get(driver_type)

    def __contains__(self, driver_type: object) -> bool:
        return driver_type in self._resolvers


__all__ = [
    "ContainerRegistryResolver",
    "ResolverRegistry",
    "TagLister",
    "VersionResolver",
]
