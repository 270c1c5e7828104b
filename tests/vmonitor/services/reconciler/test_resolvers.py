from __future__ import annotations

import pytest

from vmonitor.foundation.errors import (
    RegistryError,
    RegistryNotFound,
    RegistryUnavailable,
    ResolutionError,
    ResolutionErrorKind,
)
from vmonitor.services.reconciler.models import ArtifactReference, DriverType
from vmonitor.services.reconciler.resolvers import (
    ContainerRegistryResolver,
    ResolverRegistry,
    VersionResolver,
)

REF = ArtifactReference("ghcr.io", "acme/app", "1.0.0")


class FakeTags:
    def __init__(self, outcome):
        self.outcome = outcome
        self.calls = []

    async def list_tags(self, origin, repository):
        self.calls.append((origin, repository))
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return list(self.outcome)


@pytest.mark.asyncio
async def test_resolver_returns_tags_as_tuple():
    tags = FakeTags(["1.0.0", "1.1.0"])
    resolver = ContainerRegistryResolver(tags)
    assert await resolver.resolve(REF) == ("1.0.0", "1.1.0")
    assert tags.calls == [("ghcr.io", "acme/app")]
    assert isinstance(resolver, VersionResolver)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error, kind, reason",
    [
        (RegistryNotFound("gone", status=404), ResolutionErrorKind.PERMANENT, "not-found"),
        (RegistryUnavailable("503", status=503), ResolutionErrorKind.TRANSIENT, "registry-unavailable"),
        (RegistryError("denied", status=401), ResolutionErrorKind.PERMANENT, "unauthorized"),
        (RegistryError("denied", status=403), ResolutionErrorKind.PERMANENT, "unauthorized"),
        (RegistryError("bad payload"), ResolutionErrorKind.PERMANENT, "registry-rejected"),
    ],
)
async def test_registry_errors_are_classified(error, kind, reason):
    resolver = ContainerRegistryResolver(FakeTags(error))
    with pytest.raises(ResolutionError) as excinfo:
        await resolver.resolve(REF)
    assert excinfo.value.kind is kind
    assert excinfo.value.reason == reason
    assert excinfo.value.__cause__ is error


def test_resolver_registry_excludes_unregistered_types():
    resolver = ContainerRegistryResolver(FakeTags([]))
    registry = ResolverRegistry()
    assert registry.get(DriverType.CONTAINER_IMAGE) is None
    registry.register(DriverType.CONTAINER_IMAGE, resolver)
    assert registry.get(DriverType.CONTAINER_IMAGE) is resolver
    assert DriverType.CONTAINER_IMAGE in registry
    assert DriverType.UNKNOWN not in registry
    assert registry.get(DriverType.UNKNOWN) is None


def test_resolution_error_defaults():
    assert ResolutionError.transient("x").reason == "resolution-unavailable"
    assert ResolutionError.permanent("x").reason == "resolution-failed"
    assert ResolutionError.transient("x").is_transient
    assert not ResolutionError.permanent("x").is_transient
