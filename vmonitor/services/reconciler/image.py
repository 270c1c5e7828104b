from __future__ import annotations

"""Normalise container image strings into :class:`ArtifactReference`."""

import re

from vmonitor.foundation.config import DEFAULT_REGISTRY
from vmonitor.foundation.errors import InvalidReference

from .models import ArtifactReference, is_digest

DOCKER_HUB = "registry.hub.docker.com"
DOCKER_HUB_ALIASES = frozenset(
    {"docker.io", "index.docker.io", "registry-1.docker.io", DOCKER_HUB}
)
DEFAULT_TAG = "latest"

_TAG_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
_COMPONENT_RE = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")


def is_docker_hub(origin: str) -> bool:
    return origin in DOCKER_HUB_ALIASES


def _is_registry_host(component: str) -> bool:
    return "." in component or ":" in component or component == "localhost"


def parse_image_reference(
    image: str, *, default_registry: str = DEFAULT_REGISTRY
) -> ArtifactReference:
    """Parse ``[registry/]repository[:tag][@digest]``.

    A missing tag means ``latest``; when a digest is present it is the
    declared version since it is what the scheduler actually pulls.
    Unqualified names resolve against ``default_registry`` and Docker Hub
    official images get the implicit ``library/`` namespace.
    """

    raw = (image or "").strip()
    if not raw:
        raise InvalidReference("empty image reference")
    if "$" in raw:
        raise InvalidReference(f"image {raw!r} contains unresolved interpolation")

    digest: str | None = None
    if "@" in raw:
        raw, digest = raw.split("@", 1)
        if not is_digest(digest):
            raise InvalidReference(f"invalid digest in image {image!r}")

    name, tag = raw, None
    last_slash = raw.rfind("/")
    colon = raw.rfind(":")
    if colon > last_slash:
        name, tag = raw[:colon], raw[colon + 1:]
        if not _TAG_RE.match(tag):
            raise InvalidReference(f"invalid tag {tag!r} in image {image!r}")

    parts = name.split("/")
    if not name or any(not part for part in parts):
        raise InvalidReference(f"invalid repository in image {image!r}")

    if len(parts) > 1 and _is_registry_host(parts[0]):
        origin, path = parts[0], parts[1:]
    else:
        origin, path = default_registry, parts

    if is_docker_hub(origin):
        origin = DOCKER_HUB
        if len(path) == 1:
            path = ["library", *path]

    for component in path:
        if not _COMPONENT_RE.match(component):
            raise InvalidReference(f"invalid path component {component!r} in image {image!r}")

    return ArtifactReference(
        origin=origin,
        repository="/".join(path),
        declared=digest or tag or DEFAULT_TAG,
    )


__all__ = [
    "DEFAULT_TAG",
    "DOCKER_HUB",
    "is_docker_hub",
    "parse_image_reference",
]
