import pytest

from vmonitor.foundation.errors import InvalidReference
from vmonitor.services.reconciler.image import DOCKER_HUB, parse_image_reference
from vmonitor.services.reconciler.models import ArtifactReference

DIGEST = "sha256:" + "ab" * 32


@pytest.mark.parametrize(
    "image, origin, repository, declared",
    [
        ("nginx", DOCKER_HUB, "library/nginx", "latest"),
        ("nginx:1.25.3", DOCKER_HUB, "library/nginx", "1.25.3"),
        ("grafana/grafana:10.2.0", DOCKER_HUB, "grafana/grafana", "10.2.0"),
        ("docker.io/library/redis:7", DOCKER_HUB, "library/redis", "7"),
        ("docker.io/redis:7", DOCKER_HUB, "library/redis", "7"),
        ("ghcr.io/org/app:v1.2.0", "ghcr.io", "org/app", "v1.2.0"),
        ("registry.local:5000/team/svc:2.0.0", "registry.local:5000", "team/svc", "2.0.0"),
        ("localhost/app:dev", "localhost", "app", "dev"),
        (f"nginx@{DIGEST}", DOCKER_HUB, "library/nginx", DIGEST),
        (f"quay.io/a/b:1.0.0@{DIGEST}", "quay.io", "a/b", DIGEST),
    ],
)
def test_parse_image_reference(image, origin, repository, declared):
    ref = parse_image_reference(image)
    assert ref == ArtifactReference(origin=origin, repository=repository, declared=declared)


def test_digest_reference_is_flagged():
    ref = parse_image_reference(f"nginx:1.0@{DIGEST}")
    assert ref.is_digest
    assert not parse_image_reference("nginx:1.0").is_digest


def test_default_registry_applies_to_unqualified_names():
    ref = parse_image_reference("team/app:1.0.0", default_registry="mirror.internal")
    assert ref.origin == "mirror.internal"
    assert ref.repository == "team/app"


@pytest.mark.parametrize(
    "image",
    [
        "",
        "   ",
        "${NOMAD_META_image}",
        "app:${VERSION}",
        "app:",
        "app@sha256:xyz",
        "Team/App:1.0",
        "registry.io//app",
        "app:bad tag",
    ],
)
def test_invalid_references_raise(image):
    with pytest.raises(InvalidReference):
        parse_image_reference(image)


def test_invalid_reference_is_a_value_error():
    with pytest.raises(ValueError):
        parse_image_reference("")
