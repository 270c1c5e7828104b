import pytest

from vmonitor.services.reconciler.models import DriftVerdict
from vmonitor.services.reconciler.versions import (
    DIGEST_PINNED,
    NO_COMPARABLE_VERSIONS,
    Comparator,
    Scheme,
    SemanticVersion,
    compare,
    parse_tag,
)

DIGEST = "sha256:" + "0f" * 32


def test_outdated_when_newer_release_exists():
    assert compare("1.2.0", ["1.2.0", "1.3.0", "latest"]) == DriftVerdict.outdated("1.3.0")


def test_no_versions_is_incomparable():
    assert compare("1.2.0", []) == DriftVerdict.incomparable(NO_COMPARABLE_VERSIONS)


def test_current_when_nothing_greater():
    assert compare("1.2.0", ["1.0.0", "1.1.9", "1.2.0"]) == DriftVerdict.current()


def test_declared_newer_than_everything_is_current():
    assert compare("2.0.0", ["1.0.0", "1.9.9"]) == DriftVerdict.current()


@pytest.mark.parametrize("available", [[], ["1.0.0"], ["latest", "9.9.9"]])
def test_digest_pinned_regardless_of_available(available):
    assert compare(DIGEST, available) == DriftVerdict.incomparable(DIGEST_PINNED)


def test_floating_tag_is_current_and_never_reported_as_latest():
    assert compare("latest", ["1.0.0", "latest"]) == DriftVerdict.current()
    # "latest" is lexical, but never a candidate for other lexical tags either.
    assert compare("edge", ["edge", "latest"]) == DriftVerdict.current()


def test_custom_floating_tags():
    comparator = Comparator(floating_tags={"latest", "stable"})
    assert comparator.compare("stable", ["1.0.0"]) == DriftVerdict.current()
    assert comparator.compare("beta", ["beta", "stable"]) == DriftVerdict.current()


def test_semver_numeric_ordering_not_lexical():
    assert compare("1.9.0", ["1.10.0", "1.9.0"]) == DriftVerdict.outdated("1.10.0")


def test_prerelease_sorts_below_release():
    assert compare("2.0.0-rc.1", ["2.0.0-rc.1", "2.0.0"]) == DriftVerdict.outdated("2.0.0")
    assert compare("2.0.0", ["2.0.0", "2.0.0-rc.2"]) == DriftVerdict.current()


def test_prerelease_identifier_precedence():
    ordered = [
        "1.0.0-alpha",
        "1.0.0-alpha.1",
        "1.0.0-alpha.beta",
        "1.0.0-beta",
        "1.0.0-beta.2",
        "1.0.0-beta.11",
        "1.0.0-rc.1",
        "1.0.0",
    ]
    keys = [SemanticVersion.parse(tag).precedence() for tag in ordered]
    assert keys == sorted(keys)
    assert len(set(keys)) == len(keys)


def test_build_metadata_is_ignored():
    assert parse_tag("1.0.0+build.5").key == parse_tag("1.0.0").key
    assert compare("1.0.0", ["1.0.0+build.5"]) == DriftVerdict.current()


def test_schemes_are_not_mixed():
    assert parse_tag("v1.2.3").scheme is Scheme.SEMVER
    assert parse_tag("1.2").scheme is Scheme.LEXICAL
    assert compare("1.2.0", ["stable", "nightly"]) == DriftVerdict.incomparable(
        NO_COMPARABLE_VERSIONS
    )
    assert compare("stable", ["1.0.0", "2.0.0"]) == DriftVerdict.incomparable(
        NO_COMPARABLE_VERSIONS
    )


def test_lexical_tags_compare_as_strings():
    assert compare("2023-01-01", ["2023-01-01", "2024-03-15"]) == DriftVerdict.outdated(
        "2024-03-15"
    )


def test_variant_tags_and_aliases_share_the_lexical_family():
    # Non-semver variants and named aliases are ordered as plain strings.
    assert compare("1.25-alpine", ["1.25-alpine", "stable"]) == DriftVerdict.outdated("stable")
    comparator = Comparator(floating_tags={"latest", "stable", "mainline"})
    assert comparator.compare(
        "1.25-alpine", ["1.25-alpine", "stable", "mainline"]
    ) == DriftVerdict.current()


def test_v_prefix_tie_break_is_stable():
    # Same precedence: the declared tag itself wins.
    assert compare("v1.2.0", ["1.2.0", "v1.2.0"]) == DriftVerdict.current()
    # A newer version published in both styles is reported in the declared style.
    assert compare("v1.2.0", ["1.3.0", "v1.3.0"]) == DriftVerdict.outdated("v1.3.0")
    assert compare("1.2.0", ["v1.3.0", "1.3.0"]) == DriftVerdict.outdated("1.3.0")


def test_verdict_is_independent_of_tag_order():
    tags = ["1.0.0", "1.4.0", "v1.4.0", "1.3.9", "latest"]
    expected = compare("1.0.0", tags)
    assert compare("1.0.0", list(reversed(tags))) == expected
    assert expected == DriftVerdict.outdated("1.4.0")
