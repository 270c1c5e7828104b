"""Version ordering and drift comparison for registry tags.

Tags fall into one of two schemes. Tags shaped like
``[v]MAJOR.MINOR.PATCH[-prerelease][+build]`` are ordered by semantic-version
precedence; everything else is ordered as a case-sensitive string. A declared
tag is only ever compared against available tags of its own scheme, so a
numeric release is never measured against aliases such as ``stable``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import re
from typing import Any, Iterable

from .models import DriftVerdict, is_digest

DIGEST_PINNED = "digest-pinned"
NO_COMPARABLE_VERSIONS = "no-comparable-versions"
DEFAULT_FLOATING_TAGS = frozenset({"latest"})

_SEMVER_RE = re.compile(
    r"^(?P<prefix>v?)(?P<major>\d+)\.(?P<minor>\d+)\.(?P<patch>\d+)"
    r"(?:-(?P<pre>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?$"
)


class Scheme(str, Enum):
    SEMVER = "semver"
    LEXICAL = "lexical"


@dataclass(frozen=True, slots=True)
class SemanticVersion:
    major: int
    minor: int
    patch: int
    prerelease: tuple[str, ...] = ()
    prefix: str = ""

    @classmethod
    def parse(cls, tag: str) -> "SemanticVersion | None":
        match = _SEMVER_RE.match(tag)
        if match is None:
            return None
        pre = match.group("pre")
        return cls(
            major=int(match.group("major")),
            minor=int(match.group("minor")),
            patch=int(match.group("patch")),
            prerelease=tuple(pre.split(".")) if pre else (),
            prefix=match.group("prefix"),
        )

    def precedence(self) -> tuple[Any, ...]:
        """Sort key implementing SemVer 2.0 precedence.

        A release sorts after every pre-release of the same numbers. Numeric
        pre-release identifiers compare numerically and sort before
        alphanumeric ones; a shorter identifier list sorts first when all
        shared identifiers are equal.
        """
        if not self.prerelease:
            return (self.major, self.minor, self.patch, 1, ())
        identifiers = tuple(
            (0, int(part), "") if part.isdigit() else (1, 0, part)
            for part in self.prerelease
        )
        return (self.major, self.minor, self.patch, 0, identifiers)

    def __str__(self) -> str:
        core = f"{self.prefix}{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            return f"{core}-{'.'.join(self.prerelease)}"
        return core


@dataclass(frozen=True, slots=True)
class ParsedTag:
    raw: str
    scheme: Scheme
    key: tuple[Any, ...]
    prefix: str = ""


def parse_tag(tag: str) -> ParsedTag:
    version = SemanticVersion.parse(tag)
    if version is not None:
        return ParsedTag(tag, Scheme.SEMVER, version.precedence(), version.prefix)
    return ParsedTag(tag, Scheme.LEXICAL, (tag,))


def select_latest(declared: ParsedTag, candidates: Iterable[ParsedTag]) -> ParsedTag:
    """Return the highest candidate.

    Several tags may share the highest precedence (``1.2.0`` and ``v1.2.0``).
    The tag equal to ``declared`` wins, then the one sharing its ``v`` prefix
    style, then the smallest string, so the choice is stable across cycles.
    """
    pool = list(candidates)
    if not pool:
        raise ValueError("no candidates to select from")
    top = max(item.key for item in pool)
    tied = [item for item in pool if item.key == top]
    return min(
        tied,
        key=lambda item: (item.raw != declared.raw, item.prefix != declared.prefix, item.raw),
    )


class Comparator:
    """Classify a declared tag against the tags available upstream.

    ``floating_tags`` are mutable aliases such as ``latest``: a task
    declaring one follows upstream by definition, and they are never
    reported as the newest version of anything.
    """

    def __init__(self, floating_tags: Iterable[str] = DEFAULT_FLOATING_TAGS) -> None:
        self._floating = frozenset(floating_tags)

    @property
    def floating_tags(self) -> frozenset[str]:
        return self._floating

    def precheck(self, declared: str) -> DriftVerdict | None:
        """Return the verdict when it does not depend on upstream data."""
        if is_digest(declared):
            return DriftVerdict.incomparable(DIGEST_PINNED)
        if declared in self._floating:
            return DriftVerdict.current()
        return None

    def compare(self, declared: str, available: Iterable[str]) -> DriftVerdict:
        early = self.precheck(declared)
        if early is not None:
            return early

        target = parse_tag(declared)
        candidates = [
            parsed
            for parsed in (parse_tag(tag) for tag in dict.fromkeys(available))
            if parsed.scheme is target.scheme and parsed.raw not in self._floating
        ]
        if not candidates:
            return DriftVerdict.incomparable(NO_COMPARABLE_VERSIONS)

        latest = select_latest(target, candidates)
        if latest.key <= target.key:
            return DriftVerdict.current()
        return DriftVerdict.outdated(latest.raw)


_DEFAULT_COMPARATOR = Comparator()


def compare(declared: str, available: Iterable[str]) -> DriftVerdict:
    """Compare with the default floating tags (``latest``)."""
    return _DEFAULT_COMPARATOR.compare(declared, available)


__all__ = [
    "Comparator",
    "DEFAULT_FLOATING_TAGS",
    "DIGEST_PINNED",
    "NO_COMPARABLE_VERSIONS",
    "ParsedTag",
    "Scheme",
    "SemanticVersion",
    "compare",
    "parse_tag",
    "select_latest",
]
