"""Semantic versions for image tags.

``VersionTag`` is a frozen, ordered semantic version parsed tolerantly from
an image tag: surrounding whitespace and a leading ``v`` are ignored and a
missing minor or patch component is padded with zero, so ``v0.10``,
``0.10.0`` and ``v0.10.0`` are the same version.

Ordering follows semver precedence:
    - major, minor, patch compare numerically;
    - a pre-release sorts below the release it precedes
      (``1.0.0-rc1 < 1.0.0``);
    - pre-release identifiers compare left to right, numeric identifiers
      numerically and below alphanumeric ones;
    - build metadata is ignored.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import total_ordering

from engine_spine.core.errors import VersionUnparsableError

_VERSION_RE = re.compile(
    r"^(?P<major>0|[1-9]\d*)"
    r"(?:\.(?P<minor>0|[1-9]\d*))?"
    r"(?:\.(?P<patch>0|[1-9]\d*))?"
    r"(?:-(?P<pre>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)


@total_ordering
@dataclass(frozen=True)
class VersionTag:
    """Immutable semantic version (major.minor.patch[-pre][+build])."""

    major: int = 0
    minor: int = 0
    patch: int = 0
    prerelease: tuple[str | int, ...] = ()
    build: str = field(default="", compare=False)

    @classmethod
    def parse(cls, text: str) -> VersionTag:
        """Parse a version string tolerantly.

        Raises
        ------
        VersionUnparsableError
            If ``text`` is not a semantic version.
        """
        candidate = text.strip()
        if candidate[:1] in ("v", "V"):
            candidate = candidate[1:]

        match = _VERSION_RE.match(candidate)
        if match is None:
            raise VersionUnparsableError(text)

        pre = match.group("pre")
        prerelease: tuple[str | int, ...] = ()
        if pre:
            prerelease = tuple(int(p) if p.isdigit() else p for p in pre.split("."))

        return cls(
            major=int(match.group("major")),
            minor=int(match.group("minor") or 0),
            patch=int(match.group("patch") or 0),
            prerelease=prerelease,
            build=match.group("build") or "",
        )

    @classmethod
    def try_parse(cls, text: str) -> VersionTag | None:
        """Parse a version, returning None on failure."""
        try:
            return cls.parse(text)
        except VersionUnparsableError:
            return None

    @property
    def is_prerelease(self) -> bool:
        return bool(self.prerelease)

    @property
    def is_zero(self) -> bool:
        return self == ZERO

    def _precedence(self) -> tuple:
        # A release outranks every pre-release of the same core version.
        if not self.prerelease:
            pre: tuple = ((2, 0, ""),)
        else:
            pre = tuple((0, p, "") if isinstance(p, int) else (1, 0, p) for p in self.prerelease)
        return (self.major, self.minor, self.patch, pre)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VersionTag):
            return NotImplemented
        return self._precedence() == other._precedence()

    def __lt__(self, other: VersionTag) -> bool:
        if not isinstance(other, VersionTag):
            return NotImplemented
        return self._precedence() < other._precedence()

    def __hash__(self) -> int:
        return hash(self._precedence())

    def __str__(self) -> str:
        version = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            version += "-" + ".".join(str(p) for p in self.prerelease)
        if self.build:
            version += f"+{self.build}"
        return version

    def tag(self) -> str:
        """Format as an image tag with the ``v`` marker."""
        return f"v{self}"

    def breaking_threshold(self) -> VersionTag:
        """Lowest version considered an incompatible upgrade from this one.

        For stable lines (major >= 1) that is the next major; for ``0.x``
        lines a minor bump is already breaking.
        """
        if self.major >= 1:
            return VersionTag(major=self.major + 1)
        return VersionTag(minor=self.minor + 1)


ZERO = VersionTag()
