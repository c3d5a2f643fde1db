# rpgforge/semver/semver.py
from __future__ import annotations

import re
from dataclasses import dataclass
from functools import total_ordering
from typing import Literal, Iterable, Generic, TypeVar

__all__ = [
    "VersionParseError", "PackVersion", "parsePackVersion", "compareVersions",
    "VersionComparator", "VersionRange", "parseVersionRange",
    "versionSatisfiesRange", "satisfiesRange", "VersionMatchResult", "VersionResolver",
]



PACK_VERSION_RE = re.compile(r"^(?P<major>\d+)\.(?P<minor>\d+)\.(?P<patch>\d+)$")

# Ranges that accept every version
_ANY_RANGES = ("", "*", "latest")

T = TypeVar("T")



class VersionParseError(ValueError):
    pass



@total_ordering
@dataclass(frozen=True)
class PackVersion:
    major: int
    minor: int
    patch: int

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"

    def _cmpKey(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, PackVersion):
            return NotImplemented
        return self._cmpKey() < other._cmpKey()

    def nextMajor(self) -> PackVersion:
        return PackVersion(self.major + 1, 0, 0)

    def nextMinor(self) -> PackVersion:
        return PackVersion(self.major, self.minor + 1, 0)



def parsePackVersion(raw: str) -> PackVersion:
    """
    Parse a strict three-part pack version.

    Accepted: "1.2.3", "0.0.1", " 10.20.30 " (surrounding whitespace is ignored)
    Rejected: "1", "1.2", "v1.2.3", "1.2.3-beta", "1.2.3.4", "a.b.c"
    """
    if not isinstance(raw, str):
        raise VersionParseError(f"Version must be a string, got {type(raw).__name__}")
    mtch = PACK_VERSION_RE.match(raw.strip())
    if not mtch:
        raise VersionParseError(f"Invalid version {raw!r}")
    return PackVersion(int(mtch.group("major")), int(mtch.group("minor")), int(mtch.group("patch")))



def compareVersions(left: str | PackVersion, right: str | PackVersion) -> int:
    """Returns -1, 0 or 1."""
    a = left if isinstance(left, PackVersion) else parsePackVersion(left)
    b = right if isinstance(right, PackVersion) else parsePackVersion(right)
    if a < b:
        return -1
    if a > b:
        return 1
    return 0



@dataclass(frozen=True)
class VersionComparator:
    # "never" is produced by tokens that are not understood; it matches nothing
    operator: Literal["<", "<=", ">", ">=", "==", "never"]
    version: PackVersion | None = None
    token: str = ""

    def test(self, version: PackVersion) -> bool:
        if self.operator == "never" or self.version is None:
            return False
        if self.operator == "==":
            return version == self.version
        if self.operator == ">=":
            return version >= self.version
        if self.operator == "<=":
            return version <= self.version
        if self.operator == ">":
            return version > self.version
        return version < self.version



@dataclass(frozen=True)
class VersionRange:
    # All comparators are AND-ed.
    comparators: tuple[VersionComparator, ...] = ()
    isAny: bool = False
    raw: str = ""

    def __str__(self) -> str:
        return self.raw or "*"



def _parseToken(token: str, rawRange: str) -> tuple[VersionComparator, ...]:
    if token[0] in ("^", "~"):
        if len(token) == 1:
            raise VersionParseError(f"Missing version after {token[0]!r} in range {rawRange!r}")
        base = parsePackVersion(token[1:])
        upper = base.nextMajor() if token[0] == "^" else base.nextMinor()
        return (VersionComparator(">=", base, token), VersionComparator("<", upper, token))

    for candidate in ("<=", ">=", "<", ">", "="):
        if token.startswith(candidate):
            rest = token[len(candidate):]
            if not rest:
                raise VersionParseError(f"Missing version after operator {candidate!r} in range {rawRange!r}")
            op = "==" if candidate == "=" else candidate
            return (VersionComparator(op, parsePackVersion(rest), token),)

    if PACK_VERSION_RE.match(token):
        return (VersionComparator("==", parsePackVersion(token), token),)
    # Not a version and not an operator we know: unsatisfiable, not an error
    return (VersionComparator("never", None, token),)



def parseVersionRange(rawRange: str | None) -> VersionRange:
    """
    Parse a dependency range.

        None, "", "*", "latest"   -> any version
        "1.2.3"                   -> == 1.2.3
        "=1.2.3"                  -> == 1.2.3
        "^1.2.3"                  -> >=1.2.3 AND <2.0.0 (also for 0.x)
        "~1.2.3"                  -> >=1.2.3 AND <1.3.0
        ">=1.0.0 <2.0.0"          -> conjunction, whitespace separated
    """
    if rawRange is None:
        return VersionRange(isAny=True)
    if not isinstance(rawRange, str):
        raise VersionParseError(f"Range must be a string or None, got {type(rawRange).__name__}")
    text = rawRange.strip()
    if text.lower() in _ANY_RANGES:
        return VersionRange(isAny=True, raw=text)

    comparators: list[VersionComparator] = []
    for token in text.split():
        comparators.extend(_parseToken(token, rawRange))
    return VersionRange(comparators=tuple(comparators), raw=text)



def versionSatisfiesRange(version: PackVersion, versionRange: VersionRange | None) -> bool:
    if versionRange is None or versionRange.isAny:
        return True
    return all(comparator.test(version) for comparator in versionRange.comparators)



def satisfiesRange(version: str | PackVersion, rawRange: str | None) -> bool:
    """String convenience: satisfiesRange("1.4.0", "^1.0.0") -> True."""
    parsed = version if isinstance(version, PackVersion) else parsePackVersion(version)
    return versionSatisfiesRange(parsed, parseVersionRange(rawRange))



@dataclass(frozen=True)
class VersionMatchResult(Generic[T]):
    """
    Result of selecting among candidate versions.

    - best: the highest matching candidate, or None. Ties keep the first in input order.
    """
    versionRange: VersionRange | None
    candidates: tuple[tuple[PackVersion, T], ...]
    matches: tuple[tuple[PackVersion, T], ...]
    best: tuple[PackVersion, T] | None



class VersionResolver:
    @staticmethod
    def matchCandidates(
        candidates: Iterable[tuple[PackVersion, T]],
        versionRange: VersionRange | None,
    ) -> VersionMatchResult[T]:
        candidatesList: list[tuple[PackVersion, T]] = list(candidates)
        matchList = [
            (version, payload)
            for version, payload in candidatesList
            if versionSatisfiesRange(version, versionRange)
        ]

        best: tuple[PackVersion, T] | None = None
        for version, payload in matchList:
            if best is None or version > best[0]:
                best = (version, payload)

        return VersionMatchResult(
            versionRange=versionRange,
            candidates=tuple(candidatesList),
            matches=tuple(matchList),
            best=best,
        )
