# rpgforge/content/pack_resolution.py
from __future__ import annotations

import heapq
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from rpgforge.content.models import LoadedPack
from rpgforge.core.errors import RpgForgeError
from rpgforge.semver.semver import (
    PackVersion,
    VersionParseError,
    parsePackVersion,
    parseVersionRange,
    versionSatisfiesRange,
)

logger = logging.getLogger(__name__)

__all__ = [
    "PackResolutionError",
    "PackNotFoundError",
    "MissingDependencyError",
    "DependencyVersionMismatchError",
    "CyclicDependencyError",
    "PackRef",
    "parsePackRefString",
    "ResolveResult",
    "resolvePackOrder",
]



# ------------------------------------------------------------------ #
# Errors
# ------------------------------------------------------------------ #

class PackResolutionError(RpgForgeError):
    """Base class for dependency resolution errors. Never retried."""

    def __init__(
        self,
        message: str,
        *,
        packId: str | None = None,
        dependencyId: str | None = None,
        range: str | None = None,
        foundVersion: str | None = None,
    ) -> None:
        super().__init__(message)
        self.packId = packId
        self.dependencyId = dependencyId
        self.range = range
        self.foundVersion = foundVersion



class PackNotFoundError(PackResolutionError):
    """A requested root pack is not in the universe."""



class MissingDependencyError(PackResolutionError):
    """A non-optional dependency target is not in the universe."""



class DependencyVersionMismatchError(PackResolutionError):
    """A dependency target exists but its version is outside the requested range."""



class CyclicDependencyError(PackResolutionError):
    """The dependency graph reachable from the requested packs has a cycle."""



# ------------------------------------------------------------------ #
# Pack references ("id" or "id@range")
# ------------------------------------------------------------------ #

@dataclass(frozen=True, slots=True)
class PackRef:
    id: str
    range: str | None = None



def parsePackRefString(ref: str) -> PackRef:
    """
    Parse a textual pack request.

        "srd-core"            -> PackRef("srd-core", None)
        "srd-core@^1.0.0"     -> PackRef("srd-core", "^1.0.0")
        "srd-core@latest"     -> PackRef("srd-core", "latest")

    The range part is validated; a malformed range raises VersionParseError.
    """
    if not ref or not ref.strip():
        raise ValueError("Empty pack reference is not allowed")
    text = ref.strip()
    packId, sep, rangePart = text.partition("@")
    packId = packId.strip()
    if not packId:
        raise ValueError(f"Pack reference {ref!r} has no pack id")
    if not sep:
        return PackRef(packId)
    rangePart = rangePart.strip()
    parseVersionRange(rangePart)
    return PackRef(packId, rangePart or None)



# ------------------------------------------------------------------ #
# Resolution
# ------------------------------------------------------------------ #

@dataclass(slots=True)
class ResolveResult:
    ordered: list[LoadedPack] = field(default_factory=list)
    resolvedDependencies: list[str] = field(default_factory=list)



def _versionOf(pack: LoadedPack) -> PackVersion:
    try:
        return parsePackVersion(pack.manifest.version)
    except VersionParseError as err:
        raise PackResolutionError(
            f"Pack {pack.manifest.id!r} has an invalid version {pack.manifest.version!r}",
            packId=pack.manifest.id,
        ) from err



def resolvePackOrder(allPacks: Iterable[LoadedPack], requestedPackIds: Iterable[str]) -> ResolveResult:
    """
    Compute a deterministic load order for the transitive closure of `requestedPackIds`.

    Pass 1 is a depth-first walk that validates every edge (existence, version range)
    and detects cycles. Pass 2 is a Kahn sort over the closure, where ties are broken by
    ascending pack id, so the same inputs always produce the same order.

    When several packs share an id, the last one in `allPacks` wins.
    """
    packById: dict[str, LoadedPack] = {pack.manifest.id: pack for pack in allPacks}
    requested = list(requestedPackIds)

    needed: dict[str, None] = {}   # insertion ordered set
    visiting: set[str] = set()

    def collect(packId: str) -> None:
        if packId in needed:
            return
        if packId in visiting:
            raise CyclicDependencyError(f'Cyclic dependency detected at pack "{packId}"', packId=packId)
        pack = packById.get(packId)
        if pack is None:
            raise PackNotFoundError(f"Requested pack not found: {packId}", packId=packId)

        visiting.add(packId)
        for dep in pack.manifest.dependsOn or []:
            depPack = packById.get(dep.id)
            if depPack is None:
                if dep.optional:
                    logger.debug("Optional dependency %s -> %s not available, skipping", packId, dep.id)
                    continue
                raise MissingDependencyError(
                    f"Missing dependency: {packId} -> {dep.id}",
                    packId=packId,
                    dependencyId=dep.id,
                    range=dep.range,
                )
            if not versionSatisfiesRange(_versionOf(depPack), parseVersionRange(dep.range)):
                raise DependencyVersionMismatchError(
                    f"Dependency version mismatch: {packId} requires {dep.id}@{dep.range}, "
                    f"got {depPack.manifest.version}",
                    packId=packId,
                    dependencyId=dep.id,
                    range=dep.range,
                    foundVersion=depPack.manifest.version,
                )
            collect(dep.id)
        visiting.discard(packId)
        needed[packId] = None

    for packId in requested:
        collect(packId)

    # In-degree = number of dependencies inside the closure
    deps: dict[str, list[str]] = {
        packId: [dep.id for dep in packById[packId].manifest.dependsOn or [] if dep.id in needed]
        for packId in needed
    }
    dependents: dict[str, list[str]] = {packId: [] for packId in needed}
    for packId, depIds in deps.items():
        for depId in depIds:
            dependents[depId].append(packId)
    indegree = {packId: len(depIds) for packId, depIds in deps.items()}

    queue = [packId for packId, degree in indegree.items() if degree == 0]
    heapq.heapify(queue)
    orderedIds: list[str] = []
    while queue:
        packId = heapq.heappop(queue)
        orderedIds.append(packId)
        for otherId in dependents[packId]:
            indegree[otherId] -= 1
            if indegree[otherId] == 0:
                heapq.heappush(queue, otherId)

    if len(orderedIds) != len(needed):
        stuck = sorted(packId for packId, degree in indegree.items() if degree > 0)
        raise CyclicDependencyError(
            "Cycle detected while resolving dependency graph",
            packId=stuck[0] if stuck else None,
        )

    logger.debug("Resolved pack order for %s: %s", requested, orderedIds)
    return ResolveResult(
        ordered=[packById[packId] for packId in orderedIds],
        resolvedDependencies=orderedIds,
    )
