# rpgforge/content/pack_catalog.py
from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping
from pathlib import Path

from rpgforge.app.globals import config
from rpgforge.content.models import LoadedPack, ResolvedRuleset
from rpgforge.content.pack_loader import discoverPacks
from rpgforge.content.pack_resolution import PackNotFoundError, parsePackRefString
from rpgforge.content.ruleset import activateRuleset
from rpgforge.semver.semver import (
    PackVersion,
    VersionResolver,
    parsePackVersion,
    parseVersionRange,
)

logger = logging.getLogger(__name__)

__all__ = ["PackCatalog"]



class PackCatalog:
    """
    In-memory index of loaded packs.

    Responsibilities:
      - Hold every LoadedPack, several versions per pack id allowed.
      - Select the latest version per id (the universe handed to the resolver).
      - Map configured aliases (`packs.aliases`) to real pack ids.
      - Resolve and merge a ruleset for a set of root pack requests.

    Registering the same (id, version, source) again replaces the previous entry.
    """

    def __init__(self, packs: Iterable[LoadedPack] = (), *, aliases: Mapping[str, str] | None = None):
        self._byId: dict[str, list[LoadedPack]] = defaultdict(list)
        self._aliases: dict[str, str] | None = dict(aliases) if aliases is not None else None
        for pack in packs:
            self.register(pack)

    @classmethod
    def fromRoots(cls, roots: Iterable[Path | str] | None = None) -> PackCatalog:
        """Discover packs under `roots` (default: config `packs.roots`)."""
        if roots is None:
            roots = list(config("packs.roots", []) or [])
        return cls(discoverPacks(roots))

    # ----- Registration -----

    def register(self, pack: LoadedPack) -> None:
        bucket = self._byId[pack.manifest.id]
        for idx, existing in enumerate(bucket):
            if existing.manifest.version == pack.manifest.version and existing.source == pack.source:
                bucket[idx] = pack
                logger.debug("Replaced pack %s@%s (%s)", pack.manifest.id, pack.manifest.version, pack.source)
                return
        bucket.append(pack)
        logger.debug("Registered pack %s@%s (%s)", pack.manifest.id, pack.manifest.version, pack.source)

    def unregister(self, packId: str, version: str | None = None) -> int:
        """Remove every version of `packId`, or only `version`. Returns the number removed."""
        bucket = self._byId.get(packId)
        if not bucket:
            return 0
        if version is None:
            removed = len(bucket)
            del self._byId[packId]
            return removed
        kept = [pack for pack in bucket if pack.manifest.version != version]
        removed = len(bucket) - len(kept)
        if kept:
            self._byId[packId] = kept
        else:
            del self._byId[packId]
        return removed

    # ----- Lookup -----

    def all(self) -> tuple[LoadedPack, ...]:
        return tuple(pack for packId in sorted(self._byId) for pack in self._byId[packId])

    def ids(self) -> list[str]:
        return sorted(self._byId)

    def versions(self, packId: str) -> list[str]:
        candidates = self._byId.get(self.resolveAlias(packId), [])
        return [str(version) for version in sorted(parsePackVersion(pack.manifest.version) for pack in candidates)]

    def aliases(self) -> dict[str, str]:
        if self._aliases is not None:
            return dict(self._aliases)
        configured = config("packs.aliases", {}) or {}
        return {str(key): str(value) for key, value in configured.items()} if isinstance(configured, Mapping) else {}

    def resolveAlias(self, packId: str) -> str:
        return self.aliases().get(packId, packId)

    def get(self, packId: str, versionRange: str | None = None) -> LoadedPack | None:
        """Best (highest) version of `packId` satisfying `versionRange`, or None."""
        candidates: list[tuple[PackVersion, LoadedPack]] = [
            (parsePackVersion(pack.manifest.version), pack)
            for pack in self._byId.get(self.resolveAlias(packId), ())
        ]
        if not candidates:
            return None
        result = VersionResolver.matchCandidates(candidates, parseVersionRange(versionRange))
        return result.best[1] if result.best is not None else None

    def latest(self, packId: str) -> LoadedPack | None:
        return self.get(packId)

    def universe(self) -> list[LoadedPack]:
        """Latest version of every pack id, sorted by id."""
        out: list[LoadedPack] = []
        for packId in sorted(self._byId):
            pack = self.latest(packId)
            if pack is not None:
                out.append(pack)
        return out

    # ----- Activation -----

    def activate(self, requests: Iterable[str]) -> ResolvedRuleset:
        """
        Resolve and merge a ruleset for root requests like "srd", "srd@^1.0.0" or an alias.

        A request with a range pins that root to its best matching version; every
        other pack comes from the latest-version universe.
        """
        universe = {pack.manifest.id: pack for pack in self.universe()}
        rootIds: list[str] = []
        for request in requests:
            ref = parsePackRefString(request)
            packId = self.resolveAlias(ref.id)
            if ref.range is not None:
                pinned = self.get(packId, ref.range)
                if pinned is None:
                    raise PackNotFoundError(
                        f"Requested pack not found: {packId}@{ref.range}",
                        packId=packId,
                        range=ref.range,
                    )
                universe[packId] = pinned
            rootIds.append(packId)
        return activateRuleset(universe.values(), rootIds)
