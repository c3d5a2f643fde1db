# rpgforge/content/pack_loader.py
from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any

import json5

from rpgforge.app.globals import configBool
from rpgforge.content.models import (
    LoadedPack,
    PackManifest,
    PackModule,
    PackSource,
    parsePackManifest,
    parsePackModule,
)
from rpgforge.core.errors import RpgForgeError
from rpgforge.core.logging import getPackLogger
from rpgforge.semver.semver import parsePackVersion

logger = logging.getLogger(__name__)

__all__ = [
    "MANIFEST_NAMES",
    "MODULE_PARTS",
    "PackLoadError",
    "loadDocument",
    "findManifestPath",
    "loadManifest",
    "mergeModuleParts",
    "loadPackFromDir",
    "discoverPacks",
]



MANIFEST_NAMES: tuple[str, ...] = ("manifest.json5", "manifest.json")
# Entrypoint order used when folding documents into one module
MODULE_PARTS: tuple[str, ...] = ("model", "rules", "ui", "actions", "creator", "authoring", "effects", "content")



class PackLoadError(RpgForgeError):
    """A pack directory or one of its documents could not be read."""
    def __init__(self, message: str, *, path: Path | str | None = None) -> None:
        super().__init__(message)
        self.path = str(path) if path is not None else None



# ------------------------------------------------------------------ #
# Documents
# ------------------------------------------------------------------ #

def loadDocument(path: Path) -> Any:
    """Reads a .json5 or .json document. Empty files read as {}."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as err:
        raise PackLoadError(f"Cannot read '{path}': {err}", path=path) from err
    if not text.strip():
        return {}
    try:
        if path.suffix == ".json5":
            return json5.loads(text)
        if path.suffix == ".json":
            return json.loads(text)
    except ValueError as err:
        raise PackLoadError(f"Cannot parse '{path}': {err}", path=path) from err
    raise PackLoadError(f"Unknown document extension '{path.suffix}'", path=path)



def findManifestPath(dirPath: Path) -> Path | None:
    for name in MANIFEST_NAMES:
        candidate = dirPath / name
        if candidate.is_file():
            return candidate
    return None



def loadManifest(manifestPath: Path) -> PackManifest:
    raw = loadDocument(manifestPath)
    if not isinstance(raw, Mapping):
        raise PackLoadError(f"Manifest file '{manifestPath}' is not a JSON object", path=manifestPath)
    return parsePackManifest(raw)



def _resolveEntrypoint(packRoot: Path, rel: str) -> Path:
    path = (packRoot / rel).resolve(strict=False)
    if not path.is_relative_to(packRoot.resolve(strict=False)):
        raise PackLoadError(f"Entrypoint '{rel}' points outside of pack '{packRoot}'", path=path)
    return path



def _entrypointPaths(manifest: PackManifest, packRoot: Path, parts: Sequence[str]) -> list[Path]:
    entrypoints = manifest.entrypoints
    paths: list[Path] = []
    for part in MODULE_PARTS:
        if part not in parts:
            continue
        if part == "content":
            paths.extend(_resolveEntrypoint(packRoot, rel) for rel in entrypoints.content or [])
            continue
        rel = getattr(entrypoints, part)
        if rel:
            paths.append(_resolveEntrypoint(packRoot, rel))
    return paths



# ------------------------------------------------------------------ #
# Module folding
# ------------------------------------------------------------------ #

def _obj(value: Any) -> dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}



def _arr(value: Any) -> list[Any]:
    return list(value) if isinstance(value, list) else []



def mergeModuleParts(parts: Iterable[Any]) -> PackModule:
    """
    Fold entrypoint documents into one module and validate it.

      - model.core / model.extends: shallow-merged per block
      - rules.formulas / lookups / hooks: shallow-merged per map
      - content: type buckets merged, later documents replace a whole bucket
      - ui: groups and panels concatenated, accents merged
      - actions, effects: concatenated
      - creator: replaced
      - authoring: shallow-merged
    """
    module: dict[str, Any] = {}
    for raw in parts:
        part = _obj(raw)

        if part.get("model"):
            model = _obj(part["model"])
            current = _obj(module.get("model"))
            merged: dict[str, Any] = {}
            for block in ("core", "extends"):
                if block in current or block in model:
                    merged[block] = {**_obj(current.get(block)), **_obj(model.get(block))}
            module["model"] = merged

        if part.get("rules"):
            rules = _obj(part["rules"])
            current = _obj(module.get("rules"))
            module["rules"] = {
                key: {**_obj(current.get(key)), **_obj(rules.get(key))}
                for key in ("formulas", "lookups", "hooks")
            }

        if part.get("content"):
            module["content"] = {**_obj(module.get("content")), **_obj(part["content"])}

        if part.get("ui"):
            ui = _obj(part["ui"])
            current = _obj(module.get("ui"))
            merged = {
                "layout": {"groups": [*_arr(_obj(current.get("layout")).get("groups")), *_arr(_obj(ui.get("layout")).get("groups"))]},
                "panels": [*_arr(current.get("panels")), *_arr(ui.get("panels"))],
            }
            accents = {**_obj(current.get("accents")), **_obj(ui.get("accents"))}
            if accents:
                merged["accents"] = accents
            module["ui"] = merged

        if part.get("actions"):
            module["actions"] = [*_arr(module.get("actions")), *_arr(part["actions"])]

        if part.get("creator"):
            module["creator"] = part["creator"]

        if part.get("authoring"):
            module["authoring"] = {**_obj(module.get("authoring")), **_obj(part["authoring"])}

        if part.get("effects"):
            module["effects"] = [*_arr(module.get("effects")), *_arr(part["effects"])]

    return parsePackModule(module)



# ------------------------------------------------------------------ #
# Loading
# ------------------------------------------------------------------ #

def loadPackFromDir(
    packRoot: Path | str,
    *,
    source: PackSource = "builtin",
    parts: Sequence[str] = MODULE_PARTS,
) -> LoadedPack:
    """
    Load one pack directory: manifest plus every entrypoint document named in `parts`.
    Raises PackLoadError for missing/unreadable files and PackValidationError for
    schema violations.
    """
    packRoot = Path(packRoot)
    manifestPath = findManifestPath(packRoot)
    if manifestPath is None:
        raise PackLoadError(f"No manifest found in '{packRoot}'", path=packRoot)
    manifest = loadManifest(manifestPath)

    packLogger = getPackLogger(manifest.id)
    docs: list[Any] = []
    for path in _entrypointPaths(manifest, packRoot, parts):
        if not path.is_file():
            raise PackLoadError(f"Pack '{manifest.id}' entrypoint not found: {path}", path=path)
        packLogger.trace("Loading document %s", path)
        docs.append(loadDocument(path))

    module = mergeModuleParts(docs)
    packLogger.debug("Loaded pack %s@%s from %s (%d documents)", manifest.id, manifest.version, packRoot, len(docs))
    return LoadedPack(manifest=manifest, module=module, source=source, sourceRef=str(manifestPath))



def _walkForPacks(
    dirPath: Path,
    *,
    baseResolved: Path,
    followSymlinks: bool,
    pathStack: tuple[Path, ...],
    seen: set[Path],
    source: PackSource,
    out: list[LoadedPack],
) -> None:
    try:
        if not dirPath.is_dir():
            return
        if dirPath.is_symlink() and not followSymlinks:
            logger.debug("Skipping symlinked directory '%s'", dirPath)
            return
        resolved = dirPath.resolve(strict=False)
    except OSError as err:
        logger.debug("Skipping '%s': %s", dirPath, err)
        return

    if not followSymlinks and not resolved.is_relative_to(baseResolved):
        logger.debug("Skipping '%s': outside of root '%s'", resolved, baseResolved)
        return
    # Directory loop through symlinks
    if resolved in pathStack:
        logger.warning("Detected symlink loop while scanning packs: '%s' (root '%s')", resolved, baseResolved)
        return

    manifestPath = findManifestPath(dirPath)
    if manifestPath is not None:
        manifestResolved = manifestPath.resolve()
        if manifestResolved in seen:
            return
        seen.add(manifestResolved)
        try:
            out.append(loadPackFromDir(dirPath, source=source))
        except (RpgForgeError, ValueError) as err:
            logger.error("Failed to load pack at '%s': %s", manifestPath, err)
        # Do not descend below a pack root.
        return

    try:
        children = sorted(dirPath.iterdir())
    except OSError as err:
        logger.debug("Cannot list '%s': %s", dirPath, err)
        return
    for child in children:
        _walkForPacks(
            child,
            baseResolved=baseResolved,
            followSymlinks=followSymlinks,
            pathStack=pathStack + (resolved,),
            seen=seen,
            source=source,
            out=out,
        )



def discoverPacks(
    roots: Iterable[Path | str],
    *,
    followSymlinks: bool | None = None,
    source: PackSource = "builtin",
) -> list[LoadedPack]:
    """
    Recursively discover pack directories under `roots`.

    Invalid packs are logged and skipped. The result is sorted by (id, version).
    """
    if followSymlinks is None:
        followSymlinks = configBool("packs.followSymlinks", False)

    out: list[LoadedPack] = []
    seen: set[Path] = set()
    for root in roots:
        rootPath = Path(root).expanduser()
        if not rootPath.is_dir():
            logger.warning("Pack root '%s' does not exist or is not a directory", rootPath)
            continue
        baseResolved = rootPath.resolve(strict=False)
        _walkForPacks(
            baseResolved,
            baseResolved=baseResolved,
            followSymlinks=followSymlinks,
            pathStack=(),
            seen=seen,
            source=source,
            out=out,
        )

    out.sort(key=lambda pack: (pack.manifest.id, parsePackVersion(pack.manifest.version)))
    logger.info("Discovered %d pack(s)", len(out))
    return out
