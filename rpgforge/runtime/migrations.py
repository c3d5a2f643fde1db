# rpgforge/runtime/migrations.py
from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from typing import Any

from rpgforge.content.models import PackManifest, parsePackManifest
from rpgforge.core.errors import RpgForgeError
from rpgforge.core.ids import uuid_12
from rpgforge.core.time import nowIso
from rpgforge.runtime.character import CHARACTER_SCHEMA_VERSION, CharacterDocument, finiteNumber

logger = logging.getLogger(__name__)

__all__ = ["MigrationError", "migrateCharacter", "migratePack", "LEGACY_PACK_ENTRYPOINTS"]

PACK_SCHEMA_VERSION = "2.0.0"

# Layout assumed for manifests that predate entrypoints
LEGACY_PACK_ENTRYPOINTS: dict[str, Any] = {
    "model": "schema/model.json5",
    "rules": "rules/rules.json5",
    "content": ["content/content.json5"],
    "ui": "ui/ui.json5",
    "actions": "ui/actions.json5",
}



class MigrationError(RpgForgeError):
    pass



def _obj(value: Any) -> dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}



def _resourcePair(value: Any) -> dict[str, float | int]:
    pair = _obj(value)
    return {"current": finiteNumber(pair.get("current"), 0), "max": finiteNumber(pair.get("max"), 0)}



def migrateCharacter(raw: Any, toVersion: str = CHARACTER_SCHEMA_VERSION) -> CharacterDocument:
    """
    Upgrade a stored character to the current document shape.

    Current documents are validated as they are. Legacy documents may keep stats in
    `attr`, resources in `res`, the inventory in `inventory.items` and the ruleset
    in `systemId`; derived and effective values are left for the next recompute.
    """
    if toVersion != CHARACTER_SCHEMA_VERSION:
        raise MigrationError(f"Unsupported target character schema version: {toVersion}")

    data = _obj(raw)
    if data.get("schemaVersion") == CHARACTER_SCHEMA_VERSION:
        return CharacterDocument.model_validate(data)

    logger.info("Migrating legacy character %r to schema %s", data.get("id") or _obj(data.get("meta")).get("id"), toVersion)
    now = nowIso()
    meta = _obj(data.get("meta"))
    core = _obj(data.get("core"))
    components = _obj(data.get("components"))

    stats = {str(key): finiteNumber(value, 0) for key, value in _obj(components.get("stats") or data.get("attr")).items()}
    resources = {str(key): _resourcePair(value) for key, value in _obj(components.get("resources") or data.get("res")).items()}

    collections = data.get("collections")
    if not isinstance(collections, Mapping):
        items = _obj(data.get("inventory")).get("items")
        collections = {"inventory": list(items) if isinstance(items, list) else []}

    tags = core.get("tags") if isinstance(core.get("tags"), list) else data.get("tags")

    migrated = {
        "schemaVersion": CHARACTER_SCHEMA_VERSION,
        "meta": {
            "id": str(meta.get("id") or data.get("id") or uuid_12("legacy-")),
            "rulesetId": str(meta.get("rulesetId") or data.get("systemId") or "unknown@0.0.0"),
            "name": str(meta.get("name") or data.get("name") or "Migrated Character"),
            "createdAt": str(meta.get("createdAt") or data.get("createdAt") or now),
            "updatedAt": now,
        },
        "core": {
            "level": max(1, math.floor(finiteNumber(core.get("level") or data.get("level"), 1))),
            "xp": max(0, finiteNumber(core.get("xp"), 0)),
            "tags": [str(tag) for tag in tags] if isinstance(tags, list) else [],
            "notes": str(core.get("notes") or data.get("notes") or ""),
        },
        "components": {
            "stats": stats,
            "resources": resources,
            "effectiveStats": dict(stats),
            "effectiveResources": {key: dict(pair) for key, pair in resources.items()},
        },
        "collections": {str(key): list(value) if isinstance(value, list) else [] for key, value in collections.items()},
        "derived": {str(key): finiteNumber(value, 0) for key, value in _obj(data.get("derived")).items()},
        "stateFlags": {str(key): bool(value) for key, value in _obj(data.get("stateFlags")).items()},
        "appliedPacks": [str(pack) for pack in data["appliedPacks"]] if isinstance(data.get("appliedPacks"), list) else [],
    }
    return CharacterDocument.model_validate(migrated)



def migratePack(raw: Any) -> PackManifest:
    """Upgrade a legacy manifest (no schemaVersion) to the current manifest schema."""
    data = _obj(raw)
    if data.get("schemaVersion") == PACK_SCHEMA_VERSION:
        return parsePackManifest(data)

    logger.info("Migrating legacy pack manifest %r", data.get("id"))
    return parsePackManifest({
        "schemaVersion": PACK_SCHEMA_VERSION,
        "id": str(data.get("id") or "legacy_pack"),
        "name": str(data.get("name") or data.get("id") or "Legacy Pack"),
        "version": str(data.get("version") or "0.0.0"),
        "kind": "core",
        "description": str(data.get("description") or "Migrated from legacy format"),
        "dependsOn": [],
        "entrypoints": dict(LEGACY_PACK_ENTRYPOINTS),
    })
