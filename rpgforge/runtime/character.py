# rpgforge/runtime/character.py
from __future__ import annotations

import copy
import logging
import math
from collections.abc import Callable, Iterable, Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from rpgforge.app.globals import config
from rpgforge.content.models import ResolvedRuleset
from rpgforge.core.ids import uuidv7
from rpgforge.core.time import nowIso, nowMs
from rpgforge.runtime.dice import DiceRoller

logger = logging.getLogger(__name__)

__all__ = [
    "CHARACTER_SCHEMA_VERSION",
    "ResourceState",
    "Components",
    "CharacterMeta",
    "CharacterCore",
    "CharacterDocument",
    "ActionEnvelope",
    "SeedInterpreter",
    "finiteNumber",
    "getSeedStat",
    "initializeComponents",
    "initializeCollections",
    "initializeFlags",
    "createCharacter",
]

CHARACTER_SCHEMA_VERSION = "2.0.0"



# ------------------------------------------------------------------ #
#                           Document shape
# ------------------------------------------------------------------ #

class _State(BaseModel):
    model_config = ConfigDict(extra="forbid")



class ResourceState(_State):
    current: float | int = 0
    max: float | int = 0



class Components(_State):
    stats: dict[str, float | int] = Field(default_factory=dict)
    resources: dict[str, ResourceState] = Field(default_factory=dict)
    effectiveStats: dict[str, float | int] = Field(default_factory=dict)
    effectiveResources: dict[str, ResourceState] = Field(default_factory=dict)



class CharacterMeta(_State):
    id: str = Field(min_length=1)
    rulesetId: str
    name: str
    createdAt: str
    updatedAt: str



class CharacterCore(_State):
    level: int = Field(default=1, ge=1)
    xp: float | int = 0
    tags: list[str] = Field(default_factory=list)
    notes: str = ""



class CharacterDocument(_State):
    """
    A character's full state under one ruleset.

    `components.stats`/`resources` are the base values owned by actions.
    `effectiveStats`, `effectiveResources` and `derived` are rebuilt from scratch on
    every recompute and are never edited directly.
    """
    schemaVersion: Literal["2.0.0"] = CHARACTER_SCHEMA_VERSION
    meta: CharacterMeta
    core: CharacterCore = Field(default_factory=CharacterCore)
    components: Components = Field(default_factory=Components)
    collections: dict[str, list[Any]] = Field(default_factory=dict)
    derived: dict[str, float | int] = Field(default_factory=dict)
    stateFlags: dict[str, bool] = Field(default_factory=dict)
    appliedPacks: list[str] = Field(default_factory=list)
    overlayPackIds: list[str] = Field(default_factory=list)

    @property
    def id(self) -> str:
        return self.meta.id

    def toDict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def fromDict(cls, data: Mapping[str, Any]) -> CharacterDocument:
        return cls.model_validate(dict(data))



class ActionEnvelope(_State):
    id: str = Field(min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)



SeedInterpreter = Callable[[CharacterDocument, Mapping[str, Any]], CharacterDocument]



# ------------------------------------------------------------------ #
#                             Seeding
# ------------------------------------------------------------------ #

def finiteNumber(value: Any, fallback: Any = 0) -> Any:
    """`value` as a finite number, else `fallback`. Numeric strings are accepted."""
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else fallback
    if isinstance(value, str) and value.strip():
        try:
            num = float(value)
        except ValueError:
            return fallback
        if not math.isfinite(num):
            return fallback
        return int(num) if num.is_integer() else num
    return fallback



def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}



def getSeedStat(seed: Mapping[str, Any], key: str) -> float | int | None:
    """`seed.stats[key]`, else a top-level numeric `seed[key]`, else None."""
    nested = finiteNumber(_mapping(seed.get("stats")).get(key), None)
    if nested is not None:
        return nested
    return finiteNumber(seed.get(key), None)



def initializeComponents(ruleset: ResolvedRuleset, seed: Mapping[str, Any] | None = None) -> Components:
    seed = seed or {}
    seedStats = _mapping(seed.get("stats"))
    seedResources = _mapping(seed.get("resources"))

    stats: dict[str, float | int] = {}
    for stat in ruleset.model.stats():
        seeded = seedStats.get(stat.id)
        stats[stat.id] = finiteNumber(seeded if seeded is not None else stat.default, 0)

    resources: dict[str, ResourceState] = {}
    for res in ruleset.model.resources():
        seeded = _mapping(seedResources.get(res.id))
        maxValue = finiteNumber(seeded.get("max") if seeded.get("max") is not None else res.default, 0)
        current = finiteNumber(seeded.get("current"), maxValue) if seeded.get("current") is not None else maxValue
        resources[res.id] = ResourceState(current=max(0, current), max=max(0, maxValue))

    return Components(
        stats=stats,
        resources=resources,
        effectiveStats=dict(stats),
        effectiveResources={key: res.model_copy() for key, res in resources.items()},
    )



def initializeCollections(ruleset: ResolvedRuleset, seed: Mapping[str, Any] | None = None) -> dict[str, list[Any]]:
    seedCollections = _mapping((seed or {}).get("collections"))
    out: dict[str, list[Any]] = {}
    for coll in ruleset.model.collections():
        values = seedCollections.get(coll.id)
        out[coll.id] = list(values) if isinstance(values, list) else []
    return out



def initializeFlags(ruleset: ResolvedRuleset, seed: Mapping[str, Any] | None = None) -> dict[str, bool]:
    seedFlags = _mapping((seed or {}).get("flags"))
    out: dict[str, bool] = {}
    for flag in ruleset.model.flags():
        seeded = seedFlags.get(flag.id)
        out[flag.id] = bool(seeded if seeded is not None else (flag.default or False))
    return out



def createCharacter(
    ruleset: ResolvedRuleset,
    seed: Mapping[str, Any] | None = None,
    *,
    rulesetId: str | None = None,
    seedInterpreters: Iterable[SeedInterpreter] = (),
    dice: DiceRoller | None = None,
) -> CharacterDocument:
    """
    Build a new character for `ruleset` from an optional creation seed and run the
    first recompute.

    Recognized seed keys: name, level (or level_total), xp, tags, notes, stats,
    resources, collections, flags, plus top-level numeric keys named after a stat.
    Anything game-specific is left to `seedInterpreters`, each called as
    `interpreter(doc, seed) -> doc` before the recompute.
    """
    from rpgforge.runtime.effects import recomputeDerived

    seedObj: dict[str, Any] = copy.deepcopy(dict(seed or {}))
    now = nowIso()

    levelRaw = seedObj.get("level_total", seedObj.get("level"))
    level = max(1, math.floor(finiteNumber(levelRaw, 1)))
    tags = seedObj.get("tags")

    doc = CharacterDocument(
        meta=CharacterMeta(
            id=uuidv7(),
            rulesetId=rulesetId or ruleset.id,
            name=str(seedObj.get("name") or config("characters.defaultName", "Adventurer")),
            createdAt=now,
            updatedAt=now,
        ),
        core=CharacterCore(
            level=level,
            xp=max(0, finiteNumber(seedObj.get("xp"), 0)),
            tags=[str(tag) for tag in tags if tag not in (None, "")] if isinstance(tags, list) else [],
            notes=str(seedObj.get("notes") or ""),
        ),
        components=initializeComponents(ruleset, seedObj),
        collections=initializeCollections(ruleset, seedObj),
        stateFlags=initializeFlags(ruleset, seedObj),
        appliedPacks=list(ruleset.packOrder),
    )

    for statKey in list(doc.components.stats):
        picked = getSeedStat(seedObj, statKey)
        if picked is not None:
            doc.components.stats[statKey] = picked
            doc.components.effectiveStats[statKey] = picked

    for interpreter in seedInterpreters:
        doc = interpreter(doc, seedObj)

    doc.collections["activity_log"] = [
        *doc.collections.get("activity_log", []),
        {"id": f"creator_seed_{nowMs()}", "type": "creator_seed", "seed": seedObj},
    ]

    logger.debug("Created character %s (%s) for ruleset %s", doc.meta.id, doc.meta.name, doc.meta.rulesetId)
    return recomputeDerived(doc, ruleset, dice=dice)
