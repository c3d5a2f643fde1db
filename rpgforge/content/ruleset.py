# rpgforge/content/ruleset.py
from __future__ import annotations

import copy
import logging
from collections.abc import Iterable, Mapping
from typing import Any, Protocol, TypeVar

from rpgforge.content.models import (
    ActionSpec,
    AuthoringPreset,
    ContentEntry,
    CreatorPreset,
    EffectSpec,
    LoadedPack,
    ModelBlock,
    ResolvedModel,
    ResolvedRuleset,
    RulesBlock,
    RulesetConflict,
    UiAccents,
    UiLayout,
    UiPreset,
)
from rpgforge.content.pack_resolution import resolvePackOrder
from rpgforge.core.errors import RpgForgeError

logger = logging.getLogger(__name__)

__all__ = ["RulesetMergeError", "deepMerge", "mergeUniqueById", "mergeResolvedRuleset", "activateRuleset"]



class RulesetMergeError(RpgForgeError):
    pass



class _HasId(Protocol):
    id: str

T = TypeVar("T", bound=_HasId)



def mergeUniqueById(left: Iterable[T] | None, right: Iterable[T] | None) -> list[T]:
    """
    Later items replace earlier ones with the same id in place; new ids are appended.
    """
    byId: dict[str, T] = {}
    for item in left or ():
        byId[item.id] = item
    for item in right or ():
        byId[item.id] = item
    return list(byId.values())



def deepMerge(target: Mapping[str, Any], source: Mapping[str, Any]) -> dict[str, Any]:
    """
    Recursive merge of JSON-like mappings: lists concatenate, mappings recurse,
    everything else is replaced by `source`. Inputs are not mutated.
    """
    out: dict[str, Any] = dict(target)
    for key, value in source.items():
        prev = out.get(key)
        if isinstance(prev, list) and isinstance(value, list):
            out[key] = [*prev, *copy.deepcopy(value)]
        elif isinstance(prev, Mapping) and isinstance(value, Mapping):
            out[key] = deepMerge(prev, value)
        else:
            out[key] = copy.deepcopy(value)
    return out



def _mergeUi(current: UiPreset, incoming: UiPreset | None) -> UiPreset:
    if incoming is None:
        return current
    accents: UiAccents | None = current.accents
    if incoming.accents is not None:
        merged = dict(current.accents.toDict() if current.accents else {})
        merged.update(incoming.accents.toDict())
        accents = UiAccents.model_validate(merged)
    return UiPreset(
        layout=UiLayout(groups=[*current.layout.groups, *incoming.layout.groups]),
        panels=mergeUniqueById(current.panels, incoming.panels),
        accents=accents,
    )



def _mergeContentEntry(previous: ContentEntry, incoming: ContentEntry) -> ContentEntry:
    if incoming.mergePolicy != "deep_merge":
        return incoming
    return incoming.model_copy(update={"data": deepMerge(previous.data, incoming.data)})



def mergeResolvedRuleset(orderedPacks: Iterable[LoadedPack]) -> ResolvedRuleset:
    """
    Fold an already ordered pack list into one ResolvedRuleset.

    Later packs win. Content entries that replace an earlier entry with the same
    (type, id) are recorded as conflicts with resolution "overridden".
    The ruleset id is "<id>@<version>" of the last pack.
    """
    packs = list(orderedPacks)
    if not packs:
        raise RulesetMergeError("Cannot merge empty pack list")

    core = ModelBlock(stats=[], resources=[], collections=[], flags=[])
    extensions: list[ModelBlock] = []
    formulas: dict[str, str] = {}
    lookups: dict[str, dict[str, float | int]] = {}
    hooks: dict[str, Any] = {}
    ui = UiPreset()
    creator: CreatorPreset | None = None
    authoring: dict[str, Any] | None = None
    effects: list[EffectSpec] = []
    actions: dict[str, ActionSpec] = {}
    content: dict[str, dict[str, ContentEntry]] = {}
    contentOwner: dict[tuple[str, str], str] = {}
    conflicts: list[RulesetConflict] = []

    for pack in packs:
        mod = pack.module
        packId = pack.manifest.id

        if mod.model is not None and mod.model.core is not None:
            block = mod.model.core
            core = ModelBlock(
                stats=mergeUniqueById(core.stats, block.stats),
                resources=mergeUniqueById(core.resources, block.resources),
                collections=mergeUniqueById(core.collections, block.collections),
                flags=mergeUniqueById(core.flags, block.flags),
            )
        if mod.model is not None and mod.model.extends is not None:
            extensions.append(mod.model.extends)

        if mod.rules is not None:
            formulas.update(mod.rules.formulas or {})
            for table, rows in (mod.rules.lookups or {}).items():
                lookups[table] = {**lookups.get(table, {}), **rows}
            hooks.update(mod.rules.hooks or {})

        ui = _mergeUi(ui, mod.ui)

        if mod.creator is not None:
            creator = mod.creator
        if mod.authoring is not None:
            authoring = deepMerge(authoring or {}, mod.authoring.toDict())
        if mod.effects:
            effects.extend(mod.effects)

        for action in mod.actions or []:
            actions[action.id] = action

        for contentType, entries in (mod.content or {}).items():
            byId = content.setdefault(contentType, {})
            for entry in entries:
                existing = byId.get(entry.id)
                if existing is not None:
                    conflicts.append(RulesetConflict(
                        id=entry.id,
                        contentType=contentType,
                        previousPackId=contentOwner.get((contentType, entry.id), "unknown"),
                        nextPackId=packId,
                        resolution="overridden",
                        path=f"content.{contentType}.{entry.id}",
                    ))
                    logger.debug(
                        "Content %s.%s from %s overridden by %s",
                        contentType, entry.id, contentOwner.get((contentType, entry.id)), packId,
                    )
                    entry = _mergeContentEntry(existing, entry)
                byId[entry.id] = entry
                contentOwner[(contentType, entry.id)] = packId

    root = packs[-1].manifest
    return ResolvedRuleset(
        id=f"{root.id}@{root.version}",
        packOrder=[pack.manifest.id for pack in packs],
        manifests=[pack.manifest for pack in packs],
        model=ResolvedModel(core=core, extensions=extensions),
        rules=RulesBlock(formulas=formulas, lookups=lookups, hooks=hooks),
        ui=ui,
        actions=actions,
        content=content,
        creator=creator,
        authoring=AuthoringPreset.model_validate(authoring) if authoring is not None else None,
        effects=effects,
        conflicts=conflicts,
    )



def activateRuleset(allPacks: Iterable[LoadedPack], requestedPackIds: Iterable[str]) -> ResolvedRuleset:
    """Resolve + merge."""
    requested = list(requestedPackIds)
    result = resolvePackOrder(allPacks, requested)
    ruleset = mergeResolvedRuleset(result.ordered)
    logger.info(
        "Activated ruleset %s (packs: %s, conflicts: %d)",
        ruleset.id, ", ".join(ruleset.packOrder), len(ruleset.conflicts),
    )
    if ruleset.conflicts:
        for conflict in ruleset.conflicts:
            logger.debug("Conflict %s: %s -> %s", conflict.path, conflict.previousPackId, conflict.nextPackId)
    return ruleset
