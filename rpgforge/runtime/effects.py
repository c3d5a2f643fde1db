# rpgforge/runtime/effects.py
"""
Effect collection and the recompute pass.

recomputeDerived() always rebuilds effectiveStats, effectiveResources and derived
from the base components, so running it twice gives the same values.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError

from rpgforge.content.models import (
    EffectDuration,
    EffectSpec,
    EffectTrigger,
    Modifier,
    ModifierOperation,
    ResolvedRuleset,
    StackingPolicy,
)
from rpgforge.core.time import nowIso
from rpgforge.runtime.character import CharacterDocument, ResourceState, finiteNumber
from rpgforge.runtime.dice import DiceRoller, defaultDiceRoller
from rpgforge.runtime.expression import evalNumber

logger = logging.getLogger(__name__)

__all__ = [
    "REST_ACTIONS",
    "LEVEL_ACTIONS",
    "EffectContext",
    "triggerMatches",
    "collectActiveEffects",
    "applyModifierValue",
    "applyEffects",
    "applyDerivedModifiers",
    "recomputeDerived",
]

REST_ACTIONS = frozenset({"shortRest", "longRest"})
LEVEL_ACTIONS = frozenset({"setLevel"})
DERIVED_PREFIX = "derived."

_M = TypeVar("_M", bound=BaseModel)
_STACKING = TypeAdapter(StackingPolicy | None)



@dataclass(frozen=True, slots=True)
class EffectContext:
    effect: EffectSpec
    modifier: Modifier
    source: Literal["ruleset", "collection"]



# ------------------------------------------------------------------ #
# Collection
# ------------------------------------------------------------------ #

def _strictEquals(left: Any, right: Any) -> bool:
    # No bool/number cross matches: a flag set to True does not equal 1
    return type(left) is type(right) and left == right



def triggerMatches(effect: EffectSpec, doc: CharacterDocument, lastActionId: str | None = None) -> bool:
    """True when the effect has no triggers or any one of them holds."""
    triggers = effect.triggers or []
    if not triggers:
        return True

    for trigger in triggers:
        match trigger.kind:
            case "always" | "equipped":
                return True
            case "manual":
                continue
            case "flag":
                if not trigger.key:
                    continue
                if trigger.equals is None:
                    if doc.stateFlags.get(trigger.key):
                        return True
                elif trigger.key in doc.stateFlags and _strictEquals(doc.stateFlags[trigger.key], trigger.equals):
                    return True
            case "on_rest":
                if lastActionId in REST_ACTIONS:
                    return True
            case "on_level_change":
                if lastActionId in LEVEL_ACTIONS:
                    return True
            case "on_action":
                if trigger.actionId and lastActionId == trigger.actionId:
                    return True
    return False



def _lenient(model: type[_M], raw: Any) -> _M | None:
    """Validate only the fields `model` knows about; None when that still fails."""
    if isinstance(raw, model):
        return raw
    if not isinstance(raw, Mapping):
        return None
    try:
        return model.model_validate({key: value for key, value in raw.items() if key in model.model_fields})
    except ValidationError:
        return None



def _itemEffect(itemId: Any, index: int, entry: Any) -> EffectSpec | None:
    """
    Entities are loosely typed, so their effects are read piece by piece: unknown
    keys are ignored, invalid modifiers are dropped and an invalid trigger never
    matches. An effect left with no modifiers, or whose triggers are all invalid,
    is inactive.
    """
    if isinstance(entry, EffectSpec):
        return entry
    if not isinstance(entry, Mapping):
        return None

    rawModifiers = entry.get("modifiers") if isinstance(entry.get("modifiers"), list) else []
    modifiers = [mod for mod in (_lenient(Modifier, raw) for raw in rawModifiers) if mod is not None]
    rawTriggers = entry.get("triggers") if isinstance(entry.get("triggers"), list) else []
    triggers = [trg for trg in (_lenient(EffectTrigger, raw) for raw in rawTriggers) if trg is not None]

    effectId = str(entry.get("id") or f"{itemId}#{index}")
    if len(modifiers) < len(rawModifiers) or len(triggers) < len(rawTriggers):
        logger.debug(
            "Effect %s on item %r: kept %d/%d modifier(s), %d/%d trigger(s)",
            effectId, itemId, len(modifiers), len(rawModifiers), len(triggers), len(rawTriggers),
        )
    if not modifiers or (rawTriggers and not triggers):
        return None

    try:
        stacking = _STACKING.validate_python(entry.get("stacking"))
    except ValidationError:
        stacking = None
    return EffectSpec(
        id=effectId,
        label=entry.get("label") if isinstance(entry.get("label"), str) else None,
        modifiers=modifiers,
        triggers=triggers or None,
        duration=_lenient(EffectDuration, entry.get("duration")),
        stacking=stacking,
    )



def _itemEffects(item: Mapping[str, Any]) -> list[EffectSpec]:
    data = item.get("data")
    raw = [
        *(item.get("effects") if isinstance(item.get("effects"), list) else []),
        *(data.get("effects") if isinstance(data, Mapping) and isinstance(data.get("effects"), list) else []),
    ]
    out: list[EffectSpec] = []
    for index, entry in enumerate(raw):
        effect = _itemEffect(item.get("id"), index, entry)
        if effect is not None:
            out.append(effect)
    return out



def collectActiveEffects(
    doc: CharacterDocument,
    ruleset: ResolvedRuleset,
    lastActionId: str | None = None,
) -> list[EffectContext]:
    """
    Ruleset effects first, then effects carried by equipped entities in every collection.
    The same effect reachable from both sources is counted twice.
    """
    active: list[EffectContext] = []

    for effect in ruleset.effects:
        if not triggerMatches(effect, doc, lastActionId):
            continue
        active.extend(EffectContext(effect, modifier, "ruleset") for modifier in effect.modifiers)

    for values in doc.collections.values():
        if not isinstance(values, list):
            continue
        for item in values:
            if not isinstance(item, Mapping) or not item.get("equipped"):
                continue
            for effect in _itemEffects(item):
                if not triggerMatches(effect, doc, lastActionId):
                    continue
                active.extend(EffectContext(effect, modifier, "collection") for modifier in effect.modifiers)

    return active



# ------------------------------------------------------------------ #
# Application
# ------------------------------------------------------------------ #

def applyModifierValue(current: float | int, operation: ModifierOperation | None, value: float | int) -> float | int:
    match operation:
        case "set":
            return value
        case "max":
            return max(current, value)
        case "min":
            return min(current, value)
        case "multiply":
            return current * value
        case _:
            return current + value



def _modifierValue(
    ctx: EffectContext,
    doc: CharacterDocument,
    ruleset: ResolvedRuleset,
    dice: DiceRoller,
) -> float | int:
    mod = ctx.modifier
    if mod.formula:
        return evalNumber(mod.formula, doc, ruleset, dice=dice)
    return finiteNumber(mod.value, 0)



def _stackingOf(ctx: EffectContext) -> str:
    return ctx.modifier.stacking or ctx.effect.stacking or "sum"



def _clampResource(res: ResourceState) -> ResourceState:
    maxValue = max(0, finiteNumber(res.max, 0))
    return ResourceState(current=min(maxValue, max(0, finiteNumber(res.current, 0))), max=maxValue)



def applyEffects(
    doc: CharacterDocument,
    ruleset: ResolvedRuleset,
    effects: Iterable[EffectContext],
    *,
    dice: DiceRoller | None = None,
) -> CharacterDocument:
    """
    Rebuild effectiveStats and effectiveResources from base values plus `effects`.

    Stat modifiers apply in order; with "exclusive" stacking only the first modifier
    per (target, key) slot applies. Resource maxima come from maxFormula (evaluated
    after stat modifiers), then resource_max modifiers; current is re-clamped each time.
    """
    dice = dice if dice is not None else defaultDiceRoller()
    effects = list(effects)
    nxt = doc.model_copy(deep=True)
    components = nxt.components
    components.effectiveStats = dict(components.stats)

    seenExclusive: set[str] = set()
    for ctx in effects:
        mod = ctx.modifier
        if mod.target != "stat" or not mod.key:
            continue
        stacking = _stackingOf(ctx)
        slot = f"stat:{mod.key}"
        if stacking == "exclusive" and slot in seenExclusive:
            continue
        current = finiteNumber(components.effectiveStats.get(mod.key), 0)
        value = _modifierValue(ctx, nxt, ruleset, dice)
        components.effectiveStats[mod.key] = applyModifierValue(current, mod.operation, value)
        if stacking == "exclusive":
            seenExclusive.add(slot)

    components.effectiveResources = {
        key: ResourceState(current=finiteNumber(res.current, 0), max=finiteNumber(res.max, 0))
        for key, res in components.resources.items()
    }

    for resDef in ruleset.model.resources():
        if not resDef.maxFormula:
            continue
        computedMax = max(0, evalNumber(resDef.maxFormula, nxt, ruleset, dice=dice))
        prev = components.effectiveResources.get(resDef.id)
        prevCurrent = prev.current if prev is not None else computedMax
        components.effectiveResources[resDef.id] = ResourceState(
            current=min(computedMax, max(0, prevCurrent)),
            max=computedMax,
        )

    for ctx in effects:
        mod = ctx.modifier
        if mod.target != "resource_max" or not mod.key:
            continue
        stacking = _stackingOf(ctx)
        slot = f"resource_max:{mod.key}"
        if stacking == "exclusive" and slot in seenExclusive:
            continue
        res = components.effectiveResources.get(mod.key) or ResourceState()
        value = _modifierValue(ctx, nxt, ruleset, dice)
        res = ResourceState(current=res.current, max=max(0, applyModifierValue(res.max, mod.operation, value)))
        components.effectiveResources[mod.key] = _clampResource(res)
        if stacking == "exclusive":
            seenExclusive.add(slot)

    return nxt



def applyDerivedModifiers(
    doc: CharacterDocument,
    ruleset: ResolvedRuleset,
    effects: Iterable[EffectContext],
    *,
    dice: DiceRoller | None = None,
) -> CharacterDocument:
    dice = dice if dice is not None else defaultDiceRoller()
    nxt = doc.model_copy(deep=True)
    seenExclusive: set[str] = set()
    for ctx in effects:
        mod = ctx.modifier
        if mod.target != "derived" or not mod.key:
            continue
        stacking = _stackingOf(ctx)
        slot = f"derived:{mod.key}"
        if stacking == "exclusive" and slot in seenExclusive:
            continue
        current = finiteNumber(nxt.derived.get(mod.key), 0)
        value = _modifierValue(ctx, nxt, ruleset, dice)
        nxt.derived[mod.key] = applyModifierValue(current, mod.operation, value)
        if stacking == "exclusive":
            seenExclusive.add(slot)
    return nxt



def recomputeDerived(
    doc: CharacterDocument,
    ruleset: ResolvedRuleset,
    lastActionId: str | None = None,
    *,
    dice: DiceRoller | None = None,
) -> CharacterDocument:
    """
    Full recompute: active effects, effective stats/resources, every `derived.*`
    formula in declaration order, then derived modifiers. `doc` is not modified.

    Resource maxFormulas read `derived` from the incoming document. When some
    `derived.*` value has never been computed (a fresh character) and a maxFormula
    reads `derived`, a first pass seeds the map and the recompute runs again.
    """
    dice = dice if dice is not None else defaultDiceRoller()
    effects = collectActiveEffects(doc, ruleset, lastActionId)
    nxt = _recomputePass(doc, ruleset, effects, dice)
    if _needsDerivedSeed(doc, ruleset):
        seeded = doc.model_copy(deep=True)
        seeded.derived = dict(nxt.derived)
        nxt = _recomputePass(seeded, ruleset, effects, dice)

    nxt.meta.updatedAt = nowIso()
    logger.debug(
        "Recomputed %s (last action %s, %d active modifier(s))",
        nxt.meta.id, lastActionId or "-", len(effects),
    )
    return nxt



def _needsDerivedSeed(doc: CharacterDocument, ruleset: ResolvedRuleset) -> bool:
    missing = any(
        key.startswith(DERIVED_PREFIX) and key[len(DERIVED_PREFIX):] not in doc.derived
        for key in ruleset.formulas
    )
    return missing and any("derived" in (res.maxFormula or "") for res in ruleset.model.resources())



def _recomputePass(
    doc: CharacterDocument,
    ruleset: ResolvedRuleset,
    effects: list[EffectContext],
    dice: DiceRoller,
) -> CharacterDocument:
    nxt = applyEffects(doc, ruleset, effects, dice=dice)

    # Effective current follows the base current, clamped to the effective max
    components = nxt.components
    for key, res in list(components.effectiveResources.items()):
        base = components.resources.get(key)
        baseCurrent = base.current if base is not None else res.current
        components.effectiveResources[key] = _clampResource(ResourceState(current=baseCurrent, max=res.max))

    derived: dict[str, float | int] = {}
    for key, formula in ruleset.formulas.items():
        if not key.startswith(DERIVED_PREFIX):
            continue
        derived[key[len(DERIVED_PREFIX):]] = evalNumber(formula, nxt, ruleset, dice=dice, derived=derived)
    nxt.derived = derived

    nxt = applyDerivedModifiers(nxt, ruleset, effects, dice=dice)
    return nxt
