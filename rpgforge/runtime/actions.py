# rpgforge/runtime/actions.py
from __future__ import annotations

import logging
import math
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from rpgforge.content.models import ResolvedRuleset
from rpgforge.core.errors import RpgForgeError
from rpgforge.core.ids import entityId, uuid_12
from rpgforge.core.time import nowIso
from rpgforge.runtime.character import ActionEnvelope, CharacterDocument, ResourceState, finiteNumber
from rpgforge.runtime.dice import DiceRoller, defaultDiceRoller
from rpgforge.runtime.effects import recomputeDerived
from rpgforge.runtime.expression import evalNumber

logger = logging.getLogger(__name__)

__all__ = [
    "ActionError",
    "CharacterMismatchError",
    "UnknownActionError",
    "DOMAIN_TARGETS",
    "DispatchResult",
    "applyDomainAction",
    "dispatchWithResult",
    "dispatchAction",
]

DEFAULT_COLLECTION = "inventory"
ACTIVITY_LOG = "activity_log"



class ActionError(RpgForgeError):
    def __init__(self, message: str, *, actionId: str | None = None, characterId: str | None = None) -> None:
        super().__init__(message)
        self.actionId = actionId
        self.characterId = characterId



class CharacterMismatchError(ActionError):
    """The envelope was addressed to a different character than the document given."""



class UnknownActionError(ActionError, LookupError):
    """The action id is not in the ruleset's action map."""



@dataclass(frozen=True, slots=True)
class DispatchResult:
    document: CharacterDocument
    value: float | int | None = None



# ------------------------------------------------------------------ #
# Domain transitions
#
# Each handler mutates the (already copied) document in place.
# ------------------------------------------------------------------ #

def _key(payload: Mapping[str, Any], name: str = "key") -> str:
    value = payload.get(name)
    return str(value) if value not in (None, "") else ""



def _collectionName(payload: Mapping[str, Any]) -> str:
    return str(payload.get("collection") or payload.get("key") or DEFAULT_COLLECTION)



def _updateEntity(values: list[Any], targetId: str, updater: Callable[[dict[str, Any]], dict[str, Any]]) -> list[Any]:
    out: list[Any] = []
    found = False
    for item in values:
        if isinstance(item, Mapping) and str(item.get("id") or "") == targetId:
            out.append(updater(dict(item)))
            found = True
        else:
            out.append(item)
    return out if found else values



def _setLevel(doc: CharacterDocument, payload: Mapping[str, Any], effective: Mapping[str, ResourceState]) -> None:
    doc.core.level = max(1, math.floor(finiteNumber(payload.get("value"), doc.core.level)))



def _setStat(doc: CharacterDocument, payload: Mapping[str, Any], effective: Mapping[str, ResourceState]) -> None:
    key = _key(payload)
    if key:
        doc.components.stats[key] = finiteNumber(payload.get("value"), doc.components.stats.get(key, 0))



def _deltaStat(doc: CharacterDocument, payload: Mapping[str, Any], effective: Mapping[str, ResourceState]) -> None:
    key = _key(payload)
    if key:
        prev = finiteNumber(doc.components.stats.get(key), 0)
        doc.components.stats[key] = prev + finiteNumber(payload.get("value"), 0)



def _effectiveMax(key: str, base: ResourceState, effective: Mapping[str, ResourceState]) -> float | int:
    known = effective.get(key)
    return known.max if known is not None else base.max



def _setResourceCurrent(doc: CharacterDocument, payload: Mapping[str, Any], effective: Mapping[str, ResourceState]) -> None:
    key = _key(payload)
    res = doc.components.resources.get(key)
    if res is None:
        return
    upper = _effectiveMax(key, res, effective)
    res.current = max(0, min(upper, finiteNumber(payload.get("value"), res.current)))



def _longRest(doc: CharacterDocument, payload: Mapping[str, Any], effective: Mapping[str, ResourceState]) -> None:
    for key, res in doc.components.resources.items():
        res.current = _effectiveMax(key, res, effective)



def _noop(doc: CharacterDocument, payload: Mapping[str, Any], effective: Mapping[str, ResourceState]) -> None:
    return None



def _toggleFlag(doc: CharacterDocument, payload: Mapping[str, Any], effective: Mapping[str, ResourceState]) -> None:
    key = _key(payload)
    if key:
        doc.stateFlags[key] = not doc.stateFlags.get(key, False)



def _appendCollection(doc: CharacterDocument, payload: Mapping[str, Any], effective: Mapping[str, ResourceState]) -> None:
    key = _key(payload)
    if key:
        doc.collections.setdefault(key, []).append(payload.get("item"))



def _createEntity(doc: CharacterDocument, payload: Mapping[str, Any], effective: Mapping[str, ResourceState]) -> None:
    entity = payload.get("entity")
    entity = dict(entity) if isinstance(entity, Mapping) else {}
    entity["id"] = str(entity.get("id") or payload.get("id") or entityId())
    doc.collections.setdefault(_collectionName(payload), []).append(entity)



def _entityUpdate(updater: Callable[[Mapping[str, Any]], Callable[[dict[str, Any]], dict[str, Any]]]):
    def handler(doc: CharacterDocument, payload: Mapping[str, Any], effective: Mapping[str, ResourceState]) -> None:
        name = _collectionName(payload)
        target = _key(payload, "id")
        values = doc.collections.get(name)
        if not target or not isinstance(values, list):
            return
        doc.collections[name] = _updateEntity(values, target, updater(payload))
    return handler



def _patch(payload: Mapping[str, Any]) -> Callable[[dict[str, Any]], dict[str, Any]]:
    patch = payload.get("patch")
    patch = dict(patch) if isinstance(patch, Mapping) else {}
    return lambda prev: {**prev, **patch}



def _equip(payload: Mapping[str, Any]) -> Callable[[dict[str, Any]], dict[str, Any]]:
    slot = str(payload["slot"]) if payload.get("slot") else None
    return lambda prev: {**prev, "equipped": True, "slot": slot}



def _unequip(payload: Mapping[str, Any]) -> Callable[[dict[str, Any]], dict[str, Any]]:
    return lambda prev: {**prev, "equipped": False}



def _deleteEntity(doc: CharacterDocument, payload: Mapping[str, Any], effective: Mapping[str, ResourceState]) -> None:
    name = _collectionName(payload)
    target = _key(payload, "id")
    values = doc.collections.get(name)
    if not target or not isinstance(values, list):
        return
    doc.collections[name] = [
        item for item in values
        if not (isinstance(item, Mapping) and str(item.get("id") or "") == target)
    ]



def _applyTemplate(doc: CharacterDocument, payload: Mapping[str, Any], effective: Mapping[str, ResourceState]) -> None:
    name = str(payload.get("collection") or DEFAULT_COLLECTION)
    template = payload.get("template")
    template = dict(template) if isinstance(template, Mapping) else {}
    template["id"] = str(template.get("id") or entityId())
    doc.collections.setdefault(name, []).append(template)



DOMAIN_TARGETS: dict[str, Callable[[CharacterDocument, Mapping[str, Any], Mapping[str, ResourceState]], None]] = {
    "setLevel": _setLevel,
    "setStat": _setStat,
    "deltaStat": _deltaStat,
    "setResourceCurrent": _setResourceCurrent,
    "longRest": _longRest,
    "shortRest": _noop,
    "recompute": _noop,
    "toggleFlag": _toggleFlag,
    "appendCollection": _appendCollection,
    "createEntity": _createEntity,
    "updateEntity": _entityUpdate(_patch),
    "deleteEntity": _deleteEntity,
    "equipEntity": _entityUpdate(_equip),
    "unequipEntity": _entityUpdate(_unequip),
    "applyTemplate": _applyTemplate,
}



def applyDomainAction(doc: CharacterDocument, target: str, payload: Mapping[str, Any] | None = None) -> CharacterDocument:
    """
    Run one built-in state transition on a copy of `doc`. Unknown targets return an
    unchanged copy. Derived values are not touched; callers recompute.
    """
    nxt = doc.model_copy(deep=True)
    handler = DOMAIN_TARGETS.get(target)
    if handler is None:
        logger.debug("Unknown domain target %r ignored", target)
        return nxt
    # Effective maxima as of the last recompute
    handler(nxt, dict(payload or {}), doc.components.effectiveResources)
    return nxt



# ------------------------------------------------------------------ #
# Dispatch
# ------------------------------------------------------------------ #

def _envelope(action: ActionEnvelope | Mapping[str, Any]) -> ActionEnvelope:
    if isinstance(action, ActionEnvelope):
        return action
    return ActionEnvelope.model_validate(dict(action))



def dispatchWithResult(
    ruleset: ResolvedRuleset,
    current: CharacterDocument,
    action: ActionEnvelope | Mapping[str, Any],
    *,
    characterId: str | None = None,
    dice: DiceRoller | None = None,
) -> DispatchResult:
    """
    Apply one action and recompute with the action id as the last action.
    `current` is never modified. Script and roll actions report their value.
    """
    envelope = _envelope(action)
    if characterId is not None and characterId != current.meta.id:
        raise CharacterMismatchError(
            f"Character mismatch: expected {current.meta.id}, got {characterId}",
            actionId=envelope.id,
            characterId=characterId,
        )

    spec = ruleset.actions.get(envelope.id)
    if spec is None:
        raise UnknownActionError(f"Unknown action: {envelope.id}", actionId=envelope.id, characterId=current.meta.id)

    dice = dice if dice is not None else defaultDiceRoller()
    value: float | int | None = None

    match spec.kind:
        case "domain":
            nxt = applyDomainAction(current, spec.target, envelope.payload)
        case "toggle":
            nxt = current.model_copy(deep=True)
            nxt.stateFlags[spec.target] = not nxt.stateFlags.get(spec.target, False)
        case "script":
            nxt = current.model_copy(deep=True)
            value = evalNumber(spec.target, nxt, ruleset, dice=dice)
        case "roll":
            nxt = current.model_copy(deep=True)
            value = evalNumber(spec.target, nxt, ruleset, dice=dice)
            nxt.collections[ACTIVITY_LOG] = [
                *nxt.collections.get(ACTIVITY_LOG, []),
                {
                    "id": uuid_12("roll_"),
                    "type": "roll",
                    "actionId": spec.id,
                    "expression": spec.target,
                    "value": value,
                    "at": nowIso(),
                },
            ]

    logger.debug("Dispatched %s (%s:%s) on %s", envelope.id, spec.kind, spec.target, current.meta.id)
    return DispatchResult(document=recomputeDerived(nxt, ruleset, envelope.id, dice=dice), value=value)



def dispatchAction(
    ruleset: ResolvedRuleset,
    current: CharacterDocument,
    action: ActionEnvelope | Mapping[str, Any],
    *,
    characterId: str | None = None,
    dice: DiceRoller | None = None,
) -> CharacterDocument:
    return dispatchWithResult(ruleset, current, action, characterId=characterId, dice=dice).document
