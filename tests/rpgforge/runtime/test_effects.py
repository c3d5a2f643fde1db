# tests/rpgforge/runtime/test_effects.py
from __future__ import annotations

import pytest

from rpgforge.content.models import EffectSpec, ResolvedRuleset
from rpgforge.runtime.character import createCharacter
from rpgforge.runtime.effects import (
    applyModifierValue,
    collectActiveEffects,
    recomputeDerived,
    triggerMatches,
)


def _effect(effectId="e", *, triggers=None, modifiers=None, stacking=None) -> dict:
    data = {"id": effectId, "modifiers": modifiers or [{"target": "stat", "key": "power", "value": 1}]}
    if triggers is not None:
        data["triggers"] = triggers
    if stacking is not None:
        data["stacking"] = stacking
    return data


def _ruleset(sandboxData, effects=(), formulas=None) -> ResolvedRuleset:
    sandboxData["effects"] = list(effects)
    if formulas:
        sandboxData["rules"]["formulas"].update(formulas)
    return ResolvedRuleset.model_validate(sandboxData)


# -------- triggers --------

@pytest.fixture
def doc(sandboxRuleset):
    created = createCharacter(sandboxRuleset)
    created.stateFlags.update({"raging": True, "stance": False})
    return created


@pytest.mark.parametrize(
    "triggers, lastActionId, expected",
    [
        (None, None, True),
        ([], None, True),
        ([{"kind": "always"}], None, True),
        ([{"kind": "equipped"}], None, True),
        ([{"kind": "manual"}], None, False),
        ([{"kind": "flag", "key": "raging"}], None, True),
        ([{"kind": "flag", "key": "stance"}], None, False),
        ([{"kind": "flag", "key": "stance", "equals": False}], None, True),
        ([{"kind": "flag", "key": "raging", "equals": 1}], None, False),
        ([{"kind": "flag", "key": "missing", "equals": False}], None, False),
        ([{"kind": "flag"}], None, False),
        ([{"kind": "on_rest"}], "shortRest", True),
        ([{"kind": "on_rest"}], "longRest", True),
        ([{"kind": "on_rest"}], "setLevel", False),
        ([{"kind": "on_level_change"}], "setLevel", True),
        ([{"kind": "on_level_change"}], None, False),
        ([{"kind": "on_action", "actionId": "smite"}], "smite", True),
        ([{"kind": "on_action", "actionId": "smite"}], "parry", False),
        ([{"kind": "on_action"}], "smite", False),
        ([{"kind": "manual"}, {"kind": "on_rest"}], "longRest", True),
    ],
)
def test_trigger_matches(doc, triggers, lastActionId, expected):
    effect = EffectSpec.model_validate(_effect(triggers=triggers))
    assert triggerMatches(effect, doc, lastActionId) is expected


# -------- collection --------

def test_collects_ruleset_then_equipped_items(sandboxData):
    ruleset = _ruleset(sandboxData, [_effect("global")])
    doc = createCharacter(ruleset, {"collections": {"inventory": [
        {"id": "ring", "equipped": True, "effects": [_effect("ring-fx")]},
        {"id": "amulet", "equipped": True, "data": {"effects": [_effect("amulet-fx")]}},
        {"id": "boots", "equipped": False, "effects": [_effect("boots-fx")]},
        "not-an-entity",
        {"id": "broken", "equipped": True, "effects": [{"id": "no-modifiers"}]},
    ]}})

    active = collectActiveEffects(doc, ruleset)
    assert [(ctx.effect.id, ctx.source) for ctx in active] == [
        ("global", "ruleset"),
        ("ring-fx", "collection"),
        ("amulet-fx", "collection"),
    ]


def test_same_effect_from_ruleset_and_item_counts_twice(sandboxData):
    shared = _effect("shared")
    ruleset = _ruleset(sandboxData, [shared])
    doc = createCharacter(ruleset, {"collections": {"inventory": [{"id": "x", "equipped": True, "effects": [shared]}]}})
    assert doc.components.effectiveStats["power"] == 7


def _ringPower(sandboxData, effect) -> float | int:
    ruleset = _ruleset(sandboxData)
    doc = createCharacter(ruleset, {"collections": {"inventory": [{"id": "ring", "equipped": True, "effects": [effect]}]}})
    return doc.components.effectiveStats["power"]


@pytest.mark.parametrize(
    "effect, expected",
    [
        ({"id": "fx", "description": "+1 power", "modifiers": [{"target": "stat", "key": "power", "value": 1}]}, 6),
        ({"modifiers": [{"target": "stat", "key": "power", "value": 1, "note": "no id"}]}, 6),
        ({"id": "fx", "triggers": [{"kind": "while_raging"}, {"kind": "always"}]}, 6),
        ({"id": "fx", "triggers": [{"kind": "while_raging"}]}, 5),
        ({"id": "fx", "triggers": [{"kind": "flag", "key": "boosted"}, "junk"]}, 5),
        ({"id": "fx", "modifiers": [
            {"target": "stat", "key": "power", "value": 2},
            {"target": "mood", "key": "power", "value": 100},
            {"target": "stat", "key": "power"},
        ]}, 7),
        ({"id": "fx", "modifiers": [{"target": "mood", "key": "power", "value": 100}]}, 5),
        ({"id": "fx", "stacking": "whatever", "label": 7, "duration": {"type": "forever"}}, 6),
    ],
)
def test_item_effects_are_read_leniently(sandboxData, effect, expected):
    effect = {"modifiers": [{"target": "stat", "key": "power", "value": 1}], **effect}
    assert _ringPower(sandboxData, effect) == expected


def test_item_effect_without_id_gets_one(sandboxData):
    ruleset = _ruleset(sandboxData)
    doc = createCharacter(ruleset, {"collections": {"inventory": [
        {"id": "ring", "equipped": True, "effects": [{"modifiers": [{"target": "stat", "key": "power", "value": 1}]}]},
    ]}})
    assert [ctx.effect.id for ctx in collectActiveEffects(doc, ruleset)] == ["ring#0"]


def test_items_in_any_collection_contribute(sandboxData):
    sandboxData["model"]["core"]["collections"].append({"id": "features"})
    ruleset = _ruleset(sandboxData)
    doc = createCharacter(ruleset, {"collections": {"features": [{"id": "f", "equipped": True, "effects": [_effect()]}]}})
    assert doc.components.effectiveStats["power"] == 6


# -------- stat modifiers --------

@pytest.mark.parametrize(
    "operation, value, expected",
    [(None, 3, 8), ("add", -2, 3), ("set", 11, 11), ("max", 9, 9), ("max", 2, 5), ("min", 2, 2), ("multiply", 3, 15)],
)
def test_operations(sandboxData, operation, value, expected):
    modifier = {"target": "stat", "key": "power", "value": value}
    if operation:
        modifier["operation"] = operation
    doc = createCharacter(_ruleset(sandboxData, [_effect(modifiers=[modifier])]))
    assert doc.components.effectiveStats["power"] == expected
    assert doc.components.stats["power"] == 5


def test_apply_modifier_value_defaults_to_add():
    assert applyModifierValue(2, None, 3) == 5


def test_modifiers_apply_in_order(sandboxData):
    doc = createCharacter(_ruleset(sandboxData, [
        _effect("a", modifiers=[{"target": "stat", "key": "power", "value": 1}]),
        _effect("b", modifiers=[{"target": "stat", "key": "power", "operation": "multiply", "value": 2}]),
    ]))
    assert doc.components.effectiveStats["power"] == 12


def test_exclusive_first_wins(sandboxData):
    doc = createCharacter(_ruleset(sandboxData, [
        _effect("a", stacking="exclusive", modifiers=[{"target": "stat", "key": "power", "value": 4}]),
        _effect("b", stacking="exclusive", modifiers=[{"target": "stat", "key": "power", "value": 10}]),
        _effect("c", modifiers=[{"target": "stat", "key": "power", "value": 1}]),
    ]))
    assert doc.components.effectiveStats["power"] == 10


@pytest.mark.parametrize(
    "target, key, read, expected",
    [
        ("resource_max", "energy", lambda doc: doc.components.effectiveResources["energy"].max, 20),
        ("derived", "damage", lambda doc: doc.derived["damage"], 15),
        ("derived", "bonus", lambda doc: doc.derived["bonus"], 5),
    ],
)
def test_exclusive_first_wins_for_every_target(sandboxData, target, key, read, expected):
    doc = createCharacter(_ruleset(sandboxData, [
        _effect("a", stacking="exclusive", modifiers=[{"target": target, "key": key, "value": 4}]),
        _effect("b", stacking="exclusive", modifiers=[{"target": target, "key": key, "value": 10}]),
        _effect("c", modifiers=[{"target": target, "key": key, "value": 1}]),
    ]))
    assert read(doc) == expected
    assert doc.components.effectiveStats["power"] == 5


def test_exclusive_slots_are_per_target(sandboxData):
    doc = createCharacter(_ruleset(sandboxData, [
        _effect("a", stacking="exclusive", modifiers=[
            {"target": "stat", "key": "power", "value": 1},
            {"target": "resource_max", "key": "energy", "value": 2},
            {"target": "derived", "key": "damage", "value": 3},
        ]),
        _effect("b", stacking="exclusive", modifiers=[
            {"target": "resource_max", "key": "energy", "value": 50},
            {"target": "derived", "key": "damage", "value": 50},
        ]),
    ]))
    assert doc.components.effectiveStats["power"] == 6
    assert doc.components.effectiveResources["energy"].max == 18
    assert doc.derived["damage"] == 15


def test_modifier_stacking_overrides_effect_stacking(sandboxData):
    doc = createCharacter(_ruleset(sandboxData, [
        _effect("a", stacking="exclusive", modifiers=[{"target": "stat", "key": "power", "value": 1}]),
        _effect("b", stacking="exclusive", modifiers=[{"target": "stat", "key": "power", "value": 1, "stacking": "sum"}]),
    ]))
    assert doc.components.effectiveStats["power"] == 7


def test_formula_modifier_sees_running_stats(sandboxData):
    doc = createCharacter(_ruleset(sandboxData, [
        _effect("a", modifiers=[{"target": "stat", "key": "power", "value": 1}]),
        _effect("b", modifiers=[{"target": "stat", "key": "power", "formula": "stats.power"}]),
    ]))
    assert doc.components.effectiveStats["power"] == 12


def test_modifier_can_create_new_stat_key(sandboxData):
    doc = createCharacter(_ruleset(sandboxData, [_effect(modifiers=[{"target": "stat", "key": "speed", "value": 30}])]))
    assert doc.components.effectiveStats["speed"] == 30
    assert "speed" not in doc.components.stats


# -------- resources --------

def test_max_formula_uses_modified_stats(sandboxData):
    doc = createCharacter(_ruleset(sandboxData, [_effect()]))
    assert doc.components.effectiveResources["energy"].max == 16


def test_resource_max_modifiers_and_reclamp(sandboxData):
    doc = createCharacter(_ruleset(sandboxData, [
        _effect("drain", modifiers=[{"target": "resource_max", "key": "energy", "operation": "set", "value": 4}]),
    ]))
    energy = doc.components.effectiveResources["energy"]
    assert energy.max == 4
    assert energy.current == 4
    assert doc.components.resources["energy"].current == 10


def test_resource_max_never_negative(sandboxData):
    doc = createCharacter(_ruleset(sandboxData, [
        _effect("curse", modifiers=[{"target": "resource_max", "key": "energy", "value": -100}]),
    ]))
    assert doc.components.effectiveResources["energy"].model_dump() == {"current": 0, "max": 0}


def test_resource_max_modifier_on_unknown_resource(sandboxData):
    doc = createCharacter(_ruleset(sandboxData, [
        _effect(modifiers=[{"target": "resource_max", "key": "focus", "value": 3}]),
    ]))
    assert doc.components.effectiveResources["focus"].model_dump() == {"current": 0, "max": 3}


def test_max_formula_reading_derived_is_right_at_creation(sandboxData):
    sandboxData["model"]["core"]["resources"][0]["maxFormula"] = "10 + derived.bonus"
    ruleset = _ruleset(sandboxData, formulas={"derived.bonus": "3"})
    doc = createCharacter(ruleset)
    assert doc.components.effectiveResources["energy"].model_dump() == {"current": 10, "max": 13}
    again = recomputeDerived(doc, ruleset)
    assert again.components.effectiveResources == doc.components.effectiveResources
    assert again.derived == doc.derived == {"damage": 10, "bonus": 3}


def test_failing_max_formula_gives_zero(sandboxData):
    sandboxData["model"]["core"]["resources"][0]["maxFormula"] = "stats.nothing + 1"
    doc = createCharacter(ResolvedRuleset.model_validate(sandboxData))
    assert doc.components.effectiveResources["energy"].model_dump() == {"current": 0, "max": 0}


# -------- derived --------

def test_derived_formulas_see_earlier_results(sandboxData):
    ruleset = _ruleset(sandboxData, formulas={"derived.double": "derived.damage * 2", "note": "ignored"})
    doc = createCharacter(ruleset)
    assert doc.derived == {"damage": 10, "double": 20}


def test_bad_formula_only_zeroes_itself(sandboxData):
    ruleset = _ruleset(sandboxData, formulas={"derived.broken": "stats.power +", "derived.after": "level + 1"})
    doc = createCharacter(ruleset)
    assert doc.derived == {"damage": 10, "broken": 0, "after": 2}


def test_unknown_hook_in_formula_is_zero(sandboxData):
    doc = createCharacter(_ruleset(sandboxData, formulas={"derived.unbound_hook": "hook('unknown_hook', 10)"}))
    assert doc.derived["unbound_hook"] == 0


def test_derived_modifiers_apply_after_formulas(sandboxData):
    doc = createCharacter(_ruleset(sandboxData, [
        _effect("a", modifiers=[{"target": "derived", "key": "damage", "value": 3}]),
        _effect("b", modifiers=[{"target": "derived", "key": "damage", "formula": "derived.damage", "operation": "add"}]),
        _effect("c", modifiers=[{"target": "derived", "key": "bonus", "value": 1}]),
    ]))
    assert doc.derived == {"damage": 26, "bonus": 1}


def test_on_action_effect_only_during_that_recompute(sandboxData):
    ruleset = _ruleset(sandboxData, [_effect("surge", triggers=[{"kind": "on_action", "actionId": "surge"}])])
    doc = createCharacter(ruleset)
    assert recomputeDerived(doc, ruleset, "surge").components.effectiveStats["power"] == 6
    assert recomputeDerived(doc, ruleset).components.effectiveStats["power"] == 5


def test_recompute_idempotent_with_effects(sandboxData):
    ruleset = _ruleset(sandboxData, [
        _effect("a"),
        _effect("b", modifiers=[{"target": "resource_max", "key": "energy", "value": 5}]),
        _effect("c", modifiers=[{"target": "derived", "key": "damage", "value": 1}]),
    ])
    doc = createCharacter(ruleset)
    again = recomputeDerived(recomputeDerived(doc, ruleset), ruleset)
    assert again.components.effectiveStats == doc.components.effectiveStats
    assert again.components.effectiveResources == doc.components.effectiveResources
    assert again.derived == doc.derived
