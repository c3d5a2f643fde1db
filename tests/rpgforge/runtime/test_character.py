# tests/rpgforge/runtime/test_character.py
from __future__ import annotations

from rpgforge.content.models import ResolvedRuleset
from rpgforge.runtime.character import (
    CharacterDocument,
    createCharacter,
    getSeedStat,
    initializeCollections,
    initializeComponents,
    initializeFlags,
)
from rpgforge.runtime.effects import recomputeDerived


def test_creation_example(sandboxRuleset):
    doc = createCharacter(sandboxRuleset)
    assert doc.derived["damage"] == 10
    assert doc.components.effectiveResources["energy"].max == 15
    assert doc.components.effectiveResources["energy"].current == 10
    assert doc.components.resources["energy"].max == 10
    assert doc.components.stats == {"power": 5}
    assert doc.components.effectiveStats == {"power": 5}


def test_defaults_and_meta(sandboxRuleset):
    doc = createCharacter(sandboxRuleset)
    assert doc.schemaVersion == "2.0.0"
    assert doc.meta.name == "Adventurer"
    assert doc.meta.rulesetId == "sandbox@2.0.0"
    assert doc.meta.createdAt.endswith("Z")
    assert doc.core.level == 1
    assert doc.core.xp == 0
    assert doc.core.tags == []
    assert doc.core.notes == ""
    assert doc.stateFlags == {"boosted": False}
    assert doc.appliedPacks == ["sandbox"]
    assert doc.overlayPackIds == []
    assert doc.collections["inventory"] == []


def test_ids_are_unique(sandboxRuleset):
    assert createCharacter(sandboxRuleset).meta.id != createCharacter(sandboxRuleset).meta.id


def test_default_name_from_config(sandboxRuleset, isolatedConfig):
    isolatedConfig.setOverride("characters.defaultName", "Nameless")
    assert createCharacter(sandboxRuleset).meta.name == "Nameless"


def test_seed_values(sandboxRuleset):
    seed = {
        "name": "Vex",
        "level": 3,
        "xp": 900,
        "tags": ["rogue", "", None, 7],
        "notes": "sly",
        "stats": {"power": 8},
        "resources": {"energy": {"current": 4}},
        "flags": {"boosted": True},
        "collections": {"inventory": [{"id": "rope"}]},
    }
    doc = createCharacter(sandboxRuleset, seed, rulesetId="custom@1.0.0")
    assert doc.meta.name == "Vex"
    assert doc.meta.rulesetId == "custom@1.0.0"
    assert doc.core.level == 3
    assert doc.core.xp == 900
    assert doc.core.tags == ["rogue", "7"]
    assert doc.core.notes == "sly"
    assert doc.components.stats["power"] == 8
    assert doc.derived["damage"] == 16
    assert doc.components.resources["energy"].current == 4
    assert doc.components.effectiveResources["energy"].max == 18
    assert doc.components.effectiveResources["energy"].current == 4
    assert doc.stateFlags["boosted"] is True
    assert doc.collections["inventory"] == [{"id": "rope"}]


def test_level_and_xp_are_clamped(sandboxRuleset):
    doc = createCharacter(sandboxRuleset, {"level": -4, "xp": -10})
    assert doc.core.level == 1
    assert doc.core.xp == 0
    assert createCharacter(sandboxRuleset, {"level_total": 7, "level": 2}).core.level == 7


def test_top_level_stat_keys(sandboxRuleset):
    doc = createCharacter(sandboxRuleset, {"power": 12})
    assert doc.components.stats["power"] == 12
    assert doc.derived["damage"] == 24


def test_nested_stats_win_over_top_level(sandboxRuleset):
    doc = createCharacter(sandboxRuleset, {"power": 12, "stats": {"power": 3}})
    assert doc.components.stats["power"] == 3


def test_seed_is_recorded_in_activity_log(sandboxRuleset):
    seed = {"name": "Vex"}
    doc = createCharacter(sandboxRuleset, seed)
    log = doc.collections["activity_log"]
    assert len(log) == 1
    assert log[0]["type"] == "creator_seed"
    assert log[0]["id"].startswith("creator_seed_")
    assert log[0]["seed"] == {"name": "Vex"}
    assert log[0]["seed"] is not seed


def test_seed_interpreters_run_before_recompute(sandboxRuleset):
    def giveSword(doc: CharacterDocument, seed):
        doc.collections["inventory"].append({
            "id": "sword",
            "equipped": True,
            "effects": [{"id": "sharp", "modifiers": [{"target": "stat", "key": "power", "value": 2}]}],
        })
        doc.core.tags.append(f"class:{seed['classId']}")
        return doc

    doc = createCharacter(sandboxRuleset, {"classId": "fighter"}, seedInterpreters=[giveSword])
    assert doc.core.tags == ["class:fighter"]
    assert doc.components.effectiveStats["power"] == 7
    assert doc.derived["damage"] == 14


def test_recompute_is_idempotent(sandboxRuleset):
    doc = createCharacter(sandboxRuleset, {"stats": {"power": 7}})
    once = recomputeDerived(doc, sandboxRuleset)
    twice = recomputeDerived(once, sandboxRuleset)
    for field in ("effectiveStats", "effectiveResources"):
        assert getattr(once.components, field) == getattr(twice.components, field)
    assert once.derived == twice.derived


def test_recompute_does_not_mutate_input(sandboxRuleset):
    doc = createCharacter(sandboxRuleset)
    before = doc.toDict()
    doc.components.stats["power"] = 9
    recomputeDerived(doc, sandboxRuleset)
    assert doc.derived == before["derived"]


def test_document_round_trip(sandboxRuleset):
    doc = createCharacter(sandboxRuleset)
    assert CharacterDocument.fromDict(doc.toDict()) == doc


# -------- initializers --------

def test_initialize_components_rules(sandboxData):
    sandboxData["model"]["core"]["stats"].append({"id": "luck"})
    sandboxData["model"]["core"]["resources"].append({"id": "ammo"})
    ruleset = ResolvedRuleset.model_validate(sandboxData)

    components = initializeComponents(ruleset, {"resources": {"energy": {"max": -5, "current": 3}}})
    assert components.stats == {"power": 5, "luck": 0}
    assert components.resources["energy"].model_dump() == {"current": 3, "max": 0}
    assert components.resources["ammo"].model_dump() == {"current": 0, "max": 0}
    assert components.effectiveStats == components.stats
    assert components.effectiveResources["energy"] is not components.resources["energy"]


def test_initialize_collections_and_flags(sandboxRuleset):
    items = [{"id": "a"}]
    collections = initializeCollections(sandboxRuleset, {"collections": {"inventory": items, "activity_log": "bad"}})
    assert collections == {"activity_log": [], "inventory": [{"id": "a"}]}
    assert collections["inventory"] is not items
    assert initializeFlags(sandboxRuleset) == {"boosted": False}
    assert initializeFlags(sandboxRuleset, {"flags": {"boosted": 1}}) == {"boosted": True}


def test_get_seed_stat():
    assert getSeedStat({"stats": {"str": "14"}}, "str") == 14
    assert getSeedStat({"str": 11}, "str") == 11
    assert getSeedStat({"str": "strong"}, "str") is None
    assert getSeedStat({}, "str") is None
