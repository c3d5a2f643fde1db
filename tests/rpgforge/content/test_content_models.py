# tests/rpgforge/content/test_content_models.py
from __future__ import annotations

import pytest

from rpgforge.content.models import (
    PackValidationError,
    parseContentEntries,
    parseCreatorPreset,
    parsePackManifest,
    parsePackModule,
    parseUiPreset,
)


def _manifest(**overrides) -> dict:
    data = {"schemaVersion": "2.0.0", "id": "srd", "name": "SRD", "version": "1.0.0", "kind": "core"}
    data.update(overrides)
    return data


def test_minimal_manifest():
    manifest = parsePackManifest(_manifest())
    assert manifest.id == "srd"
    assert manifest.dependsOn is None
    assert manifest.entrypoints.content is None


@pytest.mark.parametrize(
    "overrides, path",
    [
        ({"schemaVersion": "1.0.0"}, "schemaVersion"),
        ({"version": "1.0"}, "version"),
        ({"kind": "plugin"}, "kind"),
        ({"id": ""}, "id"),
        ({"sourceUrl": "not a url"}, "sourceUrl"),
        ({"dependsOn": [{"id": "base"}]}, "dependsOn.0.range"),
        ({"surprise": True}, "surprise"),
    ],
)
def test_manifest_errors_name_the_path(overrides, path):
    with pytest.raises(PackValidationError) as info:
        parsePackManifest(_manifest(**overrides))
    assert info.value.path == path
    assert str(info.value).startswith("Invalid manifest: ")
    assert str(info.value).endswith(f" at {path}")


def test_manifest_must_be_an_object():
    with pytest.raises(PackValidationError, match="expected an object"):
        parsePackManifest(["not", "a", "dict"])


def test_modifier_requires_value_or_formula():
    with pytest.raises(PackValidationError) as info:
        parsePackModule({"effects": [{"id": "e", "modifiers": [{"target": "stat", "key": "str"}]}]})
    assert "modifier requires value or formula" in str(info.value)


def test_effect_requires_a_modifier():
    with pytest.raises(PackValidationError):
        parsePackModule({"effects": [{"id": "e", "modifiers": []}]})


def test_unknown_hook_binding_is_rejected():
    with pytest.raises(PackValidationError) as info:
        parsePackModule({"rules": {"hooks": {"x": "builtin:explode"}}})
    assert info.value.path == "rules.hooks.x"


def test_full_effect_spec_round_trips():
    module = parsePackModule({"effects": [{
        "id": "rage",
        "label": "Rage",
        "modifiers": [{"target": "stat", "key": "str", "operation": "add", "formula": "level / 4", "stacking": "max"}],
        "triggers": [{"kind": "flag", "key": "raging", "equals": True}, {"kind": "on_action", "actionId": "rage"}],
        "duration": {"type": "timed", "value": 10, "unit": "round"},
        "stacking": "exclusive",
    }]})
    effect = module.effects[0]
    assert effect.toDict()["triggers"][0] == {"kind": "flag", "key": "raging", "equals": True}
    assert effect.modifiers[0].formula == "level / 4"


def test_nested_creator_fields():
    preset = parseCreatorPreset({
        "schemaVersion": "3.0.0",
        "steps": [{
            "id": "basics",
            "title": "Basics",
            "fields": [{
                "id": "equipment",
                "label": "Equipment",
                "type": "repeatGroup",
                "fields": [{"id": "item", "label": "Item", "type": "text"}],
            }],
        }],
    })
    assert preset.steps[0].fields[0].fields[0].id == "item"


def test_ui_preset_defaults():
    preset = parseUiPreset({})
    assert preset.layout.groups == []
    assert preset.panels == []
    assert preset.accents is None


def test_content_entries():
    entries = parseContentEntries([{
        "id": "rope",
        "contentId": {"namespace": "srd", "type": "item", "slug": "rope"},
        "data": {"weight": 10},
        "mergePolicy": "deep_merge",
    }])
    assert entries[0].mergePolicy == "deep_merge"


def test_content_entries_must_be_a_list():
    with pytest.raises(PackValidationError, match="expected a list"):
        parseContentEntries({"item": []})
