# tests/rpgforge/runtime/test_service.py
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from rpgforge.content.pack_catalog import PackCatalog
from rpgforge.content.pack_resolution import MissingDependencyError
from rpgforge.core.errors import NotFoundError
from rpgforge.runtime.actions import UnknownActionError
from rpgforge.runtime.service import (
    CharacterNotFoundError,
    InMemoryStore,
    RulesetNotFoundError,
    RuntimeService,
)


SANDBOX_MODULE = {
    "model": {"core": {
        "stats": [{"id": "power", "default": 5}],
        "resources": [{"id": "energy", "default": 10, "maxFormula": "10 + stats.power"}],
        "collections": [{"id": "activity_log"}, {"id": "inventory"}],
    }},
    "rules": {"formulas": {"derived.damage": "stats.power * 2"}},
    "actions": [
        {"id": "setAttribute", "kind": "domain", "target": "setStat"},
        {"id": "train", "kind": "domain", "target": "deltaStat"},
        {"id": "inspect", "kind": "script", "target": "stats.power + 1"},
    ],
}


@pytest.fixture
def service(makePack, dice) -> RuntimeService:
    catalog = PackCatalog([
        makePack("sandbox", "2.0.0", kind="core", module=SANDBOX_MODULE),
        makePack("broken", "1.0.0", deps=[("ghost", "^1.0.0")]),
    ])
    svc = RuntimeService(catalog, dice=dice)
    svc.activate(["sandbox"])
    return svc


def test_activate_registers_ruleset(service):
    assert service.rulesets() == ["sandbox@2.0.0"]
    assert service.ruleset("sandbox@2.0.0").packOrder == ["sandbox"]


def test_activation_errors_propagate(service):
    with pytest.raises(MissingDependencyError):
        service.activate(["broken"])
    assert service.rulesets() == ["sandbox@2.0.0"]


def test_unknown_ruleset(service):
    with pytest.raises(RulesetNotFoundError) as info:
        service.createCharacter("nope@1.0.0")
    assert isinstance(info.value, NotFoundError)
    assert info.value.rulesetId == "nope@1.0.0"


def test_create_and_open(service):
    created = service.createCharacter("sandbox@2.0.0", {"name": "Ada"})
    assert service.listCharacters() == [created.meta.id]
    opened = service.openCharacter(created.meta.id)
    assert opened.meta.name == "Ada"
    assert opened.derived == {"damage": 10}


def test_dispatch_persists(service):
    charId = service.createCharacter("sandbox@2.0.0").meta.id
    updated = service.dispatch(charId, {"id": "setAttribute", "payload": {"key": "power", "value": 8}})
    assert updated.derived["damage"] == 16
    assert service.openCharacter(charId).components.stats["power"] == 8


def test_dispatch_with_result(service):
    charId = service.createCharacter("sandbox@2.0.0").meta.id
    assert service.dispatchWithResult(charId, {"id": "inspect"}).value == 6


def test_failed_dispatch_keeps_stored_document(service):
    charId = service.createCharacter("sandbox@2.0.0").meta.id
    before = service.store.load(charId)
    with pytest.raises(UnknownActionError):
        service.dispatch(charId, {"id": "fly"})
    assert service.store.load(charId) == before


def test_missing_character(service):
    with pytest.raises(CharacterNotFoundError, match="Character not found: ghost"):
        service.openCharacter("ghost")
    with pytest.raises(CharacterNotFoundError):
        service.dispatch("ghost", {"id": "inspect"})


def test_unknown_character_leaves_no_lock_behind(service):
    for index in range(5):
        with pytest.raises(CharacterNotFoundError):
            service.dispatch(f"ghost-{index}", {"id": "train"})
    assert service._characterLocks == {}

    charId = service.createCharacter("sandbox@2.0.0").meta.id
    service.dispatch(charId, {"id": "train"})
    assert list(service._characterLocks) == [charId]


def test_delete_character(service):
    charId = service.createCharacter("sandbox@2.0.0").meta.id
    assert service.deleteCharacter(charId) is True
    assert service.deleteCharacter(charId) is False
    assert service.listCharacters() == []


def test_legacy_documents_are_migrated_on_open(service):
    service.store.save("old-1", {"id": "old-1", "systemId": "sandbox@2.0.0", "attr": {"power": 3}})
    doc = service.openCharacter("old-1")
    assert doc.schemaVersion == "2.0.0"
    assert doc.derived["damage"] == 6


def test_concurrent_dispatches_on_one_character(service):
    charId = service.createCharacter("sandbox@2.0.0").meta.id
    envelope = {"id": "train", "payload": {"key": "power", "value": 1}}
    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda _: service.dispatch(charId, envelope), range(24)))
    assert service.openCharacter(charId).components.stats["power"] == 29


def test_in_memory_store_copies():
    store = InMemoryStore()
    data = {"a": 1}
    store.save("x", data)
    data["a"] = 2
    loaded = store.load("x")
    assert loaded == {"a": 1}
    loaded["a"] = 3
    assert store.load("x") == {"a": 1}
    assert store.load("missing") is None
    assert store.ids() == ["x"]
