import copy
import random
import sys
from collections.abc import Callable
from typing import Any

import pytest

from rpgforge.app.globals import resetConfig, setConfigStack
from rpgforge.app.settings import buildConfigStack
from rpgforge.content.models import LoadedPack, ResolvedRuleset, parsePackManifest, parsePackModule
from rpgforge.core.config_stack import ConfigStack
from rpgforge.core.logging import clearLogContext
from rpgforge.runtime.dice import DiceRoller



def pytest_configure(config: pytest.Config) -> None:
    if sys.flags.optimize:
        raise RuntimeError("Assertions are disabled (optimize > 0)")



@pytest.fixture(autouse=True)
def isolatedConfig(tmp_path) -> ConfigStack:
    """Defaults only: no user settings file, no RPGFORGE__* environment."""
    stack = buildConfigStack(userPath=tmp_path / "no-settings.json5", environ={})
    setConfigStack(stack)
    yield stack
    resetConfig()
    clearLogContext()



@pytest.fixture
def dice() -> DiceRoller:
    return DiceRoller(random.Random(1234))



def buildPack(
    packId: str,
    version: str = "1.0.0",
    *,
    deps: list[tuple[str, str] | tuple[str, str, bool]] | None = None,
    module: dict[str, Any] | None = None,
    kind: str = "addon",
    source: str = "builtin",
) -> LoadedPack:
    dependsOn = []
    for dep in deps or []:
        spec = {"id": dep[0], "range": dep[1]}
        if len(dep) > 2:
            spec["optional"] = dep[2]
        dependsOn.append(spec)
    manifest = parsePackManifest({
        "schemaVersion": "2.0.0",
        "id": packId,
        "name": packId.title(),
        "version": version,
        "kind": kind,
        "dependsOn": dependsOn,
    })
    return LoadedPack(manifest=manifest, module=parsePackModule(module or {}), source=source)



@pytest.fixture
def makePack() -> Callable[..., LoadedPack]:
    return buildPack



SANDBOX_RULESET: dict[str, Any] = {
    "id": "sandbox@2.0.0",
    "packOrder": ["sandbox"],
    "model": {
        "core": {
            "stats": [{"id": "power", "default": 5}],
            "resources": [{"id": "energy", "default": 10, "maxFormula": "10 + stats.power"}],
            "collections": [{"id": "activity_log"}, {"id": "inventory"}],
            "flags": [{"id": "boosted", "default": False}],
        },
        "extensions": [],
    },
    "rules": {
        "formulas": {"derived.damage": "stats.power * 2"},
        "lookups": {},
        "hooks": {},
    },
    "actions": {
        "setAttribute": {"id": "setAttribute", "kind": "domain", "target": "setStat"},
        "toggleVar": {"id": "toggleVar", "kind": "domain", "target": "toggleFlag"},
        "createEntity": {"id": "createEntity", "kind": "domain", "target": "createEntity"},
        "equipEntity": {"id": "equipEntity", "kind": "domain", "target": "equipEntity"},
    },
}



@pytest.fixture
def sandboxData() -> dict[str, Any]:
    """Raw sandbox ruleset, a fresh copy per test for tweaking."""
    return copy.deepcopy(SANDBOX_RULESET)



@pytest.fixture
def sandboxRuleset() -> ResolvedRuleset:
    """power 5, energy max = 10 + power, derived.damage = power * 2."""
    return ResolvedRuleset.model_validate(SANDBOX_RULESET)
