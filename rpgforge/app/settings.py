# rpgforge/app/settings.py
from __future__ import annotations
import json5, os
from pathlib import Path
from typing import Any

from rpgforge.core.config_stack import ConfigLayer, ConfigStack

import logging
logger = logging.getLogger(__name__)

__all__ = [
    "SETTINGS_ENV_VAR", "DEFAULT_SETTINGS", "userSettingsPath",
    "loadUserSettings", "environmentOverrides", "buildConfigStack",
]



SETTINGS_ENV_VAR = "RPGFORGE_SETTINGS"
# Environment overrides: RPGFORGE__DICE__SEED=42 -> dice.seed = 42
ENV_OVERRIDE_PREFIX = "RPGFORGE__"

DEFAULT_SETTINGS: dict[str, Any] = {
    "__source": "RPGFORGE_DEFAULTS",
    "characters": {"defaultName": "Adventurer"},
    "formulas": {"logFailures": False},
    "dice": {"seed": None},
    "packs": {"roots": [], "followSymlinks": False, "aliases": {}},
    "logging": {"file": None, "maxBytes": 10 * 1024 * 1024, "backupCount": 5, "formulaSampleEvery": 1},
    "debug": {
        "devModeEnabled": False,
        "tracingEnabled": False,
        "suppressRecurringMessages": {
            "enabled": True,
            "windowSeconds": 60,
            "maxPerWindow": 5,
            "summaryLevel": "INFO",
        },
    },
}



def userSettingsPath() -> Path:
    override = os.environ.get(SETTINGS_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path(os.path.expanduser("~/.rpgforge/rpgforge.json5"))



def loadUserSettings(path: Path | None = None) -> dict[str, Any]:
    filePath = path or userSettingsPath()
    if filePath.exists():
        try:
            data = json5.loads(filePath.read_text(encoding="utf-8"))
        except Exception as err:
            logger.error("Failed to parse '%s': %s", filePath, err)
            return {}
        if isinstance(data, dict):
            return data
        logger.error("Settings file '%s' must contain an object, got %s", filePath, type(data).__name__)
    return {}



def environmentOverrides(environ: dict[str, str] | None = None) -> dict[str, Any]:
    """
    Collects RPGFORGE__SECTION__KEY=value variables into a nested dict.
    Values are parsed as json5 when possible ("42", "true", "[1,2]"), else kept as strings.
    """
    environ = dict(os.environ) if environ is None else environ
    out: dict[str, Any] = {}
    for name, raw in environ.items():
        if not name.startswith(ENV_OVERRIDE_PREFIX):
            continue
        parts = [part for part in name[len(ENV_OVERRIDE_PREFIX):].split("__") if part]
        if not parts:
            continue
        try:
            value = json5.loads(raw)
        except ValueError:
            value = raw
        node = out
        for part in parts[:-1]:
            node = node.setdefault(_envKey(part), {})
        node[_envKey(parts[-1])] = value
    return out



def _envKey(part: str) -> str:
    # FOLLOW_SYMLINKS -> followSymlinks
    words = part.lower().split("_")
    return words[0] + "".join(word.capitalize() for word in words[1:])



def buildConfigStack(*, userPath: Path | None = None, environ: dict[str, str] | None = None) -> ConfigStack:
    filePath = userPath or userSettingsPath()
    return ConfigStack([
        ConfigLayer(name="builtin", scope="defaults", data=DEFAULT_SETTINGS),
        ConfigLayer(name=f"user:{filePath}", scope="user", data=loadUserSettings(filePath)),
        ConfigLayer(name="env", scope="environment", data=environmentOverrides(environ)),
    ])
