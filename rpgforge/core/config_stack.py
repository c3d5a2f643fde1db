# rpgforge/core/config_stack.py
from __future__ import annotations
from typing import Any, Literal, cast
from collections.abc import Mapping
from dataclasses import dataclass, field
import copy

from rpgforge.core.dictpath import deleteByPath, getByPath, setByPath

__all__ = [
    "MergeStrategy", "ConfigScope", "mergeWithStrategy",
    "ConfigLayer", "ConfigStack", "ConfigView",
]



MergeStrategy = Literal["deep", "replace", "append", "prepend", "uniqueAppend"]
ConfigScope = Literal["defaults", "user", "environment", "runtime"]

_ALL_STRATEGIES: tuple[str, ...] = ("deep", "replace", "append", "prepend", "uniqueAppend")
_LIST_STRATEGIES: tuple[str, ...] = ("replace", "append", "prepend", "uniqueAppend")
# Lowest precedence first
_SCOPE_ORDER: tuple[ConfigScope, ...] = ("defaults", "user", "environment", "runtime")



def _validateMergeStrategy(strategy: str, *, context: str, listContext: bool = False) -> None:
    allowed = _LIST_STRATEGIES if listContext else _ALL_STRATEGIES
    if strategy not in allowed:
        raise ValueError(f"Invalid __merge='{strategy}' in {context}; allowed: {', '.join(allowed)}")



def _mergeLists(left: Any, right: Any, strategy: MergeStrategy) -> list[Any]:
    left = list(left or [])
    right = copy.deepcopy(list(right or []))
    if strategy == "append":
        return left + right
    if strategy == "prepend":
        return right + left
    if strategy == "uniqueAppend":
        out = left[:]
        for item in right:
            if item not in out:
                out.append(item)
        return out
    return right



def mergeWithStrategy(left: Any, right: Any) -> Any:
    """
    Deep merge of JSON-like values with optional directives on the right side:
      - dict with "__merge": "replace" replaces the left dict entirely (minus the directive)
      - "<key>__merge": "append" | "prepend" | "uniqueAppend" | "replace" next to a list
        value controls how that list is combined
      - lists without a directive replace, scalars replace

    Inputs are never mutated.
    """
    if isinstance(left, Mapping) and isinstance(right, Mapping):
        strategy = cast(MergeStrategy, right.get("__merge", "deep"))
        _validateMergeStrategy(strategy, context="object")
        if strategy == "replace":
            return {key: copy.deepcopy(value) for key, value in right.items() if key != "__merge"}
        out: dict[str, Any] = dict(left)
        for key, rightValue in right.items():
            if key == "__merge" or key.endswith("__merge"):
                continue
            leftValue = out.get(key)
            directive = right.get(f"{key}__merge")
            if directive is not None and isinstance(rightValue, list):
                _validateMergeStrategy(str(directive), context=f'key "{key}"', listContext=True)
                out[key] = _mergeLists(leftValue, rightValue, cast(MergeStrategy, directive))
            elif isinstance(leftValue, Mapping) and isinstance(rightValue, Mapping):
                out[key] = mergeWithStrategy(leftValue, rightValue)
            else:
                out[key] = copy.deepcopy(rightValue)
        return out
    return copy.deepcopy(right)



@dataclass(frozen=True)
class ConfigLayer:
    """
    One immutable configuration layer.
    - name: human readable ("builtin", "user:~/.rpgforge/rpgforge.json5", ...)
    - scope: precedence bucket, see _SCOPE_ORDER
    - data: plain JSON-like dict
    """
    name: str
    scope: ConfigScope
    data: dict[str, Any] = field(default_factory=dict)



class ConfigStack:
    """
    An ordered set of layers with fixed scope precedence:
    defaults → user → environment → runtime.
    Within one scope, later layers win.
    """
    _OVERRIDES = "runtime:overrides"

    def __init__(self, layers: list[ConfigLayer] | None = None):
        self._layers: list[ConfigLayer] = list(layers or [])
        self._version: int = 0

    def setLayers(self, layers: list[ConfigLayer]) -> None:
        self._layers = list(layers)
        self._version += 1

    def addLayer(self, layer: ConfigLayer) -> None:
        self._layers.append(layer)
        self._version += 1

    def removeLayer(self, name: str) -> bool:
        idx = next((index for index, layer in enumerate(self._layers) if layer.name == name), -1)
        if idx < 0:
            return False
        del self._layers[idx]
        self._version += 1
        return True

    def layers(self) -> list[ConfigLayer]:
        return list(self._layers)

    def version(self) -> int:
        return self._version

    def view(self) -> ConfigView:
        return ConfigView(stack=self)

    def setOverride(self, path: str, value: Any) -> None:
        """Set a runtime override at path (highest precedence)."""
        self.setOverrideMany({path: value})

    def setOverrideMany(self, entries: dict[str, Any]) -> None:
        if not entries:
            return
        current = next((layer for layer in self._layers if layer.name == self._OVERRIDES), None)
        data = copy.deepcopy(current.data) if current is not None else {}
        for path, value in entries.items():
            setByPath(data, path, value)
        self._replaceOverrides(data)

    def clearOverride(self, path: str | None = None) -> None:
        """Clear every runtime override, or a single path."""
        current = next((layer for layer in self._layers if layer.name == self._OVERRIDES), None)
        if current is None:
            return
        if path is None:
            self.removeLayer(self._OVERRIDES)
            return
        data = copy.deepcopy(current.data)
        deleteByPath(data, path)
        self._replaceOverrides(data)

    def _replaceOverrides(self, data: dict[str, Any]) -> None:
        # ConfigLayer is frozen, so the layer is rebuilt
        newLayer = ConfigLayer(name=self._OVERRIDES, scope="runtime", data=data)
        newLayers = [layer for layer in self._layers if layer.name != self._OVERRIDES]
        newLayers.append(newLayer)
        self._layers = newLayers
        self._version += 1



class ConfigView:
    """A merged, cached view on a ConfigStack."""
    def __init__(self, *, stack: ConfigStack) -> None:
        self._stack = stack
        self._effective: dict[str, Any] | None = None
        self._effectiveVersion: int = -1

    def effective(self) -> dict[str, Any]:
        if self._effective is not None and self._effectiveVersion == self._stack.version():
            return self._effective
        merged: dict[str, Any] = {}
        for scope in _SCOPE_ORDER:
            for layer in self._stack.layers():
                if layer.scope != scope:
                    continue
                merged = mergeWithStrategy(merged, layer.data)
                if not isinstance(merged, dict):
                    raise TypeError(
                        f'Layer "{layer.name}" (scope="{layer.scope}") produced non-dict at root. '
                        "Configs must remain object-shaped at the top level."
                    )
        self._effective = merged
        self._effectiveVersion = self._stack.version()
        return merged

    def get(self, path: str, default: Any = None) -> Any:
        val = getByPath(self.effective(), path)
        return default if val is None else val

    def set(self, path: str, value: Any) -> None:
        self._stack.setOverride(path, value)

    def clear(self, path: str | None = None) -> None:
        self._stack.clearOverride(path)
