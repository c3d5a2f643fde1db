# rpgforge/runtime/hooks.py
from __future__ import annotations

import math
from collections.abc import Mapping
from enum import Enum
from typing import Any

__all__ = ["BuiltinHook", "toNumber", "callHook"]



def toNumber(value: Any) -> float | int:
    """Numeric coercion used by hooks and helpers: bools are 1/0, anything unusable is 0."""
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else 0
    if isinstance(value, str):
        try:
            num = float(value.strip())
        except ValueError:
            return 0
        if not math.isfinite(num):
            return 0
        return int(num) if num.is_integer() else num
    return 0



class BuiltinHook(Enum):
    """Closed set of functions a ruleset may bind hook names to."""
    CLAMP = "builtin:clamp"
    MIN = "builtin:min"
    MAX = "builtin:max"
    SUM = "builtin:sum"
    COUNT = "builtin:count"

    @classmethod
    def fromBinding(cls, binding: Any) -> BuiltinHook | None:
        try:
            return cls(binding)
        except ValueError:
            return None

    def apply(self, *args: Any) -> float | int:
        nums = [toNumber(arg) for arg in args]
        match self:
            case BuiltinHook.CLAMP:
                value, lo, hi = (nums + [0, 0, 0])[:3]
                return min(max(value, lo), hi)
            case BuiltinHook.MIN:
                return min(nums) if nums else 0
            case BuiltinHook.MAX:
                return max(nums) if nums else 0
            case BuiltinHook.SUM:
                return sum(nums)
            case BuiltinHook.COUNT:
                return len(nums)



def callHook(bindings: Mapping[str, Any] | None, name: Any, *args: Any) -> float | int:
    """Unbound names and unknown bindings evaluate to 0."""
    if not bindings:
        return 0
    hook = BuiltinHook.fromBinding(bindings.get(str(name)))
    if hook is None:
        return 0
    return hook.apply(*args)
