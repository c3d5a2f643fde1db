# rpgforge/core/dictpath.py
from __future__ import annotations
from typing import Any
from collections.abc import Mapping, MutableMapping, Sequence

__all__ = ["splitPath", "getByPath", "setByPath", "hasPath", "deleteByPath"]



# ----------------------------------------------
#                  path parsing
# ----------------------------------------------

def splitPath(path: str) -> list[str]:
    """
    Splits a dotted path into segments. Backslash escapes the next character,
    so a literal dot can live inside a key.

    Examples:
      - stats.power      -> ["stats", "power"]
      - lookups.a\\.b.1  -> ["lookups", "a.b", "1"]

    Raises ValueError for empty paths, empty segments and dangling escapes.
    """
    if not isinstance(path, str) or not path:
        raise ValueError("Path must be a non-empty string")
    parts: list[str] = []
    curr: list[str] = []
    esc = False
    for ch in path:
        if esc:
            curr.append(ch)
            esc = False
            continue
        if ch == "\\":
            esc = True
            continue
        if ch == ".":
            parts.append("".join(curr))
            curr = []
            continue
        curr.append(ch)
    if esc:
        raise ValueError("Path ends with a dangling escape (trailing backslash)")
    parts.append("".join(curr))
    if any(part == "" for part in parts):
        raise ValueError(f"Path '{path}' contains empty segment(s)")
    return parts



def _step(current: Any, part: str) -> tuple[bool, Any]:
    if isinstance(current, Mapping):
        if part in current:
            return True, current[part]
        return False, None
    # Lists are addressed by integer segments ("inventory.0.id")
    if isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
        try:
            index = int(part)
        except ValueError:
            return False, None
        if -len(current) <= index < len(current):
            return True, current[index]
        return False, None
    return False, None



# ----------------------------------------------
#                   Public API
# ----------------------------------------------

def getByPath(obj: Any, path: str, default: Any | None = None) -> Any:
    """
    Returns the value at `path` inside nested mappings/lists, or `default`
    when any hop is missing or the path is invalid.
    """
    try:
        parts = splitPath(path)
    except ValueError:
        return default
    current = obj
    for part in parts:
        found, current = _step(current, part)
        if not found:
            return default
    return current



def hasPath(obj: Any, path: str) -> bool:
    needle = object()
    return getByPath(obj, path, needle) is not needle



def setByPath(obj: MutableMapping[str, Any], path: str, value: Any, *, createIfMissing: bool = True) -> None:
    """
    Sets `value` at `path`. Intermediate mappings are created on demand unless
    createIfMissing is False, in which case a missing hop raises KeyError.
    Writing through a non-mapping hop raises TypeError.
    """
    parts = splitPath(path)
    current: Any = obj
    for part in parts[:-1]:
        if not isinstance(current, MutableMapping):
            raise TypeError(f"Cannot descend into '{part}' on {type(current).__name__}")
        if part not in current:
            if not createIfMissing:
                raise KeyError(f"path segment '{part}' not found in mapping")
            current[part] = {}
        current = current[part]
    if not isinstance(current, MutableMapping):
        raise TypeError(f"Cannot write '{parts[-1]}' on {type(current).__name__}")
    current[parts[-1]] = value



def deleteByPath(obj: MutableMapping[str, Any], path: str, *, pruneEmptyParents: bool = True) -> bool:
    """
    Deletes the value at `path`. Returns True if something was removed.
    Empty parent mappings left behind are pruned (never the root itself).
    """
    parts = splitPath(path)
    stack: list[tuple[MutableMapping[str, Any], str]] = []
    current: Any = obj
    for part in parts[:-1]:
        if not isinstance(current, MutableMapping) or part not in current:
            return False
        stack.append((current, part))
        current = current[part]
    if not isinstance(current, MutableMapping) or parts[-1] not in current:
        return False
    del current[parts[-1]]
    if pruneEmptyParents:
        for parent, key in reversed(stack):
            child = parent.get(key)
            if isinstance(child, MutableMapping) and not child:
                del parent[key]
            else:
                break
    return True
