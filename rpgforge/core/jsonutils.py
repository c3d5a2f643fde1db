# rpgforge/core/jsonutils.py
from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel

__all__ = ["safeJsonDumps", "prettyJsonDumps", "serializeError", "tryJSONify"]



# ------------------------------------------------
#                JSON serialization
# ------------------------------------------------

def _payloadOf(obj: Any) -> Any:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json", by_alias=True, exclude_none=True)
    return obj



def safeJsonDumps(obj: Any) -> str:
    """
    Serializes an object or pydantic model to a compact JSON string.
    Uses deterministic separators (",", ":") and disallows NaN/infinity.
    If direct JSON encoding fails, falls back to tryJSONify and retries.
    """
    payload = _payloadOf(obj)
    try:
        return json.dumps(payload, ensure_ascii=False, allow_nan=False, separators=(",", ":"))
    except (TypeError, ValueError):
        return json.dumps(tryJSONify(payload), ensure_ascii=False, allow_nan=False, separators=(",", ":"))



def prettyJsonDumps(obj: Any) -> str:
    """Indented JSON for humans (CLI output)."""
    return json.dumps(tryJSONify(_payloadOf(obj)), ensure_ascii=False, indent=2)



# ------------------------------------------------
#              Error / Exception helpers
# ------------------------------------------------

def serializeError(err: Any) -> dict[str, Any]:
    """
    Converts Exception or arbitrary object into a JSON-serializable dict.

    Examples:
        ValueError("bad") -> {"type": "ValueError", "message": "bad"}
        "error text"      -> {"message": "error text"}
        None              -> {}
    """
    if err is None:
        return {}
    if isinstance(err, str):
        return {"message": err}
    if isinstance(err, BaseException):
        data: dict[str, Any] = {
            "type": err.__class__.__name__,
            "message": str(err),
        }
        # Structural errors expose their offending ids as attributes
        for attr in ("packId", "dependencyId", "range", "foundVersion", "actionId", "characterId", "rulesetId"):
            value = getattr(err, attr, None)
            if value is not None:
                data[attr] = value
        return data
    return {"type": type(err).__name__, "repr": repr(err)}



# ------------------------------------------------
#              Generic JSON safety
# ------------------------------------------------

def tryJSONify(obj: Any, *, _seen: set[int] | None = None, _depth: int = 0, _maxDepth: int = 32) -> Any:
    """
    Attempts to make any object JSON-serializable.

    Rules:
      • Basic scalars are preserved; non-finite floats become None.
      • Exceptions → serializeError().
      • pydantic models → model_dump(mode="json").
      • date/datetime → ISO8601 string, Path → string, Enum → value.
      • sets/tuples/iterables → list, Mappings → dict with str keys.
      • fallback → repr(obj)
    """
    if _seen is None:
        _seen = set()
    if _depth > _maxDepth:
        return f"<max_depth_exceeded {type(obj).__name__}>"

    if obj is None or isinstance(obj, (bool, int, str)):
        return obj
    if isinstance(obj, float):
        return obj if obj == obj and obj not in (float("inf"), float("-inf")) else None
    if isinstance(obj, BaseException):
        return serializeError(obj)
    if isinstance(obj, BaseModel):
        return tryJSONify(_payloadOf(obj), _seen=_seen, _depth=_depth + 1, _maxDepth=_maxDepth)
    if isinstance(obj, (date, datetime)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return tryJSONify(obj.value, _seen=_seen, _depth=_depth + 1, _maxDepth=_maxDepth)
    if isinstance(obj, Path):
        return str(obj)

    oid = id(obj)
    if oid in _seen:
        return f"<circular_ref {type(obj).__name__}>"
    _seen.add(oid)
    try:
        if isinstance(obj, Mapping):
            return {
                str(key): tryJSONify(value, _seen=_seen, _depth=_depth + 1, _maxDepth=_maxDepth)
                for key, value in obj.items()
            }
        if isinstance(obj, Iterable):
            return [tryJSONify(value, _seen=_seen, _depth=_depth + 1, _maxDepth=_maxDepth) for value in obj]
    finally:
        _seen.discard(oid)
    return repr(obj)
