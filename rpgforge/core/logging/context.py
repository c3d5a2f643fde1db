# rpgforge/core/logging/context.py
from __future__ import annotations
import contextlib
import contextvars
from collections.abc import Iterator

__all__ = ["setLogContext", "clearLogContext", "getLogContext", "logContext"]

# Per-call log context (characterId, rulesetId, actionId...)
_logContextVar: contextvars.ContextVar[dict[str, object] | None] = contextvars.ContextVar("rpgforge.logctx", default=None)

def setLogContext(**kvs):
    """Set or update per-log context values. None values are ignored."""
    current = dict(_logContextVar.get() or {})
    for key, value in kvs.items():
        if value is not None:
            current[key] = value
    _logContextVar.set(current)

def clearLogContext():
    _logContextVar.set(None)

def getLogContext():
    """Return current context dict or None."""
    return _logContextVar.get()

@contextlib.contextmanager
def logContext(**kvs) -> Iterator[None]:
    """Scoped variant of setLogContext; restores the previous context on exit."""
    token = _logContextVar.set(dict(_logContextVar.get() or {}))
    try:
        setLogContext(**kvs)
        yield
    finally:
        _logContextVar.reset(token)
