# rpgforge/app/globals.py
from __future__ import annotations
import threading
from typing import Any

from rpgforge.core.config_stack import ConfigStack, ConfigView

__all__ = ["getConfigStack", "setConfigStack", "resetConfig", "config", "configBool"]



_lock = threading.Lock()
_stack: ConfigStack | None = None
_view: ConfigView | None = None



def getConfigStack() -> ConfigStack:
    """Process-wide ConfigStack, built lazily from defaults, user file and environment."""
    global _stack, _view
    with _lock:
        if _stack is None:
            from rpgforge.app.settings import buildConfigStack
            _stack = buildConfigStack()
            _view = _stack.view()
        return _stack



def setConfigStack(stack: ConfigStack) -> None:
    global _stack, _view
    with _lock:
        _stack = stack
        _view = stack.view()



def resetConfig() -> None:
    """Forget the process stack; the next config() call rebuilds it."""
    global _stack, _view
    with _lock:
        _stack = None
        _view = None



def _getView() -> ConfigView:
    getConfigStack()
    assert _view is not None
    return _view



def config(path: str, default: Any = None) -> Any:
    """
    Read a dotted path from the merged configuration.
    Returns `default` when the path is not found.

    Example:
      config("characters.defaultName")   # "Adventurer"
      config("non.existing.path", 300)   # 300
    """
    return _getView().get(path, default)



def configBool(path: str, default: bool = False) -> bool:
    val = config(path, None)
    if isinstance(val, bool):
        return val
    if val is None:
        return default
    return bool(val)
