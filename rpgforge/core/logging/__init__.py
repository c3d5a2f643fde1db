# rpgforge/core/logging/__init__.py
from __future__ import annotations

from .context import setLogContext, clearLogContext, getLogContext, logContext
from .setup import configureLogging
from .util import getPackLogger

__all__ = [
    "configureLogging",
    "getPackLogger",
    "setLogContext",
    "clearLogContext",
    "getLogContext",
    "logContext",
]
