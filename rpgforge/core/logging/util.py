# rpgforge/core/logging/util.py
from __future__ import annotations

import logging

from rpgforge.app.globals import configBool



class PackLogger:
    """Logger bound to one content pack, with an opt-in trace() channel."""
    def __init__(self, logger: logging.Logger, traceEnabled: bool) -> None:
        self._log = logger
        self._traceEnabled = traceEnabled

    @property
    def name(self) -> str:
        return self._log.name

    def debug(self, msg: str, *args, **kwargs): self._log.debug(msg, *args, **kwargs)
    def info(self, msg: str, *args, **kwargs): self._log.info(msg, *args, **kwargs)
    def warning(self, msg: str, *args, **kwargs): self._log.warning(msg, *args, **kwargs)
    def error(self, msg: str, *args, **kwargs): self._log.error(msg, *args, **kwargs)
    def trace(self, msg: str, *args, **kwargs):
        if self._traceEnabled:
            self._log.debug("[TRACE] " + msg, *args, **kwargs)

def getPackLogger(packId: str) -> PackLogger:
    traceEnabled = configBool("debug.tracingEnabled", False)
    return PackLogger(logging.getLogger(f"pack.{packId}"), traceEnabled)
