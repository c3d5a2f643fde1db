# rpgforge/core/logging/setup.py
from __future__ import annotations
import logging
import logging.handlers

from rpgforge.app.globals import config, configBool
from .formatters import DevFormatter, JsonFormatter
from .filters import RecurringSuppressFilter, SamplingFilter

__all__ = ["configureLogging"]



def configureLogging(*, devMode: bool | None = None, logFile: str | None = None) -> None:
    """
    Initiate the global logging configuration.

    Dev:
      - Console pretty logs (DEBUG)
    Prod:
      - Console INFO

    Both:
      - JSON file log with rotation when `logging.file` (or logFile) is set
      - Optional recurring suppression (`debug.suppressRecurringMessages.enabled`)
      - Formula failure sampling (`logging.formulaSampleEvery`)
    """
    if devMode is None:
        devMode = configBool("debug.devModeEnabled", False)
    rootLevel = logging.DEBUG if devMode else logging.INFO

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(rootLevel)

    consoleHandler = logging.StreamHandler()
    consoleHandler.setLevel(rootLevel)
    consoleHandler.setFormatter(DevFormatter())
    handlers: list[logging.Handler] = [consoleHandler]

    logFile = logFile or config("logging.file", None)
    if logFile:
        fileHandler = logging.handlers.RotatingFileHandler(
            str(logFile),
            maxBytes=int(config("logging.maxBytes", 10 * 1024 * 1024)),
            backupCount=int(config("logging.backupCount", 5)),
            encoding="utf-8",
        )
        fileHandler.setLevel(rootLevel)
        fileHandler.setFormatter(JsonFormatter())
        handlers.append(fileHandler)

    if configBool("debug.suppressRecurringMessages.enabled", False):
        levelName = str(config("debug.suppressRecurringMessages.summaryLevel", "INFO")).upper()
        summaryLevel = getattr(logging, levelName, logging.INFO)
        suppressFilter = RecurringSuppressFilter(
            windowSeconds=int(config("debug.suppressRecurringMessages.windowSeconds", 60)),
            maxPerWindow=int(config("debug.suppressRecurringMessages.maxPerWindow", 5)),
            summaryLevel=summaryLevel,
        )
        for handler in handlers:
            handler.addFilter(suppressFilter)

    sampleEvery = int(config("logging.formulaSampleEvery", 1) or 1)
    formulaLogger = logging.getLogger("rpgforge.runtime.expression")
    for existing in list(formulaLogger.filters):
        if isinstance(existing, SamplingFilter):
            formulaLogger.removeFilter(existing)
    if sampleEvery > 1:
        formulaLogger.addFilter(SamplingFilter(sampleEvery=sampleEvery))

    for handler in handlers:
        root.addHandler(handler)
