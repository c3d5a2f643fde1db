# rpgforge/core/errors.py
from __future__ import annotations

__all__ = ["RpgForgeError", "NotFoundError"]



class RpgForgeError(Exception):
    """Base class for every structural error raised by rpgforge."""
    pass



class NotFoundError(RpgForgeError, LookupError):
    """Raised when a requested pack, ruleset or character does not exist."""
    pass
