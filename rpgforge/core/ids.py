# rpgforge/core/ids.py
from __future__ import annotations

import uuid
import uuid6

__all__ = ["uuidv7", "uuid_12", "entityId"]



def uuidv7(*, prefix: str = "") -> str:
    """Returns a UUIDv7 string (time-ordered), optionally prefixed."""
    return prefix + str(uuid6.uuid7())



def uuid_12(prefix: str = "") -> str:
    """Returns a short ID with 12 chars from a UUIDv4, optionally prefixed."""
    if not isinstance(prefix, str):
        raise TypeError("prefix must be a str")
    return f"{prefix}{uuid.uuid4().hex[:12]}"



def entityId() -> str:
    """Durable id for collection entities created without an explicit id."""
    return uuid_12()
