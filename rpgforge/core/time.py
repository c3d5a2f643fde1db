# rpgforge/core/time.py
from __future__ import annotations

import time
from datetime import datetime, timezone

__all__ = ["nowMs", "nowIso"]



def nowMs() -> int:
    return int(time.time() * 1000)



def nowIso() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a trailing 'Z'."""
    stamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    return stamp.replace("+00:00", "Z")
