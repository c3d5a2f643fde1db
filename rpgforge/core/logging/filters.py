# rpgforge/core/logging/filters.py
from __future__ import annotations
import logging
import threading
import time
from collections import OrderedDict, deque
from collections.abc import Callable
from dataclasses import dataclass, field

__all__ = ["SamplingFilter", "RecurringSuppressFilter"]

MESSAGE_KEY_LIMIT = 512
MAX_TRACKED_MESSAGES = 4096
_SUMMARY_MARKER = "_rpgforgeSummary"



class SamplingFilter(logging.Filter):
    """Pass only every Nth record (attach to chatty loggers such as formula evaluation)."""
    def __init__(self, sampleEvery: int = 10):
        super().__init__()
        self.sampleEvery = max(1, int(sampleEvery))
        self._seen = 0
        self._lock = threading.Lock()

    def filter(self, record: logging.LogRecord) -> bool:
        with self._lock:
            self._seen += 1
            return self._seen % self.sampleEvery == 0



@dataclass
class _Bucket:
    hits: deque[float] = field(default_factory=deque)
    dropped: int = 0



class RecurringSuppressFilter(logging.Filter):
    """
    Rate limit for identical messages. A message (same logger, level and text)
    passes at most `maxPerWindow` times per `windowSeconds`; the rest are
    dropped and counted. The next time that message is let through, a summary
    with the dropped count is logged first on the same logger.

    A broken formula evaluated on every recompute is the typical offender.
    """
    def __init__(
            self,
            *,
            windowSeconds: int = 60,
            maxPerWindow: int = 5,
            summaryLevel: int = logging.INFO,
            clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__()
        self.windowSeconds = max(1, int(windowSeconds))
        self.maxPerWindow = max(1, int(maxPerWindow))
        self.summaryLevel = int(summaryLevel)
        self._clock = clock
        self._messages: OrderedDict[tuple[str, int, str], _Bucket] = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def messageKey(record: logging.LogRecord) -> tuple[str, int, str]:
        text = " ".join(record.getMessage().split())
        if len(text) > MESSAGE_KEY_LIMIT:
            text = text[:MESSAGE_KEY_LIMIT] + "..."
        return (record.name, record.levelno, text)

    def suppressedCount(self, record: logging.LogRecord) -> int:
        bucket = self._messages.get(self.messageKey(record))
        return bucket.dropped if bucket else 0

    def _bucketFor(self, key: tuple[str, int, str]) -> _Bucket:
        bucket = self._messages.get(key)
        if bucket is None:
            bucket = self._messages[key] = _Bucket()
            while len(self._messages) > MAX_TRACKED_MESSAGES:
                self._messages.popitem(last=False)
        else:
            self._messages.move_to_end(key)
        return bucket

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, _SUMMARY_MARKER, False):
            return True

        key = self.messageKey(record)
        now = self._clock()
        with self._lock:
            bucket = self._bucketFor(key)
            while bucket.hits and bucket.hits[0] < now - self.windowSeconds:
                bucket.hits.popleft()
            bucket.hits.append(now)
            if len(bucket.hits) > self.maxPerWindow:
                bucket.dropped += 1
                return False
            dropped, bucket.dropped = bucket.dropped, 0

        # Summary goes through filter() again, so it is logged after releasing the lock
        if dropped:
            loggerName, _level, text = key
            logging.getLogger(loggerName).log(
                self.summaryLevel,
                "Suppressed %d repeated logs: %s",
                dropped,
                text,
                extra={_SUMMARY_MARKER: True},
            )
        return True
