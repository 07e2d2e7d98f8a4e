"""
Event hook for checkout state.

Components report notable-but-not-exceptional outcomes here instead of only
printing them: dropped registrations during a reset, storage degradation,
cache hits on token resolution, reconcile results.

EventLog keeps the last N events in memory plus per-event counters and mirrors
every event to a logger. Tests assert on `EventLog.names()` / `count()`.
"""

from __future__ import annotations
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List


@dataclass
class EventLog:
    logger_name: str = "Checkout.Events"
    maxlen: int = 500
    _events: Deque[Dict[str, Any]] = field(default_factory=deque)
    _counts: Dict[str, int] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def __call__(self, event: str, **fields: Any) -> None:
        with self._lock:
            self._events.append({"event": event, **fields})
            while len(self._events) > self.maxlen:
                self._events.popleft()
            self._counts[event] = self._counts.get(event, 0) + 1
        logging.getLogger(self.logger_name).info(f"{event} {fields}" if fields else event)

    def names(self) -> List[str]:
        with self._lock:
            return [e["event"] for e in self._events]

    def count(self, event: str) -> int:
        with self._lock:
            return self._counts.get(event, 0)

    def last(self, event: str) -> Dict[str, Any] | None:
        with self._lock:
            for e in reversed(self._events):
                if e["event"] == event:
                    return dict(e)
        return None

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
            self._counts.clear()


def null_hook(event: str, **fields: Any) -> None:
    return None
