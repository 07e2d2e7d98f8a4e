"""
Clocks and deferred-call schedulers.

- SystemClock / TimerScheduler: wall clock + threading.Timer (server use)
- ManualClock / ManualScheduler: deterministic time for tests and the CLI;
  advancing the clock runs every callback that came due, in due order
"""

from __future__ import annotations
import heapq
import itertools
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

log = logging.getLogger("Checkout.Timing")


class SystemClock:
    def now_ms(self) -> int:
        return int(time.time() * 1000)


@dataclass
class ManualClock:
    current_ms: int = 1_700_000_000_000
    scheduler: Optional["ManualScheduler"] = None

    def now_ms(self) -> int:
        return self.current_ms

    def advance(self, ms: int) -> None:
        """Move time forward, firing scheduled callbacks as their due time passes."""
        target = self.current_ms + ms
        if self.scheduler is not None:
            self.scheduler.run_until(target)
        self.current_ms = target


def _safe_call(fn: Callable[[], None]) -> None:
    try:
        fn()
    except Exception:
        log.exception("deferred callback failed")


@dataclass
class TimerScheduler:
    """Runs callbacks on daemon threading.Timer threads."""

    lock: Optional[threading.RLock] = None
    _timers: List[threading.Timer] = field(default_factory=list)

    def call_later(self, delay_ms: int, fn: Callable[[], None]) -> threading.Timer:
        def run():
            if self.lock is not None:
                with self.lock:
                    _safe_call(fn)
            else:
                _safe_call(fn)

        t = threading.Timer(max(0, delay_ms) / 1000.0, run)
        t.daemon = True
        self._timers = [x for x in self._timers if x.is_alive()]
        self._timers.append(t)
        t.start()
        return t

    def cancel_all(self) -> None:
        for t in self._timers:
            t.cancel()
        self._timers.clear()


@dataclass
class ManualScheduler:
    clock: ManualClock
    _queue: List[Tuple[int, int, Callable[[], None]]] = field(default_factory=list)
    _seq: itertools.count = field(default_factory=itertools.count)

    def __post_init__(self):
        self.clock.scheduler = self

    def call_later(self, delay_ms: int, fn: Callable[[], None]) -> int:
        due = self.clock.now_ms() + max(0, delay_ms)
        seq = next(self._seq)
        heapq.heappush(self._queue, (due, seq, fn))
        return seq

    def pending(self) -> int:
        return len(self._queue)

    def run_until(self, target_ms: int) -> None:
        while self._queue and self._queue[0][0] <= target_ms:
            due, _, fn = heapq.heappop(self._queue)
            self.clock.current_ms = max(self.clock.current_ms, due)
            _safe_call(fn)

    def run_all(self) -> None:
        while self._queue:
            self.run_until(self._queue[0][0])
