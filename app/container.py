"""
Container — creates and holds singletons.

Provides:
- Durable storage tier (storage/tiers.py) chosen by Settings.STORAGE_BACKEND
- Clock + per-tab scheduler factory (checkout/timing.py)
- Event log (checkout/events.py)
- TabRegistry: one TabSession per X-Tab-ID, each with its own session tier

Tests pass `durable`, `clock` and `scheduler_factory` to run on manual time.
"""

from __future__ import annotations
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from app.config import Settings

# Storage layer
from storage.tiers import KeyValueStore, open_durable_store

# Checkout core
from checkout import ClockLike, SchedulerLike
from checkout.events import EventLog
from checkout.tab import TabRegistry, TabSession, TabTimings
from checkout.timing import SystemClock, TimerScheduler


def timings_from(settings: Settings) -> TabTimings:
    return TabTimings(
        token_ttl_ms=settings.TOKEN_TTL_SECONDS * 1000,
        selection_max_age_ms=settings.SELECTION_MAX_AGE_SECONDS * 1000,
        lock_ms=settings.RESET_LOCK_MS,
        marker_ms=settings.RESET_MARKER_MS,
        grace_ms=settings.RESET_GRACE_MS,
        recent_max=settings.RECENT_TOKENS_MAX,
        recent_max_age_ms=settings.RECENT_TOKENS_MAX_AGE_SECONDS * 1000,
        verify_delay_ms=settings.VERIFY_DELAY_MS,
        verify_delay_unknown_ms=settings.VERIFY_DELAY_UNKNOWN_MS,
    )


@dataclass
class Container:
    settings: Settings
    durable: Optional[KeyValueStore] = None
    clock: Optional[ClockLike] = None
    scheduler_factory: Optional[Callable[[threading.RLock], SchedulerLike]] = None
    # Filled during __post_init__
    events: EventLog = field(default_factory=EventLog)
    tabs: Any = None

    def __post_init__(self):
        # ---------- Storage ----------
        if self.durable is None:
            self.durable = open_durable_store(
                self.settings.STORAGE_BACKEND,
                state_dir=self.settings.STATE_DIR,
                redis_url=self.settings.REDIS_URL,
            )

        # ---------- Time ----------
        if self.clock is None:
            self.clock = SystemClock()
        if self.scheduler_factory is None:
            self.scheduler_factory = lambda lock: TimerScheduler(lock=lock)

        self.timings = timings_from(self.settings)

        # ---------- Tabs ----------
        self.tabs = TabRegistry(factory=self._new_tab, max_tabs=self.settings.MAX_TABS)

    def _new_tab(self, tab_id: str) -> TabSession:
        lock = threading.RLock()
        return TabSession(
            tab_id,
            durable=self.durable,
            clock=self.clock,
            scheduler=self.scheduler_factory(lock),
            events=self.events,
            timings=self.timings,
            lock=lock,
        )

    def tab(self, tab_id: str) -> TabSession:
        return self.tabs.get(tab_id)
